"""Session Gateway: binds one socket to one identity and routes its events.

The gateway checks only that required fields are present; validation and
authorization belong to the engines. Whatever an engine raises is reported
back to the originating session as ``message_error`` and never broadcast.

Protocol Message Types (client -> server):
    - join_conversation / leave_conversation: room subscription (acked)
    - send_message: Delivery Pipeline submit
    - mark_read: batch read receipts
    - react: reaction toggle/replace
    - typing / stop_typing: ephemeral relay
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..effects import GlobalBroadcast, Outcome
from ..errors import AuthorizationError, ChatError, StorageError, ValidationError
from ..events import ClientEvent, ServerEvent
from ..messages.pipeline import DeliveryPipeline
from ..messages.receipts import ReceiptNotifier
from ..presence import PresenceRegistry, is_anonymous
from ..store import ChatStore, FileRef, utcnow
from .hub import SessionHub

logger = logging.getLogger(__name__)

Handler = Callable[[str, Dict[str, Any]], Awaitable[None]]


def _required(data: Dict[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required.")
    return value


def _optional(data: Dict[str, Any], field: str) -> Optional[str]:
    value = data.get(field)
    if isinstance(value, str) and value.strip():
        return value
    return None


class SessionGateway:

    def __init__(
        self,
        hub: SessionHub,
        registry: PresenceRegistry,
        store: ChatStore,
        pipeline: DeliveryPipeline,
        receipts: ReceiptNotifier,
    ) -> None:
        self._hub = hub
        self._presence = registry
        self._store = store
        self._pipeline = pipeline
        self._receipts = receipts
        # Identity each session was opened with; fixed for the session's lifetime
        self._session_users: Dict[str, Optional[str]] = {}
        self._handlers: Dict[str, Handler] = {
            ClientEvent.JOIN_CONVERSATION.value: self._on_join,
            ClientEvent.LEAVE_CONVERSATION.value: self._on_leave,
            ClientEvent.SEND_MESSAGE.value: self._on_send_message,
            ClientEvent.MARK_READ.value: self._on_mark_read,
            ClientEvent.REACT.value: self._on_react,
            ClientEvent.TYPING.value: self._on_typing,
            ClientEvent.STOP_TYPING.value: self._on_stop_typing,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def user_for(self, session_id: str) -> Optional[str]:
        return self._session_users.get(session_id)

    def _online_users(self) -> GlobalBroadcast:
        return GlobalBroadcast(ServerEvent.ACTIVE_USERS, {"users": self._presence.online_user_ids()})

    async def open(self, session_id: str, user_id: Optional[str]) -> None:
        """Bind a freshly registered session and announce presence."""
        user_id = None if is_anonymous(user_id) else user_id.strip()
        self._session_users[session_id] = user_id
        changed = self._presence.bind(session_id, user_id)

        await self._hub.send(session_id, ServerEvent.CONNECTED, {"sessionId": session_id, "userId": user_id})
        if changed:
            await self._hub.execute(Outcome(effects=[self._online_users()]))
        else:
            logger.info(f"[WS] Anonymous client {session_id} connected")

    async def close(self, session_id: str) -> None:
        """Tear down a session. Timeouts and explicit disconnects are handled alike.

        A session evicted by a newer connection of the same user no longer owns
        the presence entry, so closing it stamps no lastSeen and broadcasts nothing.
        """
        self._hub.remove(session_id)
        self._session_users.pop(session_id, None)
        user_id = self._presence.unbind(session_id)
        if user_id is None:
            return

        try:
            await self._store.touch_last_seen(user_id, utcnow())
        except StorageError as e:
            logger.error(f"[WS] Failed to update lastSeen for user {user_id}: {e}")
        await self._hub.execute(Outcome(effects=[self._online_users()]))

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle(self, session_id: str, data: Any) -> None:
        """Route one inbound frame. Errors go back to this session only."""
        try:
            if not isinstance(data, dict):
                raise ValidationError("Frames must be JSON objects.")
            event = data.get("type")
            handler = self._handlers.get(event) if isinstance(event, str) else None
            if handler is None:
                raise ValidationError(f"Unknown event type: {event!r}")
            logger.debug("[WS] Session %s received: type=%s", session_id, event)
            await handler(session_id, data)
        except ChatError as e:
            logger.info(f"[WS] {type(e).__name__} for session {session_id}: {e.message}")
            await self.report_error(session_id, e)

    async def report_error(self, session_id: str, error: ChatError) -> None:
        await self._hub.send(session_id, ServerEvent.MESSAGE_ERROR, error.to_dict())

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _on_join(self, session_id: str, data: Dict[str, Any]) -> None:
        conversation_id = _required(data, "conversationId")
        self._hub.join(session_id, conversation_id)
        logger.info(f"[WS] {self.user_for(session_id) or session_id} joined conversation {conversation_id}")
        await self._hub.send(session_id, ServerEvent.CONVERSATION_JOINED, {"conversationId": conversation_id})

    async def _on_leave(self, session_id: str, data: Dict[str, Any]) -> None:
        conversation_id = _required(data, "conversationId")
        self._hub.leave(session_id, conversation_id)
        logger.info(f"[WS] {self.user_for(session_id) or session_id} left conversation {conversation_id}")
        await self._hub.send(session_id, ServerEvent.CONVERSATION_LEFT, {"conversationId": conversation_id})

    async def _on_send_message(self, session_id: str, data: Dict[str, Any]) -> None:
        conversation_id = _required(data, "conversationId")
        bound = self.user_for(session_id)
        sender_id = _optional(data, "senderId") or bound
        if sender_id is None:
            raise ValidationError("senderId is required.")
        if bound is not None and sender_id != bound:
            raise AuthorizationError("senderId does not match this session's user.")

        file_url = _optional(data, "fileUrl")
        file = None
        if file_url:
            file = FileRef(
                url=file_url,
                mimeType=_optional(data, "fileType") or "",
                name=_optional(data, "fileName") or "",
            )
        content = data.get("content") if isinstance(data.get("content"), str) else None

        outcome = await self._pipeline.submit(
            conversation_id,
            sender_id,
            content=content,
            file=file,
            reply_to=_optional(data, "replyTo"),
        )
        await self._hub.execute(outcome)

    async def _on_mark_read(self, session_id: str, data: Dict[str, Any]) -> None:
        conversation_id = _required(data, "conversationId")
        reader_id = self.user_for(session_id)
        if reader_id is None:
            raise ValidationError("mark_read requires an identified session.")
        outcome = await self._receipts.mark_read(conversation_id, reader_id)
        await self._hub.execute(outcome)

    async def _on_react(self, session_id: str, data: Dict[str, Any]) -> None:
        message_id = _required(data, "messageId")
        emoji = _required(data, "emoji")
        reactor_id = self.user_for(session_id)
        if reactor_id is None:
            raise ValidationError("Missing data for reaction.")
        outcome = await self._receipts.react(message_id, reactor_id, emoji)
        await self._hub.execute(outcome)

    async def _on_typing(self, session_id: str, data: Dict[str, Any]) -> None:
        await self._relay_typing(session_id, data, True)

    async def _on_stop_typing(self, session_id: str, data: Dict[str, Any]) -> None:
        await self._relay_typing(session_id, data, False)

    async def _relay_typing(self, session_id: str, data: Dict[str, Any], is_typing: bool) -> None:
        outcome = self._receipts.typing(
            _optional(data, "conversationId"),
            self.user_for(session_id),
            is_typing,
            origin_session=session_id,
        )
        await self._hub.execute(outcome)

    def reset(self) -> None:
        self._session_users.clear()
