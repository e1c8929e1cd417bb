"""Message Delivery Pipeline.

Accepts a new message, persists it, then fans it out to the conversation's
room. For one-to-one conversations whose recipient is online at submit time,
a follow-up advances the status to ``delivered`` and privately acknowledges
the sender. The follow-up is only run by the hub after the ``new_message``
broadcast has gone out.

Delivery is at-most-once per subscribed session: a participant that has not
joined the room when the broadcast happens must catch up through the history
endpoint. There is no replay queue and no retroactive ``delivered`` upgrade
when the recipient connects later.
"""
import functools
import logging
from typing import Optional

from ..effects import Outcome, RoomBroadcast, SessionNotice
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..events import ServerEvent
from ..presence import PresenceRegistry
from ..store import (
    ChatStore,
    FileRef,
    Message,
    MessageStatus,
    MessageType,
    MessageView,
)
from ..store.views import message_view

logger = logging.getLogger(__name__)

# Maximum length of the denormalised reply snippet
REPLY_SNIPPET_LENGTH = 100


def message_type_for(file: Optional[FileRef]) -> MessageType:
    """Derive the message type from the attachment's MIME type."""
    if file is None:
        return MessageType.TEXT
    major = file.mimeType.split("/", 1)[0].lower()
    if major == "image":
        return MessageType.IMAGE
    if major == "audio":
        return MessageType.AUDIO
    if major == "video":
        return MessageType.VIDEO
    return MessageType.TEXT


def reply_snippet(message: Message) -> str:
    if message.deletedAt is None and message.content:
        return message.content[:REPLY_SNIPPET_LENGTH]
    if message.file is not None:
        return message.file.name or message.file.url
    return message.content or ""


class DeliveryPipeline:
    """Persist-then-broadcast path shared by chat and system messages."""

    def __init__(self, store: ChatStore, registry: PresenceRegistry) -> None:
        self._store = store
        self._presence = registry

    async def submit(
        self,
        conversation_id: Optional[str],
        sender_id: Optional[str],
        content: Optional[str] = None,
        file: Optional[FileRef] = None,
        reply_to: Optional[str] = None,
    ) -> Outcome:
        """Persist and broadcast a chat message.

        Raises:
            ValidationError: conversation id or sender missing, or neither
                content nor file given.
            NotFoundError: conversation, sender or replied-to message absent.
            AuthorizationError: sender is not a participant.
        """
        if content is not None and not content.strip():
            content = None
        if not conversation_id or not sender_id:
            raise ValidationError("conversationId and senderId are required.")
        if content is None and file is None:
            raise ValidationError("A message needs content or a file.")

        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found.")
        if not conversation.is_participant(sender_id):
            raise AuthorizationError("You are not a participant of this conversation.")
        sender = await self._store.get_user(sender_id)
        if sender is None:
            raise NotFoundError("Sender not found.")

        snippet, snippet_sender = "", ""
        if reply_to:
            target = await self._store.get_message(reply_to)
            if target is None or target.conversationId != conversation_id:
                raise NotFoundError("The message being replied to was not found.")
            snippet = reply_snippet(target)
            if target.senderId:
                target_sender = await self._store.get_user(target.senderId)
                snippet_sender = target_sender.fullName if target_sender else ""

        message = Message(
            conversationId=conversation_id,
            senderId=sender_id,
            content=content,
            messageType=message_type_for(file),
            file=file,
            status=MessageStatus.SENT,
            readBy=[sender_id],
            replyTo=reply_to or None,
            replySnippet=snippet,
            replySenderName=snippet_sender,
        )
        await self._store.insert_message(message)
        await self._store.set_last_message(conversation_id, message.id)
        logger.info(f"Message {message.id} saved in conversation {conversation_id}")

        view = MessageView(**message.model_dump(), sender=sender.summary())
        outcome = Outcome(result=view, effects=[_new_message(view)])

        if conversation.is_one_to_one():
            recipient = conversation.other_participant(sender_id)
            if self._presence.is_online(recipient):
                outcome.follow_up = functools.partial(self._mark_delivered, view)
        return outcome

    async def _mark_delivered(self, view: MessageView) -> Outcome:
        """Advance a one-to-one message to ``delivered`` and tell its sender."""
        await self._store.update_message_status(view.id, MessageStatus.DELIVERED)
        view.status = MessageStatus.DELIVERED

        effects = []
        sender_session = self._presence.session_for(view.senderId)
        if sender_session is not None:
            effects.append(SessionNotice(
                session_id=sender_session,
                event=ServerEvent.MESSAGE_DELIVERED,
                payload={"messageId": view.id, "conversationId": view.conversationId},
            ))
        return Outcome(result=view, effects=effects)

    async def post_system_message(self, conversation_id: str, text: str) -> Outcome:
        """Persist and broadcast a membership event.

        System messages have no sender, so they carry an empty ``readBy`` and
        skip the delivered-status bookkeeping.
        """
        message = Message(
            conversationId=conversation_id,
            senderId=None,
            content=text,
            messageType=MessageType.SYSTEM,
            readBy=[],
        )
        await self._store.insert_message(message)
        await self._store.set_last_message(conversation_id, message.id)
        logger.info(f"System message in conversation {conversation_id}: {text}")

        view = await message_view(self._store, message)
        return Outcome(result=view, effects=[_new_message(view)])


def _new_message(view: MessageView) -> RoomBroadcast:
    return RoomBroadcast(
        room=view.conversationId,
        event=ServerEvent.NEW_MESSAGE,
        payload=view.model_dump(mode="json"),
    )
