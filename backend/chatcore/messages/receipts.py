"""Read-Receipt & Typing Notifier.

Best-effort signals layered on persisted messages:
    - mark_read: batch read receipts with a coarse "all read" signal
    - typing / stop_typing: ephemeral relay, never persisted
    - react: one reaction per user per message, re-broadcast in full
"""
import logging
from typing import List, Optional

from ..effects import Outcome, RoomBroadcast, SessionNotice
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..events import ServerEvent
from ..presence import PresenceRegistry
from ..store import ChatStore, Conversation, Reaction
from ..store.views import message_view

logger = logging.getLogger(__name__)


class ReceiptNotifier:

    def __init__(self, store: ChatStore, registry: PresenceRegistry) -> None:
        self._store = store
        self._presence = registry

    async def _participant_conversation(self, conversation_id: Optional[str], user_id: Optional[str]) -> Conversation:
        if not conversation_id:
            raise ValidationError("conversationId is required.")
        if not user_id:
            raise ValidationError("An identified user is required.")
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found.")
        if not conversation.is_participant(user_id):
            raise AuthorizationError("You are not a participant of this conversation.")
        return conversation

    async def mark_read(self, conversation_id: Optional[str], reader_id: Optional[str]) -> Outcome:
        """Mark every message not sent by the reader as read.

        Idempotent: a second call modifies nothing and emits nothing.

        Returns:
            Outcome whose result is the number of modified messages. When that
            is non-zero in a one-to-one conversation, the other participant's
            session (if online) receives ``messages_read``.
        """
        conversation = await self._participant_conversation(conversation_id, reader_id)
        modified = await self._store.mark_read(conversation.id, reader_id)
        logger.info(f"User {reader_id} marked messages read in {conversation.id}. Updated: {modified}")

        outcome = Outcome(result=modified)
        if modified and conversation.is_one_to_one():
            other_session = self._presence.session_for(conversation.other_participant(reader_id))
            if other_session is not None:
                outcome.effects.append(SessionNotice(
                    session_id=other_session,
                    event=ServerEvent.MESSAGES_READ,
                    payload={"conversationId": conversation.id},
                ))
        return outcome

    def typing(
        self,
        conversation_id: Optional[str],
        user_id: Optional[str],
        is_typing: bool,
        origin_session: Optional[str] = None,
    ) -> Outcome:
        """Relay a typing indicator to every other session in the room.

        Anonymous sessions and missing conversation ids are silently ignored;
        typing is best-effort and never reports errors.
        """
        if not conversation_id or not user_id:
            return Outcome()
        return Outcome(effects=[RoomBroadcast(
            room=conversation_id,
            event=ServerEvent.USER_TYPING,
            payload={"userId": user_id, "conversationId": conversation_id, "isTyping": is_typing},
            exclude_session=origin_session,
        )])

    async def react(self, message_id: Optional[str], reactor_id: Optional[str], emoji: Optional[str]) -> Outcome:
        """Toggle or replace *reactor_id*'s reaction on a message.

        Same emoji again removes the reaction, a different emoji replaces it
        in place, and a first reaction is appended.
        """
        if not message_id or not emoji or not reactor_id:
            raise ValidationError("Missing data for reaction.")
        reactor = await self._store.get_user(reactor_id)
        if reactor is None:
            raise NotFoundError("User not found.")
        message = await self._store.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found.")
        await self._participant_conversation(message.conversationId, reactor_id)

        def toggle(reactions: List[Reaction]) -> List[Reaction]:
            existing = next((r for r in reactions if r.user == reactor_id), None)
            if existing is None:
                reactions.append(Reaction(emoji=emoji, user=reactor_id, userName=reactor.fullName))
            elif existing.emoji == emoji:
                reactions.remove(existing)
            else:
                existing.emoji = emoji
            return reactions

        message = await self._store.update_reactions(message_id, toggle)
        if message is None:
            raise NotFoundError("Message not found.")

        view = await message_view(self._store, message)
        return Outcome(result=view, effects=[RoomBroadcast(
            room=message.conversationId,
            event=ServerEvent.MESSAGE_UPDATED,
            payload=view.model_dump(mode="json"),
        )])
