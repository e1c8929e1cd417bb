"""History, search and after-the-fact changes to persisted messages.

Edits and deletes are soft: a message is never physically removed. The
author's delete and an administrator's moderation overwrite the content with
a fixed notice and clear the attachment; both re-broadcast the full message
as ``message_updated`` to the conversation's room.
"""
import logging
from typing import List, Optional

from ..config import get_config
from ..effects import Outcome, RoomBroadcast
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..events import ServerEvent
from ..store import (
    ActivityAction,
    ActivityLogEntry,
    Admin,
    ChatStore,
    Conversation,
    Message,
    MessageView,
    utcnow,
)
from ..store.views import message_view, message_views

logger = logging.getLogger(__name__)

DELETED_NOTICE = "This message was deleted"
MODERATED_NOTICE = "This message was removed by an administrator."


def page_window(page: Optional[int], limit: Optional[int]) -> tuple:
    """Validate 1-based *page* / *limit* and return ``(offset, limit)``."""
    settings = get_config().messages
    page = 1 if page is None else page
    limit = settings.page_size if limit is None else limit
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive integers.")
    limit = min(limit, settings.max_page_size)
    return (page - 1) * limit, limit


class MessageService:

    def __init__(self, store: ChatStore) -> None:
        self._store = store

    async def _readable_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found.")
        if not conversation.is_participant(user_id):
            raise AuthorizationError("You are not authorized to view these messages.")
        return conversation

    async def _own_message(self, message_id: str, user_id: str) -> Message:
        message = await self._store.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found.")
        if message.senderId != user_id:
            raise AuthorizationError("You can only change your own messages.")
        return message

    async def history(
        self,
        conversation_id: str,
        user_id: str,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[MessageView]:
        """One page of the conversation's messages, newest first."""
        offset, limit = page_window(page, limit)
        await self._readable_conversation(conversation_id, user_id)
        messages = await self._store.list_messages(conversation_id, offset, limit)
        return await message_views(self._store, messages)

    async def moderation_history(
        self,
        conversation_id: str,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[MessageView]:
        """Admin read of any conversation's messages, newest first."""
        offset, limit = page_window(page, limit)
        if await self._store.get_conversation(conversation_id) is None:
            raise NotFoundError("Conversation not found.")
        messages = await self._store.list_messages(conversation_id, offset, limit)
        return await message_views(self._store, messages)

    async def search(self, conversation_id: str, user_id: str, query: Optional[str]) -> List[MessageView]:
        """Case-insensitive substring search, deleted messages excluded."""
        if not query or not query.strip():
            raise ValidationError("A search query is required.")
        await self._readable_conversation(conversation_id, user_id)
        messages = await self._store.search_messages(conversation_id, query.strip())
        return await message_views(self._store, messages)

    async def edit(self, message_id: str, user_id: str, content: Optional[str]) -> Outcome:
        if not content or not content.strip():
            raise ValidationError("Message content is required.")
        message = await self._own_message(message_id, user_id)
        if message.deletedAt is not None:
            raise ValidationError("A deleted message cannot be edited.")

        message = await self._store.update_content(message_id, content, edited=True)
        logger.info(f"Message {message_id} edited by {user_id}")
        return await self._updated(message)

    async def delete(self, message_id: str, user_id: str) -> Outcome:
        await self._own_message(message_id, user_id)
        message = await self._store.update_content(
            message_id, DELETED_NOTICE, deleted_at=utcnow(), clear_file=True,
        )
        logger.info(f"Message {message_id} deleted by {user_id}")
        return await self._updated(message)

    async def moderate(self, message_id: str, admin: Admin) -> Outcome:
        """Overwrite a message as an administrator and record the action."""
        message = await self._store.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found.")

        message = await self._store.update_content(
            message_id, MODERATED_NOTICE, deleted_at=utcnow(), clear_file=True, clear_reactions=True,
        )
        await self._store.log_activity(ActivityLogEntry(
            adminId=admin.id,
            adminName=admin.fullName,
            action=ActivityAction.DELETED_MESSAGE,
            targetType="MESSAGE",
            targetId=message.id,
            details=f"Deleted a message in conversation: {message.conversationId}",
        ))
        logger.info(f"Message {message_id} moderated by admin {admin.id}")
        return await self._updated(message)

    async def _updated(self, message: Message) -> Outcome:
        view = await message_view(self._store, message)
        return Outcome(result=view, effects=[RoomBroadcast(
            room=message.conversationId,
            event=ServerEvent.MESSAGE_UPDATED,
            payload=view.model_dump(mode="json"),
        )])
