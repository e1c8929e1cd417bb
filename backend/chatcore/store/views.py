"""Expansion of stored records into the shapes clients render.

Conversations reference users and their last message by id; clients expect
those references populated. These helpers batch the lookups so a list of
conversations costs one user query and one message query.
"""
from typing import Dict, Iterable, List, Optional

from .schemas import Conversation, ConversationView, Message, MessageView, User
from .service import ChatStore


def _message_view(message: Message, users: Dict[str, User]) -> MessageView:
    sender = users.get(message.senderId) if message.senderId else None
    return MessageView(
        **message.model_dump(),
        sender=sender.summary() if sender else None,
    )


async def message_view(store: ChatStore, message: Message) -> MessageView:
    """Expand the sender of a single message."""
    users = await store.get_users([message.senderId] if message.senderId else [])
    return _message_view(message, users)


async def message_views(store: ChatStore, messages: Iterable[Message]) -> List[MessageView]:
    messages = list(messages)
    users = await store.get_users(m.senderId for m in messages if m.senderId)
    return [_message_view(message, users) for message in messages]


async def conversation_views(
    store: ChatStore,
    conversations: Iterable[Conversation],
    viewer_id: Optional[str] = None,
) -> List[ConversationView]:
    """Expand participants, admins and last message.

    When *viewer_id* is given each view also carries the viewer's unread count.
    Participants whose user record was hard-deleted are left out of the view.
    """
    conversations = list(conversations)
    last_messages = await store.get_messages(c.lastMessageId for c in conversations if c.lastMessageId)

    user_ids: List[str] = []
    for conversation in conversations:
        user_ids.extend(conversation.participants)
        user_ids.extend(conversation.groupAdmins)
    user_ids.extend(m.senderId for m in last_messages.values() if m.senderId)
    users = await store.get_users(user_ids)

    views = []
    for conversation in conversations:
        last = last_messages.get(conversation.lastMessageId) if conversation.lastMessageId else None
        unread = None
        if viewer_id is not None:
            unread = await store.count_unread(conversation.id, viewer_id)
        views.append(ConversationView(
            id=conversation.id,
            participants=[users[p].summary() for p in conversation.participants if p in users],
            isGroupChat=conversation.isGroupChat,
            groupName=conversation.groupName,
            groupPictureUrl=conversation.groupPictureUrl,
            groupAdmins=[users[a].summary() for a in conversation.groupAdmins if a in users],
            lastMessage=_message_view(last, users) if last else None,
            unreadCount=unread,
            createdAt=conversation.createdAt,
            updatedAt=conversation.updatedAt,
        ))
    return views


async def conversation_view(
    store: ChatStore,
    conversation: Conversation,
    viewer_id: Optional[str] = None,
) -> ConversationView:
    views = await conversation_views(store, [conversation], viewer_id)
    return views[0]
