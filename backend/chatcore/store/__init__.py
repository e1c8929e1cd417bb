"""Identity & Membership Store: durable users, conversations and messages."""

from .schemas import (
    ActivityAction,
    ActivityLogEntry,
    Admin,
    BanDetails,
    Conversation,
    ConversationView,
    FileRef,
    Message,
    MessageStatus,
    MessageType,
    MessageView,
    Reaction,
    User,
    UserSummary,
    new_id,
    utcnow,
)
from .service import ChatStore

__all__ = [
    "ActivityAction",
    "ActivityLogEntry",
    "Admin",
    "BanDetails",
    "ChatStore",
    "Conversation",
    "ConversationView",
    "FileRef",
    "Message",
    "MessageStatus",
    "MessageType",
    "MessageView",
    "Reaction",
    "User",
    "UserSummary",
    "new_id",
    "utcnow",
]
