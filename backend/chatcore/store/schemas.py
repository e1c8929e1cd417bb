"""Pydantic models for the Identity & Membership Store.

These are the durable records the rest of the core reads and writes:
    - User / Admin: identities (users chat, admins moderate)
    - Conversation: participants, group admins, last-message pointer
    - Message: content or file, reactions, delivery status, readBy
    - ActivityLogEntry: append-only admin audit trail

Field names are camelCase because the models are serialised as-is to the
chat clients and the admin dashboard.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in DuckDB."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class MessageType(str, Enum):
    """Kind of message.

    Attributes:
        TEXT: Plain text (possibly with a non-media attachment).
        IMAGE: Image attachment.
        AUDIO: Audio attachment.
        VIDEO: Video attachment.
        SYSTEM: Membership event generated by the server (no sender).
    """
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    """Delivery status, meaningful for one-to-one conversations only."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class ActivityAction(str, Enum):
    CREATED_USER = "CREATED_USER"
    EDITED_USER = "EDITED_USER"
    DEACTIVATED_USER = "DEACTIVATED_USER"
    RESTORED_USER = "RESTORED_USER"
    PERMANENTLY_DELETED_USER = "PERMANENTLY_DELETED_USER"
    BANNED_USER = "BANNED_USER"
    UNBANNED_USER = "UNBANNED_USER"
    DELETED_MESSAGE = "DELETED_MESSAGE"


# =============================================================================
# Identities
# =============================================================================


class BanDetails(BaseModel):
    """Ban overlay. ``expiresAt`` is None for a permanent ban."""
    reason: str = Field(..., description="Why the user was banned")
    bannedAt: datetime = Field(default_factory=utcnow, description="When the ban started")
    expiresAt: Optional[datetime] = Field(None, description="When the ban lifts")
    bannedBy: Optional[str] = Field(None, description="Admin who issued the ban")


class User(BaseModel):
    """A chat user.

    Attributes:
        id: Unique user identifier.
        fullName: Display name.
        email: Unique, lower-cased email address.
        passwordHash: Hashed password (never serialised).
        profilePictureUrl: Avatar URL from blob storage ("" if none).
        lastSeen: Stamped when the user's last session disconnects.
        createdBy: Admin id when the account was created by an admin.
        deletedAt / deletedBy: Soft-deletion marker.
        isBanned / banDetails: Ban overlay.
    """
    id: str = Field(default_factory=new_id, description="Unique user ID")
    fullName: str = Field(..., description="Display name")
    email: str = Field(..., description="Unique email address")
    passwordHash: str = Field(default="", exclude=True)
    profilePictureUrl: str = Field(default="", description="Avatar URL")
    lastSeen: datetime = Field(default_factory=utcnow)
    createdAt: datetime = Field(default_factory=utcnow)
    createdBy: Optional[str] = None
    deletedAt: Optional[datetime] = None
    deletedBy: Optional[str] = None
    isBanned: bool = False
    banDetails: Optional[BanDetails] = None

    def ban_expired(self, now: Optional[datetime] = None) -> bool:
        """True when the user is banned but the ban's expiry has passed."""
        if not self.isBanned or self.banDetails is None or self.banDetails.expiresAt is None:
            return False
        return self.banDetails.expiresAt < (now or utcnow())

    def summary(self) -> "UserSummary":
        return UserSummary(
            id=self.id,
            fullName=self.fullName,
            email=self.email,
            profilePictureUrl=self.profilePictureUrl,
        )


class UserSummary(BaseModel):
    """The subset of a user embedded in conversations and messages."""
    id: str
    fullName: str
    email: str
    profilePictureUrl: str = ""


class Admin(BaseModel):
    """A dashboard administrator. Separate from chat users."""
    id: str = Field(default_factory=new_id)
    fullName: str
    email: str
    passwordHash: str = Field(default="", exclude=True)
    createdAt: datetime = Field(default_factory=utcnow)


# =============================================================================
# Conversations and messages
# =============================================================================


class FileRef(BaseModel):
    """Attachment reference returned by the blob-storage collaborator."""
    url: str = Field(..., description="Public URL of the stored file")
    mimeType: str = Field(default="", description="MIME type")
    name: str = Field(default="", description="Original filename")


class Reaction(BaseModel):
    """One user's reaction. A message holds at most one per user."""
    emoji: str
    user: str
    userName: str


class Conversation(BaseModel):
    """A one-to-one or group conversation.

    For group chats ``groupAdmins`` is a non-empty subset of
    ``participants`` whenever ``participants`` is non-empty.
    One-to-one chats keep an empty admin set.
    """
    id: str = Field(default_factory=new_id)
    participants: List[str] = Field(default_factory=list)
    isGroupChat: bool = False
    groupName: str = ""
    groupPictureUrl: str = ""
    groupAdmins: List[str] = Field(default_factory=list)
    lastMessageId: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def is_admin(self, user_id: str) -> bool:
        return user_id in self.groupAdmins

    def is_one_to_one(self) -> bool:
        return not self.isGroupChat and len(self.participants) == 2

    def other_participant(self, user_id: str) -> Optional[str]:
        for participant in self.participants:
            if participant != user_id:
                return participant
        return None


class Message(BaseModel):
    """A persisted chat or system message.

    Messages are never physically removed by users: edits set ``isEdited``,
    deletes overwrite the content and stamp ``deletedAt``.
    """
    id: str = Field(default_factory=new_id)
    conversationId: str
    senderId: Optional[str] = None
    content: Optional[str] = None
    messageType: MessageType = MessageType.TEXT
    file: Optional[FileRef] = None
    reactions: List[Reaction] = Field(default_factory=list)
    status: MessageStatus = MessageStatus.SENT
    readBy: List[str] = Field(default_factory=list)
    isEdited: bool = False
    deletedAt: Optional[datetime] = None
    replyTo: Optional[str] = None
    replySnippet: str = ""
    replySenderName: str = ""
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)


class MessageView(Message):
    """A message with its sender expanded, as broadcast and returned by the API."""
    sender: Optional[UserSummary] = None


class ConversationView(BaseModel):
    """A conversation with its references expanded for rendering."""
    id: str
    participants: List[UserSummary]
    isGroupChat: bool
    groupName: str
    groupPictureUrl: str
    groupAdmins: List[UserSummary]
    lastMessage: Optional[MessageView] = None
    unreadCount: Optional[int] = None
    createdAt: datetime
    updatedAt: datetime


# =============================================================================
# Activity log
# =============================================================================


class ActivityLogEntry(BaseModel):
    """One admin action. Append-only."""
    id: Optional[int] = None
    adminId: str
    adminName: str
    action: ActivityAction
    targetType: str = "USER"
    targetId: str
    targetName: str = ""
    details: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
