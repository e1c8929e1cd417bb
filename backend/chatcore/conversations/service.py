"""Conversation Membership Engine.

Owns the structural state of conversations: who participates and, for group
chats, who administers. Every operation validates completely before it
mutates anything, so a rejected call leaves the stored conversation exactly
as it was.

Invariant:
    For a group conversation with at least one participant, ``groupAdmins``
    is a non-empty subset of ``participants``. Each mutating operation checks
    it explicitly before saving; ``leave`` repairs it by promoting the first
    remaining participant.

Membership events ("{admin} added {user}", "{admin} removed {user}",
"{user} left") are posted through the Delivery Pipeline's system-message
path and broadcast to the conversation's room.
"""
import logging
from typing import List, Optional, Sequence, Tuple

from ..config import get_config
from ..effects import Outcome
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..files import PROFILE_PICTURES, BlobStorage
from ..messages.pipeline import DeliveryPipeline
from ..store import ChatStore, Conversation, ConversationView, User
from ..store.views import conversation_view, conversation_views

logger = logging.getLogger(__name__)


def _name(user: Optional[User]) -> str:
    return user.fullName if user else "Someone"


def ensure_admin_invariant(conversation: Conversation) -> None:
    """Keep ``groupAdmins`` a non-empty subset of a non-empty ``participants``."""
    if not conversation.isGroupChat:
        return
    conversation.groupAdmins = [a for a in conversation.groupAdmins if a in conversation.participants]
    if conversation.participants and not conversation.groupAdmins:
        conversation.groupAdmins = [conversation.participants[0]]
        logger.info(
            f"Conversation {conversation.id} had no admin left; "
            f"promoted {conversation.participants[0]}"
        )


class MembershipEngine:

    def __init__(self, store: ChatStore, pipeline: DeliveryPipeline, blobs: BlobStorage) -> None:
        self._store = store
        self._pipeline = pipeline
        self._blobs = blobs

    # =========================================================================
    # Lookups
    # =========================================================================

    async def _conversation(self, conversation_id: str) -> Conversation:
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found.")
        return conversation

    async def _participant_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self._conversation(conversation_id)
        if not conversation.is_participant(user_id):
            raise AuthorizationError("You are not a participant of this conversation.")
        return conversation

    async def _group(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self._conversation(conversation_id)
        if not conversation.isGroupChat:
            raise ValidationError("This is not a group conversation.")
        if not conversation.is_participant(user_id):
            raise AuthorizationError("You are not a member of this group.")
        return conversation

    async def _admin_group(self, conversation_id: str, admin_id: str) -> Conversation:
        conversation = await self._group(conversation_id, admin_id)
        if not conversation.is_admin(admin_id):
            raise AuthorizationError("Only group admins can do this.")
        return conversation

    async def _view(self, conversation: Conversation) -> ConversationView:
        return await conversation_view(self._store, conversation)

    async def list_for(self, user_id: str) -> List[ConversationView]:
        """The caller's conversations, most recently active first, with unread counts."""
        conversations = await self._store.list_conversations_for(user_id)
        return await conversation_views(self._store, conversations, viewer_id=user_id)

    async def get(self, conversation_id: str, user_id: str) -> ConversationView:
        conversation = await self._participant_conversation(conversation_id, user_id)
        return await conversation_view(self._store, conversation, viewer_id=user_id)

    # =========================================================================
    # Creation
    # =========================================================================

    async def get_or_create_one_to_one(self, user_a: str, user_b: Optional[str]) -> Tuple[ConversationView, bool]:
        """Return the pair's conversation, creating it on first contact.

        Returns:
            ``(view, created)``; ``created`` is False when it already existed.
        """
        if not user_b:
            raise ValidationError("Other user ID is required.")
        if user_a == user_b:
            raise ValidationError("Cannot create a conversation with yourself.")
        other = await self._store.get_user(user_b)
        if other is None or other.deletedAt is not None:
            raise NotFoundError("The other user was not found.")

        conversation, created = await self._store.find_or_insert_one_to_one(Conversation(
            participants=sorted([user_a, user_b]),
            isGroupChat=False,
            groupAdmins=[],
        ))
        if created:
            logger.info(f"Created one-to-one conversation {conversation.id}")
        return await self._view(conversation), created

    async def create_group(
        self,
        creator_id: str,
        name: Optional[str],
        member_ids: Optional[Sequence[str]] = None,
    ) -> ConversationView:
        """Create a group chat administered by its creator.

        Raises:
            ValidationError: blank name, or fewer than two unique participants
                when other members were requested.
            NotFoundError: some requested users do not exist (all are listed).
        """
        if not name or not name.strip():
            raise ValidationError("Group name is required.")
        requested = [m for m in (member_ids or []) if m]
        participants = list(dict.fromkeys([creator_id, *requested]))
        if requested and len(participants) < 2:
            raise ValidationError("A group chat needs at least two unique participants when adding others.")

        missing = await self._store.missing_user_ids(participants)
        if missing:
            raise NotFoundError(f"Users not found for IDs: {', '.join(missing)}")

        conversation = Conversation(
            participants=participants,
            isGroupChat=True,
            groupName=name.strip(),
            groupAdmins=[creator_id],
        )
        await self._store.insert_conversation(conversation)
        logger.info(f"Created group {conversation.id} ({len(participants)} participants)")
        return await self._view(conversation)

    # =========================================================================
    # Group metadata
    # =========================================================================

    async def rename_group(self, conversation_id: str, admin_id: str, name: Optional[str]) -> ConversationView:
        if not name or not name.strip():
            raise ValidationError("New group name is required.")
        conversation = await self._admin_group(conversation_id, admin_id)
        conversation.groupName = name.strip()
        await self._store.save_conversation(conversation)
        return await self._view(conversation)

    async def set_group_picture(
        self,
        conversation_id: str,
        admin_id: str,
        content: bytes,
        filename: str,
        content_type: str,
    ) -> ConversationView:
        """Store a new group picture and delete the one it replaces."""
        conversation = await self._admin_group(conversation_id, admin_id)
        uploads = get_config().uploads
        url = await self._blobs.store(
            content,
            filename,
            content_type,
            allowed_types=uploads.image_types,
            max_bytes=uploads.avatar_max_bytes,
            category=PROFILE_PICTURES,
        )
        previous = conversation.groupPictureUrl
        conversation.groupPictureUrl = url
        await self._store.save_conversation(conversation)
        if previous:
            await self._blobs.delete_quietly(previous)
        return await self._view(conversation)

    # =========================================================================
    # Membership
    # =========================================================================

    async def add_member(self, conversation_id: str, admin_id: str, user_id: Optional[str]) -> Outcome:
        if not user_id:
            raise ValidationError("User ID to add is required.")
        conversation = await self._admin_group(conversation_id, admin_id)
        users = await self._store.get_users([admin_id, user_id])
        if user_id not in users:
            raise NotFoundError("User to add not found.")
        if conversation.is_participant(user_id):
            raise ConflictError("User is already a member of this group.")

        conversation.participants.append(user_id)
        ensure_admin_invariant(conversation)
        await self._store.save_conversation(conversation)

        notice = await self._pipeline.post_system_message(
            conversation.id, f"{_name(users.get(admin_id))} added {_name(users[user_id])}"
        )
        return Outcome(result=await self._view(conversation)).absorb(notice)

    async def remove_member(self, conversation_id: str, admin_id: str, user_id: Optional[str]) -> Outcome:
        """Remove a non-admin member. Admins must be demoted first.

        Result is the updated view, or None when the conversation was deleted
        because nobody is left.
        """
        if not user_id:
            raise ValidationError("User ID to remove is required.")
        conversation = await self._admin_group(conversation_id, admin_id)
        if not conversation.is_participant(user_id):
            raise NotFoundError("User is not a member of this group.")
        if conversation.is_admin(user_id):
            raise ConflictError("Cannot remove an admin. Demote them first.")

        conversation.participants.remove(user_id)
        if not conversation.participants:
            await self._store.delete_conversation(conversation.id)
            logger.info(f"Conversation {conversation.id} deleted (empty)")
            return Outcome(result=None)

        ensure_admin_invariant(conversation)
        await self._store.save_conversation(conversation)
        users = await self._store.get_users([admin_id, user_id])
        notice = await self._pipeline.post_system_message(
            conversation.id, f"{_name(users.get(admin_id))} removed {_name(users.get(user_id))}"
        )
        return Outcome(result=await self._view(conversation)).absorb(notice)

    async def leave(self, conversation_id: str, user_id: str) -> Outcome:
        """Leave a group. The last one out deletes it.

        Result is the updated view, or None when the conversation was deleted.
        """
        conversation = await self._group(conversation_id, user_id)
        conversation.participants.remove(user_id)
        if conversation.is_admin(user_id):
            conversation.groupAdmins.remove(user_id)

        if not conversation.participants:
            await self._store.delete_conversation(conversation.id)
            logger.info(f"Conversation {conversation.id} deleted (empty)")
            return Outcome(result=None)

        ensure_admin_invariant(conversation)
        await self._store.save_conversation(conversation)
        leaver = await self._store.get_user(user_id)
        notice = await self._pipeline.post_system_message(conversation.id, f"{_name(leaver)} left")
        return Outcome(result=await self._view(conversation)).absorb(notice)

    # =========================================================================
    # Roles
    # =========================================================================

    async def promote(self, conversation_id: str, admin_id: str, target_id: Optional[str]) -> ConversationView:
        if not target_id:
            raise ValidationError("User ID to promote is required.")
        conversation = await self._admin_group(conversation_id, admin_id)
        if not conversation.is_participant(target_id):
            raise ValidationError("User must be a member of the group to become an admin.")
        if conversation.is_admin(target_id):
            raise ConflictError("User is already an admin.")

        conversation.groupAdmins.append(target_id)
        await self._store.save_conversation(conversation)
        return await self._view(conversation)

    async def demote(self, conversation_id: str, admin_id: str, target_id: Optional[str]) -> ConversationView:
        """Revoke admin rights. The only admin cannot demote themself."""
        if not target_id:
            raise ValidationError("User ID to demote is required.")
        conversation = await self._admin_group(conversation_id, admin_id)
        if not conversation.is_admin(target_id):
            raise ValidationError("User is not an admin.")
        if target_id == admin_id and len(conversation.groupAdmins) == 1:
            raise ConflictError("You are the only admin. Promote another member before demoting yourself.")

        conversation.groupAdmins.remove(target_id)
        ensure_admin_invariant(conversation)
        await self._store.save_conversation(conversation)
        return await self._view(conversation)
