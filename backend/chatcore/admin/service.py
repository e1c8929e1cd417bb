"""User administration for the dashboard.

Every mutation is recorded in the append-only activity log with the acting
admin's id and name, so the log stays readable after accounts change.

Deletion has two stages: a soft delete stamps ``deletedAt``/``deletedBy``
and can be reverted; a permanent delete (manual, or by the retention sweep)
removes the record. Neither stage cascades to the user's messages or
conversation memberships.
"""
import logging
import math
from datetime import timedelta
from typing import List, Optional, Tuple

from ..auth.service import hash_password, normalize_email, validate_password
from ..config import get_config
from ..errors import NotFoundError, ValidationError
from ..store import ActivityAction, ActivityLogEntry, Admin, BanDetails, ChatStore, User, utcnow

logger = logging.getLogger(__name__)


def pagination(page: Optional[int], limit: Optional[int], default_limit: int) -> Tuple[int, int]:
    page = 1 if page is None else page
    limit = default_limit if limit is None else limit
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive integers.")
    return page, limit


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


class UserAdminService:

    def __init__(self, store: ChatStore) -> None:
        self._store = store

    async def _user(self, user_id: str) -> User:
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _log(self, admin: Admin, action: ActivityAction, target: User, details: str = "") -> None:
        await self._store.log_activity(ActivityLogEntry(
            adminId=admin.id,
            adminName=admin.fullName,
            action=action,
            targetType="USER",
            targetId=target.id,
            targetName=target.fullName,
            details=details,
        ))
        logger.info(f"Admin {admin.id} {action.value} {target.id}")

    # =========================================================================
    # Listing
    # =========================================================================

    async def list_active(self, page: Optional[int] = None, limit: Optional[int] = None) -> dict:
        page, limit = pagination(page, limit, get_config().admin.users_page_size)
        users, total = await self._store.list_active_users((page - 1) * limit, limit)
        return {
            "users": users,
            "totalPages": total_pages(total, limit),
            "currentPage": page,
            "totalUsers": total,
        }

    async def list_banned(self) -> List[User]:
        return await self._store.list_banned_users()

    async def list_deleted(self) -> List[User]:
        return await self._store.list_deleted_users()

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_user(self, admin: Admin, full_name: Optional[str], email: Optional[str],
                          password: Optional[str]) -> User:
        if not full_name or not full_name.strip() or not email or not password:
            raise ValidationError("Please provide full name, email, and password.")
        validate_password(password)
        user = User(
            fullName=full_name.strip(),
            email=normalize_email(email),
            passwordHash=hash_password(password),
            createdBy=admin.id,
        )
        await self._store.create_user(user)
        await self._log(admin, ActivityAction.CREATED_USER, user)
        return user

    async def update_user(self, admin: Admin, user_id: str, full_name: Optional[str] = None,
                          email: Optional[str] = None) -> User:
        user = await self._user(user_id)
        if full_name and full_name.strip():
            user.fullName = full_name.strip()
        if email and email.strip():
            user.email = normalize_email(email)
        await self._store.save_user(user)
        await self._log(admin, ActivityAction.EDITED_USER, user)
        return user

    async def soft_delete(self, admin: Admin, user_id: str) -> User:
        user = await self._user(user_id)
        user.deletedAt = utcnow()
        user.deletedBy = admin.id
        await self._store.save_user(user)
        await self._log(admin, ActivityAction.DEACTIVATED_USER, user)
        return user

    async def restore(self, admin: Admin, user_id: str) -> User:
        user = await self._user(user_id)
        if user.deletedAt is None:
            raise ValidationError("User is not deleted.")
        user.deletedAt = None
        user.deletedBy = None
        await self._store.save_user(user)
        await self._log(admin, ActivityAction.RESTORED_USER, user)
        return user

    async def hard_delete(self, admin: Admin, user_id: str) -> User:
        """Remove the user record. Messages and memberships are kept."""
        user = await self._store.delete_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        await self._log(admin, ActivityAction.PERMANENTLY_DELETED_USER, user)
        return user

    async def ban(self, admin: Admin, user_id: str, reason: Optional[str],
                  duration_days: Optional[int] = None) -> User:
        """Ban a user, permanently unless *duration_days* is positive."""
        if not reason or not reason.strip():
            raise ValidationError("A reason for the ban is required.")
        user = await self._user(user_id)
        now = utcnow()
        expires = now + timedelta(days=duration_days) if duration_days and duration_days > 0 else None
        user.isBanned = True
        user.banDetails = BanDetails(reason=reason.strip(), bannedAt=now, expiresAt=expires, bannedBy=admin.id)
        await self._store.save_user(user)

        duration = f"{duration_days} days" if expires else "Permanent"
        await self._log(admin, ActivityAction.BANNED_USER, user, f"Reason: {reason.strip()}. Duration: {duration}")
        return user

    async def unban(self, admin: Admin, user_id: str) -> User:
        user = await self._user(user_id)
        user.isBanned = False
        user.banDetails = None
        await self._store.save_user(user)
        await self._log(admin, ActivityAction.UNBANNED_USER, user)
        return user

    # =========================================================================
    # Activity log
    # =========================================================================

    async def activity(self, search: Optional[str] = None, page: Optional[int] = None,
                       limit: Optional[int] = None) -> dict:
        page, limit = pagination(page, limit, get_config().admin.logs_page_size)
        logs, total = await self._store.list_activity(search, (page - 1) * limit, limit)
        return {
            "logs": logs,
            "totalPages": total_pages(total, limit),
            "currentPage": page,
            "totalLogs": total,
        }

    async def recent_activity(self, count: int = 5) -> List[ActivityLogEntry]:
        logs, _ = await self._store.list_activity(None, 0, count)
        return logs
