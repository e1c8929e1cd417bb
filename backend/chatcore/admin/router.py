"""Admin dashboard endpoints. Every route requires an admin token.

Endpoints:
    GET    /api/admin/users                     Active, non-banned users (paginated)
    POST   /api/admin/users                     Create a user
    PUT    /api/admin/users/{id}                Edit fullName / email
    DELETE /api/admin/users/{id}                Soft delete
    PUT    /api/admin/users/{id}/revert-delete  Restore a soft-deleted user
    DELETE /api/admin/users/{id}/permanent      Hard delete (no cascade)
    PUT    /api/admin/users/{id}/ban            Ban (reason, durationInDays)
    PUT    /api/admin/users/{id}/unban          Lift a ban
    GET    /api/admin/users/banned              Banned users
    GET    /api/admin/users/deleted             Soft-deleted users
    GET    /api/admin/conversations             Every conversation
    GET    /api/admin/conversations/{id}/messages  Any conversation's history
    DELETE /api/admin/messages/{id}             Moderate (overwrite) a message
    GET    /api/logs                            Activity log (search + pagination)
    GET    /api/logs/recent                     Five most recent entries
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..dependencies import get_current_admin, get_hub, get_messages, get_store, get_user_admin
from ..gateway.hub import SessionHub
from ..messages.service import MessageService
from ..store import Admin, ChatStore
from ..store.views import conversation_views
from .service import UserAdminService

users_router = APIRouter(prefix="/api/admin/users", tags=["admin"])
moderation_router = APIRouter(prefix="/api/admin", tags=["admin"])
logs_router = APIRouter(prefix="/api/logs", tags=["admin"])


# =============================================================================
# Request Models
# =============================================================================


class CreateUserRequest(BaseModel):
    fullName: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class UpdateUserRequest(BaseModel):
    fullName: Optional[str] = None
    email: Optional[str] = None


class BanRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Shown to the user at login")
    durationInDays: Optional[int] = Field(None, description="Omit or 0 for a permanent ban")


# =============================================================================
# Users
# =============================================================================


@users_router.get("")
async def list_users(
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    result = await service.list_active(page, limit)
    result["users"] = [u.model_dump(mode="json") for u in result["users"]]
    return result


@users_router.post("", status_code=201)
async def create_user(
    body: CreateUserRequest,
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    user = await service.create_user(admin, body.fullName, body.email, body.password)
    return user.model_dump(mode="json")


@users_router.get("/banned")
async def banned_users(
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> list:
    return [u.model_dump(mode="json") for u in await service.list_banned()]


@users_router.get("/deleted")
async def deleted_users(
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> list:
    return [u.model_dump(mode="json") for u in await service.list_deleted()]


@users_router.put("/{user_id}")
async def update_user(
    user_id: str,
    body: UpdateUserRequest,
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    user = await service.update_user(admin, user_id, body.fullName, body.email)
    return user.model_dump(mode="json")


@users_router.delete("/{user_id}")
async def soft_delete_user(
    user_id: str,
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    await service.soft_delete(admin, user_id)
    return {"message": "User deleted successfully"}


@users_router.put("/{user_id}/revert-delete")
async def restore_user(
    user_id: str,
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    user = await service.restore(admin, user_id)
    return {"message": "User account restored successfully.", "user": user.model_dump(mode="json")}


@users_router.delete("/{user_id}/permanent")
async def hard_delete_user(
    user_id: str,
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    await service.hard_delete(admin, user_id)
    return {"message": "User permanently deleted successfully."}


@users_router.put("/{user_id}/ban")
async def ban_user(
    user_id: str,
    body: BanRequest,
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    user = await service.ban(admin, user_id, body.reason, body.durationInDays)
    return {"message": "User has been banned.", "user": user.model_dump(mode="json")}


@users_router.put("/{user_id}/unban")
async def unban_user(
    user_id: str,
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    user = await service.unban(admin, user_id)
    return {"message": "User has been unbanned.", "user": user.model_dump(mode="json")}


# =============================================================================
# Moderation
# =============================================================================


@moderation_router.get("/conversations")
async def all_conversations(
    admin: Admin = Depends(get_current_admin),
    store: ChatStore = Depends(get_store),
) -> list:
    views = await conversation_views(store, await store.list_conversations())
    return [v.model_dump(mode="json") for v in views]


@moderation_router.get("/conversations/{conversation_id}/messages")
async def conversation_messages(
    conversation_id: str,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    admin: Admin = Depends(get_current_admin),
    service: MessageService = Depends(get_messages),
) -> list:
    views = await service.moderation_history(conversation_id, page, limit)
    return [v.model_dump(mode="json") for v in views]


@moderation_router.delete("/messages/{message_id}")
async def moderate_message(
    message_id: str,
    admin: Admin = Depends(get_current_admin),
    service: MessageService = Depends(get_messages),
    hub: SessionHub = Depends(get_hub),
) -> dict:
    outcome = await service.moderate(message_id, admin)
    await hub.execute(outcome)
    return {"message": "Message successfully moderated."}


# =============================================================================
# Activity log
# =============================================================================


@logs_router.get("")
async def activity_logs(
    search: Optional[str] = Query(None, description="Matches admin name, action or target name"),
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> dict:
    result = await service.activity(search, page, limit)
    result["logs"] = [entry.model_dump(mode="json") for entry in result["logs"]]
    return result


@logs_router.get("/recent")
async def recent_logs(
    admin: Admin = Depends(get_current_admin),
    service: UserAdminService = Depends(get_user_admin),
) -> list:
    return [entry.model_dump(mode="json") for entry in await service.recent_activity()]
