"""Conversation endpoints.

Endpoints:
    GET  /api/conversations:                         Caller's conversations (newest activity first)
    GET  /api/conversations/{id}:                    One conversation
    POST /api/conversations/one-to-one:              Get or create (201 created, 200 existing)
    POST /api/conversations/group:                   Create a group
    PUT  /api/conversations/{id}/read:               Mark all messages read
    PUT  /api/conversations/group/{id}/rename:       Admin only
    PUT  /api/conversations/group/{id}/picture:      Admin only (multipart)
    PUT  /api/conversations/group/{id}/add-member:   Admin only
    PUT  /api/conversations/group/{id}/remove-member: Admin only
    PUT  /api/conversations/group/{id}/leave:        Any member
    PUT  /api/conversations/group/{id}/promote-admin: Admin only
    PUT  /api/conversations/group/{id}/demote-admin:  Admin only

Mutations that produce room events (system messages, read receipts) are
executed through the same session hub the WebSocket gateway uses.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..dependencies import get_current_user, get_hub, get_membership, get_receipts
from ..gateway.hub import SessionHub
from ..messages.receipts import ReceiptNotifier
from ..store import User
from .service import MembershipEngine

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


# =============================================================================
# Request Models
# =============================================================================


class OneToOneRequest(BaseModel):
    userId: Optional[str] = Field(None, description="The other participant")


class GroupCreateRequest(BaseModel):
    name: Optional[str] = Field(None, description="Group name")
    participants: List[str] = Field(default_factory=list, description="Other member ids")


class RenameRequest(BaseModel):
    name: Optional[str] = None


class MemberRequest(BaseModel):
    userId: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================


@router.get("")
async def list_conversations(
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> list:
    views = await engine.list_for(user.id)
    return [v.model_dump(mode="json") for v in views]


@router.post("/one-to-one")
async def one_to_one(
    body: OneToOneRequest,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> JSONResponse:
    view, created = await engine.get_or_create_one_to_one(user.id, body.userId)
    return JSONResponse(view.model_dump(mode="json"), status_code=201 if created else 200)


@router.post("/group", status_code=201)
async def create_group(
    body: GroupCreateRequest,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> dict:
    view = await engine.create_group(user.id, body.name, body.participants)
    return view.model_dump(mode="json")


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> dict:
    view = await engine.get(conversation_id, user.id)
    return view.model_dump(mode="json")


@router.put("/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    user: User = Depends(get_current_user),
    receipts: ReceiptNotifier = Depends(get_receipts),
    hub: SessionHub = Depends(get_hub),
) -> dict:
    outcome = await receipts.mark_read(conversation_id, user.id)
    await hub.execute(outcome)
    return {"message": "Messages marked as read successfully.", "modifiedCount": outcome.result}


@router.put("/group/{conversation_id}/rename")
async def rename_group(
    conversation_id: str,
    body: RenameRequest,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> dict:
    view = await engine.rename_group(conversation_id, user.id, body.name)
    return {"message": "Group name updated successfully.", "conversation": view.model_dump(mode="json")}


@router.put("/group/{conversation_id}/picture")
async def set_group_picture(
    conversation_id: str,
    groupPicture: UploadFile = File(...),
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> dict:
    content = await groupPicture.read()
    view = await engine.set_group_picture(
        conversation_id,
        user.id,
        content,
        groupPicture.filename or "",
        groupPicture.content_type or "",
    )
    return {"message": "Group picture updated!", "conversation": view.model_dump(mode="json")}


@router.put("/group/{conversation_id}/add-member")
async def add_member(
    conversation_id: str,
    body: MemberRequest,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
    hub: SessionHub = Depends(get_hub),
) -> dict:
    outcome = await engine.add_member(conversation_id, user.id, body.userId)
    await hub.execute(outcome)
    return {"message": "Member added successfully.", "conversation": outcome.result.model_dump(mode="json")}


@router.put("/group/{conversation_id}/remove-member")
async def remove_member(
    conversation_id: str,
    body: MemberRequest,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
    hub: SessionHub = Depends(get_hub),
) -> dict:
    outcome = await engine.remove_member(conversation_id, user.id, body.userId)
    await hub.execute(outcome)
    return _membership_response("Member removed successfully.", outcome.result)


@router.put("/group/{conversation_id}/leave")
async def leave_group(
    conversation_id: str,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
    hub: SessionHub = Depends(get_hub),
) -> dict:
    outcome = await engine.leave(conversation_id, user.id)
    await hub.execute(outcome)
    return _membership_response("Successfully left group.", outcome.result)


@router.put("/group/{conversation_id}/promote-admin")
async def promote_admin(
    conversation_id: str,
    body: MemberRequest,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> dict:
    view = await engine.promote(conversation_id, user.id, body.userId)
    return {"message": "User promoted to admin.", "conversation": view.model_dump(mode="json")}


@router.put("/group/{conversation_id}/demote-admin")
async def demote_admin(
    conversation_id: str,
    body: MemberRequest,
    user: User = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership),
) -> dict:
    view = await engine.demote(conversation_id, user.id, body.userId)
    return {"message": "Admin rights revoked.", "conversation": view.model_dump(mode="json")}


def _membership_response(message: str, view) -> dict:
    if view is None:
        return {"message": "Group deleted (empty).", "conversation": None, "deleted": True}
    return {"message": message, "conversation": view.model_dump(mode="json"), "deleted": False}
