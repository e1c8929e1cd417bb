"""Chat-user profile endpoints.

Endpoints:
    GET  /api/users:            Every other active user (for starting chats)
    GET  /api/users/me:         The caller's profile
    PUT  /api/users/me:         Update fullName / email
    POST /api/users/me/avatar:  Upload a new avatar (replaces and deletes the old one)
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from ..auth.service import normalize_email
from ..config import get_config
from ..dependencies import get_blobs, get_current_user, get_store
from ..files import PROFILE_PICTURES, BlobStorage
from ..store import ChatStore, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileUpdate(BaseModel):
    fullName: Optional[str] = None
    email: Optional[str] = None


@router.get("")
async def list_users(
    user: User = Depends(get_current_user),
    store: ChatStore = Depends(get_store),
) -> List[dict]:
    users = await store.list_users(exclude_id=user.id)
    return [u.model_dump(mode="json") for u in users]


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> dict:
    return user.model_dump(mode="json")


@router.put("/me")
async def update_me(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    store: ChatStore = Depends(get_store),
) -> dict:
    """Update the caller's profile. A taken email is rejected with 409."""
    if body.fullName and body.fullName.strip():
        user.fullName = body.fullName.strip()
    if body.email and body.email.strip():
        user.email = normalize_email(body.email)
    await store.save_user(user)
    return {"message": "Profile updated successfully.", "user": user.model_dump(mode="json")}


@router.post("/me/avatar")
async def upload_avatar(
    avatar: UploadFile = File(...),
    user: User = Depends(get_current_user),
    store: ChatStore = Depends(get_store),
    blobs: BlobStorage = Depends(get_blobs),
) -> dict:
    uploads = get_config().uploads
    content = await avatar.read()
    url = await blobs.store(
        content,
        avatar.filename or "",
        avatar.content_type or "",
        allowed_types=uploads.image_types,
        max_bytes=uploads.avatar_max_bytes,
        category=PROFILE_PICTURES,
    )
    previous = user.profilePictureUrl
    user.profilePictureUrl = url
    await store.save_user(user)
    if previous:
        await blobs.delete_quietly(previous)
    logger.info(f"User {user.id} uploaded a new avatar")
    return {"message": "Profile picture uploaded successfully!", "profilePictureUrl": url}
