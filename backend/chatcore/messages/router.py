"""Message endpoints.

Endpoints:
    POST   /api/messages/upload-file:               Store a chat attachment
    GET    /api/messages/{conversationId}:          Paginated history (newest first)
    GET    /api/messages/{conversationId}/search:   Text search (?q=)
    PUT    /api/messages/{messageId}/edit:          Edit own message
    DELETE /api/messages/{messageId}:               Soft-delete own message

New messages are sent over the WebSocket channel, not through this router.
An uploaded file is referenced afterwards by the ``send_message`` event.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import BaseModel

from ..config import get_config
from ..dependencies import get_blobs, get_current_user, get_hub, get_messages
from ..files import CHAT_FILES, BlobStorage
from ..gateway.hub import SessionHub
from ..store import User
from .service import MessageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


class EditRequest(BaseModel):
    content: Optional[str] = None


@router.post("/upload-file")
async def upload_file(
    chatfile: UploadFile = File(...),
    user: User = Depends(get_current_user),
    blobs: BlobStorage = Depends(get_blobs),
) -> dict:
    """Store an attachment and return its reference for ``send_message``."""
    uploads = get_config().uploads
    content = await chatfile.read()
    url = await blobs.store(
        content,
        chatfile.filename or "",
        chatfile.content_type or "",
        allowed_types=uploads.chat_file_types,
        max_bytes=uploads.chat_file_max_bytes,
        category=CHAT_FILES,
    )
    logger.info(f"User {user.id} uploaded {chatfile.filename} ({len(content)} bytes)")
    return {
        "message": "File uploaded successfully",
        "fileUrl": url,
        "fileName": chatfile.filename or "",
        "fileType": chatfile.content_type or "",
    }


@router.get("/{conversation_id}")
async def history(
    conversation_id: str,
    page: Optional[int] = Query(None, description="1-based page number"),
    limit: Optional[int] = Query(None, description="Messages per page"),
    user: User = Depends(get_current_user),
    service: MessageService = Depends(get_messages),
) -> List[dict]:
    views = await service.history(conversation_id, user.id, page, limit)
    return [v.model_dump(mode="json") for v in views]


@router.get("/{conversation_id}/search")
async def search(
    conversation_id: str,
    q: Optional[str] = Query(None, description="Text to search for"),
    user: User = Depends(get_current_user),
    service: MessageService = Depends(get_messages),
) -> List[dict]:
    views = await service.search(conversation_id, user.id, q)
    return [v.model_dump(mode="json") for v in views]


@router.put("/{message_id}/edit")
async def edit(
    message_id: str,
    body: EditRequest,
    user: User = Depends(get_current_user),
    service: MessageService = Depends(get_messages),
    hub: SessionHub = Depends(get_hub),
) -> dict:
    outcome = await service.edit(message_id, user.id, body.content)
    await hub.execute(outcome)
    return outcome.result.model_dump(mode="json")


@router.delete("/{message_id}")
async def delete(
    message_id: str,
    user: User = Depends(get_current_user),
    service: MessageService = Depends(get_messages),
    hub: SessionHub = Depends(get_hub),
) -> dict:
    outcome = await service.delete(message_id, user.id)
    await hub.execute(outcome)
    return outcome.result.model_dump(mode="json")
