"""Serves stored uploads back at their public URLs."""
from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..dependencies import get_blobs
from ..errors import NotFoundError
from .service import BlobStorage

router = APIRouter(prefix="/uploads", tags=["files"])


@router.get("/{category}/{filename}")
async def download(category: str, filename: str, blobs: BlobStorage = Depends(get_blobs)) -> FileResponse:
    path = blobs.path_for(category, filename)
    if path is None:
        raise NotFoundError("File not found.")
    return FileResponse(path)
