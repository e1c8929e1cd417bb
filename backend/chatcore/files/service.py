"""Local-disk blob storage for chat attachments and pictures.

Files are written below ``uploads.upload_dir`` in one directory per category
and served back under ``uploads.public_prefix``:

    <upload_dir>/chat_files/<uuid>.<ext>        ->  /uploads/chat_files/<uuid>.<ext>
    <upload_dir>/profile_pictures/<uuid>.<ext>  ->  /uploads/profile_pictures/<uuid>.<ext>

Stored names are random, so the public URL is the only handle on a file.
"""
import logging
import uuid
from pathlib import Path
from typing import Iterable, Optional

from ..config import get_config
from ..errors import ValidationError

logger = logging.getLogger(__name__)

CHAT_FILES = "chat_files"
PROFILE_PICTURES = "profile_pictures"
CATEGORIES = (CHAT_FILES, PROFILE_PICTURES)


class BlobStorage:
    """Singleton service storing uploaded bytes on local disk."""

    _instance: Optional["BlobStorage"] = None

    def __init__(self, upload_dir: Optional[str] = None, public_prefix: Optional[str] = None) -> None:
        uploads = get_config().uploads
        self.upload_dir = Path(upload_dir or uploads.upload_dir)
        self.public_prefix = (public_prefix or uploads.public_prefix).rstrip("/")
        self._ensure_upload_dir()

    @classmethod
    def get_instance(cls, upload_dir: Optional[str] = None) -> "BlobStorage":
        if cls._instance is None:
            cls._instance = cls(upload_dir)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    def _ensure_upload_dir(self) -> None:
        for category in CATEGORIES:
            (self.upload_dir / category).mkdir(parents=True, exist_ok=True)

    async def store(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        allowed_types: Iterable[str],
        max_bytes: int,
        category: str = CHAT_FILES,
    ) -> str:
        """Validate and write an upload, returning its public URL.

        Raises:
            ValidationError: empty file, disallowed type, oversize, or an
                unknown category.
        """
        if category not in CATEGORIES:
            raise ValidationError(f"Unknown upload category: {category}")
        if not content:
            raise ValidationError("No file uploaded.")
        if content_type not in set(allowed_types):
            raise ValidationError(f"Invalid file type: {content_type or 'unknown'}")
        if len(content) > max_bytes:
            raise ValidationError(
                f"File size ({len(content)} bytes) exceeds limit ({max_bytes} bytes)"
            )

        ext = Path(filename or "").suffix.lower()
        stored_name = f"{uuid.uuid4().hex}{ext}"
        path = self.upload_dir / category / stored_name
        path.write_bytes(content)
        logger.info(f"Saved file: {path} ({len(content)} bytes)")
        return f"{self.public_prefix}/{category}/{stored_name}"

    def path_for(self, category: str, filename: str) -> Optional[Path]:
        """Disk path of a stored file, or None if it is unknown or escapes the upload dir."""
        if category not in CATEGORIES or Path(filename).name != filename:
            return None
        path = self.upload_dir / category / filename
        return path if path.is_file() else None

    def path_for_url(self, url: Optional[str]) -> Optional[Path]:
        if not url or not url.startswith(self.public_prefix + "/"):
            return None
        relative = url[len(self.public_prefix) + 1:]
        category, _, filename = relative.partition("/")
        return self.path_for(category, filename)

    async def delete(self, url: Optional[str]) -> bool:
        """Delete the file behind *url*. Returns False if there was nothing to delete."""
        path = self.path_for_url(url)
        if path is None:
            return False
        path.unlink()
        logger.info(f"Deleted file: {path}")
        return True

    async def delete_quietly(self, url: Optional[str]) -> None:
        """Delete a replaced asset; failures are logged, never raised."""
        try:
            await self.delete(url)
        except OSError as e:
            logger.warning(f"Failed to delete stale file {url}: {e}")
