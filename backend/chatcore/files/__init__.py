"""Blob storage for chat attachments, avatars and group pictures.

Uploads are validated against a content-type allowlist and a size limit,
written to local disk and addressed by their public URL.
"""

from .service import CHAT_FILES, PROFILE_PICTURES, BlobStorage

__all__ = [
    "BlobStorage",
    "CHAT_FILES",
    "PROFILE_PICTURES",
]
