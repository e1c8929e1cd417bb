"""Tests for local blob storage."""
import pytest

from chatcore.errors import ValidationError
from chatcore.files import CHAT_FILES, PROFILE_PICTURES, BlobStorage

IMAGES = ["image/png", "image/jpeg"]


@pytest.fixture
def storage(tmp_path):
    return BlobStorage(str(tmp_path / "blobs"))


class TestBlobStorage:

    def test_category_directories_are_created(self, storage):
        assert (storage.upload_dir / CHAT_FILES).is_dir()
        assert (storage.upload_dir / PROFILE_PICTURES).is_dir()

    @pytest.mark.asyncio
    async def test_store_returns_public_url(self, storage):
        url = await storage.store(b"png-bytes", "Photo.PNG", "image/png", IMAGES, 1024, PROFILE_PICTURES)

        assert url.startswith("/uploads/profile_pictures/")
        assert url.endswith(".png")
        assert storage.path_for_url(url).read_bytes() == b"png-bytes"

    @pytest.mark.asyncio
    async def test_rejects_empty_file(self, storage):
        with pytest.raises(ValidationError):
            await storage.store(b"", "a.png", "image/png", IMAGES, 1024)

    @pytest.mark.asyncio
    async def test_rejects_disallowed_type(self, storage):
        with pytest.raises(ValidationError):
            await storage.store(b"data", "a.txt", "text/plain", IMAGES, 1024)

    @pytest.mark.asyncio
    async def test_rejects_oversize(self, storage):
        with pytest.raises(ValidationError):
            await storage.store(b"x" * 11, "a.png", "image/png", IMAGES, 10)

    @pytest.mark.asyncio
    async def test_rejects_unknown_category(self, storage):
        with pytest.raises(ValidationError):
            await storage.store(b"data", "a.png", "image/png", IMAGES, 1024, "secrets")

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        url = await storage.store(b"data", "a.png", "image/png", IMAGES, 1024)

        assert await storage.delete(url) is True
        assert storage.path_for_url(url) is None
        assert await storage.delete(url) is False

    @pytest.mark.asyncio
    async def test_delete_quietly_ignores_unknown_urls(self, storage):
        await storage.delete_quietly("https://elsewhere.example.com/a.png")
        await storage.delete_quietly(None)

    def test_path_traversal_is_refused(self, storage):
        assert storage.path_for(CHAT_FILES, "../secrets.yaml") is None
        assert storage.path_for_url("/uploads/chat_files/../../etc/passwd") is None
