"""
Durable media persistence.

Vendor result URLs are short-lived, so every generated file is downloaded
and re-uploaded to the configured StorageBackend before an artifact points
at it.
"""

import io
import uuid
from typing import Optional, Tuple

import httpx
import structlog
from PIL import Image as PILImage, UnidentifiedImageError

from config import settings
from models import Track
from pipeline.error_handler import AssetDownloadError, PipelineError, ErrorCode
from services.providers.base import call_with_retries
from services.storage_backend import StorageBackend, get_storage_backend

logger = structlog.get_logger()

DEFAULT_EXTENSIONS = {
    Track.IMAGE: ("png", "image/png"),
    Track.VIDEO: ("mp4", "video/mp4"),
}

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
}


class StoredMedia:
    """Location and metadata of one persisted file"""

    def __init__(self, storage_path: str, url: str, width: Optional[int] = None, height: Optional[int] = None):
        self.storage_path = storage_path
        self.url = url
        self.width = width
        self.height = height

    def as_metadata(self) -> dict:
        metadata = {"storage_path": self.storage_path, "url": self.url}
        if self.width is not None:
            metadata["width"] = self.width
            metadata["height"] = self.height
        return metadata


class MediaPersister:
    """
    Download vendor media and store it under
    {project_id}/{scene_id}/{images|videos}/v{version}-{id}.{ext}.

    Usage:
        persister = MediaPersister()
        stored = await persister.persist(url, project_id, scene_id, Track.IMAGE, version=2)
    """

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._storage = storage
        self.transport = transport

    @property
    def storage(self) -> StorageBackend:
        if self._storage is None:
            self._storage = get_storage_backend()
        return self._storage

    async def download(self, url: str) -> Tuple[bytes, Optional[str]]:
        """
        Fetch a file with the provider retry policy.

        Returns:
            (content, content type header or None)

        Raises:
            AssetDownloadError: If the file cannot be fetched
        """
        async def fetch():
            async with httpx.AsyncClient(
                timeout=settings.DOWNLOAD_TIMEOUT,
                transport=self.transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content, response.headers.get("content-type")

        try:
            return await call_with_retries("download", "download", fetch)
        except PipelineError as e:
            logger.error("media_download_failed", url=url, error=e.message)
            raise AssetDownloadError(url, f"Failed to download generated media: {e.message}")

    async def persist(
        self,
        url: str,
        project_id: str,
        scene_id: str,
        track: str,
        version: int,
    ) -> StoredMedia:
        data, content_type = await self.download(url)
        ext, default_type = DEFAULT_EXTENSIONS[Track.validate(track)]
        content_type = (content_type or "").split(";")[0].strip().lower() or default_type
        ext = CONTENT_TYPE_EXTENSIONS.get(content_type, ext)

        width = height = None
        if track == Track.IMAGE:
            width, height = read_image_size(data)

        folder = "images" if track == Track.IMAGE else "videos"
        storage_path = f"{project_id}/{scene_id}/{folder}/v{version}-{uuid.uuid4().hex[:8]}.{ext}"

        try:
            public_url = await self.storage.upload_bytes(data, storage_path, content_type)
        except Exception as e:
            logger.error("media_upload_failed", path=storage_path, error=str(e))
            raise PipelineError(
                ErrorCode.STORAGE_ERROR,
                f"Failed to store generated media: {e}",
                {"storage_path": storage_path},
            )

        logger.info(
            "media_persisted",
            scene_id=scene_id,
            track=track,
            storage_path=storage_path,
            size_bytes=len(data),
        )
        return StoredMedia(storage_path, public_url, width, height)

    async def discard(self, storage_path: str) -> bool:
        """
        Delete one stored file that no artifact row points at.

        Returns:
            False if the delete failed; the file is then left orphaned
        """
        try:
            await self.storage.delete_file(storage_path)
        except Exception as e:
            logger.warning("media_discard_failed", path=storage_path, error=str(e))
            return False
        logger.info("media_discarded", path=storage_path)
        return True

    async def remove_scene_media(self, project_id: str, scene_id: str) -> int:
        return await self.storage.delete_prefix(f"{project_id}/{scene_id}/")

    async def remove_project_media(self, project_id: str) -> int:
        return await self.storage.delete_prefix(f"{project_id}/")


def read_image_size(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    """Pixel dimensions, or (None, None) when Pillow cannot identify the file."""
    try:
        with PILImage.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("image_size_unreadable", error=str(e))
        return None, None
