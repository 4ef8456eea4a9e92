"""
Media storage abstraction layer for local disk and AWS S3.

Provides a unified interface for persisting generated media so the pipeline
never depends on a vendor's ephemeral download URL.

Usage:
    >>> storage = get_storage_backend()
    >>> url = await storage.upload_bytes(data, "proj-1/scene-1/images/v1.png", "image/png")
    >>> await storage.delete_prefix("proj-1/")
"""

import asyncio
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os
import boto3
import structlog
from botocore.exceptions import ClientError

from config import settings

logger = structlog.get_logger(__name__)


class StorageBackend(ABC):
    """
    Abstract interface for media storage operations.

    Cloud paths are always relative ("{project_id}/{scene_id}/videos/v2.mp4");
    backends decide how they map onto disk or bucket keys.
    """

    @abstractmethod
    async def upload_bytes(self, data: bytes, cloud_path: str, content_type: Optional[str] = None) -> str:
        """
        Store raw bytes under a path.

        Args:
            data: File contents
            cloud_path: Destination path (e.g., "proj/scene/images/v1.png")
            content_type: MIME type recorded with the object where supported

        Returns:
            Publicly resolvable URL for the stored file
        """
        pass

    @abstractmethod
    async def exists(self, cloud_path: str) -> bool:
        """Check if a file exists in storage."""
        pass

    @abstractmethod
    async def delete_file(self, cloud_path: str) -> None:
        """Delete one file. Missing files are ignored."""
        pass

    @abstractmethod
    async def list_files(self, prefix: str) -> List[str]:
        """List all stored paths under a prefix."""
        pass

    async def delete_prefix(self, prefix: str) -> int:
        """
        Delete every file under a prefix.

        Returns:
            Number of files deleted
        """
        paths = await self.list_files(prefix)
        for path in paths:
            await self.delete_file(path)
        logger.info("storage_prefix_deleted", prefix=prefix, count=len(paths))
        return len(paths)


class LocalStorageBackend(StorageBackend):
    """
    Local filesystem implementation, served by the API under /media.

    Example:
        >>> storage = LocalStorageBackend("./media", "http://localhost:8000/media")
        >>> url = await storage.upload_bytes(b"...", "p/s/images/v1.png")
        >>> url
        'http://localhost:8000/media/p/s/images/v1.png'
    """

    def __init__(self, root_dir: str, public_base_url: str):
        self.root = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("local_storage_initialized", root=str(self.root.absolute()))

    def _full_path(self, cloud_path: str) -> Path:
        full = (self.root / cloud_path).resolve()
        if self.root.resolve() not in full.parents:
            raise ValueError(f"Path escapes storage root: {cloud_path}")
        return full

    def _public_url(self, cloud_path: str) -> str:
        return f"{self.public_base_url}/{cloud_path}"

    async def upload_bytes(self, data: bytes, cloud_path: str, content_type: Optional[str] = None) -> str:
        full_path = self._full_path(cloud_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(full_path, "wb") as f:
            await f.write(data)

        logger.info("local_upload_complete", path=cloud_path, size_bytes=len(data))
        return self._public_url(cloud_path)

    async def exists(self, cloud_path: str) -> bool:
        return await aiofiles.os.path.exists(self._full_path(cloud_path))

    async def delete_file(self, cloud_path: str) -> None:
        full_path = self._full_path(cloud_path)
        if await aiofiles.os.path.exists(full_path):
            await aiofiles.os.remove(full_path)
            logger.info("local_file_deleted", path=cloud_path)

    async def list_files(self, prefix: str) -> List[str]:
        base = self._full_path(prefix.rstrip("/")) if prefix.strip("/") else self.root.resolve()
        if not base.exists():
            return []
        root = self.root.resolve()
        return sorted(
            str(p.relative_to(root)).replace("\\", "/")
            for p in base.rglob("*")
            if p.is_file()
        )


class S3StorageBackend(StorageBackend):
    """
    AWS S3 storage implementation using boto3.

    Uploads return presigned URLs for time-limited access.

    Example:
        >>> storage = S3StorageBackend(
        ...     bucket="my-video-bucket",
        ...     aws_access_key="AKIA...",
        ...     aws_secret_key="...",
        ...     region="us-east-1"
        ... )
        >>> url = await storage.upload_bytes(data, "proj/scene/videos/v1.mp4", "video/mp4")
    """

    def __init__(
        self,
        bucket: str,
        aws_access_key: str = "",
        aws_secret_key: str = "",
        region: str = "us-east-1",
        s3_client=None,
    ):
        self.bucket = bucket
        self.region = region

        if s3_client is None:
            client_kwargs = {"region_name": region}
            # Fall back to the default credential chain when keys are not set
            if aws_access_key and aws_secret_key:
                client_kwargs["aws_access_key_id"] = aws_access_key
                client_kwargs["aws_secret_access_key"] = aws_secret_key
            s3_client = boto3.client("s3", **client_kwargs)
        self.s3_client = s3_client

        logger.info("s3_storage_initialized", bucket=bucket, region=region)

    async def _run(self, func, *args, **kwargs):
        # boto3 is blocking; keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def generate_presigned_url(self, cloud_path: str, expiry: int = 3600) -> str:
        """
        Generate a presigned URL for secure, time-limited access to an S3 object.

        Args:
            cloud_path: Object key
            expiry: URL expiration time in seconds (default: 3600 = 1 hour)

        Raises:
            ClientError: If URL generation fails
        """
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": cloud_path},
                ExpiresIn=expiry,
            )
        except ClientError as e:
            logger.error("presigned_url_failed", path=cloud_path, error=str(e))
            raise

    async def upload_bytes(self, data: bytes, cloud_path: str, content_type: Optional[str] = None) -> str:
        extra = {"ContentType": content_type} if content_type else {}

        logger.info("s3_upload_started", bucket=self.bucket, key=cloud_path, size_bytes=len(data))
        try:
            await self._run(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=cloud_path,
                Body=data,
                **extra,
            )
        except ClientError as e:
            logger.error("s3_upload_failed", key=cloud_path, error=str(e))
            raise

        return self.generate_presigned_url(cloud_path, expiry=settings.PRESIGNED_URL_EXPIRY)

    async def exists(self, cloud_path: str) -> bool:
        try:
            await self._run(self.s3_client.head_object, Bucket=self.bucket, Key=cloud_path)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    async def delete_file(self, cloud_path: str) -> None:
        await self._run(self.s3_client.delete_object, Bucket=self.bucket, Key=cloud_path)
        logger.info("s3_file_deleted", key=cloud_path)

    async def list_files(self, prefix: str) -> List[str]:
        keys: List[str] = []
        kwargs = {"Bucket": self.bucket, "Prefix": prefix}
        while True:
            response = await self._run(self.s3_client.list_objects_v2, **kwargs)
            keys.extend(item["Key"] for item in response.get("Contents", []))
            if not response.get("IsTruncated"):
                return keys
            kwargs["ContinuationToken"] = response["NextContinuationToken"]


_storage_backend: Optional[StorageBackend] = None


def get_storage_backend() -> StorageBackend:
    """
    Factory function to get the storage backend named by STORAGE_BACKEND.

    The instance is cached for the life of the process.

    Raises:
        ValueError: If storage backend is invalid or required config is missing
    """
    global _storage_backend
    if _storage_backend is not None:
        return _storage_backend

    settings.validate_storage_config()
    backend_type = settings.STORAGE_BACKEND.lower()

    if backend_type == "s3":
        _storage_backend = S3StorageBackend(
            bucket=settings.STORAGE_BUCKET,
            aws_access_key=settings.AWS_ACCESS_KEY_ID,
            aws_secret_key=settings.AWS_SECRET_ACCESS_KEY,
            region=settings.AWS_REGION,
        )
    else:
        _storage_backend = LocalStorageBackend(
            root_dir=settings.LOCAL_STORAGE_DIR,
            public_base_url=settings.PUBLIC_BASE_URL,
        )
    return _storage_backend


def reset_storage_backend() -> None:
    """Drop the cached backend so the next call re-reads settings."""
    global _storage_backend
    _storage_backend = None
