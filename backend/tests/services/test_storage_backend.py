"""
Tests for the storage backends.

LocalStorageBackend runs against a temp directory; S3StorageBackend gets a
mocked boto3 client.
"""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from config import settings
from services.storage_backend import (
    LocalStorageBackend,
    S3StorageBackend,
    get_storage_backend,
)


@pytest.fixture
def local(tmp_path):
    return LocalStorageBackend(str(tmp_path), "http://testserver/media/")


@pytest.fixture
def s3_client():
    client = Mock()
    client.generate_presigned_url.return_value = "https://bucket.s3.amazonaws.com/key?X-Amz-Signature=abc"
    return client


@pytest.fixture
def s3(s3_client):
    return S3StorageBackend(bucket="story-media", s3_client=s3_client)


class TestLocalStorageBackend:
    """Test cases for LocalStorageBackend."""

    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self, local, tmp_path):
        """Test that uploads land under the root and resolve under the public URL."""
        url = await local.upload_bytes(b"data", "p/s/images/v1.png", "image/png")

        assert url == "http://testserver/media/p/s/images/v1.png"
        assert (tmp_path / "p" / "s" / "images" / "v1.png").read_bytes() == b"data"

    @pytest.mark.asyncio
    async def test_path_escape_rejected(self, local):
        """Test that paths outside the storage root are refused."""
        with pytest.raises(ValueError, match="escapes storage root"):
            await local.upload_bytes(b"x", "../outside.png")

    @pytest.mark.asyncio
    async def test_delete_prefix(self, local):
        """Test that a project prefix removes every file below it."""
        await local.upload_bytes(b"1", "p1/s1/images/v1.png")
        await local.upload_bytes(b"2", "p1/s2/videos/v1.mp4")
        await local.upload_bytes(b"3", "p2/s1/images/v1.png")

        assert await local.delete_prefix("p1/") == 2
        assert await local.list_files("") == ["p2/s1/images/v1.png"]

    @pytest.mark.asyncio
    async def test_missing_prefix_lists_nothing(self, local):
        """Test that listing an unknown prefix is empty, not an error."""
        assert await local.list_files("nope/") == []

    @pytest.mark.asyncio
    async def test_delete_missing_file_ignored(self, local):
        """Test that deleting a missing file is a no-op."""
        await local.delete_file("p/s/images/missing.png")
        assert await local.exists("p/s/images/missing.png") is False


class TestS3StorageBackend:
    """Test cases for S3StorageBackend."""

    @pytest.mark.asyncio
    async def test_upload_puts_object_and_presigns(self, s3, s3_client):
        """Test that uploads call put_object and return a presigned URL."""
        url = await s3.upload_bytes(b"data", "p/s/videos/v1.mp4", "video/mp4")

        s3_client.put_object.assert_called_once_with(
            Bucket="story-media", Key="p/s/videos/v1.mp4", Body=b"data", ContentType="video/mp4"
        )
        s3_client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "story-media", "Key": "p/s/videos/v1.mp4"},
            ExpiresIn=settings.PRESIGNED_URL_EXPIRY,
        )
        assert "X-Amz-Signature" in url

    @pytest.mark.asyncio
    async def test_upload_failure_propagates(self, s3, s3_client):
        """Test that S3 client errors are not swallowed."""
        s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )
        with pytest.raises(ClientError):
            await s3.upload_bytes(b"data", "p/s/images/v1.png")

    @pytest.mark.asyncio
    async def test_exists_false_on_404(self, s3, s3_client):
        """Test that a missing key reports False."""
        s3_client.head_object.side_effect = ClientError({"Error": {"Code": "404"}}, "HeadObject")
        assert await s3.exists("p/s/images/v1.png") is False

    @pytest.mark.asyncio
    async def test_list_follows_continuation(self, s3, s3_client):
        """Test that paginated listings are followed to the end."""
        s3_client.list_objects_v2.side_effect = [
            {"Contents": [{"Key": "p/a"}], "IsTruncated": True, "NextContinuationToken": "t1"},
            {"Contents": [{"Key": "p/b"}], "IsTruncated": False},
        ]

        assert await s3.list_files("p/") == ["p/a", "p/b"]
        assert s3_client.list_objects_v2.call_args_list[1].kwargs["ContinuationToken"] == "t1"

    @pytest.mark.asyncio
    async def test_delete_prefix(self, s3, s3_client):
        """Test that delete_prefix removes each listed key."""
        s3_client.list_objects_v2.return_value = {"Contents": [{"Key": "p/a"}, {"Key": "p/b"}]}

        assert await s3.delete_prefix("p/") == 2
        assert s3_client.delete_object.call_count == 2


class TestGetStorageBackend:
    """Test cases for the cached factory."""

    def test_local_backend_from_settings(self):
        """Test that STORAGE_BACKEND=local yields a cached LocalStorageBackend."""
        backend = get_storage_backend()
        assert isinstance(backend, LocalStorageBackend)
        assert get_storage_backend() is backend

    def test_s3_requires_bucket(self, monkeypatch):
        """Test that S3 without a bucket is rejected."""
        monkeypatch.setattr(settings, "STORAGE_BACKEND", "s3")
        monkeypatch.setattr(settings, "STORAGE_BUCKET", "")
        with pytest.raises(ValueError, match="STORAGE_BUCKET"):
            get_storage_backend()
