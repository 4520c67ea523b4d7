from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from app.core.config import settings
from app.core.errors import UploadFailedError
from app.infra.storage import S3MediaStore, media_kind


def store_with(s3) -> S3MediaStore:
    store = S3MediaStore(bucket="media", endpoint_url="http://minio:9000", public_base_url=None)
    client = MagicMock()
    client.__aenter__.return_value = s3
    store.session = MagicMock()
    store.session.client.return_value = client
    return store


@pytest.mark.unit
class TestMediaKind:
    @pytest.mark.parametrize(
        "content_type,expected",
        [("image/png", "image"), ("video/mp4", "video"), ("application/pdf", "file"), (None, "file")],
    )
    def test_media_kind(self, content_type, expected):
        assert media_kind(content_type) == expected


@pytest.mark.unit
class TestS3MediaStore:
    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self):
        # Arrange
        s3 = AsyncMock()
        store = store_with(s3)

        # Act
        stored = await store.upload(b"\x89PNG", "cat.png", "image/png")

        # Assert
        assert stored.kind == "image"
        assert stored.key.startswith("images/") and stored.key.endswith(".png")
        assert stored.url == f"http://minio:9000/media/{stored.key}"
        args, kwargs = s3.upload_fileobj.call_args
        assert args[1:] == ("media", stored.key)
        assert kwargs["ExtraArgs"] == {"ContentType": "image/png"}

    @pytest.mark.asyncio
    async def test_client_error_becomes_upload_failed(self):
        s3 = AsyncMock()
        s3.upload_fileobj.side_effect = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        store = store_with(s3)

        with pytest.raises(UploadFailedError) as exc:
            await store.upload(b"data", "clip.mp4", "video/mp4")

        assert exc.value.status_code == 502
        assert exc.value.code == "upload_failed"

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_becomes_upload_failed(self):
        s3 = AsyncMock()
        s3.upload_fileobj.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")
        store = store_with(s3)

        with pytest.raises(UploadFailedError):
            await store.upload(b"data", "notes.txt", "text/plain")

    @pytest.mark.asyncio
    async def test_oversized_upload_never_reaches_s3(self, monkeypatch):
        monkeypatch.setattr(settings, "media_max_bytes", 4)
        s3 = AsyncMock()
        store = store_with(s3)

        with pytest.raises(UploadFailedError):
            await store.upload(b"too big", "big.bin", None)

        s3.upload_fileobj.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_failure_is_logged_not_raised(self):
        s3 = AsyncMock()
        s3.delete_object.side_effect = ClientError({"Error": {"Code": "404", "Message": "gone"}}, "DeleteObject")
        store = store_with(s3)

        await store.delete("images/abc.png")

        s3.delete_object.assert_awaited_once_with(Bucket="media", Key="images/abc.png")
