"""
Object storage infrastructure

Media uploads go to an S3-compatible bucket (MinIO in development) through
aioboto3. Callers upload first and only persist rows once they hold a URL.
"""

from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Protocol

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.errors import UploadFailedError
from app.core.logging import get_logger
from app.models.base import new_id

logger = get_logger(__name__)


def media_kind(content_type: Optional[str]) -> str:
    """Map a MIME type to a DM message_type"""
    if not content_type:
        return "file"
    if content_type.startswith("image/"):
        return "image"
    if content_type.startswith("video/"):
        return "video"
    return "file"


@dataclass(frozen=True)
class StoredMedia:
    url: str
    key: str
    kind: str


class MediaStore(Protocol):
    async def upload(self, data: bytes, filename: str, content_type: Optional[str]) -> StoredMedia: ...

    async def delete(self, key: str) -> None: ...


class S3MediaStore:
    """MediaStore backed by an S3 bucket"""

    def __init__(
        self,
        bucket: str = settings.s3_bucket_name,
        endpoint_url: Optional[str] = settings.s3_endpoint_url,
        access_key: str = settings.s3_access_key,
        secret_key: str = settings.s3_secret_key,
        region: str = settings.s3_region,
        public_base_url: Optional[str] = settings.s3_public_base_url,
    ) -> None:
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url
        self.session = aioboto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    def _url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    async def upload(self, data: bytes, filename: str, content_type: Optional[str]) -> StoredMedia:
        if len(data) > settings.media_max_bytes:
            raise UploadFailedError(
                "File is too large",
                details={"max_bytes": settings.media_max_bytes},
            )

        kind = media_kind(content_type)
        suffix = filename.rsplit(".", 1)[-1] if "." in filename else ""
        key = f"{kind}s/{new_id()}" + (f".{suffix}" if suffix else "")
        extra = {"ContentType": content_type} if content_type else None

        async with self.session.client("s3", endpoint_url=self.endpoint_url) as s3:
            try:
                await s3.upload_fileobj(BytesIO(data), self.bucket, key, ExtraArgs=extra)
            except (ClientError, BotoCoreError) as e:
                logger.error("media.upload.failed", key=key, error=str(e))
                raise UploadFailedError(details={"filename": filename}) from e

        logger.info("media.uploaded", key=key, kind=kind, size=len(data))
        return StoredMedia(url=self._url_for(key), key=key, kind=kind)

    async def delete(self, key: str) -> None:
        async with self.session.client("s3", endpoint_url=self.endpoint_url) as s3:
            try:
                await s3.delete_object(Bucket=self.bucket, Key=key)
            except (ClientError, BotoCoreError) as e:
                logger.warning("media.delete.failed", key=key, error=str(e))
