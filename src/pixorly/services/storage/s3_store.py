"""S3 artifact store with CloudFront public URLs."""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from pixorly.core.config import Settings
from pixorly.services.exceptions import StorageUploadError

logger = structlog.get_logger(__name__)

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass(frozen=True)
class StoredObject:
    """Location and public URL of an uploaded object."""

    key: str
    bucket: str
    url: str
    size_bytes: int
    content_type: str


def extension_for(content_type: str) -> str:
    return EXTENSIONS.get(content_type.lower(), "png")


def build_object_key(owner: str, content_type: str) -> str:
    """Collision-resistant key namespaced by owner: images/{owner}/{ms}-{uuid}.{ext}."""
    return f"images/{owner}/{int(time.time() * 1000)}-{uuid.uuid4()}.{extension_for(content_type)}"


class S3ArtifactStore:
    """Uploads image bytes to S3 with server-side encryption.

    boto3 is synchronous, so calls run in a worker thread.
    """

    def __init__(self, bucket: str, cloudfront_domain: str, s3_client: Any):
        """Initialize store.

        Args:
            bucket: Target S3 bucket
            cloudfront_domain: Domain of the CloudFront distribution in front of the bucket
            s3_client: boto3 S3 client
        """
        self.bucket = bucket
        self.cloudfront_domain = cloudfront_domain
        self.s3_client = s3_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ArtifactStore":
        s3_client = boto3.client(
            "s3",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
        )
        return cls(
            bucket=settings.aws_s3_bucket,
            cloudfront_domain=settings.aws_cloudfront_domain,
            s3_client=s3_client,
        )

    def public_url(self, key: str) -> str:
        if self.cloudfront_domain:
            return f"https://{self.cloudfront_domain}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    async def put(self, data: bytes, content_type: str, owner: str) -> StoredObject:
        """Store bytes and return their location.

        Args:
            data: Image bytes
            content_type: MIME type hint (selects the file extension)
            owner: Owner namespace for the key (identity subject)

        Returns:
            StoredObject with key, bucket, public URL and size

        Raises:
            StorageUploadError: S3 rejected or failed the upload
        """
        key = build_object_key(owner, content_type)

        def _put_object() -> None:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ServerSideEncryption="AES256",
            )

        try:
            await asyncio.to_thread(_put_object)
        except (BotoCoreError, ClientError) as e:
            logger.error("storage.upload_failed", key=key, error=str(e))
            raise StorageUploadError(f"Failed to upload image to S3: {e}") from e

        logger.info("storage.uploaded", key=key, size_bytes=len(data))
        return StoredObject(
            key=key,
            bucket=self.bucket,
            url=self.public_url(key),
            size_bytes=len(data),
            content_type=content_type,
        )

    async def delete(self, key: str) -> None:
        """Best-effort delete of an object whose database record was never committed."""
        try:
            await asyncio.to_thread(self.s3_client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("storage.delete_failed", key=key, error=str(e))
