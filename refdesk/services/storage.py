"""
Blob storage for job artifacts (S3 or any S3-compatible endpoint).

Artifacts are private objects. Clients only ever receive presigned GET URLs,
minted per request with a bounded lifetime.
"""

import asyncio
import logging
from functools import lru_cache

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from refdesk.config import settings
from refdesk.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class BlobStorage:
    def __init__(self, client):
        self.client = client

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/pdf",
    ) -> str:
        """Store ``data`` under ``bucket/key``, overwriting any previous object."""
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Upload of {key} failed: {exc}") from exc
        logger.info(f"Uploaded {len(data)} bytes to {bucket}/{key}")
        return key

    async def sign(self, bucket: str, key: str, expires_in: int) -> str:
        """Presigned GET URL for ``bucket/key`` valid for ``expires_in`` seconds."""
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Signing of {key} failed: {exc}") from exc


@lru_cache(maxsize=None)
def get_storage() -> BlobStorage:
    client = boto3.client(
        "s3",
        region_name=settings.aws_region,
        endpoint_url=settings.s3_endpoint_url,
    )
    return BlobStorage(client)
