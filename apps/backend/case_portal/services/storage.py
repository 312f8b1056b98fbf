"""Object storage for uploaded document blobs."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from case_portal.config import settings
from case_portal.logger import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Raised when storage operations fail."""


class BlobReader(Protocol):
    """Anything that can return the bytes stored under a key."""

    async def read(self, storage_key: str) -> bytes: ...


class StorageService:
    """Simple S3/MinIO storage wrapper."""

    _checked_buckets: set[str] = set()
    _bucket_lock = threading.Lock()

    def __init__(self, bucket: str | None = None) -> None:
        self.bucket = bucket or settings.s3_bucket
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    def _ensure_bucket(self) -> None:
        with self._bucket_lock:
            if self.bucket in self._checked_buckets:
                return
            try:
                self.client.head_bucket(Bucket=self.bucket)
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code in ("404", "NoSuchBucket", "NotFound"):
                    try:
                        self.client.create_bucket(Bucket=self.bucket)
                    except (BotoCoreError, ClientError) as create_exc:
                        raise StorageError(f"Failed to create bucket {self.bucket}") from create_exc
                else:
                    raise StorageError(f"Failed to access bucket {self.bucket}") from exc
            except BotoCoreError as exc:
                raise StorageError(f"Failed to access bucket {self.bucket}") from exc
            self._checked_buckets.add(self.bucket)

    def upload_bytes(
        self,
        *,
        key: str,
        content: bytes,
        content_type: str | None = None,
    ) -> None:
        """Upload raw bytes to object storage."""
        extra_args: dict[str, Any] = {}
        if content_type:
            extra_args["ContentType"] = content_type
        self._ensure_bucket()
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                **extra_args,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to upload to S3", bucket=self.bucket, key=key, error=str(exc))
            raise StorageError(f"Failed to upload {key} to {self.bucket}") from exc

    def download_bytes(self, key: str) -> bytes:
        """Read an object fully into memory."""
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to download from S3", bucket=self.bucket, key=key, error=str(exc))
            raise StorageError(f"Failed to download {key} from {self.bucket}") from exc


class StorageBlobReader:
    """BlobReader backed by StorageService; boto3 calls run in a worker thread."""

    def __init__(self, storage: StorageService) -> None:
        self._storage = storage

    async def read(self, storage_key: str) -> bytes:
        return await asyncio.to_thread(self._storage.download_bytes, storage_key)
