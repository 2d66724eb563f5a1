"""
Source File Storage

Downloads the bytes of an uploaded file given the document's storage
reference. The pipeline fetches bytes itself; callers only pass a
document id.

Backends:
    - LocalStorage: files under a root directory (development, tests)
    - S3Storage: objects in an S3 bucket (boto3)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from knowledge_ingest.core.config import Settings
from knowledge_ingest.core.exceptions import StorageFetchFailed

logger = logging.getLogger(__name__)


@runtime_checkable
class StorageBackend(Protocol):
    """Resolves a storage reference to file bytes."""

    async def fetch(self, location: str) -> bytes: ...


class LocalStorage:
    """
    Storage rooted at a local directory.

    Locations are paths relative to ``root``; a location resolving outside
    the root is rejected.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    async def fetch(self, location: str) -> bytes:
        path = (self._root / location).resolve()
        if not path.is_relative_to(self._root):
            raise StorageFetchFailed(location, "path escapes the storage root")

        try:
            # Read in a thread to avoid blocking the event loop
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise StorageFetchFailed(location, "file not found") from exc
        except OSError as exc:
            raise StorageFetchFailed(location, str(exc)) from exc


class S3Storage:
    """
    Storage in an S3 bucket; locations are object keys.

    Args:
        bucket: Bucket holding uploaded documents.
        region: AWS region of the bucket.
        client: Pre-built boto3 S3 client (tests, custom endpoints).
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        client: Any | None = None,
    ) -> None:
        self._bucket = bucket
        self._s3_client = client or boto3.client("s3", region_name=region)

    @property
    def bucket(self) -> str:
        return self._bucket

    async def fetch(self, location: str) -> bytes:
        if not location:
            raise StorageFetchFailed(location, "S3 key is required")

        try:
            return await asyncio.to_thread(self._get_object, location)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            if error_code in ("404", "NoSuchKey"):
                raise StorageFetchFailed(location, "file not found in S3") from exc
            raise StorageFetchFailed(location, str(exc)) from exc
        except BotoCoreError as exc:
            raise StorageFetchFailed(location, str(exc)) from exc

    def _get_object(self, key: str) -> bytes:
        response = self._s3_client.get_object(Bucket=self._bucket, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()


def build_storage(config: Settings) -> StorageBackend:
    """Storage backend selected by STORAGE_BACKEND."""
    if config.STORAGE_BACKEND == "s3":
        if not config.S3_BUCKET:
            raise ValueError("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        logger.info("Using S3 storage: bucket=%s", config.S3_BUCKET)
        return S3Storage(config.S3_BUCKET, region=config.AWS_REGION)

    logger.info("Using local storage: root=%s", config.STORAGE_ROOT)
    return LocalStorage(config.STORAGE_ROOT)
