"""
Object store adapters for generated thumbnails.

This module provides:
- The ``ObjectStore`` contract the thumbnail service writes through
- An S3 implementation on boto3
- A local filesystem implementation with JSON metadata sidecars
- ``create_object_store`` to pick one from the environment

The S3 bucket name is configured via the S3_BUCKET_NAME environment variable.
Without it, thumbnails are kept under THUMBNAIL_STORAGE_DIR (default ./storage).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

from .exceptions import ObjectNotFoundError, StorageError
from .guard import read_stream
from .utils import ensure_directory

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}

METADATA_SUFFIX = ".metadata.json"


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> str: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """
    Thumbnails in an S3 bucket.

    Attributes:
        bucket: Target bucket name
        read_timeout: Seconds allowed for draining a ``get_object`` body
    """

    def __init__(self, bucket: str, client=None, read_timeout: float = 10.0) -> None:
        if not bucket:
            raise StorageError("S3 bucket name is required")
        self.bucket = bucket
        self.read_timeout = read_timeout
        self._client = client

    @property
    def client(self):
        """Create the boto3 client on first use."""
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def put(self, key: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> str:
        try:
            logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{key}")
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise StorageError(f"S3 upload failed for {key}: {e}") from e
        return key

    def get(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            logger.error(f"S3 download failed for {key}: {e}")
            raise StorageError(f"S3 download failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 download failed for {key}: {e}") from e
        return read_stream(response["Body"], self.read_timeout, allow_empty=True)

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return
            logger.error(f"S3 delete failed for {key}: {e}")
            raise StorageError(f"S3 delete failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed for {key}: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return False
            raise StorageError(f"S3 head failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 head failed for {key}: {e}") from e


class LocalObjectStore:
    """
    Thumbnails on the local filesystem.

    Each object is stored at ``<base_dir>/<key>`` with a
    ``<key>.metadata.json`` sidecar holding the content type and metadata.
    """

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = ensure_directory(Path(base_dir)).resolve()
        logger.info(f"Local object store rooted at {self.base_dir}")

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise StorageError(f"Invalid object key: {key!r}")
        path = (self.base_dir / key).resolve()
        if not path.is_relative_to(self.base_dir) or path == self.base_dir:
            raise StorageError(f"Object key escapes the storage root: {key!r}")
        return path

    def put(self, key: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> str:
        path = self._path(key)
        ensure_directory(path.parent)
        try:
            path.write_bytes(data)
            sidecar = path.with_name(path.name + METADATA_SUFFIX)
            sidecar.write_text(
                json.dumps({"content_type": content_type, "metadata": metadata or {}}, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Stored {key} ({len(data)} bytes)")
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path.read_bytes()

    def read_metadata(self, key: str) -> Dict[str, object]:
        sidecar = self._path(key + METADATA_SUFFIX)
        if not sidecar.is_file():
            raise ObjectNotFoundError(key)
        return json.loads(sidecar.read_text(encoding="utf-8"))

    def delete(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)
        path.with_name(path.name + METADATA_SUFFIX).unlink(missing_ok=True)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


def create_object_store() -> ObjectStore:
    """Return an S3 store when S3_BUCKET_NAME is set, else a local one."""
    load_dotenv()
    bucket = os.environ.get("S3_BUCKET_NAME", "")
    if bucket:
        return S3ObjectStore(bucket)
    logger.warning("S3_BUCKET_NAME not configured, storing thumbnails locally")
    return LocalObjectStore(os.environ.get("THUMBNAIL_STORAGE_DIR", "storage"))
