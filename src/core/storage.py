"""
Blob Store Gateway - The Bridge Pattern

Provides a clean interface for object operations by key, with
S3BlobStore (production) and LocalBlobStore (development and tests).

Contract shared by both backends:
- get/copy raise BlobNotFoundError for a missing source key
- delete of a missing key is not an error
- head returns None for a missing key
- any other backend failure surfaces as TransientStoreError
"""

import os
import hmac
import time
import asyncio
import hashlib
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from src.core.config import Settings, get_settings
from src.core.exceptions import (
    BlobNotFoundError,
    MalformedInputError,
    PolicyViolationError,
    TransientStoreError,
)
from src.core.logging import get_logger

logger = get_logger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class ObjectInfo(BaseModel):
    """Result of a head() call."""
    key: str
    size: int
    last_modified: datetime  # UTC
    content_type: Optional[str] = None


class UploadGrant(BaseModel):
    """Presigned direct-upload target: POST `fields` plus the file to `url`."""
    url: str
    fields: Dict[str, str]
    expires_at: datetime


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class IBlobStore(ABC):
    """Interface for blob store operations - The Bridge"""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the object's bytes. Raises BlobNotFoundError if absent."""
        pass

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Write (or overwrite) an object."""
        pass

    @abstractmethod
    async def copy(self, src_key: str, dst_key: str) -> None:
        """Server-side copy. Raises BlobNotFoundError if the source is absent."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key is a no-op."""
        pass

    @abstractmethod
    async def head(self, key: str) -> Optional[ObjectInfo]:
        """Return size and modification time, or None if absent."""
        pass

    @abstractmethod
    async def issue_upload_grant(self, key: str, max_bytes: int, ttl_seconds: int) -> UploadGrant:
        """
        Mint a time-limited, size-capped direct upload target for `key`.

        The size cap is enforced by the store at upload time.
        """
        pass

    @abstractmethod
    async def issue_download_url(self, key: str, ttl_seconds: int) -> str:
        """Mint a time-limited download URL for `key`."""
        pass


class LocalBlobStore(IBlobStore):
    """Local filesystem blob store for development and tests."""

    def __init__(
        self,
        base_path: str = "./data/storage",
        url_prefix: str = "/static/storage",
        upload_url: str = "/api/v1/uploads",
        signing_key: str = "dev-local-signing-key"
    ):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip("/")
        self.upload_url = upload_url
        self._signing_key = signing_key.encode("utf-8")

    def _path(self, key: str) -> Path:
        path = (self.base_path / key.lstrip("/")).resolve()
        if self.base_path not in path.parents:
            raise MalformedInputError(f"Key escapes storage root: {key}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=path.parent, prefix=f".{path.name}.", delete=False) as f:
            f.write(data)
        try:
            os.replace(f.name, path)
        except OSError:
            os.unlink(f.name)
            raise

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise BlobNotFoundError(key)
        except OSError as e:
            raise TransientStoreError(f"Local read failed: {e}", store="blob", key=key)

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        try:
            self._write(self._path(key), data)
        except OSError as e:
            raise TransientStoreError(f"Local write failed: {e}", store="blob", key=key)

    async def copy(self, src_key: str, dst_key: str) -> None:
        data = await self.get(src_key)
        await self.put(dst_key, data)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise TransientStoreError(f"Local delete failed: {e}", store="blob", key=key)

    async def head(self, key: str) -> Optional[ObjectInfo]:
        path = self._path(key)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        return ObjectInfo(
            key=key,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    # -------------------------------------------------------------------------
    # Upload grants (signed form fields, checked by accept_upload)
    # -------------------------------------------------------------------------

    def _sign(self, key: str, expires: int, max_bytes: int) -> str:
        payload = f"{key}\n{expires}\n{max_bytes}".encode("utf-8")
        return hmac.new(self._signing_key, payload, hashlib.sha256).hexdigest()

    async def issue_upload_grant(self, key: str, max_bytes: int, ttl_seconds: int) -> UploadGrant:
        expires = int(time.time()) + ttl_seconds
        return UploadGrant(
            url=self.upload_url,
            fields={
                "key": key,
                "expires": str(expires),
                "max-bytes": str(max_bytes),
                "signature": self._sign(key, expires, max_bytes),
            },
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    async def accept_upload(self, fields: Dict[str, str], data: bytes) -> Dict[str, Any]:
        """
        Store an upload made with a grant from issue_upload_grant().

        Returns the storage-event record a notification relay would carry
        for the new object.
        """
        try:
            key = fields["key"]
            expires = int(fields["expires"])
            max_bytes = int(fields["max-bytes"])
            signature = fields["signature"]
        except (KeyError, ValueError):
            raise MalformedInputError("Upload form is missing grant fields")

        if not hmac.compare_digest(signature, self._sign(key, expires, max_bytes)):
            raise MalformedInputError("Upload grant signature mismatch")
        if time.time() > expires:
            raise MalformedInputError("Upload grant expired")
        if len(data) > max_bytes:
            raise PolicyViolationError(
                f"Upload of {len(data)} bytes exceeds the {max_bytes} byte limit",
                max_bytes=max_bytes
            )

        await self.put(key, data)
        logger.info("local_upload_accepted", key=key, size=len(data))
        return {
            "eventName": "ObjectCreated:Post",
            "s3": {"object": {"key": quote(key, safe="/"), "size": len(data)}},
        }

    async def issue_download_url(self, key: str, ttl_seconds: int) -> str:
        """For local storage, return a relative path that can be served."""
        return f"{self.url_prefix}/{quote(key.lstrip('/'), safe='/')}"


class S3BlobStore(IBlobStore):
    """
    S3-compatible blob store (AWS S3, MinIO, LocalStack).

    Uses boto3 (sync) via asyncio.to_thread so the event loop keeps serving
    sibling records while a call is in flight.
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        client: Any = None
    ):
        if not bucket:
            raise ValueError("S3_BUCKET config missing. Set S3_BUCKET to the asset bucket name.")
        self.bucket = bucket
        if client is None:
            extra = {} if endpoint_url is None else {"endpoint_url": endpoint_url}
            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                **extra,
            )
        self._client = client

    async def _call(self, operation: str, key: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise BlobNotFoundError(key) from e
            raise TransientStoreError(f"S3 {operation} failed: {code}", store="blob", key=key) from e
        except BotoCoreError as e:
            raise TransientStoreError(f"S3 {operation} failed: {e}", store="blob", key=key) from e

    async def get(self, key: str) -> bytes:
        def _get() -> bytes:
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()

        return await self._call("get", key, _get)

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        extra = {"ContentType": content_type} if content_type else {}
        await self._call(
            "put", key, self._client.put_object,
            Bucket=self.bucket, Key=key, Body=data, **extra
        )

    async def copy(self, src_key: str, dst_key: str) -> None:
        await self._call(
            "copy", src_key, self._client.copy_object,
            Bucket=self.bucket,
            Key=dst_key,
            CopySource={"Bucket": self.bucket, "Key": src_key},
        )

    async def delete(self, key: str) -> None:
        try:
            await self._call("delete", key, self._client.delete_object, Bucket=self.bucket, Key=key)
        except BlobNotFoundError:
            pass

    async def head(self, key: str) -> Optional[ObjectInfo]:
        try:
            head = await self._call("head", key, self._client.head_object, Bucket=self.bucket, Key=key)
        except BlobNotFoundError:
            return None
        return ObjectInfo(
            key=key,
            size=head["ContentLength"],
            last_modified=_utc(head["LastModified"]),
            content_type=head.get("ContentType"),
        )

    async def issue_upload_grant(self, key: str, max_bytes: int, ttl_seconds: int) -> UploadGrant:
        expires = time.time() + ttl_seconds
        response = await self._call(
            "presign_post", key, self._client.generate_presigned_post,
            Bucket=self.bucket,
            Key=key,
            Conditions=[["content-length-range", 0, max_bytes]],
            ExpiresIn=ttl_seconds,
        )
        return UploadGrant(
            url=response["url"],
            fields=response["fields"],
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    async def issue_download_url(self, key: str, ttl_seconds: int) -> str:
        return await self._call(
            "presign_get", key, self._client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )


class StorageFactory:
    """
    Factory for creating blob store instances.

    BLOB_STORE_BACKEND=s3 with S3_BUCKET set selects S3; anything else uses
    the local filesystem.
    """

    _instance: Optional[IBlobStore] = None

    @classmethod
    def create(cls, settings: Settings) -> IBlobStore:
        if settings.BLOB_STORE_BACKEND.lower() == "s3":
            return S3BlobStore(
                bucket=settings.S3_BUCKET,
                region=settings.S3_REGION,
                endpoint_url=settings.S3_ENDPOINT_URL,
                access_key=settings.AWS_ACCESS_KEY_ID,
                secret_key=settings.AWS_SECRET_ACCESS_KEY,
            )
        return LocalBlobStore(
            base_path=settings.LOCAL_STORAGE_PATH,
            url_prefix=settings.LOCAL_STORAGE_URL_PREFIX,
            upload_url=settings.LOCAL_UPLOAD_URL,
            signing_key=settings.LOCAL_STORAGE_SIGNING_KEY,
        )

    @classmethod
    def get_storage(cls, settings: Optional[Settings] = None) -> IBlobStore:
        """Get the process-wide blob store for the configured backend."""
        if cls._instance is None:
            cls._instance = cls.create(settings or get_settings())
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_storage() -> IBlobStore:
    """Get the blob store instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
