from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path, PurePosixPath
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from eprocurement.errors import TransientIntegrationError


logger = logging.getLogger("eprocurement.storage")

_MISSING_OBJECT_CODES = {"NoSuchKey", "NotFound", "404"}


def attachment_path(proposal_id: int, file_name: str) -> str:
    suffix = PurePosixPath(str(file_name or "")).suffix.lower().lstrip(".") or "bin"
    return f"proposal-attachments/{int(proposal_id)}/{int(time.time() * 1000)}_{secrets.token_hex(4)}.{suffix}"


class ObjectStore(Protocol):
    def put(self, key: str, content: bytes, content_type: str | None = None) -> str: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> bool: ...


def normalize_key(key: str) -> PurePosixPath:
    relative = PurePosixPath(str(key or "").strip())
    if not relative.parts or relative.is_absolute() or ".." in relative.parts:
        raise ValueError(f"invalid storage key: {key!r}")
    return relative


def _storage_unavailable(details: str) -> TransientIntegrationError:
    return TransientIntegrationError(
        code="storage_unavailable",
        message_key="storage_unavailable",
        http_status=503,
        details=details,
    )


def _error_code(exc: ClientError) -> str:
    return str((exc.response or {}).get("Error", {}).get("Code") or "")


class S3ObjectStore:
    """S3-compatible store (AWS S3 or MinIO through endpoint_url).

    The boto3 client is created on first use so an app without a configured
    bucket still boots; any call then fails as storage_unavailable.
    """

    def __init__(
        self,
        bucket: str | None,
        *,
        client=None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        key_prefix: str = "",
    ) -> None:
        self.bucket = (bucket or "").strip() or None
        self.key_prefix = key_prefix.strip("/")
        self._client = client
        self._client_kwargs = {
            "endpoint_url": endpoint_url or None,
            "region_name": region_name or None,
            "aws_access_key_id": access_key_id or None,
            "aws_secret_access_key": secret_access_key or None,
        }

    @classmethod
    def from_config(cls, config) -> "S3ObjectStore":
        return cls(
            config.get("STORAGE_BUCKET"),
            endpoint_url=config.get("STORAGE_ENDPOINT_URL"),
            region_name=config.get("STORAGE_REGION"),
            access_key_id=config.get("STORAGE_ACCESS_KEY_ID"),
            secret_access_key=config.get("STORAGE_SECRET_ACCESS_KEY"),
            key_prefix=config.get("STORAGE_KEY_PREFIX") or "",
        )

    @property
    def client(self):
        if self._client is None:
            kwargs = {name: value for name, value in self._client_kwargs.items() if value}
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def _object_key(self, key: str) -> str:
        relative = normalize_key(key).as_posix()
        return f"{self.key_prefix}/{relative}" if self.key_prefix else relative

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise _storage_unavailable("STORAGE_BUCKET no configurado.")
        return self.bucket

    def put(self, key: str, content: bytes, content_type: str | None = None) -> str:
        object_key = self._object_key(key)
        params = {"Bucket": self._require_bucket(), "Key": object_key, "Body": content}
        if content_type:
            params["ContentType"] = content_type
        try:
            self.client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("storage_put_failed", extra={"storage_key": object_key, "error": str(exc)})
            raise _storage_unavailable(str(exc)) from exc
        return key

    def get(self, key: str) -> bytes:
        object_key = self._object_key(key)
        bucket = self._require_bucket()
        try:
            response = self.client.get_object(Bucket=bucket, Key=object_key)
            return response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _MISSING_OBJECT_CODES:
                raise FileNotFoundError(key) from exc
            raise _storage_unavailable(str(exc)) from exc
        except BotoCoreError as exc:
            raise _storage_unavailable(str(exc)) from exc

    def delete(self, key: str) -> bool:
        object_key = self._object_key(key)
        bucket = self._require_bucket()
        try:
            self.client.head_object(Bucket=bucket, Key=object_key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_OBJECT_CODES:
                return False
            raise _storage_unavailable(str(exc)) from exc
        except BotoCoreError as exc:
            raise _storage_unavailable(str(exc)) from exc
        try:
            self.client.delete_object(Bucket=bucket, Key=object_key)
        except (ClientError, BotoCoreError) as exc:
            raise _storage_unavailable(str(exc)) from exc
        return True


class LocalObjectStore:
    """Filesystem double of S3ObjectStore for tests and local development."""

    def __init__(self, root: str) -> None:
        self.root = Path(root).expanduser().resolve()

    def _resolve(self, key: str) -> Path:
        return self.root.joinpath(*normalize_key(key).parts)

    def put(self, key: str, content: bytes, content_type: str | None = None) -> str:
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            raise _storage_unavailable(str(exc)) from exc
        return key

    def get(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise _storage_unavailable(str(exc)) from exc

    def delete(self, key: str) -> bool:
        path = self._resolve(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
