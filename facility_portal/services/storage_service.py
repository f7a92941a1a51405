"""Object storage adapter for uploaded attachments.

Wraps an S3-compatible bucket. Objects are private; callers get time-limited
signed URLs. Every call is bounded by botocore connect/read timeouts and is
attempted exactly once, so a slow or unreachable store surfaces quickly as an
ExternalServiceError the client may retry.
"""

import json
import logging
import mimetypes
import os
import re
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from fnmatch import fnmatch

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Request

from facility_portal.core.config import settings
from facility_portal.core.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger("facility_portal.storage")

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class StoredFile:
    path: str
    content_type: str
    size: int
    signed_url: str


def s3_client_config() -> Config:
    return Config(
        signature_version="s3v4",
        connect_timeout=settings.storage_connect_timeout_seconds,
        read_timeout=settings.storage_read_timeout_seconds,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )


def build_s3_client() -> BaseClient:
    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        region_name=settings.storage_region,
        aws_access_key_id=settings.storage_access_key_id,
        aws_secret_access_key=settings.storage_secret_access_key,
        config=s3_client_config(),
    )


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class StorageService:
    def __init__(
        self,
        client: BaseClient,
        *,
        bucket: str | None = None,
        max_upload_bytes: int | None = None,
        allowed_mime_types: list[str] | None = None,
    ):
        self.client = client
        self.bucket = bucket or settings.storage_bucket
        self.max_upload_bytes = max_upload_bytes or settings.storage_max_upload_bytes
        self.allowed_mime_types = [
            item.lower() for item in (allowed_mime_types or settings.storage_allowed_mime_types)
        ]

    @contextmanager
    def _translate_errors(self, operation: str, path: str | None = None) -> Iterator[None]:
        try:
            yield
        except ClientError as exc:
            code = _error_code(exc)
            if path is not None and code in _NOT_FOUND_CODES:
                raise NotFoundError(f"File not found: {path}") from exc
            if code == "PreconditionFailed":
                raise ConflictError(f"File already exists: {path}") from exc
            self._log_failure(operation, path, exc)
            raise ExternalServiceError(f"Storage {operation} failed: {code or exc}") from exc
        except BotoCoreError as exc:
            self._log_failure(operation, path, exc)
            raise ExternalServiceError(f"Storage {operation} failed: {exc}") from exc

    def _log_failure(self, operation: str, path: str | None, exc: Exception) -> None:
        logger.error(
            json.dumps(
                {
                    "event": "storage_error",
                    "operation": operation,
                    "bucket": self.bucket,
                    "path": path,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                }
            )
        )

    def ensure_bucket_exists(self) -> bool:
        """Create the private bucket if missing. Returns True when it was created."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return False
        except ClientError as exc:
            if _error_code(exc) not in _NOT_FOUND_CODES:
                self._log_failure("head_bucket", None, exc)
                raise ExternalServiceError(f"Storage head_bucket failed: {_error_code(exc)}") from exc
        except BotoCoreError as exc:
            self._log_failure("head_bucket", None, exc)
            raise ExternalServiceError(f"Storage head_bucket failed: {exc}") from exc

        create_kwargs: dict = {"Bucket": self.bucket}
        region = self.client.meta.region_name
        if region and region != "us-east-1":
            create_kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}

        created = True
        try:
            self.client.create_bucket(**create_kwargs)
        except ClientError as exc:
            if _error_code(exc) not in _BUCKET_EXISTS_CODES:
                self._log_failure("create_bucket", None, exc)
                raise ExternalServiceError(f"Storage create_bucket failed: {_error_code(exc)}") from exc
            created = False
        except BotoCoreError as exc:
            self._log_failure("create_bucket", None, exc)
            raise ExternalServiceError(f"Storage create_bucket failed: {exc}") from exc

        with self._translate_errors("put_public_access_block"):
            self.client.put_public_access_block(
                Bucket=self.bucket,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )
        logger.info(json.dumps({"event": "storage_bucket_ready", "bucket": self.bucket, "created": created}))
        return created

    def is_allowed_mime_type(self, content_type: str) -> bool:
        normalized = (content_type or "").split(";")[0].strip().lower()
        return any(fnmatch(normalized, pattern) for pattern in self.allowed_mime_types)

    def build_object_path(self, *, original_name: str, field_name: str, folder_path: str = "") -> str:
        """``{folder}/{field}-{epoch_ms}-{random}{ext}``; the random suffix keeps same-name uploads apart."""
        extension = os.path.splitext(original_name or "")[1].lower()
        extension = _SAFE_SEGMENT.sub("", extension)
        field = _SAFE_SEGMENT.sub("_", field_name or "file").strip("_") or "file"
        filename = f"{field}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}"
        folder = folder_path.strip("/")
        return f"{folder}/{filename}" if folder else filename

    def upload_file(
        self,
        *,
        content: bytes,
        original_name: str,
        content_type: str | None = None,
        field_name: str = "file",
        folder_path: str = "",
    ) -> StoredFile:
        if not content_type:
            content_type, _ = mimetypes.guess_type(original_name or "")
            content_type = content_type or "application/octet-stream"
        if not self.is_allowed_mime_type(content_type):
            raise ValidationError(f"File type not allowed: {content_type}")
        size = len(content)
        if size > self.max_upload_bytes:
            max_mb = self.max_upload_bytes // (1024 * 1024)
            raise ValidationError(f"File size exceeds maximum allowed ({max_mb}MB)")

        path = self.build_object_path(
            original_name=original_name,
            field_name=field_name,
            folder_path=folder_path,
        )
        with self._translate_errors("put_object", path):
            self.client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=content,
                ContentType=content_type,
                IfNoneMatch="*",
            )

        return StoredFile(
            path=path,
            content_type=content_type,
            size=size,
            signed_url=self.get_signed_url(path, settings.storage_persisted_url_expires_seconds),
        )

    def get_signed_url(self, path: str, expires_in: int | None = None) -> str:
        expires = expires_in or settings.storage_signed_url_expires_seconds
        if expires < 1 or expires > 604_800:
            raise ValidationError("expiresIn must be between 1 and 604800 seconds")
        with self._translate_errors("generate_presigned_url", path):
            return self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=expires,
                HttpMethod="GET",
            )

    def download_file(self, path: str) -> tuple[bytes, str]:
        with self._translate_errors("get_object", path):
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            body = response["Body"]
            try:
                data = body.read()
            finally:
                body.close()
        return data, response.get("ContentType") or "application/octet-stream"

    def delete_file(self, path: str) -> None:
        # S3 deletes are idempotent, so existence is checked explicitly.
        with self._translate_errors("head_object", path):
            self.client.head_object(Bucket=self.bucket, Key=path)
        with self._translate_errors("delete_object", path):
            self.client.delete_object(Bucket=self.bucket, Key=path)


def get_storage(request: Request) -> StorageService:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise RuntimeError("Storage service is not configured on application state")
    return storage
