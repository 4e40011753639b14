"""AWS S3 storage backend with multipart transfer support."""

from __future__ import annotations

from typing import Any, BinaryIO, cast

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from partvault.core.cancel import CancelToken, check_cancel
from partvault.core.credentials import AWS_KEY_ID_ENV, AWS_SECRET_ENV, resolve_credentials
from partvault.core.exceptions import (
    ConfigError,
    NotFoundError,
    StorageError,
    TransferError,
)
from partvault.core.models import Part
from partvault.core.paths import strip_root
from partvault.logging import get_logger
from partvault.storage.base import BaseStorage
from partvault.storage.pager import Marker, Page
from partvault.storage.stream import GuardedReader

log = get_logger(__name__)

# Multipart transfer configuration
_MULTIPART_THRESHOLD = 64 * 1024 * 1024  # 64 MB
_MULTIPART_CHUNKSIZE = 16 * 1024 * 1024  # 16 MB
_MAX_CONCURRENCY = 4

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
_RETRYABLE_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
})


def _wrap_error(backend: S3Storage, action: str, key: str, exc: Exception) -> StorageError:
    """Translate a botocore error into the partvault error taxonomy."""
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if code in _NOT_FOUND_CODES:
            return NotFoundError(f"{backend}: {key} not found")
        retryable = code in _RETRYABLE_CODES or status >= 500
        return TransferError(f"{backend}: {action} {key} failed: {exc}", retryable=retryable)
    # Connection errors, timeouts and broken response streams
    return TransferError(f"{backend}: {action} {key} failed: {exc}", retryable=True)


class S3Storage(BaseStorage):
    """Store parts as objects in an S3 bucket (or an S3-compatible service)."""

    def __init__(
            self,
            bucket: str,
            root_dir: str = "/",
            region: str = "us-east-1",
            endpoint_url: str | None = None,
            access_key_id: str | None = None,
            secret_access_key: str | None = None,
            page_size: int = 1000,
            **kwargs: int,
    ) -> None:
        super().__init__(root_dir, **kwargs)
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.page_size = page_size
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client: Any = None
        self._resolved_key_id: str | None = None

        self._transfer_config = TransferConfig(
            multipart_threshold=_MULTIPART_THRESHOLD,
            multipart_chunksize=_MULTIPART_CHUNKSIZE,
            max_concurrency=_MAX_CONCURRENCY,
            use_threads=True,
        )

    def __str__(self) -> str:
        return f"S3{{bucket: {self.bucket!r}, dir: {self.root_dir!r}}}"

    def _open(self) -> None:
        if not self.bucket:
            raise ConfigError("S3 bucket name is required (--s3-bucket or PARTVAULT_S3_BUCKET)")

        creds = resolve_credentials(
            self._access_key_id,
            self._secret_access_key,
            identity_env=AWS_KEY_ID_ENV,
            secret_env=AWS_SECRET_ENV,
            provider="S3",
            required=False,
        )
        self._resolved_key_id = creds.identity if creds is not None else None
        session_kwargs: dict[str, Any] = {}
        if creds is not None:
            session_kwargs["aws_access_key_id"] = creds.identity
            session_kwargs["aws_secret_access_key"] = creds.secret

        boto_config = BotoConfig(
            region_name=self.region,
            retries={"max_attempts": 3, "mode": "adaptive"},
        )
        client_kwargs: dict[str, Any] = {"config": boto_config}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url

        try:
            session = boto3.Session(**session_kwargs)
            self._client = session.client("s3", **client_kwargs)
        except (BotoCoreError, ValueError) as exc:
            raise ConfigError(f"Cannot create S3 client for {self}: {exc}") from exc

    def _close(self) -> None:
        self._client.close()
        self._client = None

    def _head_size(self, key: str) -> int | None:
        """Return the object size, or None if the key does not exist."""
        try:
            resp = self._client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            err = _wrap_error(self, "head", key, exc)
            if isinstance(err, NotFoundError):
                return None
            raise err from exc
        return int(resp["ContentLength"])

    def _list_page(self, prefix: str, marker: Marker) -> Page:
        full_prefix = self.key(prefix)
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Prefix": full_prefix,
            "MaxKeys": self.page_size,
        }
        if marker.token:
            kwargs["ContinuationToken"] = marker.token

        try:
            resp = self._client.list_objects_v2(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(self, "list", full_prefix, exc) from exc

        items = [
            Part.from_listing(
                path=strip_root(self.root_dir, obj["Key"]),
                size=int(obj["Size"]),
                fingerprint=obj.get("ETag", "").strip('"'),
            )
            for obj in resp.get("Contents", [])
            if not obj["Key"].endswith("/")
        ]
        token = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        return Page(items=items, next_marker=Marker.after(token))

    def _upload_part(self, part: Part, key: str, reader: BinaryIO, cancel: CancelToken | None) -> None:
        existing = self._head_size(key)
        if existing is not None:
            self._accept_existing(part, key, existing)
            return

        log.info("s3_upload_start", bucket=self.bucket, key=key, size=part.size)
        guarded = GuardedReader(reader, part.size, cancel)
        try:
            self._client.upload_fileobj(
                guarded,
                self.bucket,
                key,
                Config=self._transfer_config,
                Callback=_ProgressCallback(part.size, key),
            )
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(self, "upload", key, exc) from exc

        if guarded.bytes_read != part.size:
            self._discard(key)
            raise TransferError(
                f"{self}: short read uploading {key}: got {guarded.bytes_read} of {part.size} bytes"
            )
        log.info("s3_upload_complete", location=f"s3://{self.bucket}/{key}", size=part.size)

    def _discard(self, key: str) -> None:
        """Best-effort removal of an object known to be incomplete."""
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            log.warning("s3_discard_failed", key=key, error=str(exc))

    def _download_part(self, part: Part, key: str, writer: BinaryIO, cancel: CancelToken | None) -> None:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(self, "download", key, exc) from exc

        body = resp["Body"]
        copied = 0
        try:
            for chunk in body.iter_chunks(self.chunk_size):
                check_cancel(cancel, "download")
                writer.write(chunk)
                copied += len(chunk)
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(self, "download", key, exc) from exc
        finally:
            body.close()

        if copied != part.size:
            raise TransferError(f"{self}: download of {key} truncated: got {copied} of {part.size} bytes")
        log.debug("s3_download_complete", key=key, size=copied)

    def _supports_server_side_copy(self, dst: BaseStorage) -> bool:
        # The destination client must be able to read the source bucket, so
        # both ends need the same endpoint and the same access key.
        return (
            isinstance(dst, S3Storage)
            and dst.endpoint_url == self.endpoint_url
            and dst._resolved_key_id == self._resolved_key_id
        )

    def _server_side_copy(self, dst: BaseStorage, part: Part, cancel: CancelToken | None) -> None:
        target = cast(S3Storage, dst)
        src_key = self.key(part.path)
        dst_key = target.key(part.path)

        existing = target._head_size(dst_key)
        if existing is not None:
            target._accept_existing(part, dst_key, existing)
            return

        check_cancel(cancel, "copy")
        try:
            # Managed copy switches to multipart copy for large objects.
            target._client.copy(
                {"Bucket": self.bucket, "Key": src_key},
                target.bucket,
                dst_key,
                Config=target._transfer_config,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(self, "copy", src_key, exc) from exc
        log.info("s3_copy_complete", source=f"s3://{self.bucket}/{src_key}",
                 destination=f"s3://{target.bucket}/{dst_key}")

    def _delete_key(self, key: str) -> None:
        # S3 reports success for absent keys.
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
            log.debug("s3_delete_complete", bucket=self.bucket, key=key)
        except (ClientError, BotoCoreError) as exc:
            err = _wrap_error(self, "delete", key, exc)
            if not isinstance(err, NotFoundError):
                raise err from exc

    def _has_key(self, key: str) -> bool:
        return self._head_size(key) is not None

    def _put_bytes(self, key: str, data: bytes) -> None:
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(self, "put", key, exc) from exc

    def _get_bytes(self, key: str) -> bytes:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(self, "get", key, exc) from exc


class _ProgressCallback:
    """Callback for tracking S3 upload progress."""

    def __init__(self, total_size: int, key: str) -> None:
        self._total = total_size
        self._key = key
        self._uploaded = 0
        self._last_pct = -1

    def __call__(self, bytes_transferred: int) -> None:
        self._uploaded += bytes_transferred
        if self._total > 0:
            pct = int(self._uploaded * 100 / self._total)
            # Log every 10% to avoid flood
            if pct >= self._last_pct + 10:
                self._last_pct = pct
                log.debug("s3_upload_progress", key=self._key, percent=pct)
