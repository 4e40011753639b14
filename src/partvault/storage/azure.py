"""Azure Blob Storage backend."""

from __future__ import annotations

import base64
import binascii
import time
from typing import Any, BinaryIO, cast

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobServiceClient

from partvault.core.cancel import CancelToken, check_cancel
from partvault.core.credentials import AZURE_ACCOUNT_ENV, AZURE_KEY_ENV, Credentials, resolve_credentials
from partvault.core.exceptions import (
    ConfigError,
    NotFoundError,
    OperationCancelledError,
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

_MAX_CONCURRENCY = 4
_COPY_POLL_INTERVAL = 1.0


def _wrap_error(backend: AzureBlobStorage, action: str, key: str, exc: AzureError) -> StorageError:
    """Translate an azure-core error into the partvault error taxonomy."""
    if isinstance(exc, ResourceNotFoundError):
        return NotFoundError(f"{backend}: {key} not found")
    if isinstance(exc, ClientAuthenticationError):
        return TransferError(f"{backend}: {action} {key} not authorized: {exc.message}", retryable=False)
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        return TransferError(f"{backend}: {action} {key} failed: {exc.message}", retryable=True)
    if isinstance(exc, HttpResponseError):
        status = exc.status_code or 0
        retryable = status == 429 or status >= 500
        return TransferError(f"{backend}: {action} {key} failed: {exc.message}", retryable=retryable)
    return TransferError(f"{backend}: {action} {key} failed: {exc}", retryable=True)


class AzureBlobStorage(BaseStorage):
    """Store parts as block blobs in an Azure storage container."""

    def __init__(
            self,
            container: str,
            root_dir: str = "/",
            account_name: str | None = None,
            account_key: str | None = None,
            endpoint_url: str | None = None,
            create_container: bool = False,
            page_size: int = 5000,
            **kwargs: int,
    ) -> None:
        super().__init__(root_dir, **kwargs)
        self.container = container
        self.endpoint_url = endpoint_url
        self.create_container = create_container
        self.page_size = page_size
        self._account_name = account_name
        self._account_key = account_key
        self.account_url: str | None = None
        self._container_client: Any = None

    def __str__(self) -> str:
        return f"AZUREBLOB{{container: {self.container!r}, dir: {self.root_dir!r}}}"

    def _open(self) -> None:
        if not self.container:
            raise ConfigError(
                "Azure container name is required (--azure-container or PARTVAULT_AZURE_CONTAINER)"
            )
        # required=True never yields None
        creds = cast(Credentials, resolve_credentials(
            self._account_name,
            self._account_key,
            identity_env=AZURE_ACCOUNT_ENV,
            secret_env=AZURE_KEY_ENV,
            provider="Azure",
        ))
        try:
            base64.b64decode(creds.secret, validate=True)
        except binascii.Error as exc:
            raise ConfigError(f"Invalid Azure account key for {creds.identity}: {exc}") from exc

        self.account_url = self.endpoint_url or f"https://{creds.identity}.blob.core.windows.net"
        service = BlobServiceClient(
            account_url=self.account_url,
            credential={"account_name": creds.identity, "account_key": creds.secret},
        )
        self._container_client = service.get_container_client(self.container)

        if self.create_container:
            try:
                self._container_client.create_container()
                log.info("azure_container_created", container=self.container)
            except ResourceExistsError:
                log.debug("azure_container_exists", container=self.container)
            except AzureError as exc:
                raise ConfigError(f"Cannot create container {self.container}: {exc}") from exc

    def _close(self) -> None:
        self._container_client.close()
        self._container_client = None

    def _blob(self, key: str) -> Any:
        return self._container_client.get_blob_client(key)

    def _blob_size(self, key: str) -> int | None:
        """Return the blob size, or None if the blob does not exist."""
        try:
            return int(self._blob(key).get_blob_properties().size)
        except ResourceNotFoundError:
            return None
        except AzureError as exc:
            raise _wrap_error(self, "stat", key, exc) from exc

    def _list_page(self, prefix: str, marker: Marker) -> Page:
        full_prefix = self.key(prefix)
        try:
            pages = self._container_client.list_blobs(
                name_starts_with=full_prefix or None,
                results_per_page=self.page_size,
            ).by_page(continuation_token=marker.token)
            page = next(pages, None)
            blobs = list(page) if page is not None else []
        except AzureError as exc:
            raise _wrap_error(self, "list", full_prefix, exc) from exc

        items = [
            Part.from_listing(
                path=strip_root(self.root_dir, blob.name),
                size=int(blob.size),
                fingerprint=(blob.etag or "").strip('"'),
            )
            for blob in blobs
            if not blob.name.endswith("/")
        ]
        token = pages.continuation_token if page is not None else None
        return Page(items=items, next_marker=Marker.after(token))

    def _upload_part(self, part: Part, key: str, reader: BinaryIO, cancel: CancelToken | None) -> None:
        existing = self._blob_size(key)
        if existing is not None:
            self._accept_existing(part, key, existing)
            return

        log.info("azure_upload_start", container=self.container, key=key, size=part.size)
        blob = self._blob(key)
        guarded = GuardedReader(reader, part.size, cancel)
        try:
            blob.upload_blob(
                guarded,
                length=part.size,
                overwrite=False,
                max_concurrency=_MAX_CONCURRENCY,
            )
        except ResourceExistsError:
            # Lost a race with another writer of the same key.
            existing = self._blob_size(key)
            if existing is None:
                raise TransferError(f"{self}: {key} reported existing but is gone") from None
            self._accept_existing(part, key, existing)
            return
        except AzureError as exc:
            raise _wrap_error(self, "upload", key, exc) from exc

        if guarded.bytes_read != part.size:
            self._discard(key)
            raise TransferError(
                f"{self}: short read uploading {key}: got {guarded.bytes_read} of {part.size} bytes"
            )
        log.info("azure_upload_complete", container=self.container, key=key, size=part.size)

    def _discard(self, key: str) -> None:
        """Best-effort removal of a blob known to be incomplete."""
        try:
            self._blob(key).delete_blob()
        except AzureError as exc:
            log.warning("azure_discard_failed", key=key, error=str(exc))

    def _download_part(self, part: Part, key: str, writer: BinaryIO, cancel: CancelToken | None) -> None:
        copied = 0
        try:
            downloader = self._blob(key).download_blob(max_concurrency=1)
            for chunk in downloader.chunks():
                check_cancel(cancel, "download")
                writer.write(chunk)
                copied += len(chunk)
        except AzureError as exc:
            raise _wrap_error(self, "download", key, exc) from exc

        if copied != part.size:
            raise TransferError(f"{self}: download of {key} truncated: got {copied} of {part.size} bytes")
        log.debug("azure_download_complete", key=key, size=copied)

    def _supports_server_side_copy(self, dst: BaseStorage) -> bool:
        return isinstance(dst, AzureBlobStorage) and dst.account_url == self.account_url

    def _server_side_copy(self, dst: BaseStorage, part: Part, cancel: CancelToken | None) -> None:
        target = cast(AzureBlobStorage, dst)
        src_key = self.key(part.path)
        dst_key = target.key(part.path)

        existing = target._blob_size(dst_key)
        if existing is not None:
            target._accept_existing(part, dst_key, existing)
            return

        src_blob = self._blob(src_key)
        dst_blob = target._blob(dst_key)
        try:
            src_blob.get_blob_properties()
            # Same-account copies are authorized by the shared key.
            copy = dst_blob.start_copy_from_url(src_blob.url)
            status = copy.get("copy_status")
            copy_id = copy.get("copy_id")
            while status == "pending":
                if cancel is not None and cancel.cancelled:
                    dst_blob.abort_copy(copy_id)
                    raise OperationCancelledError(f"copy of {src_key} cancelled")
                time.sleep(_COPY_POLL_INTERVAL)
                status = dst_blob.get_blob_properties().copy.status
        except AzureError as exc:
            raise _wrap_error(self, "copy", src_key, exc) from exc

        if status != "success":
            raise TransferError(f"{self}: copy of {src_key} to {dst} ended with status {status}")
        log.info("azure_copy_complete", source=src_key, destination=dst_key, dst=str(dst))

    def _delete_key(self, key: str) -> None:
        try:
            self._blob(key).delete_blob()
            log.debug("azure_delete_complete", container=self.container, key=key)
        except ResourceNotFoundError:
            pass
        except AzureError as exc:
            raise _wrap_error(self, "delete", key, exc) from exc

    def _has_key(self, key: str) -> bool:
        try:
            return bool(self._blob(key).exists())
        except AzureError as exc:
            raise _wrap_error(self, "stat", key, exc) from exc

    def _put_bytes(self, key: str, data: bytes) -> None:
        try:
            self._blob(key).upload_blob(data, overwrite=True)
        except AzureError as exc:
            raise _wrap_error(self, "put", key, exc) from exc

    def _get_bytes(self, key: str) -> bytes:
        try:
            return self._blob(key).download_blob().readall()
        except AzureError as exc:
            raise _wrap_error(self, "get", key, exc) from exc
