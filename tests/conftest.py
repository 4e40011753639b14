"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import os
from collections.abc import Callable, Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from botocore.exceptions import ClientError

from partvault.core.models import StorageConfig, StorageType
from partvault.storage.azure import AzureBlobStorage
from partvault.storage.base import BaseStorage
from partvault.storage.local import LocalStorage
from partvault.storage.memory import MemoryStorage, MemoryStore
from partvault.storage.s3 import S3Storage

CHUNK_SIZE = 64 * 1024
ACCOUNT_KEY = "c2VjcmV0LWFjY291bnQta2V5"  # base64("secret-account-key")
BACKEND_KINDS = ["memory", "local", "s3", "azure"]

_CREDENTIAL_ENV = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AZURE_STORAGE_ACCOUNT",
    "AZURE_STORAGE_ACCESS_KEY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep credentials and PARTVAULT_* settings of the host out of tests."""
    for name in _CREDENTIAL_ENV:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("PARTVAULT_"):
            monkeypatch.delenv(name, raising=False)


# ──────────────────── Fake S3 ────────────────────────────


def _client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self.closed = False

    def iter_chunks(self, chunk_size: int) -> Iterator[bytes]:
        for offset in range(0, len(self._data), chunk_size):
            yield self._data[offset:offset + chunk_size]

    def read(self) -> bytes:
        return self._data

    def close(self) -> None:
        self.closed = True


class FakeS3Client:
    """Dict-backed stand-in for a boto3 S3 client."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.copies: list[tuple[str, str]] = []
        self.list_calls = 0
        self.fail_list_on_call: int | None = None
        self.closed = False

    def head_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if (Bucket, Key) not in self.objects:
            raise _client_error("404", 404, "HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def list_objects_v2(
            self, Bucket: str, Prefix: str, MaxKeys: int, ContinuationToken: str | None = None,
    ) -> dict[str, Any]:
        self.list_calls += 1
        if self.fail_list_on_call == self.list_calls:
            raise _client_error("SlowDown", 503, "ListObjectsV2")
        keys = sorted(k for b, k in self.objects if b == Bucket and k.startswith(Prefix))
        start = int(ContinuationToken) if ContinuationToken else 0
        selected = keys[start:start + MaxKeys]
        resp: dict[str, Any] = {"IsTruncated": start + MaxKeys < len(keys), "KeyCount": len(selected)}
        if selected:
            resp["Contents"] = [
                {
                    "Key": k,
                    "Size": len(self.objects[(Bucket, k)]),
                    "ETag": f'"{hashlib.md5(self.objects[(Bucket, k)]).hexdigest()}"',
                }
                for k in selected
            ]
        if resp["IsTruncated"]:
            resp["NextContinuationToken"] = str(start + MaxKeys)
        return resp

    def upload_fileobj(self, Fileobj: Any, Bucket: str, Key: str, Config: Any = None, Callback: Any = None) -> None:
        buf = bytearray()
        while chunk := Fileobj.read(8192):
            buf += chunk
            if Callback:
                Callback(len(chunk))
        self.objects[(Bucket, Key)] = bytes(buf)

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if (Bucket, Key) not in self.objects:
            raise _client_error("NoSuchKey", 404, "GetObject")
        return {"Body": FakeBody(self.objects[(Bucket, Key)])}

    def copy(self, CopySource: dict[str, str], Bucket: str, Key: str, Config: Any = None) -> None:
        src = (CopySource["Bucket"], CopySource["Key"])
        if src not in self.objects:
            raise _client_error("404", 404, "HeadObject")
        self.objects[(Bucket, Key)] = self.objects[src]
        self.copies.append((CopySource["Key"], Key))

    def delete_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.objects.pop((Bucket, Key), None)
        return {}

    def put_object(self, Bucket: str, Key: str, Body: bytes) -> dict[str, Any]:
        self.objects[(Bucket, Key)] = bytes(Body)
        return {}

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def s3_client(monkeypatch: pytest.MonkeyPatch) -> FakeS3Client:
    """Patch boto3 so every S3Storage talks to one in-memory fake."""
    client = FakeS3Client()
    session = MagicMock()
    session.client.return_value = client
    session_cls = MagicMock(return_value=session)
    monkeypatch.setattr("partvault.storage.s3.boto3.Session", session_cls)
    client.session_cls = session_cls  # type: ignore[attr-defined]
    return client


# ──────────────────── Fake Azure ─────────────────────────


class FakeAzureAccount:
    """Blob data shared by every fake client created during a test."""

    def __init__(self) -> None:
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.containers: set[str] = set()
        self.credentials: list[dict[str, str]] = []
        self.copies: list[tuple[str, str]] = []


class FakeDownloader:
    def __init__(self, data: bytes, chunk_size: int = 8192) -> None:
        self._data = data
        self._chunk_size = chunk_size

    def chunks(self) -> Iterator[bytes]:
        for offset in range(0, len(self._data), self._chunk_size):
            yield self._data[offset:offset + self._chunk_size]

    def readall(self) -> bytes:
        return self._data


class FakeBlobClient:
    def __init__(self, account: FakeAzureAccount, account_url: str, container: str, name: str) -> None:
        self._account = account
        self._container = container
        self.name = name
        self.url = f"{account_url}/{container}/{name}"

    @property
    def _key(self) -> tuple[str, str]:
        return (self._container, self.name)

    def get_blob_properties(self) -> SimpleNamespace:
        if self._key not in self._account.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        return SimpleNamespace(
            size=len(self._account.blobs[self._key]),
            copy=SimpleNamespace(status="success"),
        )

    def upload_blob(self, data: Any, length: int | None = None, overwrite: bool = False, **kwargs: Any) -> None:
        if isinstance(data, bytes):
            payload = data
        else:
            buf = bytearray()
            while chunk := data.read(8192):
                buf += chunk
            payload = bytes(buf)
        if not overwrite and self._key in self._account.blobs:
            raise ResourceExistsError("The specified blob already exists.")
        self._account.blobs[self._key] = payload

    def download_blob(self, **kwargs: Any) -> FakeDownloader:
        if self._key not in self._account.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        return FakeDownloader(self._account.blobs[self._key])

    def delete_blob(self) -> None:
        if self._key not in self._account.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        del self._account.blobs[self._key]

    def exists(self) -> bool:
        return self._key in self._account.blobs

    def start_copy_from_url(self, source_url: str) -> dict[str, str]:
        container, _, name = source_url.split("/", 3)[3].partition("/")
        source = (container, name)
        if source not in self._account.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        self._account.blobs[self._key] = self._account.blobs[source]
        self._account.copies.append((name, self.name))
        return {"copy_status": "success", "copy_id": "copy-1"}

    def abort_copy(self, copy_id: str) -> None:
        pass


class FakePageIterator:
    def __init__(self, blobs: list[SimpleNamespace], page_size: int, token: str | None) -> None:
        self._blobs = blobs
        self._page_size = page_size
        self._start = int(token) if token else 0
        self.continuation_token: str | None = token

    def __iter__(self) -> FakePageIterator:
        return self

    def __next__(self) -> Iterator[SimpleNamespace]:
        if self._start >= len(self._blobs) and self._start > 0:
            raise StopIteration
        page = self._blobs[self._start:self._start + self._page_size]
        self._start += self._page_size
        self.continuation_token = str(self._start) if self._start < len(self._blobs) else None
        return iter(page)


class FakeItemPaged:
    def __init__(self, blobs: list[SimpleNamespace], page_size: int) -> None:
        self._blobs = blobs
        self._page_size = page_size

    def by_page(self, continuation_token: str | None = None) -> FakePageIterator:
        return FakePageIterator(self._blobs, self._page_size, continuation_token)


class FakeContainerClient:
    def __init__(self, account: FakeAzureAccount, account_url: str, name: str) -> None:
        self._account = account
        self._account_url = account_url
        self.name = name
        self.closed = False

    def create_container(self) -> None:
        if self.name in self._account.containers:
            raise ResourceExistsError("The specified container already exists.")
        self._account.containers.add(self.name)

    def get_blob_client(self, blob: str) -> FakeBlobClient:
        return FakeBlobClient(self._account, self._account_url, self.name, blob)

    def list_blobs(self, name_starts_with: str | None = None, results_per_page: int = 5000) -> FakeItemPaged:
        prefix = name_starts_with or ""
        names = sorted(n for c, n in self._account.blobs if c == self.name and n.startswith(prefix))
        blobs = [
            SimpleNamespace(
                name=n,
                size=len(self._account.blobs[(self.name, n)]),
                etag=f'"0x{hashlib.md5(self._account.blobs[(self.name, n)]).hexdigest()[:16].upper()}"',
            )
            for n in names
        ]
        return FakeItemPaged(blobs, results_per_page)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def azure_account(monkeypatch: pytest.MonkeyPatch) -> FakeAzureAccount:
    """Patch BlobServiceClient so every AzureBlobStorage talks to one fake account."""
    account = FakeAzureAccount()

    def service_factory(account_url: str, credential: dict[str, str]) -> SimpleNamespace:
        account.credentials.append(credential)
        return SimpleNamespace(
            get_container_client=lambda name: FakeContainerClient(account, account_url, name),
        )

    monkeypatch.setattr("partvault.storage.azure.BlobServiceClient", service_factory)
    return account


# ──────────────────── Backends ───────────────────────────


@pytest.fixture()
def make_backend(
        tmp_path: Path,
        s3_client: FakeS3Client,
        azure_account: FakeAzureAccount,
) -> Iterator[Callable[..., BaseStorage]]:
    """Return a factory building initialized backends of any kind."""
    created: list[BaseStorage] = []
    memory_stores: dict[str, MemoryStore] = {}

    def factory(
            kind: str,
            root_dir: str = "backups/",
            page_size: int = 1000,
            location: str = "main",
    ) -> BaseStorage:
        backend: BaseStorage
        if kind == "memory":
            backend = MemoryStorage(
                store=memory_stores.setdefault(location, MemoryStore()),
                root_dir=root_dir,
                page_size=page_size,
                chunk_size=CHUNK_SIZE,
            )
        elif kind == "local":
            backend = LocalStorage(tmp_path / location, root_dir=root_dir, chunk_size=CHUNK_SIZE)
        elif kind == "s3":
            backend = S3Storage(
                bucket=location,
                root_dir=root_dir,
                access_key_id="AKIDEXAMPLE",
                secret_access_key="wJalrXUtnFEMI",
                page_size=page_size,
                chunk_size=CHUNK_SIZE,
            )
        elif kind == "azure":
            backend = AzureBlobStorage(
                container=location,
                root_dir=root_dir,
                account_name="devaccount",
                account_key=ACCOUNT_KEY,
                page_size=page_size,
                chunk_size=CHUNK_SIZE,
            )
        else:
            raise ValueError(kind)
        backend.init()
        created.append(backend)
        return backend

    yield factory

    for backend in created:
        if backend.is_ready:
            backend.must_stop()


@pytest.fixture(params=BACKEND_KINDS)
def backend(request: pytest.FixtureRequest, make_backend: Callable[..., BaseStorage]) -> BaseStorage:
    """An initialized backend of each kind."""
    return make_backend(request.param)


@pytest.fixture()
def local_storage_config(tmp_path: Path) -> StorageConfig:
    """Return a StorageConfig for local storage in a temp directory."""
    return StorageConfig(
        type=StorageType.LOCAL,
        local_path=tmp_path / "parts",
        root_dir="backups",
    )
