"""In-process storage backend.

Objects live in a dict shared by every :class:`MemoryStorage` built on the
same :class:`MemoryStore`. Listing pages are cut at ``page_size`` keys, which
makes this backend useful for exercising paged listings and for dry runs.
"""

from __future__ import annotations

import bisect
import hashlib
import io
import threading
from typing import BinaryIO

from partvault.core.cancel import CancelToken, check_cancel
from partvault.core.exceptions import NotFoundError, TransferError
from partvault.core.models import Part
from partvault.core.paths import strip_root
from partvault.logging import get_logger
from partvault.storage.base import BaseStorage
from partvault.storage.pager import Marker, Page
from partvault.storage.stream import GuardedReader

log = get_logger(__name__)


class MemoryStore:
    """Thread-safe key -> bytes mapping with sorted key iteration."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._objects.get(key)

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self._objects[key] = data

    def put_if_absent(self, key: str, data: bytes) -> bytes | None:
        """Store ``data`` unless ``key`` exists; return the existing value if any."""
        with self._lock:
            existing = self._objects.get(key)
            if existing is None:
                self._objects[key] = data
            return existing

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def keys_after(self, prefix: str, after: str | None, limit: int) -> tuple[list[str], bool]:
        """Return up to ``limit`` sorted keys with ``prefix`` after ``after``, and whether more remain."""
        with self._lock:
            keys = sorted(k for k in self._objects if k.startswith(prefix))
        start = bisect.bisect_right(keys, after) if after is not None else 0
        selected = keys[start:start + limit]
        return selected, start + limit < len(keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


class MemoryStorage(BaseStorage):
    """Store parts in process memory."""

    def __init__(
            self,
            store: MemoryStore | None = None,
            root_dir: str = "/",
            page_size: int = 1000,
            **kwargs: int,
    ) -> None:
        super().__init__(root_dir, **kwargs)
        self.store = store if store is not None else MemoryStore()
        self.page_size = page_size

    def __str__(self) -> str:
        return f"MEMORY{{id: {id(self.store):#x}, dir: {self.root_dir!r}}}"

    def _list_page(self, prefix: str, marker: Marker) -> Page:
        keys, more = self.store.keys_after(self.key(prefix), marker.token, self.page_size)
        items = []
        for key in keys:
            data = self.store.get(key)
            if data is None:
                continue
            items.append(Part.from_listing(
                path=strip_root(self.root_dir, key),
                size=len(data),
                fingerprint=hashlib.md5(data).hexdigest(),
            ))
        return Page(items=items, next_marker=Marker.after(keys[-1] if more else None))

    def _upload_part(self, part: Part, key: str, reader: BinaryIO, cancel: CancelToken | None) -> None:
        existing = self.store.get(key)
        if existing is not None:
            self._accept_existing(part, key, len(existing))
            return

        guarded = GuardedReader(reader, part.size, cancel)
        buf = bytearray()
        while chunk := guarded.read(self.chunk_size):
            buf += chunk
        if guarded.bytes_read != part.size:
            raise TransferError(
                f"{self}: short read uploading {key}: got {guarded.bytes_read} of {part.size} bytes"
            )

        existing = self.store.put_if_absent(key, bytes(buf))
        if existing is not None:
            self._accept_existing(part, key, len(existing))
            return
        log.debug("memory_upload_complete", key=key, size=part.size)

    def _download_part(self, part: Part, key: str, writer: BinaryIO, cancel: CancelToken | None) -> None:
        data = self.store.get(key)
        if data is None:
            raise NotFoundError(f"{self}: part not found: {key}")
        if len(data) != part.size:
            raise TransferError(
                f"{self}: {key} holds {len(data)} bytes, expected {part.size}", retryable=False
            )
        view = memoryview(data)
        for offset in range(0, len(data), self.chunk_size):
            check_cancel(cancel, "download")
            writer.write(view[offset:offset + self.chunk_size])

    def _supports_server_side_copy(self, dst: BaseStorage) -> bool:
        return isinstance(dst, MemoryStorage)

    def _server_side_copy(self, dst: BaseStorage, part: Part, cancel: CancelToken | None) -> None:
        data = self.store.get(self.key(part.path))
        if data is None:
            raise NotFoundError(f"{self}: part not found: {self.key(part.path)}")
        check_cancel(cancel, "copy")
        dst.upload_part(part, io.BytesIO(data), cancel)

    def _delete_key(self, key: str) -> None:
        self.store.delete(key)

    def _has_key(self, key: str) -> bool:
        return self.store.get(key) is not None

    def _put_bytes(self, key: str, data: bytes) -> None:
        self.store.put(key, bytes(data))

    def _get_bytes(self, key: str) -> bytes:
        data = self.store.get(key)
        if data is None:
            raise NotFoundError(f"{self}: file not found: {key}")
        return data
