"""Abstract base class for remote part-storage backends."""

from __future__ import annotations

import abc
import enum
import threading
from collections.abc import Iterator
from typing import BinaryIO

from partvault.core.cancel import CancelToken, check_cancel
from partvault.core.exceptions import (
    ContentMismatchError,
    PartVaultError,
    ProgrammingMisuseError,
)
from partvault.core.models import Part
from partvault.core.paths import join_key, normalize_dir
from partvault.logging import get_logger
from partvault.storage.pager import Marker, Page, paginate
from partvault.storage.stream import DEFAULT_CHUNK_SIZE, BoundedPipe

log = get_logger(__name__)


class _State(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    STOPPED = "stopped"


class BaseStorage(abc.ABC):
    """Interface for part storage backends.

    A backend moves immutable parts between the backup engine and one store.
    Its lifecycle is ``init()`` once, any number of concurrent operations,
    then ``must_stop()``. Calling an operation outside that window raises
    :class:`ProgrammingMisuseError`.

    Subclasses implement the underscore hooks; the public methods enforce
    the lifecycle and the shared idempotence rules.
    """

    def __init__(
            self,
            root_dir: str = "/",
            chunk_size: int = DEFAULT_CHUNK_SIZE,
            copy_buffer_chunks: int = 4,
    ) -> None:
        self.root_dir = normalize_dir(root_dir)
        self.chunk_size = chunk_size
        self.copy_buffer_chunks = copy_buffer_chunks
        self._state = _State.UNINITIALIZED
        self._state_lock = threading.Lock()

    # ──────────────────── Lifecycle ──────────────────────

    def init(self) -> None:
        """Open the store connection.

        Raises:
            MissingCredentialsError: If credentials cannot be resolved.
            ConfigError: If the configuration is otherwise unusable.
            ProgrammingMisuseError: If called twice or after ``must_stop``.
        """
        with self._state_lock:
            if self._state is not _State.UNINITIALIZED:
                raise ProgrammingMisuseError(f"BUG: init called on {self._state.value} backend {self}")
            self._open()
            self._state = _State.READY
        log.info("storage_init", backend=str(self))

    def must_stop(self) -> None:
        """Release the store connection. The backend cannot be used afterwards."""
        with self._state_lock:
            if self._state is not _State.READY:
                raise ProgrammingMisuseError(f"BUG: must_stop called on {self._state.value} backend {self}")
            self._state = _State.STOPPED
            self._close()
        log.debug("storage_stopped", backend=str(self))

    @property
    def is_ready(self) -> bool:
        return self._state is _State.READY

    def _ensure_ready(self, operation: str) -> None:
        if self._state is not _State.READY:
            raise ProgrammingMisuseError(
                f"BUG: {operation} called on {self._state.value} backend {self}"
            )

    def __enter__(self) -> BaseStorage:
        self.init()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.is_ready:
            self.must_stop()

    def key(self, path: str) -> str:
        """Return the object key for a path relative to the root dir."""
        return join_key(self.root_dir, path)

    # ──────────────────── Operations ─────────────────────

    def list_parts(self, prefix: str = "", cancel: CancelToken | None = None) -> Iterator[Part]:
        """Lazily list every part under ``root_dir + prefix`` in store order.

        A failed page fetch raises from the iterator; parts already yielded
        remain valid.
        """
        self._ensure_ready("list_parts")

        def fetch(marker: Marker) -> Page:
            self._ensure_ready("list_parts")
            return self._list_page(prefix, marker)

        return paginate(fetch, cancel=cancel)

    def upload_part(self, part: Part, reader: BinaryIO, cancel: CancelToken | None = None) -> None:
        """Store ``part.size`` bytes from ``reader`` under the part's key.

        An existing object of the same size is accepted as already uploaded.

        Raises:
            ContentMismatchError: If the key holds an object of another size.
            TransferError: If the reader or the store fails mid-transfer.
        """
        self._ensure_ready("upload_part")
        check_cancel(cancel, "upload")
        self._upload_part(part, self.key(part.path), reader, cancel)

    def download_part(self, part: Part, writer: BinaryIO, cancel: CancelToken | None = None) -> None:
        """Write the part's full content to ``writer``.

        Raises:
            NotFoundError: If the part does not exist.
            TransferError: If the stream is interrupted or truncated.
        """
        self._ensure_ready("download_part")
        check_cancel(cancel, "download")
        self._download_part(part, self.key(part.path), writer, cancel)

    def copy_part(self, dst: BaseStorage, part: Part, cancel: CancelToken | None = None) -> None:
        """Copy ``part`` from this backend to ``dst``.

        Uses a server-side copy when both backends share a location, and a
        streamed download/upload through a bounded buffer otherwise.
        """
        self._ensure_ready("copy_part")
        dst._ensure_ready("copy_part")
        check_cancel(cancel, "copy")
        if self._supports_server_side_copy(dst):
            self._server_side_copy(dst, part, cancel)
        else:
            self._streamed_copy(dst, part, cancel)
        log.debug("copy_part_complete", src=str(self), dst=str(dst), path=part.path)

    def delete_part(self, part: Part) -> None:
        """Delete a part. Deleting an absent part succeeds."""
        self._ensure_ready("delete_part")
        self._delete_key(self.key(part.path))

    def remove_empty_dirs(self) -> None:
        """Remove empty directories left after deletions, where the store has any."""
        self._ensure_ready("remove_empty_dirs")
        self._remove_empty_dirs()

    def has_file(self, path: str) -> bool:
        """Check if a control file exists under the root dir."""
        self._ensure_ready("has_file")
        return self._has_key(self.key(path))

    def create_file(self, path: str, data: bytes) -> None:
        """Write a small control file, replacing any previous content."""
        self._ensure_ready("create_file")
        self._put_bytes(self.key(path), data)

    def read_file(self, path: str) -> bytes:
        """Read a small control file.

        Raises:
            NotFoundError: If the file does not exist.
        """
        self._ensure_ready("read_file")
        return self._get_bytes(self.key(path))

    def delete_file(self, path: str) -> None:
        """Delete a control file. Deleting an absent file succeeds."""
        self._ensure_ready("delete_file")
        self._delete_key(self.key(path))

    # ──────────────────── Shared helpers ─────────────────

    def _accept_existing(self, part: Part, key: str, existing_size: int) -> None:
        """Treat an existing object as the part if sizes match."""
        if existing_size != part.size:
            raise ContentMismatchError(
                f"{self}: {key} already exists with size {existing_size}, "
                f"refusing to replace it with {part.size} bytes"
            )
        log.debug("upload_part_exists", backend=str(self), key=key, size=part.size)

    def _supports_server_side_copy(self, dst: BaseStorage) -> bool:
        return False

    def _server_side_copy(self, dst: BaseStorage, part: Part, cancel: CancelToken | None) -> None:
        raise ProgrammingMisuseError(f"BUG: {self} has no server-side copy to {dst}")

    def _streamed_copy(self, dst: BaseStorage, part: Part, cancel: CancelToken | None) -> None:
        pipe = BoundedPipe(self.copy_buffer_chunks)
        source_errors: list[PartVaultError] = []

        def produce() -> None:
            error: PartVaultError | None = None
            try:
                self.download_part(part, pipe, cancel)
            except BrokenPipeError:
                return
            except PartVaultError as exc:
                error = exc
                if not pipe.reader_closed:
                    source_errors.append(exc)
            finally:
                pipe.close_writer(error)

        producer = threading.Thread(target=produce, name=f"copy-{part.path}", daemon=True)
        producer.start()
        try:
            dst.upload_part(part, pipe, cancel)
        except PartVaultError as exc:
            if source_errors:
                raise source_errors[0] from exc
            raise
        finally:
            pipe.close_reader()
            producer.join()

    # ──────────────────── Backend hooks ──────────────────

    def _open(self) -> None:
        """Establish the connection handle. Called once from ``init``."""

    def _close(self) -> None:
        """Drop the connection handle. Called once from ``must_stop``."""

    @abc.abstractmethod
    def _list_page(self, prefix: str, marker: Marker) -> Page:
        """Fetch one listing page starting at ``marker``."""

    @abc.abstractmethod
    def _upload_part(self, part: Part, key: str, reader: BinaryIO, cancel: CancelToken | None) -> None:
        """Upload a part, accepting an existing object of equal size."""

    @abc.abstractmethod
    def _download_part(self, part: Part, key: str, writer: BinaryIO, cancel: CancelToken | None) -> None:
        """Download a part into ``writer``."""

    @abc.abstractmethod
    def _delete_key(self, key: str) -> None:
        """Delete an object, ignoring absent keys."""

    @abc.abstractmethod
    def _has_key(self, key: str) -> bool:
        """Check if an object exists."""

    @abc.abstractmethod
    def _put_bytes(self, key: str, data: bytes) -> None:
        """Write a small object unconditionally."""

    @abc.abstractmethod
    def _get_bytes(self, key: str) -> bytes:
        """Read a small object."""

    def _remove_empty_dirs(self) -> None:
        """Object stores have no directories."""
