"""Local filesystem storage backend."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import BinaryIO

from partvault.core.cancel import CancelToken
from partvault.core.exceptions import ConfigError, NotFoundError, StorageError, TransferError
from partvault.core.models import Part
from partvault.logging import get_logger
from partvault.storage.base import BaseStorage
from partvault.storage.pager import Marker, Page
from partvault.storage.stream import GuardedReader, copy_stream

log = get_logger(__name__)

_TMP_PREFIX = ".partvault-tmp-"


class LocalStorage(BaseStorage):
    """Store parts as files below ``base_path / root_dir``.

    Uploads are written to a temporary file in the destination directory and
    hard-linked into place, so a finished part is never visible half-written
    and an existing part is never replaced.
    """

    def __init__(self, base_path: Path, root_dir: str = "/", **kwargs: int) -> None:
        super().__init__(root_dir, **kwargs)
        self.base_path = base_path.expanduser().resolve()

    def __str__(self) -> str:
        return f"LOCAL{{path: {str(self.base_path)!r}, dir: {self.root_dir!r}}}"

    @property
    def root_path(self) -> Path:
        if self.root_dir == "/":
            return self.base_path
        return self.base_path / self.root_dir

    def _full_path(self, key: str) -> Path:
        return self.base_path / key

    def _open(self) -> None:
        try:
            self.root_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Cannot create storage directory {self.root_path}: {exc}") from exc

    def _list_page(self, prefix: str, marker: Marker) -> Page:
        """List every file in one page; a directory walk has no continuation token."""
        root = self.root_path
        items: list[Part] = []
        try:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames.sort()
                for name in sorted(filenames):
                    if name.startswith(_TMP_PREFIX):
                        continue
                    file_path = Path(dirpath) / name
                    relative = file_path.relative_to(root).as_posix()
                    if not relative.startswith(prefix):
                        continue
                    stat = file_path.stat()
                    items.append(Part.from_listing(
                        path=relative,
                        size=stat.st_size,
                        fingerprint=f"{stat.st_size:x}-{stat.st_mtime_ns:x}",
                    ))
        except OSError as exc:
            raise TransferError(f"{self}: failed to list {root}: {exc}") from exc
        items.sort(key=lambda p: p.path)
        return Page(items=items)

    def _upload_part(self, part: Part, key: str, reader: BinaryIO, cancel: CancelToken | None) -> None:
        dest = self._full_path(key)
        if dest.exists():
            self._accept_existing(part, key, dest.stat().st_size)
            return

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=_TMP_PREFIX, dir=dest.parent)
        except OSError as exc:
            raise TransferError(f"{self}: cannot prepare {dest}: {exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            guarded = GuardedReader(reader, part.size, cancel)
            with os.fdopen(fd, "wb") as f:
                copy_stream(guarded, f, self.chunk_size, cancel)
                f.flush()
                os.fsync(f.fileno())
            if guarded.bytes_read != part.size:
                raise TransferError(
                    f"{self}: short read uploading {key}: got {guarded.bytes_read} of {part.size} bytes"
                )
            try:
                os.link(tmp_path, dest)
            except FileExistsError:
                self._accept_existing(part, key, dest.stat().st_size)
                return
        except OSError as exc:
            raise TransferError(f"{self}: failed to write {dest}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

        log.debug("local_upload_complete", destination=str(dest), size=part.size)

    def _download_part(self, part: Part, key: str, writer: BinaryIO, cancel: CancelToken | None) -> None:
        source = self._full_path(key)
        try:
            with open(source, "rb") as f:
                copied = copy_stream(f, writer, self.chunk_size, cancel)
        except FileNotFoundError as exc:
            raise NotFoundError(f"{self}: part not found: {source}") from exc
        except OSError as exc:
            raise TransferError(f"{self}: failed to read {source}: {exc}") from exc

        if copied != part.size:
            raise TransferError(
                f"{self}: read {copied} bytes from {source}, expected {part.size}", retryable=False
            )

    def _supports_server_side_copy(self, dst: BaseStorage) -> bool:
        return isinstance(dst, LocalStorage)

    def _server_side_copy(self, dst: BaseStorage, part: Part, cancel: CancelToken | None) -> None:
        source = self._full_path(self.key(part.path))
        try:
            with open(source, "rb") as f:
                dst.upload_part(part, f, cancel)
        except FileNotFoundError as exc:
            raise NotFoundError(f"{self}: part not found: {source}") from exc

    def _delete_key(self, key: str) -> None:
        target = self._full_path(key)
        try:
            target.unlink()
            log.debug("local_delete_complete", path=str(target))
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StorageError(f"{self}: failed to delete {target}: {exc}") from exc

    def _remove_empty_dirs(self) -> None:
        root = self.root_path
        removed = 0
        try:
            for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
                path = Path(dirpath)
                if path == root:
                    continue
                if not any(path.iterdir()):
                    path.rmdir()
                    removed += 1
        except OSError as exc:
            raise StorageError(f"{self}: failed to remove empty dirs under {root}: {exc}") from exc
        if removed:
            log.info("local_empty_dirs_removed", root=str(root), count=removed)

    def _has_key(self, key: str) -> bool:
        return self._full_path(key).is_file()

    def _put_bytes(self, key: str, data: bytes) -> None:
        dest = self._full_path(key)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=_TMP_PREFIX, dir=dest.parent)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, dest)
        except OSError as exc:
            raise StorageError(f"{self}: failed to write {dest}: {exc}") from exc

    def _get_bytes(self, key: str) -> bytes:
        path = self._full_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"{self}: file not found: {path}") from exc
        except OSError as exc:
            raise StorageError(f"{self}: failed to read {path}: {exc}") from exc
