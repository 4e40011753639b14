"""Stream helpers for part transfers."""

from __future__ import annotations

import queue
import threading
from typing import BinaryIO

from partvault.core.cancel import CancelToken, check_cancel
from partvault.core.exceptions import TransferError

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024


class GuardedReader:
    """File-like reader that stops after ``limit`` bytes and honours cancellation.

    SDK upload helpers pull from this object, so a cancelled token aborts the
    SDK transfer from inside its read loop.
    """

    def __init__(self, reader: BinaryIO, limit: int, cancel: CancelToken | None = None) -> None:
        self._reader = reader
        self._remaining = limit
        self._cancel = cancel
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        check_cancel(self._cancel, "upload")
        if self._remaining <= 0:
            return b""
        want = self._remaining if size is None or size < 0 else min(size, self._remaining)
        data = self._reader.read(want)
        self._remaining -= len(data)
        self.bytes_read += len(data)
        return data


def copy_stream(
        reader: BinaryIO,
        writer: BinaryIO,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: CancelToken | None = None,
) -> int:
    """Copy ``reader`` into ``writer`` chunk by chunk; return the byte count."""
    total = 0
    while True:
        check_cancel(cancel, "transfer")
        chunk = reader.read(chunk_size)
        if not chunk:
            return total
        writer.write(chunk)
        total += len(chunk)


_EOF = object()


class BoundedPipe:
    """In-memory pipe holding at most ``max_chunks`` written chunks.

    One thread writes (a download), another reads (an upload). The writer
    blocks while the buffer is full, so a streamed copy never holds more than
    ``max_chunks`` chunks of a part in memory.
    """

    def __init__(self, max_chunks: int = 4) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=max_chunks)
        self._buffer = b""
        self._eof = False
        self._reader_closed = threading.Event()

    # writer side

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        if not data:
            return 0
        self._put(bytes(data))
        return len(data)

    def close_writer(self, error: BaseException | None = None) -> None:
        """Signal end of stream, or a failure the reader should see."""
        try:
            self._put((_EOF, error))
        except BrokenPipeError:
            pass

    def _put(self, item: object) -> None:
        while True:
            if self._reader_closed.is_set():
                raise BrokenPipeError("pipe reader is closed")
            try:
                self._queue.put(item, timeout=0.1)
                return
            except queue.Full:
                continue

    # reader side

    @property
    def reader_closed(self) -> bool:
        return self._reader_closed.is_set()

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        chunks: list[bytes] = []
        total = 0
        while size is None or size < 0 or total < size:
            if not self._buffer:
                if self._eof:
                    break
                item = self._queue.get()
                if isinstance(item, tuple) and item[0] is _EOF:
                    self._eof = True
                    if item[1] is not None:
                        raise TransferError(f"Source stream failed: {item[1]}") from item[1]
                    break
                self._buffer = item
            take = len(self._buffer) if size is None or size < 0 else min(size - total, len(self._buffer))
            chunks.append(self._buffer[:take])
            self._buffer = self._buffer[take:]
            total += take
        return b"".join(chunks)

    def close_reader(self) -> None:
        """Stop accepting data; a blocked writer gets ``BrokenPipeError``."""
        self._reader_closed.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return
