"""Cancellation tokens for long-running transfers."""

from __future__ import annotations

import threading
import time

from partvault.core.exceptions import OperationCancelledError


class CancelToken:
    """Caller-owned cancellation signal with an optional deadline.

    A token may be shared by any number of workers. Transfer loops call
    :meth:`check` between chunks, so a cancelled transfer stops after at most
    one more chunk.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def check(self, what: str = "operation") -> None:
        """Raise :class:`OperationCancelledError` if cancelled or past the deadline."""
        if self._event.is_set():
            raise OperationCancelledError(f"{what} cancelled")
        if self.expired:
            raise OperationCancelledError(f"{what} deadline exceeded")


def check_cancel(cancel: CancelToken | None, what: str = "operation") -> None:
    if cancel is not None:
        cancel.check(what)
