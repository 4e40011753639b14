"""Paged listing support shared by all backends.

Stores return their listings in pages linked by an opaque continuation
token. :func:`paginate` turns those pages into one lazy sequence of parts.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from partvault.core.cancel import CancelToken, check_cancel
from partvault.core.exceptions import ProgrammingMisuseError
from partvault.core.models import Part


@dataclass(frozen=True)
class Marker:
    """Listing cursor: an opaque continuation token plus a ``done`` flag."""

    token: str | None = None
    done: bool = False

    @classmethod
    def start(cls) -> Marker:
        return cls()

    @classmethod
    def after(cls, token: str | None) -> Marker:
        """Marker for the page following one that returned ``token``.

        A missing or empty token means the store has no further pages.
        """
        if not token:
            return cls(done=True)
        return cls(token=token)


@dataclass
class Page:
    """One page of a listing and the marker of the page after it."""

    items: list[Part] = field(default_factory=list)
    next_marker: Marker = field(default_factory=lambda: Marker(done=True))


FetchPage = Callable[[Marker], Page]


def paginate(
        fetch_page: FetchPage,
        marker: Marker | None = None,
        cancel: CancelToken | None = None,
) -> Iterator[Part]:
    """Yield every part from ``fetch_page`` until the marker is exhausted.

    Items are yielded in the store's order, without reordering or dedup.
    Errors from ``fetch_page`` propagate and end the iteration; items
    already yielded remain valid.
    """
    marker = marker or Marker.start()
    while not marker.done:
        check_cancel(cancel, "listing")
        page = fetch_page(marker)
        yield from page.items
        if not page.next_marker.done and page.next_marker == marker:
            raise ProgrammingMisuseError(
                f"Listing did not advance past marker {marker.token!r}"
            )
        marker = page.next_marker
