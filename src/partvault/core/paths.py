"""Root directory normalization for object keys."""

from __future__ import annotations


def normalize_dir(path: str) -> str:
    """Canonicalize a backend root directory.

    Leading separators are stripped and exactly one trailing separator is
    kept, so ``"//backups"`` and ``"backups/"`` both become ``"backups/"``.
    An empty result is the root marker ``"/"``.
    """
    path = path.replace("\\", "/").lstrip("/")
    if not path:
        return "/"
    return path.rstrip("/") + "/"


def join_key(root_dir: str, path: str) -> str:
    """Build an object key from a normalized root dir and a relative path.

    ``path`` is appended verbatim; caller input is normalized by :class:`Part`.
    """
    if root_dir == "/":
        return path
    return f"{root_dir}{path}"


def strip_root(root_dir: str, key: str) -> str:
    """Return ``key`` relative to ``root_dir`` (inverse of :func:`join_key`)."""
    if root_dir != "/" and key.startswith(root_dir):
        return key[len(root_dir):]
    return key
