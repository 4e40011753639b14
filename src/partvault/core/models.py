"""Pydantic models for partvault configuration and part metadata."""

from __future__ import annotations

import enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from partvault.core.paths import join_key


# ──────────────────────── Enums ──────────────────────────


class StorageType(enum.StrEnum):
    """Supported storage backends."""

    LOCAL = "local"
    MEMORY = "memory"
    S3 = "s3"
    AZURE = "azure"


class LogFormat(enum.StrEnum):
    """Structured log output format."""

    CONSOLE = "console"
    JSON = "json"


# ──────────────────── Part ───────────────────────────────


class Part(BaseModel):
    """One immutable backup part stored under the backend root.

    ``path`` is relative to the backend root and forward-slash separated.
    ``fingerprint`` is an opaque content tag; it is empty when the producer
    does not know it yet.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    size: int = Field(ge=0)
    fingerprint: str = ""

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        v = v.replace("\\", "/")
        if not v or v.startswith("/") or v.endswith("/"):
            msg = f"Part path must be a relative file path, got {v!r}"
            raise ValueError(msg)
        if any(segment in ("", ".", "..") for segment in v.split("/")):
            msg = f"Part path must not contain empty, '.' or '..' segments: {v!r}"
            raise ValueError(msg)
        return v

    @classmethod
    def from_listing(cls, path: str, size: int, fingerprint: str = "") -> Part:
        """Build a Part for a key reported by a store listing.

        Store keys may hold empty or dot segments and backslashes that
        ``validate_path`` rejects or rewrites, so the key is kept verbatim.
        """
        return cls.model_construct(path=path, size=size, fingerprint=fingerprint)

    def remote_key(self, root_dir: str) -> str:
        """Return the object key for this part under a normalized root dir."""
        return join_key(root_dir, self.path)

    def __str__(self) -> str:
        return f"part{{path: {self.path!r}, size: {self.size}}}"


# ──────────────────── Config Models ──────────────────────


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    type: StorageType = StorageType.LOCAL
    root_dir: str = "/"

    # Local settings
    local_path: Path = Path("./parts")

    # Memory settings
    memory_page_size: int = Field(default=1000, ge=1)

    # S3 settings
    s3_bucket: str | None = None
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: SecretStr | None = None
    s3_page_size: int = Field(default=1000, ge=1, le=1000)

    # Azure settings
    azure_container: str | None = None
    azure_account_name: str | None = None
    azure_account_key: SecretStr | None = None
    azure_endpoint_url: str | None = None
    azure_create_container: bool = False
    azure_page_size: int = Field(default=5000, ge=1, le=5000)

    # Streamed copies between different backends
    chunk_size: int = Field(default=4 * 1024 * 1024, ge=1)
    copy_buffer_chunks: int = Field(default=4, ge=1)


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    log_file: Path | None = None
    format: LogFormat = LogFormat.CONSOLE


class AppConfig(BaseModel):
    """Top-level application configuration."""

    storage: StorageConfig = StorageConfig()
    logging: LoggingConfig = LoggingConfig()


# ──────────────────── Helpers ────────────────────────────


def human_size(nbytes: int) -> str:
    """Convert bytes to human-readable string."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(nbytes) < 1024:
            return f"{nbytes:.1f} {unit}"
        nbytes /= 1024  # type: ignore[assignment]
    return f"{nbytes:.1f} PB"
