"""Configuration loading and management for partvault.

Configuration sources (highest to lowest priority):
  1. CLI arguments (passed directly)
  2. Environment variables (PARTVAULT_* prefix)
  3. Config file (~/.config/partvault/config.toml)
  4. Defaults

Provider credentials have one more fallback level, the provider's own
environment variables, applied when a backend is initialized
(see :mod:`partvault.core.credentials`).
"""

from __future__ import annotations

import contextlib
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

import tomli_w
from pydantic import ValidationError

from partvault.core.exceptions import ConfigError
from partvault.core.models import (
    AppConfig,
    LogFormat,
    LoggingConfig,
    StorageConfig,
    StorageType,
)

# ──────────────────── Paths ──────────────────────────────

_APP_NAME = "partvault"


def _get_config_dir() -> Path:
    """Return the platform-appropriate config directory."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / _APP_NAME


CONFIG_DIR = _get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.toml"

_SECRET_FIELDS = ("s3_secret_access_key", "azure_account_key")

# ──────────────────── Environment Loading ────────────────

_ENV_PREFIX = "PARTVAULT_"


def _env(key: str, default: str | None = None) -> str | None:
    """Read an environment variable with the PARTVAULT_ prefix."""
    return os.environ.get(f"{_ENV_PREFIX}{key}", default)


# env suffix -> StorageConfig field
_STORAGE_ENV_FIELDS = {
    "ROOT_DIR": "root_dir",
    "LOCAL_PATH": "local_path",
    "MEMORY_PAGE_SIZE": "memory_page_size",
    "S3_BUCKET": "s3_bucket",
    "S3_REGION": "s3_region",
    "S3_ENDPOINT_URL": "s3_endpoint_url",
    "S3_ACCESS_KEY_ID": "s3_access_key_id",
    "S3_SECRET_ACCESS_KEY": "s3_secret_access_key",
    "S3_PAGE_SIZE": "s3_page_size",
    "AZURE_CONTAINER": "azure_container",
    "AZURE_ACCOUNT_NAME": "azure_account_name",
    "AZURE_ACCOUNT_KEY": "azure_account_key",
    "AZURE_ENDPOINT_URL": "azure_endpoint_url",
    "AZURE_CREATE_CONTAINER": "azure_create_container",
    "AZURE_PAGE_SIZE": "azure_page_size",
    "CHUNK_SIZE": "chunk_size",
    "COPY_BUFFER_CHUNKS": "copy_buffer_chunks",
}


def _load_storage_from_env() -> dict[str, Any]:
    """Load storage config overrides from environment."""
    overrides: dict[str, Any] = {}
    if st := _env("STORAGE_TYPE"):
        try:
            overrides["type"] = StorageType(st.lower())
        except ValueError as exc:
            raise ConfigError(f"Invalid storage type in environment: {st}") from exc
    for suffix, field in _STORAGE_ENV_FIELDS.items():
        if value := _env(suffix):
            overrides[field] = value
    return overrides


def _load_logging_from_env() -> dict[str, Any]:
    """Load logging config overrides from environment."""
    overrides: dict[str, Any] = {}
    if ll := _env("LOG_LEVEL"):
        overrides["level"] = ll.upper()
    if lf := _env("LOG_FILE"):
        overrides["log_file"] = Path(lf)
    if fmt := _env("LOG_FORMAT"):
        overrides["format"] = LogFormat(fmt.lower())
    return overrides


# ──────────────────── TOML File Loading ──────────────────


def load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Load and return the raw TOML config dict. Returns empty dict if file missing."""
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc


def config_to_toml_dict(config: AppConfig, *, reveal_secrets: bool = False) -> dict[str, Any]:
    """Convert an AppConfig to a TOML-serialisable dict.

    Secrets are written as ``"**********"`` unless ``reveal_secrets`` is set.
    """
    storage_dict = config.storage.model_dump(exclude_none=True)
    storage_dict["type"] = config.storage.type.value
    storage_dict["local_path"] = str(config.storage.local_path)
    for name in _SECRET_FIELDS:
        secret = getattr(config.storage, name)
        if secret is not None:
            storage_dict[name] = secret.get_secret_value() if reveal_secrets else str(secret)

    log_dict = config.logging.model_dump(exclude_none=True)
    log_dict["format"] = config.logging.format.value
    if config.logging.log_file:
        log_dict["log_file"] = str(config.logging.log_file)

    return {"storage": storage_dict, "logging": log_dict}


def dump_config(config: AppConfig) -> str:
    """Render a config as TOML text with secrets masked."""
    return tomli_w.dumps(config_to_toml_dict(config))


def save_config_file(config: AppConfig, path: Path | None = None) -> Path:
    """Save AppConfig to a TOML file."""
    config_path = path or CONFIG_FILE
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config_to_toml_dict(config, reveal_secrets=True)
    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)

    # Restrict file permissions (Unix only)
    with contextlib.suppress(OSError):
        config_path.chmod(0o600)

    return config_path


# ──────────────────── Main Loader ────────────────────────


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the full application config (file + env overrides)."""
    raw = load_config_file(config_path)

    storage_data = raw.get("storage", {})
    storage_data.update(_load_storage_from_env())

    log_data = raw.get("logging", {})
    log_data.update(_load_logging_from_env())

    try:
        storage = StorageConfig(**storage_data) if storage_data else StorageConfig()
        logging_config = LoggingConfig(**log_data) if log_data else LoggingConfig()
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    return AppConfig(storage=storage, logging=logging_config)
