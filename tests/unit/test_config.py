"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from partvault.core.config import dump_config, load_config, load_config_file, save_config_file
from partvault.core.exceptions import ConfigError
from partvault.core.models import AppConfig, LogFormat, StorageConfig, StorageType


class TestLoadConfigFile:
    def test_missing_file(self, tmp_path: Path) -> None:
        result = load_config_file(tmp_path / "nonexistent.toml")
        assert result == {}

    def test_valid_toml(self, tmp_path: Path) -> None:
        config_path = tmp_path / "config.toml"
        config_path.write_text("""
[storage]
type = "azure"
root_dir = "/vm-backups"
azure_container = "backups"

[logging]
level = "DEBUG"
""")
        result = load_config_file(config_path)
        assert result["storage"]["type"] == "azure"
        assert result["storage"]["azure_container"] == "backups"
        assert result["logging"]["level"] == "DEBUG"

    def test_invalid_toml(self, tmp_path: Path) -> None:
        config_path = tmp_path / "bad.toml"
        config_path.write_text("this is not valid [[[toml")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config_file(config_path)


class TestSaveConfigFile:
    def test_save_and_reload(self, tmp_path: Path) -> None:
        config = AppConfig(
            storage=StorageConfig(
                type=StorageType.S3,
                root_dir="backups/",
                s3_bucket="my-bucket",
                s3_secret_access_key="s3cr3t",
            ),
        )
        saved = save_config_file(config, tmp_path / "config.toml")
        assert saved.exists()

        raw = load_config_file(saved)
        assert raw["storage"]["type"] == "s3"
        assert raw["storage"]["s3_bucket"] == "my-bucket"
        assert raw["storage"]["s3_secret_access_key"] == "s3cr3t"

        reloaded = load_config(saved)
        assert reloaded.storage.s3_bucket == "my-bucket"

    def test_file_permissions(self, tmp_path: Path) -> None:
        saved = save_config_file(AppConfig(), tmp_path / "config.toml")
        mode = oct(saved.stat().st_mode)[-3:]
        assert mode == "600"

    def test_dump_masks_secrets(self) -> None:
        config = AppConfig(storage=StorageConfig(azure_account_key="hunter2"))
        text = dump_config(config)
        assert "hunter2" not in text
        assert "azure_account_key" in text


class TestLoadConfig:
    def test_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "nonexistent.toml")
        assert config.storage.type == StorageType.LOCAL
        assert config.storage.root_dir == "/"
        assert config.logging.format == LogFormat.CONSOLE

    def test_env_override_storage(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARTVAULT_STORAGE_TYPE", "s3")
        monkeypatch.setenv("PARTVAULT_S3_BUCKET", "my-bucket")
        monkeypatch.setenv("PARTVAULT_S3_PAGE_SIZE", "50")
        monkeypatch.setenv("PARTVAULT_ROOT_DIR", "vm/")

        config = load_config(tmp_path / "nonexistent.toml")
        assert config.storage.type == StorageType.S3
        assert config.storage.s3_bucket == "my-bucket"
        assert config.storage.s3_page_size == 50
        assert config.storage.root_dir == "vm/"

    def test_env_beats_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_path = tmp_path / "config.toml"
        config_path.write_text('[storage]\ntype = "azure"\nazure_container = "from-file"\n')
        monkeypatch.setenv("PARTVAULT_AZURE_CONTAINER", "from-env")

        config = load_config(config_path)
        assert config.storage.type == StorageType.AZURE
        assert config.storage.azure_container == "from-env"

    def test_env_override_logging(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARTVAULT_LOG_LEVEL", "debug")
        monkeypatch.setenv("PARTVAULT_LOG_FORMAT", "json")

        config = load_config(tmp_path / "nonexistent.toml")
        assert config.logging.level == "DEBUG"
        assert config.logging.format == LogFormat.JSON

    def test_invalid_storage_type(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARTVAULT_STORAGE_TYPE", "ftp")
        with pytest.raises(ConfigError, match="Invalid storage type"):
            load_config(tmp_path / "nonexistent.toml")

    def test_invalid_value(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARTVAULT_S3_PAGE_SIZE", "0")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(tmp_path / "nonexistent.toml")
