"""Storage backend registry."""

from __future__ import annotations

from partvault.core.exceptions import ConfigError
from partvault.core.models import StorageConfig, StorageType
from partvault.storage.base import BaseStorage
from partvault.storage.pager import Marker, Page, paginate


def get_storage(config: StorageConfig) -> BaseStorage:
    """Instantiate the appropriate storage backend.

    The returned backend is not initialized; call ``init()`` before use.

    Raises:
        ConfigError: If the storage type is not supported or misconfigured.
    """
    common = {
        "chunk_size": config.chunk_size,
        "copy_buffer_chunks": config.copy_buffer_chunks,
    }

    if config.type == StorageType.LOCAL:
        from partvault.storage.local import LocalStorage

        return LocalStorage(base_path=config.local_path, root_dir=config.root_dir, **common)

    if config.type == StorageType.MEMORY:
        from partvault.storage.memory import MemoryStorage

        return MemoryStorage(root_dir=config.root_dir, page_size=config.memory_page_size, **common)

    if config.type == StorageType.S3:
        if not config.s3_bucket:
            raise ConfigError("S3 bucket name is required (--s3-bucket or PARTVAULT_S3_BUCKET)")
        from partvault.storage.s3 import S3Storage

        secret = config.s3_secret_access_key
        return S3Storage(
            bucket=config.s3_bucket,
            root_dir=config.root_dir,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            access_key_id=config.s3_access_key_id,
            secret_access_key=secret.get_secret_value() if secret else None,
            page_size=config.s3_page_size,
            **common,
        )

    if config.type == StorageType.AZURE:
        if not config.azure_container:
            raise ConfigError(
                "Azure container name is required (--azure-container or PARTVAULT_AZURE_CONTAINER)"
            )
        from partvault.storage.azure import AzureBlobStorage

        key = config.azure_account_key
        return AzureBlobStorage(
            container=config.azure_container,
            root_dir=config.root_dir,
            account_name=config.azure_account_name,
            account_key=key.get_secret_value() if key else None,
            endpoint_url=config.azure_endpoint_url,
            create_container=config.azure_create_container,
            page_size=config.azure_page_size,
            **common,
        )

    raise ConfigError(f"Unsupported storage type: {config.type}")


__all__ = ["BaseStorage", "Marker", "Page", "get_storage", "paginate"]
