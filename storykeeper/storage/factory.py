"""
Factory function for creating storage providers.
"""

import logging
from typing import Optional

from storykeeper.config import get_settings
from storykeeper.storage.base import StorageProvider

logger = logging.getLogger(__name__)

# Global singleton instance
_storage_provider: Optional[StorageProvider] = None


def get_storage_provider(
    provider_name: Optional[str] = None,
    **kwargs,
) -> StorageProvider:
    """
    Get or create the storage provider instance.

    Args:
        provider_name: 's3' or 'local' (default from COLD_STORAGE_PROVIDER)
        **kwargs: Additional arguments for the provider

    Returns:
        StorageProvider instance (singleton)
    """
    global _storage_provider

    if _storage_provider is not None:
        return _storage_provider

    settings = get_settings()
    name = (provider_name or settings.COLD_STORAGE_PROVIDER).lower().strip()

    if name == "s3":
        from storykeeper.storage.s3_provider import S3StorageProvider
        kwargs.setdefault("bucket", settings.S3_BUCKET)
        kwargs.setdefault("endpoint_url", settings.S3_ENDPOINT_URL)
        kwargs.setdefault("region", settings.S3_REGION)
        _storage_provider = S3StorageProvider(**kwargs)
    elif name == "local":
        from storykeeper.storage.local_provider import LocalStorageProvider
        kwargs.setdefault("base_path", settings.LOCAL_STORAGE_PATH)
        _storage_provider = LocalStorageProvider(**kwargs)
    else:
        raise ValueError(f"Unknown storage provider: {name}. Available: s3, local")

    logger.info(f"Storage provider initialized: {_storage_provider.name}")
    return _storage_provider


def set_storage_provider(provider: StorageProvider) -> None:
    """
    Set a custom storage provider (useful for testing).
    """
    global _storage_provider
    _storage_provider = provider


def reset_storage_provider() -> None:
    """
    Reset the storage provider singleton (for testing).
    """
    global _storage_provider
    _storage_provider = None
