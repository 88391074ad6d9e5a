# storykeeper/storage/__init__.py
"""
Object storage providers backing the cold comment tier.
"""

from storykeeper.storage.base import ContentType, StorageObject, StorageProvider
from storykeeper.storage.factory import get_storage_provider, reset_storage_provider, set_storage_provider

__all__ = [
    "ContentType",
    "StorageObject",
    "StorageProvider",
    "get_storage_provider",
    "set_storage_provider",
    "reset_storage_provider",
]
