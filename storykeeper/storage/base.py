# storykeeper/storage/base.py
"""
Storage provider interface for archived comment blobs.

Design principles:
- One object per archived comment, keyed by tenant/story/comment
- Content compressed before upload (gzip)
- Writes are overwrites: uploading an existing key replaces it
- Listing never swallows errors; a partial listing would look like an
  empty story and let an unarchive "succeed" while leaving comments behind
"""

import gzip
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class ContentType(str, Enum):
    """Supported content types for stored objects."""
    TEXT_PLAIN = "text/plain"
    APPLICATION_JSON = "application/json"


@dataclass
class StorageObject:
    """A stored object with its decompressed content."""
    key: str
    content: bytes
    content_type: ContentType = ContentType.APPLICATION_JSON
    content_hash: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


def compute_content_hash(content: bytes) -> str:
    """Compute SHA256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def compress_content(content: bytes) -> bytes:
    """Compress content using gzip."""
    return gzip.compress(content, compresslevel=6)


def decompress_content(content: bytes) -> bytes:
    """Decompress gzip content."""
    return gzip.decompress(content)


class StorageProvider(ABC):
    """
    Abstract interface for object storage.

    Implementations must handle:
    - Upload with automatic compression
    - Download with automatic decompression
    - Prefix listing
    - Idempotent delete
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 's3', 'local')."""
        pass

    @abstractmethod
    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_JSON,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """
        Upload content to storage, replacing any existing object.

        Returns:
            SHA256 of the uncompressed content
        """
        pass

    @abstractmethod
    def download(self, key: str) -> StorageObject | None:
        """Download content, or None if the key does not exist."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if object exists."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete object from storage.

        Returns:
            True if an object was removed, False if there was nothing to remove
        """
        pass

    @abstractmethod
    def list_keys(self, prefix: str) -> list[str]:
        """List every key under prefix, sorted."""
        pass
