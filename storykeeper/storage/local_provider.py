# storykeeper/storage/local_provider.py
"""
Local filesystem storage provider for development and testing.

Mimics S3 behavior but stores files locally.
NOT for production use.
"""

import json
import logging
import os
from pathlib import Path

from storykeeper.storage.base import (
    ContentType,
    StorageObject,
    StorageProvider,
    compress_content,
    compute_content_hash,
    decompress_content,
)

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    """
    Local filesystem storage provider.

    Stores files in a directory structure that mimics S3, with a JSON sidecar
    per object holding content type, hash and custom metadata.
    """

    def __init__(self, base_path: str | None = None):
        self._base_path = Path(base_path or os.getenv("LOCAL_STORAGE_PATH", "./storage"))
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._metadata_suffix = ".meta.json"

        logger.info(f"Local storage initialized: {self._base_path}")

    @property
    def name(self) -> str:
        return "local"

    def _get_path(self, key: str) -> Path:
        """Get filesystem path for key, with path traversal protection."""
        resolved = (self._base_path / key).resolve()
        if not resolved.is_relative_to(self._base_path.resolve()):
            raise ValueError("Path traversal detected")
        return resolved

    def _get_metadata_path(self, key: str) -> Path:
        """Get metadata file path for key, with path traversal protection."""
        resolved = (self._base_path / f"{key}{self._metadata_suffix}").resolve()
        if not resolved.is_relative_to(self._base_path.resolve()):
            raise ValueError("Path traversal detected")
        return resolved

    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_JSON,
        metadata: dict[str, str] | None = None,
    ) -> str:
        content_hash = compute_content_hash(content)

        file_path = self._get_path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a temp name first so a crash never leaves a torn object
        tmp_path = file_path.with_name(file_path.name + ".tmp")
        tmp_path.write_bytes(compress_content(content))
        tmp_path.replace(file_path)

        self._get_metadata_path(key).write_text(
            json.dumps(
                {
                    "content_type": content_type.value,
                    "content_hash": content_hash,
                    "custom_metadata": metadata or {},
                }
            )
        )

        logger.debug(f"Uploaded to local: {key}")
        return content_hash

    def download(self, key: str) -> StorageObject | None:
        file_path = self._get_path(key)
        if not file_path.exists():
            return None

        content = decompress_content(file_path.read_bytes())
        meta = self._load_metadata(key)

        return StorageObject(
            key=key,
            content=content,
            content_type=ContentType(meta.get("content_type", ContentType.APPLICATION_JSON.value)),
            content_hash=meta.get("content_hash") or compute_content_hash(content),
            metadata=meta.get("custom_metadata", {}),
        )

    def _load_metadata(self, key: str) -> dict:
        meta_path = self._get_metadata_path(key)
        if not meta_path.exists():
            return {}
        try:
            return json.loads(meta_path.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to load metadata for {key}: {e}")
            return {}

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> bool:
        """Delete object and metadata."""
        file_path = self._get_path(key)
        meta_path = self._get_metadata_path(key)

        deleted = False
        if file_path.exists():
            file_path.unlink()
            deleted = True
        if meta_path.exists():
            meta_path.unlink()

        return deleted

    def list_keys(self, prefix: str) -> list[str]:
        prefix_path = self._get_path(prefix)
        if not prefix_path.exists():
            return []

        keys = []
        for meta_file in prefix_path.rglob(f"*{self._metadata_suffix}"):
            key = meta_file.relative_to(self._base_path.resolve()).as_posix()
            keys.append(key[: -len(self._metadata_suffix)])
        return sorted(keys)
