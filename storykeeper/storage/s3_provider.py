# storykeeper/storage/s3_provider.py
"""
S3 storage provider implementation using boto3.

Supports:
- AWS S3 (archived comments can be moved to Glacier by bucket lifecycle rules)
- S3-compatible services (MinIO, DigitalOcean Spaces, etc.)
"""

import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from storykeeper.storage.base import (
    ContentType,
    StorageObject,
    StorageProvider,
    compress_content,
    compute_content_hash,
    decompress_content,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


class S3StorageProvider(StorageProvider):
    """
    S3/S3-compatible storage provider.

    boto3 does its own low-level retries; the archive worker retries whole
    batches on top of that, so keep the client-level budget small.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client=None,
    ):
        self._bucket = bucket
        if not self._bucket:
            raise ValueError("S3 bucket required. Set S3_BUCKET env var or pass bucket.")

        if client is None:
            config = Config(
                retries={"max_attempts": 3, "mode": "adaptive"},
                connect_timeout=5,
                read_timeout=30,
            )
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                region_name=region or "us-east-1",
                config=config,
            )
        self._client = client

        logger.info(f"S3 storage initialized: bucket={self._bucket}")

    @property
    def name(self) -> str:
        return "s3"

    @property
    def bucket(self) -> str:
        return self._bucket

    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_JSON,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        content_hash = compute_content_hash(content)
        s3_metadata = dict(metadata or {})
        s3_metadata["content-hash"] = content_hash

        self._client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=compress_content(content),
            ContentType=content_type.value,
            ContentEncoding="gzip",
            Metadata=s3_metadata,
        )
        logger.debug(f"Uploaded to S3: {key}")
        return content_hash

    def download(self, key: str) -> Optional[StorageObject]:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") in _NOT_FOUND_CODES:
                logger.debug(f"S3 object not found: {key}")
                return None
            raise

        content = decompress_content(response["Body"].read())
        s3_metadata = response.get("Metadata", {})
        return StorageObject(
            key=key,
            content=content,
            content_type=ContentType(response.get("ContentType", ContentType.APPLICATION_JSON.value)),
            content_hash=s3_metadata.get("content-hash", ""),
            metadata=s3_metadata,
        )

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") in _NOT_FOUND_CODES:
                return False
            raise

    def delete(self, key: str) -> bool:
        # S3 deletes are idempotent: a missing key is not an error
        existed = self.exists(key)
        self._client.delete_object(Bucket=self._bucket, Key=key)
        logger.debug(f"Deleted from S3: {key}")
        return existed

    def list_keys(self, prefix: str) -> list[str]:
        keys = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
        return sorted(keys)
