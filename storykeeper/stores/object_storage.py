# storykeeper/stores/object_storage.py
"""
Cold comment tier on object storage (S3 or the local filesystem provider).

Layout: {prefix}/{tenant_id}/{story_id}/{comment_id}.json.gz, one gzip JSON
document per comment. Object keys are derived from the comment id, so an
upload of the same comment overwrites instead of duplicating.
"""

import json
import logging
from collections.abc import Iterator, Sequence
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError

from storykeeper.models import CommentTier
from storykeeper.storage.base import ContentType, StorageProvider
from storykeeper.stores.base import ColdCommentStore, Comment, StoreUnavailableError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (OSError, ClientError, BotoCoreError)


def _segment(value: str) -> str:
    return quote(value, safe="")


class ObjectStorageColdCommentStore(ColdCommentStore):
    """Cold tier where every archived comment is its own object."""

    def __init__(self, provider: StorageProvider, prefix: str = "cold-comments"):
        self._provider = provider
        self._prefix = prefix.strip("/")

    @property
    def name(self) -> str:
        return f"object-storage:{self._provider.name}"

    def _story_prefix(self, tenant_id: str, story_id: str) -> str:
        return f"{self._prefix}/{_segment(tenant_id)}/{_segment(story_id)}/"

    def comment_key(self, tenant_id: str, story_id: str, comment_id: str) -> str:
        return f"{self._story_prefix(tenant_id, story_id)}{_segment(comment_id)}.json.gz"

    def stream_comments(self, tenant_id: str, story_id: str) -> Iterator[Comment]:
        try:
            keys = self._provider.list_keys(self._story_prefix(tenant_id, story_id))
        except _TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"list cold comments for story {story_id}: {e}") from e

        for key in keys:
            try:
                obj = self._provider.download(key)
            except _TRANSIENT_ERRORS as e:
                raise StoreUnavailableError(f"download {key}: {e}") from e
            if obj is None:
                # Deleted between list and download
                continue
            yield Comment.from_dict(json.loads(obj.content))

    def upsert_comments(self, tenant_id: str, story_id: str, comments: Sequence[Comment]) -> int:
        for comment in comments:
            document = comment.with_tier(CommentTier.COLD).to_dict()
            document["tenant_id"] = tenant_id
            document["story_id"] = story_id
            key = self.comment_key(tenant_id, story_id, comment.id)
            try:
                self._provider.upload(
                    key,
                    json.dumps(document).encode("utf-8"),
                    content_type=ContentType.APPLICATION_JSON,
                    metadata={"story-id": story_id, "comment-id": comment.id},
                )
            except _TRANSIENT_ERRORS as e:
                raise StoreUnavailableError(f"upload {key}: {e}") from e
        return len(comments)

    def delete_comments(self, tenant_id: str, story_id: str, ids: Sequence[str]) -> int:
        removed = 0
        for comment_id in ids:
            key = self.comment_key(tenant_id, story_id, comment_id)
            try:
                if self._provider.delete(key):
                    removed += 1
            except _TRANSIENT_ERRORS as e:
                raise StoreUnavailableError(f"delete {key}: {e}") from e
        return removed
