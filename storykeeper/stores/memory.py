# storykeeper/stores/memory.py
"""
In-memory store implementations for development and testing.

Mimic the durable stores' contracts (CAS atomicity, id-keyed upserts)
inside one process. NOT for production use: state is lost on restart and
is invisible to other processes.
"""

import threading
from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace
from typing import Any

from cachetools import TTLCache

from storykeeper.models import LifecycleEvent, StoryState
from storykeeper.stores.base import (
    ColdCommentStore,
    Comment,
    CommentStore,
    JobQueue,
    LiveCommentStore,
    StoryRecord,
    StoryStateSnapshot,
    StoryStateStore,
    TreeStore,
)


class _InMemoryComments(CommentStore):
    def __init__(self):
        self._comments: dict[tuple[str, str], dict[str, Comment]] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "memory"

    def stream_comments(self, tenant_id: str, story_id: str) -> Iterator[Comment]:
        with self._lock:
            snapshot = list(self._comments.get((tenant_id, story_id), {}).values())
        yield from snapshot

    def upsert_comments(self, tenant_id: str, story_id: str, comments: Sequence[Comment]) -> int:
        with self._lock:
            bucket = self._comments.setdefault((tenant_id, story_id), {})
            for comment in comments:
                bucket[comment.id] = comment.with_tier(self.tier)
        return len(comments)

    def delete_comments(self, tenant_id: str, story_id: str, ids: Sequence[str]) -> int:
        removed = 0
        with self._lock:
            bucket = self._comments.get((tenant_id, story_id), {})
            for comment_id in ids:
                if bucket.pop(comment_id, None) is not None:
                    removed += 1
        return removed

    def count_comments(self, tenant_id: str, story_id: str) -> int:
        with self._lock:
            return len(self._comments.get((tenant_id, story_id), {}))


class InMemoryLiveCommentStore(_InMemoryComments, LiveCommentStore):
    pass


class InMemoryColdCommentStore(_InMemoryComments, ColdCommentStore):
    pass


@dataclass
class RecordedEvent:
    """Audit entry kept by the in-memory state store."""

    tenant_id: str
    story_id: str
    event: LifecycleEvent
    from_state: StoryState
    to_state: StoryState
    revision: int
    initiated_by: str | None = None


class InMemoryStoryStateStore(StoryStateStore):
    """Story state with CAS made atomic by a process-local lock."""

    def __init__(self):
        self._stories: dict[tuple[str, str], StoryRecord] = {}
        self._lock = threading.Lock()
        self.events: list[RecordedEvent] = []

    def create_story(
        self,
        tenant_id: str,
        story_id: str,
        state: StoryState = StoryState.OPEN,
        url: str | None = None,
    ) -> StoryRecord:
        record = StoryRecord(tenant_id=tenant_id, id=story_id, state=state, revision=0, url=url)
        with self._lock:
            self._stories[(tenant_id, story_id)] = record
        return record

    def get_state(self, tenant_id: str, story_id: str) -> StoryStateSnapshot | None:
        with self._lock:
            record = self._stories.get((tenant_id, story_id))
        if record is None:
            return None
        return StoryStateSnapshot(state=record.state, revision=record.revision)

    def compare_and_swap_state(
        self,
        tenant_id: str,
        story_id: str,
        expected_state: StoryState,
        expected_revision: int,
        new_state: StoryState,
        *,
        event: LifecycleEvent | None = None,
        initiated_by: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        with self._lock:
            record = self._stories.get((tenant_id, story_id))
            if record is None:
                return False
            if record.state != expected_state or record.revision != expected_revision:
                return False

            updated = replace(record, state=new_state, revision=record.revision + 1, **(fields or {}))
            self._stories[(tenant_id, story_id)] = updated

            if event is not None:
                self.events.append(
                    RecordedEvent(
                        tenant_id=tenant_id,
                        story_id=story_id,
                        event=event,
                        from_state=expected_state,
                        to_state=new_state,
                        revision=updated.revision,
                        initiated_by=initiated_by,
                    )
                )
            return True

    def get_story(self, tenant_id: str, story_id: str) -> StoryRecord | None:
        with self._lock:
            return self._stories.get((tenant_id, story_id))

    def list_story_ids(self, tenant_id: str) -> list[str]:
        with self._lock:
            return sorted(story_id for (tenant, story_id) in self._stories if tenant == tenant_id)


class InMemoryJobQueue(JobQueue):
    """FIFO of accepted payloads."""

    def __init__(self, accept: bool = True):
        self._accept = accept
        self.jobs: deque[dict[str, Any]] = deque()

    @property
    def name(self) -> str:
        return "memory"

    def enqueue(self, payload: dict[str, Any]) -> bool:
        if not self._accept:
            return False
        self.jobs.append(dict(payload))
        return True

    def pop(self) -> dict[str, Any] | None:
        return self.jobs.popleft() if self.jobs else None


class CachedTreeStore(TreeStore):
    """
    Tree cache on a cachetools TTLCache, optionally in front of a durable store.

    Entries expire after `ttl` seconds; the oldest are evicted once
    `maxsize` stories are cached. With a backing store, saves write through
    and misses read through.
    """

    def __init__(self, backing: TreeStore | None = None, maxsize: int = 500, ttl: int = 3600):
        self._backing = backing
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def save_tree(self, tenant_id: str, story_id: str, document: dict[str, Any]) -> None:
        if self._backing is not None:
            self._backing.save_tree(tenant_id, story_id, document)
        with self._lock:
            self._cache[(tenant_id, story_id)] = document

    def get_tree(self, tenant_id: str, story_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._cache.get((tenant_id, story_id))
        if document is not None or self._backing is None:
            return document

        document = self._backing.get_tree(tenant_id, story_id)
        if document is not None:
            with self._lock:
                self._cache[(tenant_id, story_id)] = document
        return document
