# storykeeper/stores/base.py
"""
Collaborator interfaces consumed by the lifecycle and threading services.

Design principles:
- The services never talk to a database or bucket directly, only to these ABCs
- Comment stores are keyed by comment id: upserts overwrite, deletes of missing
  ids are no-ops, so a bulk move can be re-run safely
- Story state is only mutated through compare_and_swap_state
- Native driver errors are translated to StoreUnavailableError (transient,
  retryable) or StoreWriteRejectedError (permanent)
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from storykeeper.models import CommentTier, LifecycleEvent, StoryState


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for collaborator store failures."""

    pass


class StoreUnavailableError(StoreError):
    """Store could not be reached or timed out. Safe to retry."""

    pass


class StoreWriteRejectedError(StoreError):
    """Store refused the write (constraint, permission). Retrying will not help."""

    pass


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Comment:
    """A comment as exchanged between tiers. Body is opaque to this service."""

    id: str
    story_id: str
    parent_id: str | None
    created_at: datetime
    tenant_id: str = ""
    reply_count: int = 0
    tier: CommentTier = CommentTier.LIVE
    body: str | None = None
    author_id: str | None = None

    def with_tier(self, tier: CommentTier) -> "Comment":
        return replace(self, tier=tier)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "story_id": self.story_id,
            "parent_id": self.parent_id,
            "created_at": self.created_at.isoformat(),
            "reply_count": self.reply_count,
            "tier": self.tier.value,
            "body": self.body,
            "author_id": self.author_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Comment":
        return cls(
            id=data["id"],
            tenant_id=data.get("tenant_id", ""),
            story_id=data["story_id"],
            parent_id=data.get("parent_id"),
            created_at=datetime.fromisoformat(data["created_at"]),
            reply_count=data.get("reply_count", 0),
            tier=CommentTier(data.get("tier", CommentTier.LIVE.value)),
            body=data.get("body"),
            author_id=data.get("author_id"),
        )


@dataclass(frozen=True)
class StoryStateSnapshot:
    """State and revision read together; the pair is the CAS precondition."""

    state: StoryState
    revision: int


@dataclass(frozen=True)
class StoryRecord:
    """Durable view of a story returned to callers after lifecycle operations."""

    tenant_id: str
    id: str
    state: StoryState
    revision: int
    archived_at: datetime | None = None
    unarchived_at: datetime | None = None
    url: str | None = None

    @property
    def is_archived(self) -> bool:
        return self.state == StoryState.ARCHIVED

    @property
    def is_archiving(self) -> bool:
        return self.state in (StoryState.MARKED_FOR_ARCHIVE, StoryState.ARCHIVING)

    @property
    def is_unarchiving(self) -> bool:
        return self.state in (StoryState.MARKED_FOR_UNARCHIVE, StoryState.UNARCHIVING)


# -----------------------------------------------------------------------------
# Interfaces
# -----------------------------------------------------------------------------


class CommentStore(ABC):
    """
    One tier of comment storage.

    Implementations must handle:
    - Streaming every comment of a story (order is not significant)
    - Upsert keyed by comment id
    - Delete by id, ignoring ids that are already gone
    """

    tier: CommentTier

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name (e.g., 'sql', 'memory', 'object-storage')."""
        pass

    @abstractmethod
    def stream_comments(self, tenant_id: str, story_id: str) -> Iterator[Comment]:
        """Yield every comment of the story held by this tier."""
        pass

    @abstractmethod
    def upsert_comments(self, tenant_id: str, story_id: str, comments: Sequence[Comment]) -> int:
        """
        Insert or overwrite comments by id.

        Returns:
            Number of comments written
        """
        pass

    @abstractmethod
    def delete_comments(self, tenant_id: str, story_id: str, ids: Sequence[str]) -> int:
        """
        Delete comments by id.

        Returns:
            Number of comments actually removed
        """
        pass

    def count_comments(self, tenant_id: str, story_id: str) -> int:
        return sum(1 for _ in self.stream_comments(tenant_id, story_id))


class LiveCommentStore(CommentStore):
    """Hot tier queried by the comment stream."""

    tier = CommentTier.LIVE


class ColdCommentStore(CommentStore):
    """Cheap, slower tier holding archived stories."""

    tier = CommentTier.COLD


class StoryStateStore(ABC):
    """Durable home of story lifecycle state with a native compare-and-swap."""

    @abstractmethod
    def get_state(self, tenant_id: str, story_id: str) -> StoryStateSnapshot | None:
        """Read (state, revision), or None if the story does not exist."""
        pass

    @abstractmethod
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
        """
        Atomically move the story to new_state if, and only if, it is still at
        (expected_state, expected_revision). Bumps the revision on success and
        applies any extra column values in `fields` in the same write.

        When `event` is given, an audit record of the transition is written
        together with the state change.

        Returns:
            True if this call performed the transition
        """
        pass

    @abstractmethod
    def get_story(self, tenant_id: str, story_id: str) -> StoryRecord | None:
        """Get the full durable view of a story."""
        pass

    @abstractmethod
    def list_story_ids(self, tenant_id: str) -> list[str]:
        """All story ids of a tenant, in a stable order."""
        pass


class JobQueue(ABC):
    """Hand-off point to the background job runner."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def enqueue(self, payload: dict[str, Any]) -> bool:
        """
        Queue a job payload.

        Returns:
            True if the queue accepted the job
        """
        pass


class TreeStore(ABC):
    """Cache for materialized comment trees."""

    @abstractmethod
    def save_tree(self, tenant_id: str, story_id: str, document: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def get_tree(self, tenant_id: str, story_id: str) -> dict[str, Any] | None:
        pass
