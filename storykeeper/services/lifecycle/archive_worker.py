# storykeeper/services/lifecycle/archive_worker.py
"""
Bulk comment mover for one story.

Handles:
- archive: live tier -> cold tier
- unarchive: cold tier -> live tier

Order is always copy, then delete. Every comment is upserted into the
destination (keyed by id) before anything is removed from the source, so an
interruption leaves duplicates, never losses, and a re-run converges on the
same destination content.
"""

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from itertools import islice

from storykeeper.logging_config import log_operation
from storykeeper.models import StoryState
from storykeeper.services.lifecycle.errors import ArchiveError, ArchiveFailureReason
from storykeeper.services.resilience import Deadline, DeadlineExceeded, RetryPolicy, retry_call
from storykeeper.stores.base import (
    ColdCommentStore,
    Comment,
    CommentStore,
    LiveCommentStore,
    StoreError,
    StoreUnavailableError,
    StoreWriteRejectedError,
    StoryStateStore,
)

logger = logging.getLogger(__name__)


class MoveDirection(str, Enum):
    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"


@dataclass
class ArchiveResult:
    """Result of one archive or unarchive move."""

    success: bool
    tenant_id: str
    story_id: str
    direction: MoveDirection
    comments_moved: int = 0
    reason: ArchiveFailureReason | None = None
    error: str | None = None

    def raise_for_failure(self) -> None:
        """Raise ArchiveError if the move failed."""
        if not self.success:
            raise ArchiveError(
                self.reason or ArchiveFailureReason.UNEXPECTED,
                f"{self.direction.value} of story {self.story_id} failed: {self.error}",
            )


def _batched(items: Iterable[Comment], size: int) -> Iterator[list[Comment]]:
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch


class ArchiveWorker:
    """
    Moves every comment of a story between the live and cold tiers.

    The worker never changes story state. Callers bracket it with
    begin_* / complete_* on the state machine and feed ArchiveResult.success
    into the completion transition.
    """

    def __init__(
        self,
        live_store: LiveCommentStore,
        cold_store: ColdCommentStore,
        state_store: StoryStateStore,
        retry_policy: RetryPolicy | None = None,
        batch_size: int = 500,
        timeout_seconds: float = 600.0,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.live_store = live_store
        self.cold_store = cold_store
        self.state_store = state_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size
        self.timeout_seconds = timeout_seconds
        self.sleep = sleep
        self._monotonic = monotonic

    @classmethod
    def from_settings(cls, live_store, cold_store, state_store, settings) -> "ArchiveWorker":
        return cls(
            live_store,
            cold_store,
            state_store,
            retry_policy=RetryPolicy.from_settings(settings),
            batch_size=settings.ARCHIVE_BATCH_SIZE,
            timeout_seconds=settings.ARCHIVE_TIMEOUT_SECONDS,
        )

    def archive(self, tenant_id: str, story_id: str) -> ArchiveResult:
        """Move all comments of an ARCHIVING story to the cold tier."""
        return self._move(
            tenant_id,
            story_id,
            MoveDirection.ARCHIVE,
            source=self.live_store,
            destination=self.cold_store,
            expected_state=StoryState.ARCHIVING,
        )

    def unarchive(self, tenant_id: str, story_id: str) -> ArchiveResult:
        """Move all comments of an UNARCHIVING story back to the live tier."""
        return self._move(
            tenant_id,
            story_id,
            MoveDirection.UNARCHIVE,
            source=self.cold_store,
            destination=self.live_store,
            expected_state=StoryState.UNARCHIVING,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _move(
        self,
        tenant_id: str,
        story_id: str,
        direction: MoveDirection,
        source: CommentStore,
        destination: CommentStore,
        expected_state: StoryState,
    ) -> ArchiveResult:
        result = ArchiveResult(success=False, tenant_id=tenant_id, story_id=story_id, direction=direction)

        try:
            snapshot = retry_call(
                self.state_store.get_state,
                tenant_id,
                story_id,
                policy=self.retry_policy,
                retry_exceptions=(StoreUnavailableError,),
                sleep=self.sleep,
            )
        except StoreError as e:
            result.reason = _failure_reason(e)
            result.error = str(e)
            logger.error(
                f"Could not read state of story {story_id} before {direction.value}: {e}",
                extra={"event": f"{direction.value}_rejected", "tenant_id": tenant_id, "story_id": story_id},
            )
            return result

        if snapshot is None or snapshot.state != expected_state:
            found = snapshot.state.value if snapshot else "missing"
            result.reason = ArchiveFailureReason.INVALID_STATE
            result.error = f"expected {expected_state.value}, found {found}"
            logger.error(
                f"Refusing to {direction.value} story {story_id}: {result.error}",
                extra={"event": f"{direction.value}_rejected", "tenant_id": tenant_id, "story_id": story_id},
            )
            return result

        deadline = Deadline(self.timeout_seconds, monotonic=self._monotonic)
        copied_ids: list[str] = []
        deleting = False

        with log_operation(direction.value, tenant_id=tenant_id, story_id=story_id):
            try:
                copied_ids = retry_call(
                    self._copy,
                    tenant_id,
                    story_id,
                    source,
                    destination,
                    deadline,
                    policy=self.retry_policy,
                    retry_exceptions=(StoreUnavailableError,),
                    sleep=self.sleep,
                    deadline=deadline,
                )
                deleting = True
                self._delete(tenant_id, story_id, source, copied_ids, deadline)
            except (DeadlineExceeded, StoreError) as e:
                result.reason = _failure_reason(e)
                result.error = str(e)
            except Exception as e:
                logger.exception(f"Unexpected error during {direction.value} of story {story_id}")
                result.reason = ArchiveFailureReason.UNEXPECTED
                result.error = str(e)

            if result.reason is None:
                result.success = True
                result.comments_moved = len(copied_ids)
            else:
                logger.error(
                    f"{direction.value} of story {story_id} failed ({result.reason.value}): {result.error}",
                    extra={
                        "event": f"{direction.value}_move_failed",
                        "tenant_id": tenant_id,
                        "story_id": story_id,
                        "reason": result.reason.value,
                        "error": result.error,
                    },
                )
                if deleting and not self._restore_source(tenant_id, story_id, source, destination, copied_ids):
                    result.error = f"{result.error}; source tier restore failed"

        return result

    def _copy(
        self,
        tenant_id: str,
        story_id: str,
        source: CommentStore,
        destination: CommentStore,
        deadline: Deadline,
    ) -> list[str]:
        # Restarted from the top on a transient error; upserts make that safe.
        # Only ids are kept, bodies are dropped with each batch.
        copied_ids: list[str] = []
        for batch in _batched(source.stream_comments(tenant_id, story_id), self.batch_size):
            deadline.check("upsert_comments")
            destination.upsert_comments(tenant_id, story_id, [comment.with_tier(destination.tier) for comment in batch])
            copied_ids.extend(comment.id for comment in batch)
        logger.debug(
            f"Copied {len(copied_ids)} comments of story {story_id} to {destination.name}",
            extra={"story_id": story_id, "comments_moved": len(copied_ids)},
        )
        return copied_ids

    def _delete(
        self,
        tenant_id: str,
        story_id: str,
        source: CommentStore,
        ids: Sequence[str],
        deadline: Deadline,
    ) -> None:
        for start in range(0, len(ids), self.batch_size):
            retry_call(
                source.delete_comments,
                tenant_id,
                story_id,
                ids[start : start + self.batch_size],
                policy=self.retry_policy,
                retry_exceptions=(StoreUnavailableError,),
                sleep=self.sleep,
                deadline=deadline,
            )

    def _restore_source(
        self,
        tenant_id: str,
        story_id: str,
        source: CommentStore,
        destination: CommentStore,
        copied_ids: Sequence[str],
    ) -> bool:
        """
        Put back anything the delete phase already removed.

        The story reverts to its previous stable tier on failure, so that tier
        must hold every comment again. The copies are re-read from the
        destination and left in place there. Returns False if the restore
        itself failed.
        """
        try:
            retry_call(
                self._copy_back,
                tenant_id,
                story_id,
                source,
                destination,
                frozenset(copied_ids),
                policy=self.retry_policy,
                retry_exceptions=(StoreUnavailableError,),
                sleep=self.sleep,
            )
        except StoreError:
            logger.exception(
                f"Could not restore {source.name} comments of story {story_id}; both tiers must be reconciled",
                extra={"event": "restore_source_failed", "tenant_id": tenant_id, "story_id": story_id},
            )
            return False
        return True

    def _copy_back(
        self,
        tenant_id: str,
        story_id: str,
        source: CommentStore,
        destination: CommentStore,
        ids: frozenset[str],
    ) -> None:
        restored = (
            comment.with_tier(source.tier)
            for comment in destination.stream_comments(tenant_id, story_id)
            if comment.id in ids
        )
        for batch in _batched(restored, self.batch_size):
            source.upsert_comments(tenant_id, story_id, batch)


def _failure_reason(error: Exception) -> ArchiveFailureReason:
    if isinstance(error, DeadlineExceeded):
        return ArchiveFailureReason.TIMEOUT
    if isinstance(error, StoreUnavailableError):
        return ArchiveFailureReason.STORE_UNAVAILABLE
    if isinstance(error, StoreWriteRejectedError):
        return ArchiveFailureReason.WRITE_REJECTED
    return ArchiveFailureReason.UNEXPECTED
