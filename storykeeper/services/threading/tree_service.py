# storykeeper/services/threading/tree_service.py
"""
Tree regeneration orchestrator.

Two paths:
- generate_tree_for_story: build and cache one story's tree right away
- regenerate_story_trees: validate a tenant-wide job payload and hand it to
  the job queue; the queue owns execution from then on

process_regenerate_job is the consumer side a queue worker runs for each
accepted payload.
"""

import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from storykeeper.clock import Clock, system_clock
from storykeeper.models import CommentTier, StoryState
from storykeeper.services.jobs.validator import validate_job_data
from storykeeper.services.lifecycle.errors import LifecycleError, StoryNotFoundError
from storykeeper.services.threading.tree_builder import CommentTree, build_comment_tree, serialize_tree
from storykeeper.stores.base import (
    ColdCommentStore,
    Comment,
    JobQueue,
    LiveCommentStore,
    StoreError,
    StoryStateStore,
    TreeStore,
)

logger = logging.getLogger(__name__)

REGENERATE_STORY_TREES_QUEUE = "regenerate-story-trees"

# Tier holding every comment while the story rests in a state
_TIER_BY_STATE = {
    StoryState.OPEN: CommentTier.LIVE,
    StoryState.MARKED_FOR_ARCHIVE: CommentTier.LIVE,
    StoryState.ARCHIVED: CommentTier.COLD,
    StoryState.MARKED_FOR_UNARCHIVE: CommentTier.COLD,
}


@dataclass
class RegenerateResult:
    """Accept/reject decision for a bulk regeneration request."""

    accepted: bool
    job_id: str
    error: str | None = None


@dataclass
class RegenerateJobSummary:
    job_id: str
    tenant_id: str
    stories_processed: int = 0
    stories_failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.stories_failed == 0


class TreeRegenerationOrchestrator:
    def __init__(
        self,
        live_store: LiveCommentStore,
        cold_store: ColdCommentStore,
        state_store: StoryStateStore,
        tree_store: TreeStore,
        queue: JobQueue,
        clock: Clock = system_clock,
        job_id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.live_store = live_store
        self.cold_store = cold_store
        self.state_store = state_store
        self.tree_store = tree_store
        self.queue = queue
        self._clock = clock
        self._job_id_factory = job_id_factory

    # -------------------------------------------------------------------------
    # Single story
    # -------------------------------------------------------------------------

    def _comments_for(self, tenant_id: str, story_id: str, state: StoryState) -> Iterator[Comment]:
        tier = _TIER_BY_STATE.get(state)
        if tier == CommentTier.LIVE:
            yield from self.live_store.stream_comments(tenant_id, story_id)
            return
        if tier == CommentTier.COLD:
            yield from self.cold_store.stream_comments(tenant_id, story_id)
            return

        # Mid-move: the union of both tiers is complete at every step of copy-then-delete
        seen: set[str] = set()
        source, destination = (
            (self.live_store, self.cold_store)
            if state == StoryState.ARCHIVING
            else (self.cold_store, self.live_store)
        )
        for store in (source, destination):
            for comment in store.stream_comments(tenant_id, story_id):
                if comment.id not in seen:
                    seen.add(comment.id)
                    yield comment

    def generate_tree_for_story(self, tenant_id: str, story_id: str) -> CommentTree:
        """
        Rebuild and cache the tree of one story from its authoritative tier.

        Raises:
            StoryNotFoundError: story does not exist
            StoreError: a store could not be read or written
        """
        snapshot = self.state_store.get_state(tenant_id, story_id)
        if snapshot is None:
            raise StoryNotFoundError(tenant_id, story_id)

        tree = build_comment_tree(self._comments_for(tenant_id, story_id, snapshot.state))

        for warning in tree.warnings:
            logger.warning(
                f"Story {story_id} tree integrity: {warning.kind.value} at {warning.comment_id}: {warning.detail}",
                extra={
                    "event": "tree_integrity_warning",
                    "tenant_id": tenant_id,
                    "story_id": story_id,
                    "comment_id": warning.comment_id,
                    "warning_kind": warning.kind.value,
                },
            )

        document: dict[str, Any] = {
            "tenant_id": tenant_id,
            "story_id": story_id,
            "state": snapshot.state.value,
            "generated_at": self._clock.now().isoformat(),
            "comment_count": tree.comment_count,
            "warnings": [warning.to_dict() for warning in tree.warnings],
            "roots": serialize_tree(tree.roots),
        }
        self.tree_store.save_tree(tenant_id, story_id, document)

        logger.info(
            f"Generated tree for story {story_id}: {tree.comment_count} comments, {len(tree.roots)} roots",
            extra={
                "event": "tree_generated",
                "tenant_id": tenant_id,
                "story_id": story_id,
                "warnings": len(tree.warnings),
            },
        )
        return tree

    def get_tree(self, tenant_id: str, story_id: str) -> dict[str, Any] | None:
        return self.tree_store.get_tree(tenant_id, story_id)

    # -------------------------------------------------------------------------
    # Bulk
    # -------------------------------------------------------------------------

    def regenerate_story_trees(
        self,
        tenant_id: str,
        disable_commenting: bool = False,
        disable_commenting_message: str | None = None,
    ) -> RegenerateResult:
        """
        Validate and enqueue a tenant-wide regeneration job.

        Returns accepted=False with an empty job id whenever nothing was
        enqueued, so callers can tell "never queued" from a job that failed later.
        """
        job_id = self._job_id_factory()
        payload = {
            "tenant_id": tenant_id,
            "job_id": job_id,
            "disable_commenting": disable_commenting,
            "disable_commenting_message": disable_commenting_message,
        }

        validation = validate_job_data(payload)
        if not validation.success:
            logger.error(
                f"Regenerate story trees job rejected: {validation.error}",
                extra={
                    "event": "regenerate_job_invalid",
                    "tenant_id": tenant_id,
                    "job_id": job_id,
                    "job_data": payload,
                    "error": str(validation.error),
                },
            )
            return RegenerateResult(accepted=False, job_id="", error=f"validation failed: {validation.error}")

        if not self.queue.enqueue(payload):
            logger.error(
                f"Queue {self.queue.name} refused job {job_id}",
                extra={"event": "regenerate_job_refused", "tenant_id": tenant_id, "job_id": job_id},
            )
            return RegenerateResult(accepted=False, job_id="", error="queue refused job")

        logger.info(
            f"Enqueued regenerate story trees job {job_id}",
            extra={"event": "regenerate_job_enqueued", "tenant_id": tenant_id, "job_id": job_id},
        )
        return RegenerateResult(accepted=True, job_id=job_id)

    def process_regenerate_job(self, payload: dict[str, Any]) -> RegenerateJobSummary:
        """
        Rebuild every story tree of the payload's tenant.

        A failing story is recorded and the rest continue.

        Raises:
            JobValidationError: payload does not match the job schema
        """
        validation = validate_job_data(payload)
        if not validation.success:
            raise validation.error

        job = validation.job
        summary = RegenerateJobSummary(job_id=job.job_id, tenant_id=job.tenant_id)

        for story_id in self.state_store.list_story_ids(job.tenant_id):
            try:
                self.generate_tree_for_story(job.tenant_id, story_id)
                summary.stories_processed += 1
            except (StoreError, LifecycleError) as e:
                summary.stories_failed += 1
                summary.errors.append(f"Story {story_id}: {e}")
                logger.error(
                    f"Tree regeneration failed for story {story_id}: {e}",
                    extra={"event": "tree_regeneration_failed", "job_id": job.job_id, "story_id": story_id},
                )

        logger.info(
            f"Regenerate job {job.job_id} complete: {summary.stories_processed} rebuilt, "
            f"{summary.stories_failed} failed",
            extra={"event": "regenerate_job_complete", "job_id": job.job_id, "tenant_id": job.tenant_id},
        )
        return summary


def run_pending_jobs(orchestrator: TreeRegenerationOrchestrator, queue, max_jobs: int | None = None) -> int:
    """
    Drain a claimable queue (claim_next / finish), e.g. SqlJobQueue.

    Returns:
        Number of jobs run
    """
    ran = 0
    while max_jobs is None or ran < max_jobs:
        job = queue.claim_next()
        if job is None:
            break
        try:
            summary = orchestrator.process_regenerate_job(job.payload)
        except Exception as e:
            logger.exception(f"Job {job.id} crashed")
            queue.finish(job.id, error=str(e))
        else:
            queue.finish(job.id, error=None if summary.success else "; ".join(summary.errors))
        ran += 1
    return ran
