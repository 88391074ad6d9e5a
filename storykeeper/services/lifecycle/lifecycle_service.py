# storykeeper/services/lifecycle/lifecycle_service.py
"""
Story archive / unarchive orchestration.

Process for one story:
1. Mark (OPEN -> MARKED_FOR_ARCHIVE); only the winning caller continues
2. Begin (MARKED_FOR_ARCHIVE -> ARCHIVING)
3. Move comments with the ArchiveWorker
4. Complete (ARCHIVED on success, OPEN on failure)
5. Rebuild the story's comment tree from the now-authoritative tier

Unarchive is the mirror image. Moves run inline for batch calls or on a
thread pool for submit_archive / submit_unarchive. A story whose move was
cut off before step 4 is settled by recover_story / recover_stories.
"""

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from storykeeper.models import StoryState
from storykeeper.services.lifecycle.archive_worker import ArchiveResult, ArchiveWorker, MoveDirection
from storykeeper.services.lifecycle.errors import ArchiveFailureReason, InvalidTransitionError, LifecycleError
from storykeeper.services.lifecycle.state_machine import ArchiveStateMachine
from storykeeper.services.resilience import retry_call
from storykeeper.stores.base import StoreError, StoreUnavailableError, StoryRecord, StoryStateStore

if TYPE_CHECKING:
    from storykeeper.services.threading.tree_service import TreeRegenerationOrchestrator

logger = logging.getLogger(__name__)

# States a move can be cut off in, and the move that settles them
IN_FLIGHT_DIRECTIONS: dict[StoryState, MoveDirection] = {
    StoryState.MARKED_FOR_ARCHIVE: MoveDirection.ARCHIVE,
    StoryState.ARCHIVING: MoveDirection.ARCHIVE,
    StoryState.MARKED_FOR_UNARCHIVE: MoveDirection.UNARCHIVE,
    StoryState.UNARCHIVING: MoveDirection.UNARCHIVE,
}


@dataclass
class StoryLifecycleResult:
    """Outcome of one archive_story / unarchive_story call."""

    tenant_id: str
    story_id: str
    direction: MoveDirection
    marked: bool = False
    move: ArchiveResult | None = None
    story: StoryRecord | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.marked and self.move is not None and self.move.success


class LifecycleService:
    """
    Usage:
        service = LifecycleService(machine, worker, state_store, tree_service)

        stories = service.archive_stories(tenant_id, ["s1", "s2"])
        future = service.submit_unarchive(tenant_id, "s3")
    """

    def __init__(
        self,
        state_machine: ArchiveStateMachine,
        worker: ArchiveWorker,
        state_store: StoryStateStore,
        tree_service: "TreeRegenerationOrchestrator | None" = None,
        pool_size: int = 4,
        batch_parallelism: int = 1,
        initiated_by: str = "api",
    ):
        self.state_machine = state_machine
        self.worker = worker
        self.state_store = state_store
        self.tree_service = tree_service
        self.batch_parallelism = max(1, batch_parallelism)
        self.initiated_by = initiated_by
        self._pool_size = pool_size
        self._executor: ThreadPoolExecutor | None = None

    # -------------------------------------------------------------------------
    # Single story
    # -------------------------------------------------------------------------

    def archive_story(self, tenant_id: str, story_id: str) -> StoryLifecycleResult:
        return self._mark_and_move(tenant_id, story_id, MoveDirection.ARCHIVE)

    def unarchive_story(self, tenant_id: str, story_id: str) -> StoryLifecycleResult:
        return self._mark_and_move(tenant_id, story_id, MoveDirection.UNARCHIVE)

    def _mark(self, tenant_id: str, story_id: str, direction: MoveDirection) -> bool:
        if direction == MoveDirection.ARCHIVE:
            return self.state_machine.mark_for_archive(tenant_id, story_id, initiated_by=self.initiated_by)
        return self.state_machine.mark_for_unarchive(tenant_id, story_id, initiated_by=self.initiated_by)

    def _mark_and_move(self, tenant_id: str, story_id: str, direction: MoveDirection) -> StoryLifecycleResult:
        result = StoryLifecycleResult(tenant_id=tenant_id, story_id=story_id, direction=direction)
        try:
            result.marked = self._mark(tenant_id, story_id, direction)
            if result.marked:
                result.move = self._run_move(tenant_id, story_id, direction)
        except (LifecycleError, StoreError) as e:
            self._log_aborted(tenant_id, story_id, direction, e)
            result.error = str(e)

        result.story = self.state_store.get_story(tenant_id, story_id)
        return result

    def _log_aborted(self, tenant_id: str, story_id: str, direction: MoveDirection, error: Exception) -> None:
        logger.error(
            f"{direction.value} of story {story_id} aborted: {error}",
            extra={"event": f"{direction.value}_aborted", "tenant_id": tenant_id, "story_id": story_id},
        )

    def _run_move(self, tenant_id: str, story_id: str, direction: MoveDirection) -> ArchiveResult:
        """Begin, move, then report the outcome back to the state machine."""
        begin = (
            self.state_machine.begin_archive
            if direction == MoveDirection.ARCHIVE
            else self.state_machine.begin_unarchive
        )
        in_flight = StoryState.ARCHIVING if direction == MoveDirection.ARCHIVE else StoryState.UNARCHIVING
        self._retry_transition(begin, tenant_id, story_id, in_flight)
        return self._finish_move(tenant_id, story_id, direction)

    def _finish_move(self, tenant_id: str, story_id: str, direction: MoveDirection) -> ArchiveResult:
        """
        Move the comments of an ARCHIVING/UNARCHIVING story and complete it.

        The completion transition runs whatever the worker does, so a story
        only stays in flight if the completion write itself cannot be made.
        """
        try:
            if direction == MoveDirection.ARCHIVE:
                move = self.worker.archive(tenant_id, story_id)
            else:
                move = self.worker.unarchive(tenant_id, story_id)
        except Exception as e:
            logger.exception(f"Worker raised during {direction.value} of story {story_id}")
            move = ArchiveResult(
                success=False,
                tenant_id=tenant_id,
                story_id=story_id,
                direction=direction,
                reason=ArchiveFailureReason.UNEXPECTED,
                error=str(e),
            )

        self._on_move_finished(move)
        return move

    def _on_move_finished(self, move: ArchiveResult) -> None:
        if move.direction == MoveDirection.ARCHIVE:
            complete = self.state_machine.complete_archive
            settled = StoryState.ARCHIVED if move.success else StoryState.OPEN
        else:
            complete = self.state_machine.complete_unarchive
            settled = StoryState.OPEN if move.success else StoryState.ARCHIVED

        try:
            self._retry_transition(complete, move.tenant_id, move.story_id, settled, success=move.success)
        except (LifecycleError, StoreError) as e:
            logger.error(
                f"Story {move.story_id} left in flight after {move.direction.value}: {e}. "
                "Run recover to settle it.",
                extra={
                    "event": "story_left_in_flight",
                    "tenant_id": move.tenant_id,
                    "story_id": move.story_id,
                    "success": move.success,
                },
            )
            raise

        if move.success and self.tree_service is not None:
            self._rebuild_tree(move.tenant_id, move.story_id)

    def _retry_transition(
        self,
        apply: Callable[..., object],
        tenant_id: str,
        story_id: str,
        target: StoryState,
        **kwargs,
    ) -> None:
        """
        Apply a begin/complete transition, retrying transient store errors.

        A write can commit and still report an error. The retry then finds
        the story already in target and the transition counts as applied.
        """
        try:
            retry_call(
                apply,
                tenant_id,
                story_id,
                initiated_by=self.initiated_by,
                policy=self.worker.retry_policy,
                retry_exceptions=(StoreUnavailableError,),
                sleep=self.worker.sleep,
                **kwargs,
            )
        except InvalidTransitionError as e:
            if e.state != target:
                raise
            logger.info(
                f"Story {story_id} already {target.value}; earlier write had committed",
                extra={"event": "story_transition_confirmed", "tenant_id": tenant_id, "story_id": story_id},
            )

    def _rebuild_tree(self, tenant_id: str, story_id: str) -> None:
        # The move already committed; a stale tree is refreshed by the next regeneration
        try:
            self.tree_service.generate_tree_for_story(tenant_id, story_id)
        except StoreError as e:
            logger.warning(
                f"Tree rebuild for story {story_id} failed after move: {e}",
                extra={"event": "tree_rebuild_failed", "tenant_id": tenant_id, "story_id": story_id},
            )

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def recover_story(self, tenant_id: str, story_id: str) -> StoryLifecycleResult | None:
        """
        Settle a story whose move stopped before reaching OPEN or ARCHIVED.

        A story in MARKED_FOR_* is begun and moved; one in ARCHIVING or
        UNARCHIVING is moved again and completed. Moves converge when re-run,
        so a partly done move is safe to repeat. No mark is taken here: call
        this only once the original move is known to have stopped, e.g. after
        a crash or after archive_story reported an error.

        Returns:
            The result of the resumed move, or None if the story is missing
            or already stable
        """
        snapshot = self.state_store.get_state(tenant_id, story_id)
        if snapshot is None or snapshot.state not in IN_FLIGHT_DIRECTIONS:
            return None

        direction = IN_FLIGHT_DIRECTIONS[snapshot.state]
        # The stopped caller's claim is taken over
        result = StoryLifecycleResult(tenant_id=tenant_id, story_id=story_id, direction=direction, marked=True)
        logger.warning(
            f"Recovering story {story_id} from {snapshot.state.value}",
            extra={
                "event": "story_recovery",
                "tenant_id": tenant_id,
                "story_id": story_id,
                "from_state": snapshot.state.value,
            },
        )
        try:
            if snapshot.state in (StoryState.MARKED_FOR_ARCHIVE, StoryState.MARKED_FOR_UNARCHIVE):
                result.move = self._run_move(tenant_id, story_id, direction)
            else:
                result.move = self._finish_move(tenant_id, story_id, direction)
        except (LifecycleError, StoreError) as e:
            self._log_aborted(tenant_id, story_id, direction, e)
            result.error = str(e)

        result.story = self.state_store.get_story(tenant_id, story_id)
        return result

    def recover_stories(
        self, tenant_id: str, story_ids: Sequence[str] | None = None
    ) -> list[StoryLifecycleResult]:
        """Recover every in-flight story of the tenant (or just story_ids)."""
        if story_ids is None:
            story_ids = self.state_store.list_story_ids(tenant_id)

        results = []
        for story_id in story_ids:
            result = self.recover_story(tenant_id, story_id)
            if result is not None:
                results.append(result)

        logger.info(
            f"Recovered {sum(r.success for r in results)} of {len(results)} in-flight stories",
            extra={"event": "story_recovery_complete", "tenant_id": tenant_id},
        )
        return results

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def archive_stories(self, tenant_id: str, story_ids: Sequence[str]) -> list[StoryRecord]:
        """
        Archive each story independently.

        Returns:
            The current durable record of every story that exists, in input
            order. Unknown ids are skipped.
        """
        return self._batch(tenant_id, story_ids, MoveDirection.ARCHIVE)

    def unarchive_stories(self, tenant_id: str, story_ids: Sequence[str]) -> list[StoryRecord]:
        """Mirror of archive_stories."""
        return self._batch(tenant_id, story_ids, MoveDirection.UNARCHIVE)

    def _batch(self, tenant_id: str, story_ids: Sequence[str], direction: MoveDirection) -> list[StoryRecord]:
        if self.batch_parallelism > 1 and len(story_ids) > 1:
            # Distinct ids only; per-story exclusion is still the CAS
            unique_ids = list(dict.fromkeys(story_ids))
            with ThreadPoolExecutor(max_workers=self.batch_parallelism) as pool:
                list(pool.map(lambda sid: self._mark_and_move(tenant_id, sid, direction), unique_ids))
        else:
            for story_id in story_ids:
                self._mark_and_move(tenant_id, story_id, direction)

        stories = []
        for story_id in story_ids:
            story = self.state_store.get_story(tenant_id, story_id)
            if story is not None:
                stories.append(story)

        logger.info(
            f"{direction.value} batch complete: {len(stories)} of {len(story_ids)} stories found",
            extra={"event": f"{direction.value}_batch_complete", "tenant_id": tenant_id},
        )
        return stories

    # -------------------------------------------------------------------------
    # Background dispatch
    # -------------------------------------------------------------------------

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._pool_size, thread_name_prefix="archive-worker")
        return self._executor

    def submit_archive(self, tenant_id: str, story_id: str) -> Future | None:
        """
        Mark the story in the calling thread, then move it on the pool.

        Returns:
            Future resolving to the ArchiveResult, or None if the mark was a
            no-op and nothing was scheduled
        """
        return self._submit(tenant_id, story_id, MoveDirection.ARCHIVE)

    def submit_unarchive(self, tenant_id: str, story_id: str) -> Future | None:
        return self._submit(tenant_id, story_id, MoveDirection.UNARCHIVE)

    def _submit(self, tenant_id: str, story_id: str, direction: MoveDirection) -> Future | None:
        if not self._mark(tenant_id, story_id, direction):
            return None

        future = self.executor.submit(self._run_move, tenant_id, story_id, direction)
        future.add_done_callback(lambda f: self._log_background_outcome(f, tenant_id, story_id, direction))
        logger.info(
            f"Scheduled {direction.value} of story {story_id}",
            extra={"event": f"{direction.value}_scheduled", "tenant_id": tenant_id, "story_id": story_id},
        )
        return future

    def _log_background_outcome(
        self, future: Future, tenant_id: str, story_id: str, direction: MoveDirection
    ) -> None:
        error = future.exception()
        if error is not None:
            logger.error(
                f"Background {direction.value} of story {story_id} raised: {error}",
                extra={"event": f"{direction.value}_background_error", "tenant_id": tenant_id, "story_id": story_id},
            )
            return

        move: ArchiveResult = future.result()
        logger.info(
            f"Background {direction.value} of story {story_id} finished (success={move.success})",
            extra={
                "event": f"{direction.value}_background_done",
                "tenant_id": tenant_id,
                "story_id": story_id,
                "comments_moved": move.comments_moved,
                "reason": move.reason.value if move.reason else None,
            },
        )

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
