# storykeeper/services/lifecycle/state_machine.py
"""
Story lifecycle state machine.

Owns every write to a story's lifecycle state. Transitions are looked up in
TRANSITIONS and applied with a compare-and-swap on (state, revision) against
the durable StoryStateStore, so exclusion holds across processes without any
in-process lock.

    OPEN --mark--> MARKED_FOR_ARCHIVE --begin--> ARCHIVING --success--> ARCHIVED
      ^                                              |
      +------------------- failure ------------------+

    ARCHIVED --mark--> MARKED_FOR_UNARCHIVE --begin--> UNARCHIVING --success--> OPEN
        ^                                                  |
        +--------------------- failure --------------------+
"""

import logging

from storykeeper.clock import Clock, system_clock
from storykeeper.models import LifecycleEvent, StoryState
from storykeeper.services.lifecycle.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    StoryNotFoundError,
)
from storykeeper.stores.base import StoryStateSnapshot, StoryStateStore

logger = logging.getLogger(__name__)


TRANSITIONS: dict[tuple[StoryState, LifecycleEvent], StoryState] = {
    (StoryState.OPEN, LifecycleEvent.MARK_FOR_ARCHIVE): StoryState.MARKED_FOR_ARCHIVE,
    (StoryState.MARKED_FOR_ARCHIVE, LifecycleEvent.BEGIN_ARCHIVE): StoryState.ARCHIVING,
    (StoryState.ARCHIVING, LifecycleEvent.ARCHIVE_SUCCESS): StoryState.ARCHIVED,
    (StoryState.ARCHIVING, LifecycleEvent.ARCHIVE_FAILURE): StoryState.OPEN,
    (StoryState.ARCHIVED, LifecycleEvent.MARK_FOR_UNARCHIVE): StoryState.MARKED_FOR_UNARCHIVE,
    (StoryState.MARKED_FOR_UNARCHIVE, LifecycleEvent.BEGIN_UNARCHIVE): StoryState.UNARCHIVING,
    (StoryState.UNARCHIVING, LifecycleEvent.UNARCHIVE_SUCCESS): StoryState.OPEN,
    (StoryState.UNARCHIVING, LifecycleEvent.UNARCHIVE_FAILURE): StoryState.ARCHIVED,
}

# Stable states a story rests in between cycles
STABLE_STATES = frozenset({StoryState.OPEN, StoryState.ARCHIVED})


def next_state(state: StoryState, event: LifecycleEvent) -> StoryState | None:
    """Target state for event from state, or None if the transition is illegal."""
    return TRANSITIONS.get((state, event))


class ArchiveStateMachine:
    """
    Applies lifecycle events to stories.

    Usage:
        machine = ArchiveStateMachine(state_store)

        if machine.mark_for_archive(tenant_id, story_id):
            machine.begin_archive(tenant_id, story_id)
            ...  # move comments
            machine.complete_archive(tenant_id, story_id, success=True)
    """

    def __init__(
        self,
        state_store: StoryStateStore,
        clock: Clock = system_clock,
        max_cas_attempts: int = 5,
    ):
        self._store = state_store
        self._clock = clock
        self._max_cas_attempts = max_cas_attempts

    # -------------------------------------------------------------------------
    # Primitive
    # -------------------------------------------------------------------------

    def transition(
        self,
        tenant_id: str,
        story_id: str,
        event: LifecycleEvent,
        initiated_by: str | None = None,
    ) -> StoryStateSnapshot:
        """
        Apply event to the story.

        The current (state, revision) is read, the target looked up, and the
        write made conditional on both being unchanged. A lost CAS re-reads
        and re-evaluates, since the winner may have made the event illegal.

        Raises:
            StoryNotFoundError: story does not exist
            InvalidTransitionError: event not legal from the current state
            ConcurrentModificationError: every CAS attempt lost a race
        """
        for attempt in range(1, self._max_cas_attempts + 1):
            snapshot = self._store.get_state(tenant_id, story_id)
            if snapshot is None:
                raise StoryNotFoundError(tenant_id, story_id)

            target = next_state(snapshot.state, event)
            if target is None:
                raise InvalidTransitionError(story_id, snapshot.state, event)

            swapped = self._store.compare_and_swap_state(
                tenant_id,
                story_id,
                expected_state=snapshot.state,
                expected_revision=snapshot.revision,
                new_state=target,
                event=event,
                initiated_by=initiated_by,
                fields=self._fields_for(event),
            )
            if swapped:
                logger.info(
                    f"Story {story_id}: {snapshot.state.value} -> {target.value} ({event.value})",
                    extra={
                        "event": "story_transition",
                        "tenant_id": tenant_id,
                        "story_id": story_id,
                        "from_state": snapshot.state.value,
                        "to_state": target.value,
                        "lifecycle_event": event.value,
                    },
                )
                return StoryStateSnapshot(state=target, revision=snapshot.revision + 1)

            logger.debug(
                f"Story {story_id}: lost CAS for {event.value} at revision {snapshot.revision}",
                extra={"event": "story_cas_conflict", "story_id": story_id, "attempt": attempt},
            )

        raise ConcurrentModificationError(story_id, event, self._max_cas_attempts)

    def _fields_for(self, event: LifecycleEvent) -> dict:
        if event == LifecycleEvent.ARCHIVE_SUCCESS:
            return {"archived_at": self._clock.now()}
        if event == LifecycleEvent.UNARCHIVE_SUCCESS:
            return {"unarchived_at": self._clock.now()}
        return {}

    # -------------------------------------------------------------------------
    # Marks (idempotent, never raise for illegal states)
    # -------------------------------------------------------------------------

    def _mark(self, tenant_id: str, story_id: str, event: LifecycleEvent, initiated_by: str | None) -> bool:
        try:
            self.transition(tenant_id, story_id, event, initiated_by=initiated_by)
            return True
        except InvalidTransitionError as e:
            logger.info(
                f"Story {story_id} not marked: already {e.state.value}",
                extra={
                    "event": "story_mark_noop",
                    "tenant_id": tenant_id,
                    "story_id": story_id,
                    "from_state": e.state.value,
                    "lifecycle_event": event.value,
                },
            )
            return False
        except StoryNotFoundError:
            logger.warning(
                f"Story {story_id} not marked: not found",
                extra={"event": "story_mark_noop", "tenant_id": tenant_id, "story_id": story_id},
            )
            return False

    def mark_for_archive(self, tenant_id: str, story_id: str, initiated_by: str | None = None) -> bool:
        """
        OPEN -> MARKED_FOR_ARCHIVE.

        Returns True only for the one caller whose write won; that caller is
        the only one allowed to start the archive move.
        """
        return self._mark(tenant_id, story_id, LifecycleEvent.MARK_FOR_ARCHIVE, initiated_by)

    def mark_for_unarchive(self, tenant_id: str, story_id: str, initiated_by: str | None = None) -> bool:
        """ARCHIVED -> MARKED_FOR_UNARCHIVE. Same contract as mark_for_archive."""
        return self._mark(tenant_id, story_id, LifecycleEvent.MARK_FOR_UNARCHIVE, initiated_by)

    # -------------------------------------------------------------------------
    # Move bracketing
    # -------------------------------------------------------------------------

    def begin_archive(self, tenant_id: str, story_id: str, initiated_by: str | None = None) -> StoryStateSnapshot:
        return self.transition(tenant_id, story_id, LifecycleEvent.BEGIN_ARCHIVE, initiated_by)

    def begin_unarchive(self, tenant_id: str, story_id: str, initiated_by: str | None = None) -> StoryStateSnapshot:
        return self.transition(tenant_id, story_id, LifecycleEvent.BEGIN_UNARCHIVE, initiated_by)

    def complete_archive(
        self, tenant_id: str, story_id: str, success: bool, initiated_by: str | None = None
    ) -> StoryStateSnapshot:
        """ARCHIVING -> ARCHIVED on success, back to OPEN on failure."""
        event = LifecycleEvent.ARCHIVE_SUCCESS if success else LifecycleEvent.ARCHIVE_FAILURE
        return self.transition(tenant_id, story_id, event, initiated_by)

    def complete_unarchive(
        self, tenant_id: str, story_id: str, success: bool, initiated_by: str | None = None
    ) -> StoryStateSnapshot:
        """UNARCHIVING -> OPEN on success, back to ARCHIVED on failure."""
        event = LifecycleEvent.UNARCHIVE_SUCCESS if success else LifecycleEvent.UNARCHIVE_FAILURE
        return self.transition(tenant_id, story_id, event, initiated_by)

    def get_state(self, tenant_id: str, story_id: str) -> StoryStateSnapshot | None:
        return self._store.get_state(tenant_id, story_id)
