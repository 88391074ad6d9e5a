"""
Error taxonomy for story lifecycle operations.

- InvalidTransitionError: not legal from the current state; mark operations
  turn it into a False result
- ConcurrentModificationError: the compare-and-swap kept losing races
- ArchiveError: a bulk move could not complete; carries a machine-readable
  reason for callers that render specific messages
"""

from enum import Enum

from storykeeper.models import LifecycleEvent, StoryState


class LifecycleError(Exception):
    """Base class for lifecycle errors."""

    pass


class StoryNotFoundError(LifecycleError):
    """The story does not exist for this tenant."""

    def __init__(self, tenant_id: str, story_id: str):
        super().__init__(f"Story {story_id} not found for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.story_id = story_id


class InvalidTransitionError(LifecycleError):
    """The event is not legal from the story's current state."""

    def __init__(self, story_id: str, state: StoryState, event: LifecycleEvent):
        super().__init__(f"Cannot apply {event.value} to story {story_id} in state {state.value}")
        self.story_id = story_id
        self.state = state
        self.event = event


class ConcurrentModificationError(LifecycleError):
    """Compare-and-swap lost every attempt to concurrent writers."""

    def __init__(self, story_id: str, event: LifecycleEvent, attempts: int):
        super().__init__(f"Story {story_id} changed concurrently during {event.value} ({attempts} attempts)")
        self.story_id = story_id
        self.event = event
        self.attempts = attempts


class ArchiveFailureReason(str, Enum):
    """Why a bulk move failed."""

    INVALID_STATE = "invalid_state"
    STORE_UNAVAILABLE = "store_unavailable"
    WRITE_REJECTED = "write_rejected"
    TIMEOUT = "timeout"
    UNEXPECTED = "unexpected"


class ArchiveError(LifecycleError):
    """A bulk archive or unarchive move failed."""

    def __init__(self, reason: ArchiveFailureReason, message: str):
        super().__init__(message)
        self.reason = reason
