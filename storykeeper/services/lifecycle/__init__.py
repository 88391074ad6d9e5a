# storykeeper/services/lifecycle/__init__.py
"""
Story lifecycle: state machine, bulk comment mover and the service that
sequences them.
"""

from storykeeper.services.lifecycle.archive_worker import ArchiveResult, ArchiveWorker, MoveDirection
from storykeeper.services.lifecycle.errors import (
    ArchiveError,
    ArchiveFailureReason,
    ConcurrentModificationError,
    InvalidTransitionError,
    LifecycleError,
    StoryNotFoundError,
)
from storykeeper.services.lifecycle.lifecycle_service import LifecycleService, StoryLifecycleResult
from storykeeper.services.lifecycle.state_machine import TRANSITIONS, ArchiveStateMachine

__all__ = [
    "ArchiveStateMachine",
    "TRANSITIONS",
    "ArchiveWorker",
    "ArchiveResult",
    "MoveDirection",
    "LifecycleService",
    "StoryLifecycleResult",
    "LifecycleError",
    "StoryNotFoundError",
    "InvalidTransitionError",
    "ConcurrentModificationError",
    "ArchiveError",
    "ArchiveFailureReason",
]
