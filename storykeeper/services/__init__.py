# storykeeper/services/__init__.py
"""
Business logic services.
"""

from storykeeper.services.lifecycle import ArchiveStateMachine, ArchiveWorker, LifecycleService
from storykeeper.services.threading.tree_service import RegenerateResult, TreeRegenerationOrchestrator

__all__ = [
    "ArchiveStateMachine",
    "ArchiveWorker",
    "LifecycleService",
    "TreeRegenerationOrchestrator",
    "RegenerateResult",
]
