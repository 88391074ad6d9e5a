# storykeeper/stores/__init__.py
"""
Collaborator stores: interfaces plus SQL, object-storage and in-memory
implementations.
"""

from storykeeper.stores.base import (
    ColdCommentStore,
    Comment,
    CommentStore,
    JobQueue,
    LiveCommentStore,
    StoreError,
    StoreUnavailableError,
    StoreWriteRejectedError,
    StoryRecord,
    StoryStateSnapshot,
    StoryStateStore,
    TreeStore,
)

__all__ = [
    "Comment",
    "CommentStore",
    "LiveCommentStore",
    "ColdCommentStore",
    "StoryStateStore",
    "StoryStateSnapshot",
    "StoryRecord",
    "JobQueue",
    "TreeStore",
    "StoreError",
    "StoreUnavailableError",
    "StoreWriteRejectedError",
]
