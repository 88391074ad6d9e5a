# storykeeper/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.
"""

from storykeeper.schemas.stories import (
    CommentTreeResponse,
    RegenerateTreesRequest,
    RegenerateTreesResponse,
    StoryIdsRequest,
    StoryListResponse,
    StoryResponse,
    TreeWarningResponse,
)

__all__ = [
    "CommentTreeResponse",
    "RegenerateTreesRequest",
    "RegenerateTreesResponse",
    "StoryIdsRequest",
    "StoryListResponse",
    "StoryResponse",
    "TreeWarningResponse",
]
