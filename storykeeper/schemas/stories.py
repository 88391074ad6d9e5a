# storykeeper/schemas/stories.py
"""
Schemas for story lifecycle and comment tree endpoints.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StoryIdsRequest(BaseModel):
    """
    Stories to archive or unarchive.
    POST /v1/stories/archive, POST /v1/stories/unarchive
    """

    story_ids: list[str] = Field(..., min_length=1, max_length=100, description="Story IDs, processed in order")
    background: bool = Field(False, description="Move comments on the worker pool instead of inline")


class StoryResponse(BaseModel):
    """Current durable lifecycle view of a story."""

    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    id: str
    state: str = Field(..., description="open|marked_for_archive|archiving|archived|marked_for_unarchive|unarchiving")
    revision: int
    archived_at: datetime | None = None
    unarchived_at: datetime | None = None
    url: str | None = None


class StoryListResponse(BaseModel):
    stories: list[StoryResponse]


class TreeWarningResponse(BaseModel):
    kind: str = Field(..., description="orphan|cycle|duplicate")
    comment_id: str
    detail: str


class CommentTreeResponse(BaseModel):
    """
    Materialized comment tree.
    GET /v1/stories/{id}/tree
    """

    tenant_id: str
    story_id: str
    state: str
    generated_at: datetime
    comment_count: int
    warnings: list[TreeWarningResponse] = []
    roots: list[dict[str, Any]] = Field(
        ..., description="Nested nodes: id, parent_id, created_at, depth, reply_count, children"
    )


class RegenerateTreesRequest(BaseModel):
    """
    Tenant-wide tree regeneration.
    POST /v1/stories/trees/regenerate
    """

    disable_commenting: bool = False
    disable_commenting_message: str | None = None


class RegenerateTreesResponse(BaseModel):
    accepted: bool
    job_id: str = Field(..., description="Empty when the job was never enqueued")
    error: str | None = None
