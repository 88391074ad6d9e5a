# storykeeper/routers/stories.py
"""
Story lifecycle and comment tree endpoints.

POST /v1/stories/archive - Archive stories (mark, move comments to cold tier)
POST /v1/stories/unarchive - Unarchive stories (mark, move comments back)
POST /v1/stories/{id}/tree - Rebuild one story's comment tree now
GET /v1/stories/{id}/tree - Get the cached comment tree
POST /v1/stories/trees/regenerate - Enqueue a tenant-wide tree regeneration job
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from storykeeper.dependencies import get_lifecycle_service, get_tree_service
from storykeeper.schemas.stories import (
    CommentTreeResponse,
    RegenerateTreesRequest,
    RegenerateTreesResponse,
    StoryIdsRequest,
    StoryListResponse,
    StoryResponse,
)
from storykeeper.services.lifecycle.archive_worker import MoveDirection
from storykeeper.services.lifecycle.errors import StoryNotFoundError
from storykeeper.services.lifecycle.lifecycle_service import LifecycleService
from storykeeper.services.threading.tree_service import TreeRegenerationOrchestrator
from storykeeper.stores.base import StoreError, StoryRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/stories", tags=["stories"])


def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID", min_length=1)) -> str:
    return x_tenant_id


def _story_response(record: StoryRecord) -> StoryResponse:
    return StoryResponse(
        tenant_id=record.tenant_id,
        id=record.id,
        state=record.state.value,
        revision=record.revision,
        archived_at=record.archived_at,
        unarchived_at=record.unarchived_at,
        url=record.url,
    )


def _run_lifecycle(
    service: LifecycleService, tenant_id: str, request: StoryIdsRequest, direction: MoveDirection
) -> StoryListResponse:
    try:
        if request.background:
            submit = service.submit_archive if direction == MoveDirection.ARCHIVE else service.submit_unarchive
            for story_id in request.story_ids:
                submit(tenant_id, story_id)
            records = [service.state_store.get_story(tenant_id, story_id) for story_id in request.story_ids]
            stories = [record for record in records if record is not None]
        elif direction == MoveDirection.ARCHIVE:
            stories = service.archive_stories(tenant_id, request.story_ids)
        else:
            stories = service.unarchive_stories(tenant_id, request.story_ids)
    except StoreError as e:
        logger.error(f"{direction.value} request failed: {e}")
        raise HTTPException(status_code=503, detail="Story store unavailable")

    return StoryListResponse(stories=[_story_response(story) for story in stories])


@router.post("/archive", response_model=StoryListResponse)
def archive_stories(
    request: StoryIdsRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> StoryListResponse:
    """
    Archive each story independently.

    Returns the post-attempt state of every existing story, so callers can
    compare with what they sent to tell newly archived from already archived.
    """
    return _run_lifecycle(service, tenant_id, request, MoveDirection.ARCHIVE)


@router.post("/unarchive", response_model=StoryListResponse)
def unarchive_stories(
    request: StoryIdsRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> StoryListResponse:
    return _run_lifecycle(service, tenant_id, request, MoveDirection.UNARCHIVE)


@router.post("/trees/regenerate", response_model=RegenerateTreesResponse)
def regenerate_story_trees(
    request: RegenerateTreesRequest,
    tenant_id: str = Depends(get_tenant_id),
    tree_service: TreeRegenerationOrchestrator = Depends(get_tree_service),
) -> RegenerateTreesResponse:
    """A rejected job is reported in the body (accepted=false), not as an HTTP error."""
    result = tree_service.regenerate_story_trees(
        tenant_id,
        disable_commenting=request.disable_commenting,
        disable_commenting_message=request.disable_commenting_message,
    )
    return RegenerateTreesResponse(accepted=result.accepted, job_id=result.job_id, error=result.error)


@router.post("/{story_id}/tree", response_model=CommentTreeResponse)
def generate_story_tree(
    story_id: str,
    tenant_id: str = Depends(get_tenant_id),
    tree_service: TreeRegenerationOrchestrator = Depends(get_tree_service),
) -> CommentTreeResponse:
    try:
        tree_service.generate_tree_for_story(tenant_id, story_id)
        document = tree_service.get_tree(tenant_id, story_id)
    except StoryNotFoundError:
        raise HTTPException(status_code=404, detail="Story not found")
    except StoreError as e:
        logger.error(f"Tree generation for story {story_id} failed: {e}")
        raise HTTPException(status_code=503, detail="Comment store unavailable")

    if document is None:
        raise HTTPException(status_code=500, detail="Tree was not stored")
    return CommentTreeResponse(**document)


@router.get("/{story_id}/tree", response_model=CommentTreeResponse)
def get_story_tree(
    story_id: str,
    tenant_id: str = Depends(get_tenant_id),
    tree_service: TreeRegenerationOrchestrator = Depends(get_tree_service),
) -> CommentTreeResponse:
    try:
        document = tree_service.get_tree(tenant_id, story_id)
    except StoreError as e:
        logger.error(f"Tree lookup for story {story_id} failed: {e}")
        raise HTTPException(status_code=503, detail="Tree store unavailable")

    if document is None:
        raise HTTPException(status_code=404, detail="Tree not generated")
    return CommentTreeResponse(**document)
