# storykeeper/dependencies.py
"""
Process-wide service wiring shared by the HTTP app and the CLI.

Each getter builds its object once; FastAPI routes take them through
Depends so tests can swap in in-memory stores with dependency_overrides.
"""

from functools import lru_cache

from storykeeper.config import get_settings
from storykeeper.database import SessionLocal
from storykeeper.services.lifecycle.archive_worker import ArchiveWorker
from storykeeper.services.lifecycle.lifecycle_service import LifecycleService
from storykeeper.services.lifecycle.state_machine import ArchiveStateMachine
from storykeeper.services.threading.tree_service import REGENERATE_STORY_TREES_QUEUE, TreeRegenerationOrchestrator
from storykeeper.storage.factory import get_storage_provider
from storykeeper.stores.base import ColdCommentStore
from storykeeper.stores.memory import CachedTreeStore
from storykeeper.stores.object_storage import ObjectStorageColdCommentStore
from storykeeper.stores.sql import (
    SqlColdCommentStore,
    SqlJobQueue,
    SqlLiveCommentStore,
    SqlStoryStateStore,
    SqlTreeStore,
)


@lru_cache
def get_state_store() -> SqlStoryStateStore:
    return SqlStoryStateStore(SessionLocal)


@lru_cache
def get_live_store() -> SqlLiveCommentStore:
    return SqlLiveCommentStore(SessionLocal, page_size=get_settings().ARCHIVE_BATCH_SIZE)


@lru_cache
def get_cold_store() -> ColdCommentStore:
    """Cold tier chosen by COLD_STORAGE_PROVIDER: database table or object storage."""
    settings = get_settings()
    if settings.COLD_STORAGE_PROVIDER == "database":
        return SqlColdCommentStore(SessionLocal, page_size=settings.ARCHIVE_BATCH_SIZE)
    return ObjectStorageColdCommentStore(get_storage_provider(settings.COLD_STORAGE_PROVIDER))


@lru_cache
def get_tree_store() -> CachedTreeStore:
    settings = get_settings()
    return CachedTreeStore(
        SqlTreeStore(SessionLocal),
        maxsize=settings.TREE_CACHE_MAX_STORIES,
        ttl=settings.TREE_CACHE_TTL_SECONDS,
    )


@lru_cache
def get_job_queue() -> SqlJobQueue:
    return SqlJobQueue(SessionLocal, REGENERATE_STORY_TREES_QUEUE)


@lru_cache
def get_tree_service() -> TreeRegenerationOrchestrator:
    return TreeRegenerationOrchestrator(
        live_store=get_live_store(),
        cold_store=get_cold_store(),
        state_store=get_state_store(),
        tree_store=get_tree_store(),
        queue=get_job_queue(),
    )


@lru_cache
def get_lifecycle_service() -> LifecycleService:
    settings = get_settings()
    state_store = get_state_store()
    return LifecycleService(
        state_machine=ArchiveStateMachine(state_store, max_cas_attempts=settings.LIFECYCLE_CAS_MAX_ATTEMPTS),
        worker=ArchiveWorker.from_settings(get_live_store(), get_cold_store(), state_store, settings),
        state_store=state_store,
        tree_service=get_tree_service(),
        pool_size=settings.ARCHIVE_WORKER_POOL_SIZE,
        batch_parallelism=settings.ARCHIVE_BATCH_PARALLELISM,
    )


def reset_dependencies() -> None:
    """Drop every cached instance (tests, settings reloads)."""
    if get_lifecycle_service.cache_info().currsize:
        get_lifecycle_service().shutdown(wait=True)
    for getter in (
        get_state_store,
        get_live_store,
        get_cold_store,
        get_tree_store,
        get_job_queue,
        get_tree_service,
        get_lifecycle_service,
    ):
        getter.cache_clear()
