# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import os
from datetime import UTC, datetime, timedelta

import pytest

# Set test environment before storykeeper.database builds its engine
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from storykeeper.clock import FixedClock  # noqa: E402
from storykeeper.services.lifecycle.archive_worker import ArchiveWorker  # noqa: E402
from storykeeper.services.lifecycle.lifecycle_service import LifecycleService  # noqa: E402
from storykeeper.services.lifecycle.state_machine import ArchiveStateMachine  # noqa: E402
from storykeeper.services.resilience import RetryPolicy  # noqa: E402
from storykeeper.services.threading.tree_service import TreeRegenerationOrchestrator  # noqa: E402
from storykeeper.stores.base import Comment  # noqa: E402
from storykeeper.stores.memory import (  # noqa: E402
    CachedTreeStore,
    InMemoryColdCommentStore,
    InMemoryJobQueue,
    InMemoryLiveCommentStore,
    InMemoryStoryStateStore,
)

DEFAULT_TENANT = "tenant-1"
BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_comment():
    """Factory for comments created `minute` minutes after base_time."""

    def factory(
        comment_id, parent_id=None, minute=0, story_id="story-1", tenant_id=DEFAULT_TENANT, **kwargs
    ) -> Comment:
        return Comment(
            id=str(comment_id),
            story_id=story_id,
            tenant_id=tenant_id,
            parent_id=None if parent_id is None else str(parent_id),
            created_at=BASE_TIME + timedelta(minutes=minute),
            **kwargs,
        )

    return factory


@pytest.fixture
def clock():
    return FixedClock(BASE_TIME)


@pytest.fixture
def state_store():
    return InMemoryStoryStateStore()


@pytest.fixture
def live_store():
    return InMemoryLiveCommentStore()


@pytest.fixture
def cold_store():
    return InMemoryColdCommentStore()


@pytest.fixture
def job_queue():
    return InMemoryJobQueue()


@pytest.fixture
def tree_store():
    return CachedTreeStore()


@pytest.fixture
def no_sleep():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def machine(state_store, clock):
    return ArchiveStateMachine(state_store, clock=clock, max_cas_attempts=5)


@pytest.fixture
def worker(live_store, cold_store, state_store, no_sleep):
    return ArchiveWorker(
        live_store,
        cold_store,
        state_store,
        retry_policy=RetryPolicy(max_attempts=3, min_wait=0.01, max_wait=0.05),
        batch_size=2,
        timeout_seconds=60,
        sleep=no_sleep.append,
    )


@pytest.fixture
def tree_service(live_store, cold_store, state_store, tree_store, job_queue, clock):
    return TreeRegenerationOrchestrator(
        live_store=live_store,
        cold_store=cold_store,
        state_store=state_store,
        tree_store=tree_store,
        queue=job_queue,
        clock=clock,
    )


@pytest.fixture
def lifecycle(machine, worker, state_store, tree_service):
    service = LifecycleService(machine, worker, state_store, tree_service=tree_service, pool_size=2)
    yield service
    service.shutdown(wait=True)


@pytest.fixture
def sql_session_factory():
    """Fresh in-memory SQLite database with the full schema."""
    from storykeeper import models  # noqa: F401
    from storykeeper.database import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    yield factory
    engine.dispose()
