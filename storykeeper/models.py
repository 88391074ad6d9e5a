# storykeeper/models.py
"""
Database Models

Tables:
- Story: Lifecycle state + revision counter used for compare-and-swap
- LiveComment: Live tier comments (hot, queried by the stream)
- ArchivedComment: Cold tier comments when the database provider is used
- StoryLifecycleEvent: Immutable audit trail of state transitions
- StoryTree: Cached materialized comment tree per story
- QueuedJob: Row-backed queue for background jobs (tree regeneration)
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)

from storykeeper.database import Base


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class StoryState(str, Enum):
    """Lifecycle state of a story across the live and cold tiers."""
    OPEN = "open"
    MARKED_FOR_ARCHIVE = "marked_for_archive"
    ARCHIVING = "archiving"
    ARCHIVED = "archived"
    MARKED_FOR_UNARCHIVE = "marked_for_unarchive"
    UNARCHIVING = "unarchiving"


class CommentTier(str, Enum):
    """Which store currently holds a comment body."""
    LIVE = "live"
    COLD = "cold"


class LifecycleEvent(str, Enum):
    """Events that drive the story state machine."""
    MARK_FOR_ARCHIVE = "mark_for_archive"
    BEGIN_ARCHIVE = "begin_archive"
    ARCHIVE_SUCCESS = "archive_success"
    ARCHIVE_FAILURE = "archive_failure"
    MARK_FOR_UNARCHIVE = "mark_for_unarchive"
    BEGIN_UNARCHIVE = "begin_unarchive"
    UNARCHIVE_SUCCESS = "unarchive_success"
    UNARCHIVE_FAILURE = "unarchive_failure"


class QueuedJobStatus(str, Enum):
    """Status of a queued background job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# -----------------------------------------------------------------------------
# Story
# -----------------------------------------------------------------------------

class Story(Base):
    """
    A content item that comments are attached to.

    The state column is never read-modify-written: every change goes through
    an UPDATE ... WHERE state = :expected AND revision = :expected.
    """
    __tablename__ = "stories"

    tenant_id = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)
    url = Column(Text, nullable=True)

    state = Column(String(32), nullable=False, default=StoryState.OPEN.value)
    revision = Column(Integer, nullable=False, default=0)

    archived_at = Column(DateTime(timezone=True), nullable=True)
    unarchived_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_stories_tenant_state", "tenant_id", "state"),
    )


# -----------------------------------------------------------------------------
# Comments (live + cold tiers share one column layout)
# -----------------------------------------------------------------------------

class CommentColumns:
    """Columns shared by the live and cold comment tables."""

    tenant_id = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)
    story_id = Column(String(128), nullable=False)
    parent_id = Column(String(128), nullable=True)  # NULL = top-level
    author_id = Column(String(128), nullable=True)
    body = Column(Text, nullable=True)
    reply_count = Column(Integer, nullable=False, default=0)
    tier = Column(String(8), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class LiveComment(CommentColumns, Base):
    """Live tier comments."""
    __tablename__ = "comments"

    __table_args__ = (
        Index("ix_comments_tenant_story", "tenant_id", "story_id", "created_at"),
    )


class ArchivedComment(CommentColumns, Base):
    """Cold tier comments (database cold storage provider)."""
    __tablename__ = "archived_comments"

    __table_args__ = (
        Index("ix_archived_comments_tenant_story", "tenant_id", "story_id", "created_at"),
    )


# -----------------------------------------------------------------------------
# StoryLifecycleEvent
# -----------------------------------------------------------------------------

class StoryLifecycleEvent(Base):
    """
    Immutable audit trail for story state transitions.

    One row per successful compare-and-swap. Failed CAS attempts are not
    recorded since they did not change anything.
    """
    __tablename__ = "story_lifecycle_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    story_id = Column(String(128), nullable=False)
    event = Column(String(32), nullable=False)
    from_state = Column(String(32), nullable=False)
    to_state = Column(String(32), nullable=False)
    revision = Column(Integer, nullable=False)  # revision after the transition
    initiated_by = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_story_lifecycle_events_story", "tenant_id", "story_id", "created_at"),
    )


# -----------------------------------------------------------------------------
# StoryTree
# -----------------------------------------------------------------------------

class StoryTree(Base):
    """Materialized comment tree for one story, rebuilt on demand or in bulk."""
    __tablename__ = "story_trees"

    tenant_id = Column(String(64), primary_key=True)
    story_id = Column(String(128), primary_key=True)
    tree = Column(JSON, nullable=False)
    comment_count = Column(Integer, nullable=False, default=0)
    integrity_warnings = Column(Integer, nullable=False, default=0)
    generated_at = Column(DateTime(timezone=True), nullable=False)


# -----------------------------------------------------------------------------
# QueuedJob
# -----------------------------------------------------------------------------

class QueuedJob(Base):
    """
    Job handed off to the background queue.

    Only the enqueue side lives in this service's request path; workers claim
    pending rows and own execution from there.
    """
    __tablename__ = "queued_jobs"

    id = Column(String(36), primary_key=True)  # job_id
    queue = Column(String(64), nullable=False)
    tenant_id = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default=QueuedJobStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_queued_jobs_queue_status", "queue", "status", "created_at"),
    )
