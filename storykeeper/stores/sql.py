# storykeeper/stores/sql.py
"""
SQLAlchemy-backed stores.

Every call opens its own session from the injected factory, so the stores
can be shared across the archive worker pool (sessions are not thread-safe).
"""

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from storykeeper.models import (
    ArchivedComment,
    CommentTier,
    LifecycleEvent,
    LiveComment,
    QueuedJob,
    QueuedJobStatus,
    Story,
    StoryLifecycleEvent,
    StoryState,
    StoryTree,
)
from storykeeper.stores.base import (
    ColdCommentStore,
    Comment,
    CommentStore,
    JobQueue,
    LiveCommentStore,
    StoreUnavailableError,
    StoreWriteRejectedError,
    StoryRecord,
    StoryStateSnapshot,
    StoryStateStore,
    TreeStore,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@contextmanager
def _translate_errors(operation: str):
    """Map driver errors onto the store error taxonomy."""
    try:
        yield
    except OperationalError as e:
        raise StoreUnavailableError(f"{operation}: {e}") from e
    except IntegrityError as e:
        raise StoreWriteRejectedError(f"{operation}: {e}") from e
    except SQLAlchemyError as e:
        raise StoreUnavailableError(f"{operation}: {e}") from e


# -----------------------------------------------------------------------------
# Comments
# -----------------------------------------------------------------------------


class _SqlCommentStore(CommentStore):
    model: type = LiveComment

    def __init__(self, session_factory: SessionFactory, page_size: int = 500):
        self._session_factory = session_factory
        self._page_size = page_size

    @property
    def name(self) -> str:
        return "sql"

    def _to_comment(self, row) -> Comment:
        return Comment(
            id=row.id,
            tenant_id=row.tenant_id,
            story_id=row.story_id,
            parent_id=row.parent_id,
            created_at=row.created_at,
            reply_count=row.reply_count,
            tier=CommentTier(row.tier),
            body=row.body,
            author_id=row.author_id,
        )

    def stream_comments(self, tenant_id: str, story_id: str) -> Iterator[Comment]:
        # Keyset pagination on id: callers may delete rows they have already seen
        last_id = None
        while True:
            query = (
                select(self.model)
                .where(self.model.tenant_id == tenant_id, self.model.story_id == story_id)
                .order_by(self.model.id)
                .limit(self._page_size)
            )
            if last_id is not None:
                query = query.where(self.model.id > last_id)

            with _translate_errors(f"stream {self.tier.value} comments"):
                with self._session_factory() as db:
                    page = [self._to_comment(row) for row in db.execute(query).scalars()]

            yield from page
            if len(page) < self._page_size:
                return
            last_id = page[-1].id

    def upsert_comments(self, tenant_id: str, story_id: str, comments: Sequence[Comment]) -> int:
        if not comments:
            return 0
        with _translate_errors(f"upsert {self.tier.value} comments"):
            with self._session_factory() as db:
                for comment in comments:
                    db.merge(
                        self.model(
                            tenant_id=tenant_id,
                            id=comment.id,
                            story_id=story_id,
                            parent_id=comment.parent_id,
                            author_id=comment.author_id,
                            body=comment.body,
                            reply_count=comment.reply_count,
                            tier=self.tier.value,
                            created_at=comment.created_at,
                        )
                    )
                db.commit()
        return len(comments)

    def delete_comments(self, tenant_id: str, story_id: str, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        with _translate_errors(f"delete {self.tier.value} comments"):
            with self._session_factory() as db:
                result = db.execute(
                    delete(self.model).where(
                        self.model.tenant_id == tenant_id,
                        self.model.story_id == story_id,
                        self.model.id.in_(list(ids)),
                    ).execution_options(synchronize_session=False)
                )
                db.commit()
                return result.rowcount or 0


class SqlLiveCommentStore(_SqlCommentStore, LiveCommentStore):
    model = LiveComment


class SqlColdCommentStore(_SqlCommentStore, ColdCommentStore):
    model = ArchivedComment


# -----------------------------------------------------------------------------
# Story state
# -----------------------------------------------------------------------------


class SqlStoryStateStore(StoryStateStore):
    """
    Story lifecycle state on the `stories` table.

    CAS is a single conditional UPDATE; the audit row is inserted in the same
    transaction so a transition and its event are never observed apart.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def get_state(self, tenant_id: str, story_id: str) -> StoryStateSnapshot | None:
        with _translate_errors("get story state"):
            with self._session_factory() as db:
                row = db.execute(
                    select(Story.state, Story.revision).where(
                        Story.tenant_id == tenant_id, Story.id == story_id
                    )
                ).first()
        if row is None:
            return None
        return StoryStateSnapshot(state=StoryState(row.state), revision=row.revision)

    def compare_and_swap_state(
        self,
        tenant_id: str,
        story_id: str,
        expected_state: StoryState,
        expected_revision: int,
        new_state: StoryState,
        *,
        event: LifecycleEvent | None = None,
        initiated_by: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        values = dict(fields or {})
        values.update(
            state=new_state.value,
            revision=Story.revision + 1,
            updated_at=datetime.now(UTC),
        )

        with _translate_errors("compare-and-swap story state"):
            with self._session_factory() as db:
                result = db.execute(
                    update(Story)
                    .where(
                        Story.tenant_id == tenant_id,
                        Story.id == story_id,
                        Story.state == expected_state.value,
                        Story.revision == expected_revision,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    db.rollback()
                    return False

                if event is not None:
                    db.add(
                        StoryLifecycleEvent(
                            tenant_id=tenant_id,
                            story_id=story_id,
                            event=event.value,
                            from_state=expected_state.value,
                            to_state=new_state.value,
                            revision=expected_revision + 1,
                            initiated_by=initiated_by,
                            created_at=datetime.now(UTC),
                        )
                    )
                db.commit()
                return True

    def get_story(self, tenant_id: str, story_id: str) -> StoryRecord | None:
        with _translate_errors("get story"):
            with self._session_factory() as db:
                story = db.get(Story, (tenant_id, story_id))
                if story is None:
                    return None
                return StoryRecord(
                    tenant_id=story.tenant_id,
                    id=story.id,
                    state=StoryState(story.state),
                    revision=story.revision,
                    archived_at=story.archived_at,
                    unarchived_at=story.unarchived_at,
                    url=story.url,
                )

    def list_story_ids(self, tenant_id: str) -> list[str]:
        with _translate_errors("list stories"):
            with self._session_factory() as db:
                return list(
                    db.execute(
                        select(Story.id).where(Story.tenant_id == tenant_id).order_by(Story.id)
                    ).scalars()
                )

    def create_story(
        self,
        tenant_id: str,
        story_id: str,
        state: StoryState = StoryState.OPEN,
        url: str | None = None,
    ) -> StoryRecord:
        """Insert a new story at revision 0. Stories are normally created upstream."""
        with _translate_errors("create story"):
            with self._session_factory() as db:
                db.add(
                    Story(
                        tenant_id=tenant_id,
                        id=story_id,
                        url=url,
                        state=state.value,
                        revision=0,
                    )
                )
                db.commit()
        return StoryRecord(tenant_id=tenant_id, id=story_id, state=state, revision=0, url=url)


# -----------------------------------------------------------------------------
# Jobs and trees
# -----------------------------------------------------------------------------


class SqlJobQueue(JobQueue):
    """Row-backed queue: enqueue inserts a pending `queued_jobs` row."""

    def __init__(self, session_factory: SessionFactory, queue: str):
        self._session_factory = session_factory
        self._queue = queue

    @property
    def name(self) -> str:
        return self._queue

    def enqueue(self, payload: dict[str, Any]) -> bool:
        try:
            with self._session_factory() as db:
                db.add(
                    QueuedJob(
                        id=payload["job_id"],
                        queue=self._queue,
                        tenant_id=payload["tenant_id"],
                        payload=payload,
                        status=QueuedJobStatus.PENDING.value,
                        created_at=datetime.now(UTC),
                    )
                )
                db.commit()
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to enqueue job {payload.get('job_id')} on {self._queue}: {e}",
                extra={"event": "job_enqueue_failed", "job_id": payload.get("job_id")},
            )
            return False
        return True

    def claim_next(self) -> QueuedJob | None:
        """
        Claim the oldest pending job for this queue.

        Claiming is itself a conditional UPDATE on status, so two workers can
        never run the same job.
        """
        with self._session_factory() as db:
            candidates = db.execute(
                select(QueuedJob.id)
                .where(QueuedJob.queue == self._queue, QueuedJob.status == QueuedJobStatus.PENDING.value)
                .order_by(QueuedJob.created_at)
                .limit(10)
            ).scalars().all()

            for job_id in candidates:
                result = db.execute(
                    update(QueuedJob)
                    .where(QueuedJob.id == job_id, QueuedJob.status == QueuedJobStatus.PENDING.value)
                    .values(status=QueuedJobStatus.RUNNING.value)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.commit()
                    job = db.get(QueuedJob, job_id)
                    db.expunge(job)
                    return job
            db.rollback()
        return None

    def finish(self, job_id: str, error: str | None = None) -> None:
        with self._session_factory() as db:
            db.execute(
                update(QueuedJob)
                .where(QueuedJob.id == job_id)
                .values(
                    status=(QueuedJobStatus.FAILED if error else QueuedJobStatus.COMPLETED).value,
                    finished_at=datetime.now(UTC),
                    error=error,
                )
            )
            db.commit()


class SqlTreeStore(TreeStore):
    """Materialized trees on the `story_trees` table."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def save_tree(self, tenant_id: str, story_id: str, document: dict[str, Any]) -> None:
        with _translate_errors("save story tree"):
            with self._session_factory() as db:
                db.merge(
                    StoryTree(
                        tenant_id=tenant_id,
                        story_id=story_id,
                        tree=document,
                        comment_count=document.get("comment_count", 0),
                        integrity_warnings=len(document.get("warnings", [])),
                        generated_at=datetime.now(UTC),
                    )
                )
                db.commit()

    def get_tree(self, tenant_id: str, story_id: str) -> dict[str, Any] | None:
        with _translate_errors("get story tree"):
            with self._session_factory() as db:
                row = db.get(StoryTree, (tenant_id, story_id))
                return row.tree if row else None
