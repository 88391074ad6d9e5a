"""Unit tests for the bulk comment mover."""

from unittest.mock import patch

import pytest

from storykeeper.models import CommentTier, StoryState
from storykeeper.services.lifecycle.archive_worker import ArchiveResult, ArchiveWorker, MoveDirection
from storykeeper.services.lifecycle.errors import ArchiveError, ArchiveFailureReason
from storykeeper.services.resilience import RetryPolicy
from storykeeper.stores.base import StoreUnavailableError, StoreWriteRejectedError

TENANT = "tenant-1"


def _thread(make_comment, count=5):
    comments = [make_comment(0)]
    comments += [make_comment(i, parent_id=i - 1, minute=i) for i in range(1, count)]
    return comments


def _ids(store, story_id="story-1"):
    return sorted(c.id for c in store.stream_comments(TENANT, story_id))


class TestArchive:
    """Tests for archive()."""

    def test_moves_everything_to_cold(self, worker, state_store, live_store, cold_store, make_comment):
        """After success the live tier is empty and the cold tier holds every comment once."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 5))

        result = worker.archive(TENANT, "story-1")

        assert result.success is True
        assert result.comments_moved == 5
        assert live_store.count_comments(TENANT, "story-1") == 0
        assert _ids(cold_store) == ["0", "1", "2", "3", "4"]
        assert all(c.tier == CommentTier.COLD for c in cold_store.stream_comments(TENANT, "story-1"))

    def test_empty_story_succeeds(self, worker, state_store):
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)

        result = worker.archive(TENANT, "story-1")

        assert result.success is True
        assert result.comments_moved == 0

    def test_other_stories_untouched(self, worker, state_store, live_store, make_comment):
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 3))
        live_store.upsert_comments(TENANT, "story-2", [make_comment("x", story_id="story-2")])

        worker.archive(TENANT, "story-1")

        assert _ids(live_store, "story-2") == ["x"]

    @pytest.mark.parametrize("state", [StoryState.OPEN, StoryState.MARKED_FOR_ARCHIVE, StoryState.ARCHIVED])
    def test_refuses_wrong_state(self, worker, state_store, live_store, state, make_comment):
        """The worker only moves a story its caller has put in ARCHIVING."""
        state_store.create_story(TENANT, "story-1", state=state)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 2))

        result = worker.archive(TENANT, "story-1")

        assert result.success is False
        assert result.reason == ArchiveFailureReason.INVALID_STATE
        assert live_store.count_comments(TENANT, "story-1") == 2

    def test_missing_story(self, worker):
        result = worker.archive(TENANT, "nope")

        assert result.reason == ArchiveFailureReason.INVALID_STATE
        assert "missing" in result.error

    def test_worker_never_changes_state(self, worker, state_store, live_store, make_comment):
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 3))

        worker.archive(TENANT, "story-1")

        assert state_store.get_state(TENANT, "story-1").state == StoryState.ARCHIVING


class TestUnarchive:
    """Tests for unarchive()."""

    def test_moves_everything_to_live(self, worker, state_store, live_store, cold_store, make_comment):
        state_store.create_story(TENANT, "story-1", state=StoryState.UNARCHIVING)
        cold_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 4))

        result = worker.unarchive(TENANT, "story-1")

        assert result.success is True
        assert result.direction == MoveDirection.UNARCHIVE
        assert cold_store.count_comments(TENANT, "story-1") == 0
        assert _ids(live_store) == ["0", "1", "2", "3"]
        assert all(c.tier == CommentTier.LIVE for c in live_store.stream_comments(TENANT, "story-1"))


class TestRetryAndFailure:
    """Tests for transient errors, rejected writes and restores."""

    def test_transient_error_retried(self, worker, state_store, live_store, cold_store, no_sleep, make_comment):
        """A StoreUnavailableError during copy is retried with backoff."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 3))
        original = cold_store.upsert_comments
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                raise StoreUnavailableError("cold tier timeout")
            return original(*args)

        with patch.object(cold_store, "upsert_comments", side_effect=flaky):
            result = worker.archive(TENANT, "story-1")

        assert result.success is True
        assert no_sleep == [0.01]
        assert _ids(cold_store) == ["0", "1", "2"]

    def test_persistent_outage_fails_and_keeps_source(
        self, worker, state_store, live_store, cold_store, no_sleep, make_comment
    ):
        """Once retries run out the move fails and the live tier is intact."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 3))

        with patch.object(cold_store, "upsert_comments", side_effect=StoreUnavailableError("down")):
            result = worker.archive(TENANT, "story-1")

        assert result.success is False
        assert result.reason == ArchiveFailureReason.STORE_UNAVAILABLE
        assert no_sleep == [0.01, 0.02]
        assert live_store.count_comments(TENANT, "story-1") == 3

    def test_write_rejected_not_retried(self, worker, state_store, live_store, cold_store, no_sleep, make_comment):
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 3))

        with patch.object(cold_store, "upsert_comments", side_effect=StoreWriteRejectedError("quota")):
            result = worker.archive(TENANT, "story-1")

        assert result.reason == ArchiveFailureReason.WRITE_REJECTED
        assert no_sleep == []

    def test_unexpected_error_reported(self, worker, state_store, live_store, cold_store, make_comment):
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 1))

        with patch.object(cold_store, "upsert_comments", side_effect=KeyError("boom")):
            result = worker.archive(TENANT, "story-1")

        assert result.reason == ArchiveFailureReason.UNEXPECTED

    def test_delete_failure_restores_source(self, worker, state_store, live_store, cold_store, make_comment):
        """If deletes fail midway, removed comments are put back in the source tier."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 5))
        original = live_store.delete_comments
        calls = []

        def fail_second_batch(*args):
            calls.append(args)
            if len(calls) > 1:
                raise StoreWriteRejectedError("locked")
            return original(*args)

        with patch.object(live_store, "delete_comments", side_effect=fail_second_batch):
            result = worker.archive(TENANT, "story-1")

        assert result.success is False
        assert _ids(live_store) == ["0", "1", "2", "3", "4"]
        assert all(c.tier == CommentTier.LIVE for c in live_store.stream_comments(TENANT, "story-1"))
        # Destination copies are left for the next attempt to overwrite
        assert cold_store.count_comments(TENANT, "story-1") == 5

    def test_failed_restore_noted_in_error(self, worker, state_store, live_store, make_comment):
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 2))

        with patch.object(live_store, "delete_comments", side_effect=StoreWriteRejectedError("locked")), \
                patch.object(live_store, "upsert_comments", side_effect=StoreUnavailableError("down")):
            result = worker.archive(TENANT, "story-1")

        assert result.success is False
        assert result.error.endswith("source tier restore failed")

    def test_rejected_restore_reported_not_raised(self, worker, state_store, live_store, make_comment):
        """A restore the source tier refuses still ends in a failed result."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 2))

        with patch.object(live_store, "delete_comments", side_effect=StoreWriteRejectedError("locked")), \
                patch.object(live_store, "upsert_comments", side_effect=StoreWriteRejectedError("read only")):
            result = worker.archive(TENANT, "story-1")

        assert result.success is False
        assert result.reason == ArchiveFailureReason.WRITE_REJECTED
        assert result.error.endswith("source tier restore failed")

    def test_restore_reads_back_from_destination(self, worker, state_store, live_store, cold_store, make_comment):
        """Deleted comments come back with their bodies from the destination copies."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(
            TENANT, "story-1", [make_comment(i, minute=i, body=f"text {i}") for i in range(3)]
        )
        original = live_store.delete_comments
        calls = []

        def fail_second_batch(*args):
            calls.append(args)
            if len(calls) > 1:
                raise StoreWriteRejectedError("locked")
            return original(*args)

        with patch.object(live_store, "delete_comments", side_effect=fail_second_batch):
            worker.archive(TENANT, "story-1")

        restored = {c.id: c for c in live_store.stream_comments(TENANT, "story-1")}
        assert {cid: c.body for cid, c in restored.items()} == {"0": "text 0", "1": "text 1", "2": "text 2"}
        assert all(c.tier == CommentTier.LIVE for c in restored.values())

    def test_interrupted_move_converges(self, worker, state_store, live_store, cold_store, make_comment):
        """A re-run after an interruption yields the same cold content as a clean run."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 5))
        original = cold_store.upsert_comments
        calls = []

        def die_after_first_batch(*args):
            calls.append(args)
            if len(calls) > 1:
                raise StoreWriteRejectedError("crash")
            return original(*args)

        with patch.object(cold_store, "upsert_comments", side_effect=die_after_first_batch):
            first = worker.archive(TENANT, "story-1")
        assert first.success is False
        assert cold_store.count_comments(TENANT, "story-1") == 2

        second = worker.archive(TENANT, "story-1")

        assert second.success is True
        assert _ids(cold_store) == ["0", "1", "2", "3", "4"]
        assert live_store.count_comments(TENANT, "story-1") == 0


class TestStateCheck:
    """Tests for the state read that guards every move."""

    def test_state_read_retried(self, worker, state_store, live_store, no_sleep, make_comment):
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 2))
        snapshot = state_store.get_state(TENANT, "story-1")

        with patch.object(state_store, "get_state", side_effect=[StoreUnavailableError("blip"), snapshot]):
            result = worker.archive(TENANT, "story-1")

        assert result.success is True
        assert no_sleep == [0.01]

    def test_state_read_outage_is_a_failed_result(self, worker, state_store, live_store, no_sleep, make_comment):
        """The worker reports an unreadable state store instead of raising."""
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 2))

        with patch.object(state_store, "get_state", side_effect=StoreUnavailableError("db down")):
            result = worker.archive(TENANT, "story-1")

        assert result.success is False
        assert result.reason == ArchiveFailureReason.STORE_UNAVAILABLE
        assert result.error == "db down"
        assert no_sleep == [0.01, 0.02]
        assert live_store.count_comments(TENANT, "story-1") == 2


class TestTimeout:
    """Tests for the move deadline."""

    def test_deadline_exceeded(self, state_store, live_store, cold_store, no_sleep, make_comment):
        """A move that runs past its budget fails with reason timeout."""
        ticks = iter([0.0, 0.0, 100.0, 100.0, 100.0, 100.0])
        worker = ArchiveWorker(
            live_store,
            cold_store,
            state_store,
            retry_policy=RetryPolicy(max_attempts=3, min_wait=0.01, max_wait=0.05),
            batch_size=2,
            timeout_seconds=10,
            sleep=no_sleep.append,
            monotonic=lambda: next(ticks, 100.0),
        )
        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        live_store.upsert_comments(TENANT, "story-1", _thread(make_comment, 5))

        result = worker.archive(TENANT, "story-1")

        assert result.success is False
        assert result.reason == ArchiveFailureReason.TIMEOUT
        assert live_store.count_comments(TENANT, "story-1") == 5


class TestArchiveResult:
    """Tests for ArchiveResult.raise_for_failure()."""

    def test_success_does_not_raise(self):
        ArchiveResult(success=True, tenant_id=TENANT, story_id="s", direction=MoveDirection.ARCHIVE).raise_for_failure()

    def test_failure_raises_with_reason(self):
        result = ArchiveResult(
            success=False,
            tenant_id=TENANT,
            story_id="s",
            direction=MoveDirection.ARCHIVE,
            reason=ArchiveFailureReason.TIMEOUT,
            error="too slow",
        )

        with pytest.raises(ArchiveError) as exc_info:
            result.raise_for_failure()

        assert exc_info.value.reason == ArchiveFailureReason.TIMEOUT
        assert "too slow" in str(exc_info.value)


class TestFromSettings:
    def test_reads_batch_and_retry_settings(self, state_store, live_store, cold_store):
        from storykeeper.config import Settings

        settings = Settings(
            ARCHIVE_BATCH_SIZE=7,
            ARCHIVE_TIMEOUT_SECONDS=12.5,
            ARCHIVE_RETRY_MAX_ATTEMPTS=4,
        )

        worker = ArchiveWorker.from_settings(live_store, cold_store, state_store, settings)

        assert worker.batch_size == 7
        assert worker.timeout_seconds == 12.5
        assert worker.retry_policy.max_attempts == 4
