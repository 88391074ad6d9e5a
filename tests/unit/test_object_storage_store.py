"""Tests for the object-storage cold comment tier."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from storykeeper.models import CommentTier, StoryState
from storykeeper.services.lifecycle.archive_worker import ArchiveWorker
from storykeeper.services.resilience import RetryPolicy
from storykeeper.storage.local_provider import LocalStorageProvider
from storykeeper.stores.base import StoreUnavailableError
from storykeeper.stores.object_storage import ObjectStorageColdCommentStore

TENANT = "tenant-1"


@pytest.fixture
def object_store(tmp_path):
    return ObjectStorageColdCommentStore(LocalStorageProvider(base_path=str(tmp_path)))


class TestObjectStorageColdCommentStore:
    def test_upsert_then_stream(self, object_store, make_comment):
        comments = [make_comment(1), make_comment(2, parent_id=1, minute=1, body="hi")]

        assert object_store.upsert_comments(TENANT, "story-1", comments) == 2
        streamed = {c.id: c for c in object_store.stream_comments(TENANT, "story-1")}

        assert set(streamed) == {"1", "2"}
        assert streamed["2"].parent_id == "1"
        assert streamed["2"].body == "hi"
        assert streamed["2"].created_at == comments[1].created_at
        assert streamed["2"].tier == CommentTier.COLD

    def test_upsert_same_id_overwrites(self, object_store, make_comment):
        object_store.upsert_comments(TENANT, "story-1", [make_comment(1, body="old")])
        object_store.upsert_comments(TENANT, "story-1", [make_comment(1, body="new")])

        streamed = list(object_store.stream_comments(TENANT, "story-1"))

        assert [c.body for c in streamed] == ["new"]

    def test_delete_missing_is_noop(self, object_store, make_comment):
        object_store.upsert_comments(TENANT, "story-1", [make_comment(1)])

        assert object_store.delete_comments(TENANT, "story-1", ["1", "gone"]) == 1
        assert object_store.count_comments(TENANT, "story-1") == 0

    def test_keys_scoped_by_tenant_and_story(self, object_store, make_comment):
        object_store.upsert_comments(TENANT, "story-1", [make_comment(1)])
        object_store.upsert_comments("tenant-2", "story-1", [make_comment(1, tenant_id="tenant-2")])

        assert object_store.count_comments(TENANT, "story-1") == 1
        assert object_store.count_comments(TENANT, "story-2") == 0

    def test_ids_with_slashes_are_escaped(self, object_store):
        key = object_store.comment_key(TENANT, "a/b", "../c")

        assert key == "cold-comments/tenant-1/a%2Fb/..%2Fc.json.gz"

    def test_provider_errors_are_transient(self, make_comment):
        provider = MagicMock()
        provider.upload.side_effect = ClientError({"Error": {"Code": "SlowDown"}}, "PutObject")
        store = ObjectStorageColdCommentStore(provider)

        with pytest.raises(StoreUnavailableError):
            store.upsert_comments(TENANT, "story-1", [make_comment(1)])

    def test_listing_errors_propagate(self):
        provider = MagicMock()
        provider.list_keys.side_effect = OSError("disk gone")
        store = ObjectStorageColdCommentStore(provider)

        with pytest.raises(StoreUnavailableError):
            list(store.stream_comments(TENANT, "story-1"))


class TestArchiveToObjectStorage:
    def test_round_trip_through_local_provider(self, object_store, state_store, live_store, make_comment):
        """Archive then unarchive through the filesystem tier restores the live tier."""
        worker = ArchiveWorker(
            live_store,
            object_store,
            state_store,
            retry_policy=RetryPolicy(max_attempts=1, min_wait=0, max_wait=0),
            batch_size=2,
        )
        comments = [make_comment(i, parent_id=(i - 1 if i else None), minute=i) for i in range(5)]
        live_store.upsert_comments(TENANT, "story-1", comments)

        state_store.create_story(TENANT, "story-1", state=StoryState.ARCHIVING)
        assert worker.archive(TENANT, "story-1").success
        assert object_store.count_comments(TENANT, "story-1") == 5

        state_store.create_story(TENANT, "story-1", state=StoryState.UNARCHIVING)
        assert worker.unarchive(TENANT, "story-1").success

        restored = sorted(live_store.stream_comments(TENANT, "story-1"), key=lambda c: int(c.id))
        assert [c.parent_id for c in restored] == [None, "0", "1", "2", "3"]
        assert object_store.count_comments(TENANT, "story-1") == 0
