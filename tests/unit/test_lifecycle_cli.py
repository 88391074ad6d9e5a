"""Tests for the lifecycle CLI commands."""

from unittest.mock import patch

import pytest

from storykeeper.cli import lifecycle as cli
from storykeeper.models import StoryState

TENANT = "tenant-1"


def _run(argv, lifecycle, tree_service):
    with patch("sys.argv", ["storykeeper", *argv]), \
            patch.object(cli, "_setup"), \
            patch("storykeeper.dependencies.get_lifecycle_service", return_value=lifecycle), \
            patch("storykeeper.dependencies.get_tree_service", return_value=tree_service), \
            patch("storykeeper.dependencies.get_state_store", return_value=lifecycle.state_store):
        cli.main()


class TestLifecycleCli:
    def test_archive(self, lifecycle, tree_service, state_store, live_store, capsys, make_comment):
        state_store.create_story(TENANT, "s1")
        live_store.upsert_comments(TENANT, "s1", [make_comment(1, story_id="s1")])

        _run(["archive", "--tenant", TENANT, "s1"], lifecycle, tree_service)

        out = capsys.readouterr().out
        assert "s1: moved 1 comments" in out
        assert state_store.get_state(TENANT, "s1").state == StoryState.ARCHIVED

    def test_archive_missing_exits_nonzero(self, lifecycle, tree_service, capsys):
        with pytest.raises(SystemExit) as exc_info:
            _run(["archive", "--tenant", TENANT, "nope"], lifecycle, tree_service)

        assert exc_info.value.code == 1
        assert "nope: not found" in capsys.readouterr().out

    def test_status(self, lifecycle, tree_service, state_store, capsys):
        state_store.create_story(TENANT, "s1", state=StoryState.ARCHIVED)

        _run(["status", "--tenant", TENANT], lifecycle, tree_service)

        assert "s1: archived (revision 0)" in capsys.readouterr().out

    def test_tree_show(self, lifecycle, tree_service, state_store, live_store, capsys, make_comment):
        state_store.create_story(TENANT, "s1")
        live_store.upsert_comments(
            TENANT, "s1", [make_comment(1, story_id="s1"), make_comment(2, parent_id=1, minute=1, story_id="s1")]
        )

        _run(["tree", "--tenant", TENANT, "s1", "--show"], lifecycle, tree_service)

        out = capsys.readouterr().out
        assert "Comments: 2" in out
        assert "  - 2 (0 replies)" in out

    def test_regenerate(self, lifecycle, tree_service, job_queue, capsys):
        _run(["regenerate", "--tenant", TENANT, "--disable-commenting"], lifecycle, tree_service)

        assert "Job accepted" in capsys.readouterr().out
        assert job_queue.jobs[0]["disable_commenting"] is True

    def test_recover(self, lifecycle, tree_service, state_store, live_store, make_comment, capsys):
        state_store.create_story(TENANT, "s1", state=StoryState.ARCHIVING)
        state_store.create_story(TENANT, "s2")
        live_store.upsert_comments(TENANT, "s1", [make_comment(1, story_id="s1")])

        _run(["recover", "--tenant", TENANT], lifecycle, tree_service)

        out = capsys.readouterr().out
        assert "s1: archive finished, 1 comments moved" in out
        assert "s2" not in out
        assert state_store.get_state(TENANT, "s1").state == StoryState.ARCHIVED

    def test_recover_nothing_in_flight(self, lifecycle, tree_service, state_store, capsys):
        state_store.create_story(TENANT, "s1")

        _run(["recover", "--tenant", TENANT], lifecycle, tree_service)

        assert "No stories in flight" in capsys.readouterr().out
