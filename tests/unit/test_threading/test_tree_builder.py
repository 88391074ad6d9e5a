"""Unit tests for comment tree reconstruction."""

from dataclasses import replace
from datetime import datetime

from storykeeper.services.threading.tree_builder import (
    WarningKind,
    build_comment_tree,
    build_tree,
    iter_depth_first,
    serialize_tree,
)


def _ids(nodes):
    return [node.id for node in nodes]


class TestBuildTreeBasics:
    """Tests for well-formed input."""

    def test_empty_input_returns_no_roots(self):
        """Empty comment set builds an empty forest."""
        assert build_tree([]) == []

    def test_single_top_level_comment(self, make_comment):
        """One comment with no parent is a single childless root."""
        roots = build_tree([make_comment(1)])

        assert _ids(roots) == ["1"]
        assert roots[0].children == []
        assert roots[0].reply_count == 0

    def test_children_ordered_by_created_at(self, make_comment):
        """Replies come back in creation order regardless of input order."""
        comments = [
            make_comment(3, parent_id=1, minute=3),
            make_comment(1, minute=1),
            make_comment(2, parent_id=1, minute=2),
        ]

        roots = build_tree(comments)

        assert _ids(roots) == ["1"]
        assert _ids(roots[0].children) == ["2", "3"]

    def test_ties_broken_by_id(self, make_comment):
        """Comments created at the same instant are ordered by id."""
        comments = [
            make_comment("root"),
            make_comment("b", parent_id="root", minute=5),
            make_comment("a", parent_id="root", minute=5),
        ]

        roots = build_tree(comments)

        assert _ids(roots[0].children) == ["a", "b"]

    def test_roots_ordered(self, make_comment):
        """Top-level comments follow the same total order."""
        comments = [make_comment("late", minute=9), make_comment("early", minute=1)]

        assert _ids(build_tree(comments)) == ["early", "late"]

    def test_depth_and_reply_count_recomputed(self, make_comment):
        """Depth comes from position, reply_count from actual children, not the stored counter."""
        comments = [
            make_comment(1, reply_count=99),
            make_comment(2, parent_id=1, minute=1),
            make_comment(3, parent_id=2, minute=2),
        ]

        root = build_tree(comments)[0]

        assert root.reply_count == 1
        assert root.children[0].depth == 1
        assert root.children[0].children[0].depth == 2

    def test_deterministic_across_calls(self, make_comment):
        """Same input in any order produces the same structure."""
        comments = [make_comment(i, parent_id=(i // 2 or None) if i > 1 else None, minute=i) for i in range(1, 20)]

        first = serialize_tree(build_tree(comments))
        second = serialize_tree(build_tree(list(reversed(comments))))

        assert first == second

    def test_mixed_naive_and_aware_timestamps(self, make_comment):
        """Naive timestamps are treated as UTC instead of failing to compare."""
        naive = replace(make_comment("naive", parent_id="root"), created_at=datetime(2024, 1, 1, 12, 30))
        comments = [make_comment("root"), naive, make_comment("aware", parent_id="root", minute=10)]

        roots = build_tree(comments)

        assert _ids(roots[0].children) == ["aware", "naive"]

    def test_deep_thread_does_not_recurse(self, make_comment):
        """A very long reply chain builds and serializes without hitting the recursion limit."""
        comments = [make_comment(0)] + [make_comment(i, parent_id=i - 1, minute=i) for i in range(1, 5000)]

        roots = build_tree(comments)
        documents = serialize_tree(roots)

        assert len(list(iter_depth_first(roots))) == 5000
        assert documents[0]["id"] == "0"


class TestBuildTreeIntegrity:
    """Tests for orphans, cycles and duplicates."""

    def test_orphan_becomes_root_with_warning(self, make_comment):
        """A comment whose parent is missing is kept as a root."""
        comments = [make_comment(1), make_comment(2, parent_id="missing", minute=1)]

        tree = build_comment_tree(comments)

        assert _ids(tree.roots) == ["1", "2"]
        assert tree.has_integrity_issues
        assert [(w.kind, w.comment_id) for w in tree.warnings] == [(WarningKind.ORPHAN, "2")]

    def test_two_cycle_terminates_with_warning(self, make_comment):
        """A 2-cycle produces a result and a cycle warning."""
        comments = [make_comment(1, parent_id=2), make_comment(2, parent_id=1, minute=1)]

        tree = build_comment_tree(comments)

        assert any(w.kind == WarningKind.CYCLE for w in tree.warnings)
        assert sorted(node.id for node in iter_depth_first(tree.roots)) == ["1", "2"]

    def test_cycle_promotes_smallest_member(self, make_comment):
        """The earliest comment on the cycle becomes the root."""
        comments = [
            make_comment("a", parent_id="c", minute=1),
            make_comment("b", parent_id="a", minute=2),
            make_comment("c", parent_id="b", minute=3),
        ]

        roots = build_tree(comments)

        assert _ids(roots) == ["a"]
        assert _ids(roots[0].children) == ["b"]
        assert _ids(roots[0].children[0].children) == ["c"]

    def test_self_parent(self, make_comment):
        """A comment that is its own parent is promoted and reported."""
        tree = build_comment_tree([make_comment("x", parent_id="x")])

        assert _ids(tree.roots) == ["x"]
        assert tree.roots[0].children == []
        assert any(w.kind == WarningKind.CYCLE for w in tree.warnings)

    def test_subtree_hanging_off_cycle_is_kept(self, make_comment):
        """Replies attached to a cycle member stay in the tree."""
        comments = [
            make_comment(1, parent_id=2, minute=1),
            make_comment(2, parent_id=1, minute=2),
            make_comment(0, parent_id=1, minute=0),
        ]

        tree = build_comment_tree(comments)

        assert sorted(node.id for node in iter_depth_first(tree.roots)) == ["0", "1", "2"]
        assert _ids(tree.roots) == ["1"]

    def test_cycle_does_not_disturb_healthy_threads(self, make_comment):
        """Well-formed threads are unaffected by a corrupt one."""
        comments = [
            make_comment("ok", minute=0),
            make_comment("ok-reply", parent_id="ok", minute=1),
            make_comment("x", parent_id="y", minute=2),
            make_comment("y", parent_id="x", minute=3),
        ]

        roots = build_tree(comments)

        assert _ids(roots) == ["ok", "x"]
        assert _ids(roots[0].children) == ["ok-reply"]

    def test_duplicate_ids_keep_first(self, make_comment):
        """Duplicate ids are reported and the first occurrence wins."""
        comments = [make_comment(1, body="first"), make_comment(1, body="second")]

        tree = build_comment_tree(comments)

        assert len(tree.roots) == 1
        assert tree.roots[0].comment.body == "first"
        assert tree.warnings[0].kind == WarningKind.DUPLICATE
        assert tree.comment_count == 1


class TestSerializeTree:
    """Tests for serialize_tree()."""

    def test_nested_documents(self, make_comment):
        """Serialized tree mirrors the node structure."""
        comments = [make_comment(1), make_comment(2, parent_id=1, minute=1)]

        documents = serialize_tree(build_tree(comments))

        assert documents[0]["id"] == "1"
        assert documents[0]["reply_count"] == 1
        assert documents[0]["children"][0]["id"] == "2"
        assert documents[0]["children"][0]["parent_id"] == "1"
        assert documents[0]["children"][0]["depth"] == 1

    def test_depth_first_order(self, make_comment):
        """iter_depth_first visits parents before children, siblings in order."""
        comments = [
            make_comment("a"),
            make_comment("a1", parent_id="a", minute=1),
            make_comment("a2", parent_id="a", minute=2),
            make_comment("a1x", parent_id="a1", minute=3),
            make_comment("b", minute=4),
        ]

        order = [node.id for node in iter_depth_first(build_tree(comments))]

        assert order == ["a", "a1", "a1x", "a2", "b"]
