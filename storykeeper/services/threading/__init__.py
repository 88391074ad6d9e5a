"""Comment threading: tree reconstruction and regeneration."""

from storykeeper.services.threading.tree_builder import (
    CommentTree,
    TreeIntegrityWarning,
    TreeNode,
    WarningKind,
    build_comment_tree,
    build_tree,
    iter_depth_first,
    serialize_tree,
)

__all__ = [
    "CommentTree",
    "TreeIntegrityWarning",
    "TreeNode",
    "WarningKind",
    "build_comment_tree",
    "build_tree",
    "iter_depth_first",
    "serialize_tree",
]
