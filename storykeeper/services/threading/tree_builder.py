# storykeeper/services/threading/tree_builder.py
"""
Comment tree reconstruction.

Turns a flat, parent-pointer comment set into an ordered forest. Pure and
deterministic: no I/O, no logging, and it never raises on malformed input.

Rules:
- Children (and roots) are ordered by (created_at, id)
- A comment whose parent is missing from the input is an orphan and becomes a root
- Descent is iterative with a visited set; a re-visit is truncated
- Comments unreachable from any root sit on a parent cycle; the smallest
  member of each cycle is promoted to a root
- Duplicate ids keep the first occurrence

Every irregularity is returned as a TreeIntegrityWarning next to the roots.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from storykeeper.stores.base import Comment

_EPOCH = datetime.min.replace(tzinfo=UTC)


class WarningKind(str, Enum):
    ORPHAN = "orphan"
    CYCLE = "cycle"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class TreeIntegrityWarning:
    """Non-fatal data problem found while building a tree."""

    kind: WarningKind
    comment_id: str
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "comment_id": self.comment_id, "detail": self.detail}


@dataclass
class TreeNode:
    comment: Comment
    children: list["TreeNode"] = field(default_factory=list)
    depth: int = 0

    @property
    def id(self) -> str:
        return self.comment.id

    @property
    def reply_count(self) -> int:
        # Recomputed; the stored counter is denormalized and may be stale
        return len(self.children)


@dataclass
class CommentTree:
    roots: list[TreeNode]
    warnings: list[TreeIntegrityWarning] = field(default_factory=list)
    comment_count: int = 0

    @property
    def has_integrity_issues(self) -> bool:
        return bool(self.warnings)


def sort_key(comment: Comment) -> tuple[datetime, str]:
    """Total order on comments: created_at ascending, then id."""
    created_at = comment.created_at
    if not isinstance(created_at, datetime):
        created_at = _EPOCH
    elif created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return (created_at, str(comment.id))


def _cycle_root(start: Comment, by_id: dict[str, Comment]) -> Comment:
    """Follow parent pointers from start until they loop; return the smallest loop member."""
    path: list[Comment] = []
    positions: dict[str, int] = {}
    current = start
    while current.id not in positions:
        positions[current.id] = len(path)
        path.append(current)
        current = by_id[current.parent_id]
    return min(path[positions[current.id] :], key=sort_key)


def build_comment_tree(comments: Iterable[Comment]) -> CommentTree:
    """Build the ordered forest for one story's comments."""
    warnings: list[TreeIntegrityWarning] = []

    by_id: dict[str, Comment] = {}
    for comment in comments:
        if comment.id in by_id:
            warnings.append(
                TreeIntegrityWarning(WarningKind.DUPLICATE, comment.id, "duplicate id, first occurrence kept")
            )
            continue
        by_id[comment.id] = comment

    roots: list[Comment] = []
    children_of: dict[str, list[Comment]] = {}
    for comment in by_id.values():
        if comment.parent_id is None:
            roots.append(comment)
        elif comment.parent_id not in by_id:
            warnings.append(
                TreeIntegrityWarning(
                    WarningKind.ORPHAN, comment.id, f"parent {comment.parent_id} not found, treated as root"
                )
            )
            roots.append(comment)
        else:
            children_of.setdefault(comment.parent_id, []).append(comment)

    for siblings in children_of.values():
        siblings.sort(key=sort_key)

    visited: set[str] = set()

    def descend(root_comment: Comment) -> TreeNode:
        root = TreeNode(root_comment)
        visited.add(root_comment.id)
        stack = [root]
        while stack:
            node = stack.pop()
            for child in children_of.get(node.id, ()):
                if child.id in visited:
                    warnings.append(
                        TreeIntegrityWarning(
                            WarningKind.CYCLE, child.id, f"cycle through {node.id}, subtree truncated"
                        )
                    )
                    continue
                visited.add(child.id)
                child_node = TreeNode(child, depth=node.depth + 1)
                node.children.append(child_node)
                stack.append(child_node)
        return root

    root_nodes = [descend(comment) for comment in sorted(roots, key=sort_key)]

    # Whatever is left hangs off a parent cycle
    for comment in sorted(by_id.values(), key=sort_key):
        if comment.id in visited:
            continue
        promoted = _cycle_root(comment, by_id)
        warnings.append(
            TreeIntegrityWarning(WarningKind.CYCLE, promoted.id, "parent cycle, promoted to root")
        )
        root_nodes.append(descend(promoted))

    root_nodes.sort(key=lambda node: sort_key(node.comment))
    return CommentTree(roots=root_nodes, warnings=warnings, comment_count=len(by_id))


def build_tree(comments: Iterable[Comment]) -> list[TreeNode]:
    """Roots of the ordered forest. Never raises; see build_comment_tree for diagnostics."""
    return build_comment_tree(comments).roots


def iter_depth_first(roots: Iterable[TreeNode]) -> Iterator[TreeNode]:
    """Pre-order walk, children in tree order."""
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def serialize_tree(roots: Iterable[TreeNode]) -> list[dict[str, Any]]:
    """JSON-ready nested documents, built without recursion so deep threads are safe."""
    documents: list[dict[str, Any]] = []
    stack = [(node, documents) for node in reversed(list(roots))]
    while stack:
        node, siblings = stack.pop()
        document = {
            "id": node.id,
            "parent_id": node.comment.parent_id,
            "created_at": node.comment.created_at.isoformat() if node.comment.created_at else None,
            "depth": node.depth,
            "reply_count": node.reply_count,
            "children": [],
        }
        siblings.append(document)
        stack.extend((child, document["children"]) for child in reversed(node.children))
    return documents
