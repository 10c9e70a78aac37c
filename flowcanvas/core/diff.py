"""Ghost diff: classify the nodes of two flow graphs.

Nodes are matched by a structural signature (or raw id) and classified as
added / removed / modified / unchanged. Removed nodes are the "ghosts" a
renderer shows faded out.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .models import FlowNode

logger = logging.getLogger(__name__)

COLUMN_TOLERANCE = 2
LABEL_PREFIX_LENGTH = 16

_OPERATOR_RE = re.compile(r"[=<>!+\-*/%&|?:(,;\[{]")


class DiffStatus(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


# Renderer-agnostic style classes
DIFF_STYLES: Dict[DiffStatus, str] = {
    DiffStatus.ADDED: "diff-added",
    DiffStatus.REMOVED: "diff-removed ghost",
    DiffStatus.MODIFIED: "diff-modified",
    DiffStatus.UNCHANGED: "diff-unchanged",
}


@dataclass(frozen=True)
class DiffNode:
    node: FlowNode
    status: DiffStatus
    old_value: Optional[FlowNode] = None
    style_class: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = self.node.to_dict()
        out["diffStatus"] = self.status.value
        if self.old_value is not None:
            out["oldValue"] = self.old_value.to_dict()
        if self.style_class is not None:
            out["className"] = self.style_class
        return out


@dataclass
class DiffStats:
    added: int = 0
    removed: int = 0
    modified: int = 0
    unchanged: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "added": self.added,
            "removed": self.removed,
            "modified": self.modified,
            "unchanged": self.unchanged,
        }


@dataclass
class DiffResult:
    nodes: List[DiffNode] = field(default_factory=list)
    stats: DiffStats = field(default_factory=DiffStats)

    def to_dict(self) -> Dict[str, Any]:
        return {"nodes": [n.to_dict() for n in self.nodes], "stats": self.stats.to_dict()}


def label_prefix(label: str) -> str:
    """Label text up to the first operator, lowercased and underscore-joined."""
    m = _OPERATOR_RE.search(label)
    head = label[: m.start()] if m else label
    return "_".join(head.lower().split())[:LABEL_PREFIX_LENGTH]


def signature(node: FlowNode) -> str:
    """`kind::label_prefix`: the structural bucket a node is matched within.

    Positions are left out so that lines inserted anywhere above a node do not
    change its key; they only rank candidates inside a bucket.
    """
    return f"{node.kind.value}::{label_prefix(node.label)}"


def relative_line(node: FlowNode) -> int:
    """Line offset from the enclosing function (0 when there is no location)."""
    return node.location.line - node.scope_line if node.location else 0


def _ordinals(nodes: Sequence[FlowNode], key: Callable[[FlowNode], str]) -> List[int]:
    """Per node, how many earlier nodes of the same scope share its key."""
    seen: Dict[Tuple[str, str], int] = {}
    out: List[int] = []
    for n in nodes:
        k = (n.scope_path, key(n))
        out.append(seen.get(k, 0))
        seen[k] = out[-1] + 1
    return out


def _differs(old: FlowNode, new: FlowNode) -> bool:
    if old.label != new.label or old.kind != new.kind:
        return True
    a, b = old.location, new.location
    if a is None or b is None:
        return False
    if a.end_line is not None and b.end_line is not None:
        if (a.end_line - a.line) != (b.end_line - b.line):
            return True
    return abs(a.column - b.column) > COLUMN_TOLERANCE


class GhostDiff:
    """Match new nodes against old ones and classify each pair.

    Within a key bucket the old candidate is chosen by: same scope, same
    ordinal among equal keys in that scope, identical label, nearest
    relative line, then original order.

    Diffing never raises on graph input; an unknown `match_by` is a
    configuration error and raises ValueError at construction.
    """

    def __init__(self, match_by: str = "signature"):
        if match_by not in ("signature", "id"):
            raise ValueError(f"match_by must be 'signature' or 'id', got {match_by!r}")
        self.match_by = match_by

    def key(self, node: FlowNode) -> str:
        return node.id if self.match_by == "id" else signature(node)

    def diff_trees(self, old_tree: Sequence[FlowNode], new_tree: Sequence[FlowNode]) -> DiffResult:
        result = DiffResult()

        # key -> unconsumed old indices, in original order
        pending: Dict[str, List[int]] = {}
        for i, old in enumerate(old_tree):
            pending.setdefault(self.key(old), []).append(i)
        old_ord = _ordinals(old_tree, self.key)
        new_ord = _ordinals(new_tree, self.key)
        consumed = set()

        for j, new in enumerate(new_tree):
            bucket = pending.get(self.key(new))
            if not bucket:
                result.nodes.append(DiffNode(new, DiffStatus.ADDED))
                result.stats.added += 1
                continue

            def rank(i: int) -> Tuple[bool, int, bool, int, int]:
                old = old_tree[i]
                return (
                    old.scope_path != new.scope_path,
                    abs(old_ord[i] - new_ord[j]),
                    old.label != new.label,
                    abs(relative_line(old) - relative_line(new)),
                    i,
                )

            idx = min(bucket, key=rank)
            bucket.remove(idx)
            consumed.add(idx)
            old = old_tree[idx]
            if _differs(old, new):
                result.nodes.append(DiffNode(new, DiffStatus.MODIFIED, old_value=old))
                result.stats.modified += 1
            else:
                result.nodes.append(DiffNode(new, DiffStatus.UNCHANGED))
                result.stats.unchanged += 1

        for i, old in enumerate(old_tree):
            if i not in consumed:
                result.nodes.append(DiffNode(old, DiffStatus.REMOVED))
                result.stats.removed += 1

        logger.debug("Diff complete (match_by=%s): %s", self.match_by, result.stats.to_dict())
        return result

    def apply_diff_styling(self, nodes: Sequence[DiffNode]) -> List[DiffNode]:
        return apply_diff_styling(nodes)


def apply_diff_styling(nodes: Sequence[DiffNode]) -> List[DiffNode]:
    return [
        DiffNode(n.node, n.status, old_value=n.old_value, style_class=DIFF_STYLES[n.status])
        for n in nodes
    ]


def diff(
    old_tree: Sequence[FlowNode],
    new_tree: Sequence[FlowNode],
    match_by: str = "signature",
) -> DiffResult:
    return GhostDiff(match_by).diff_trees(old_tree, new_tree)
