"""Hierarchical view - flow nodes grouped into zoomable cards.

Nodes are grouped by comment-delimited sections when the source has any:

    // --- Validation ---
    // #region Parsing
    // MARK: - Output
    /** @section Helpers */

A section runs from its header to the line before the next header (the last
one to the end of the file); the program Start node and nodes outside every
section land in "Global". Without section comments every top-level function
is a group of its own and Start plus the remaining top-level code form
"Global Flow".

Zoom levels, outermost first:
- system: a single overview card
- feature: one summary card per group
- function: the flow nodes, with collapsed groups shown as their card
- statement: every flow node regardless of collapse state
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..core.identity import generate_id
from ..core.models import FlowNode, NodeKind
from ..parser.treesitter import first_syntax_error, iter_named_nodes, node_text, parse_source

logger = logging.getLogger(__name__)

SYSTEM_ROOT_ID = "system-root"

_SECTION_PATTERNS = (
    re.compile(r"^//\s*-{3,}\s*(.+?)\s*-{3,}"),
    re.compile(r"^//\s*#region\s+(.+)"),
    re.compile(r"^//\s*MARK:\s*-?\s*(.+)"),
    re.compile(r"^/\*\*?\s*@section\s+(.+?)\s*\*?\*/"),
)


class ZoomLevel(str, Enum):
    SYSTEM = "system"
    FEATURE = "feature"
    FUNCTION = "function"
    STATEMENT = "statement"


_ZOOM_ORDER = [ZoomLevel.SYSTEM, ZoomLevel.FEATURE, ZoomLevel.FUNCTION, ZoomLevel.STATEMENT]


@dataclass(frozen=True)
class Section:
    name: str
    start_line: int
    end_line: int

    def contains(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


@dataclass
class HierarchyNode:
    id: str
    level: ZoomLevel
    label: str
    parent_id: Optional[str] = None
    children: List[str] = field(default_factory=list)
    flow_nodes: List[FlowNode] = field(default_factory=list)
    summary: Optional[str] = None

    def to_dict(self, collapsed: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "level": self.level.value,
            "label": self.label,
            "children": list(self.children),
            "collapsed": collapsed,
        }
        if self.parent_id is not None:
            out["parentId"] = self.parent_id
        if self.summary is not None:
            out["summary"] = self.summary
        return out


def section_name(comment: str) -> Optional[str]:
    """Section title of a header comment, or None for an ordinary comment."""
    text = comment.strip()
    for pattern in _SECTION_PATTERNS:
        m = pattern.match(text)
        if m:
            name = m.group(1).strip()
            return name or None
    return None


def find_sections(source: str, file_path: str = "main.js") -> List[Section]:
    """Sections declared by header comments, in source order.

    Source with syntax errors has no sections.
    """
    parsed = parse_source(source, file_path=file_path)
    if first_syntax_error(parsed.root) is not None:
        return []
    headers = []
    for node in iter_named_nodes(parsed.root):
        if node.type != "comment":
            continue
        name = section_name(node_text(parsed.src, node))
        if name is not None:
            headers.append((node.start_point[0] + 1, name))

    last_line = max(1, len(source.splitlines()))
    sections: List[Section] = []
    for i, (line, name) in enumerate(headers):
        end = headers[i + 1][0] - 1 if i + 1 < len(headers) else last_line
        sections.append(Section(name=name, start_line=line, end_line=max(line, end)))
    return sections


def _line(node: FlowNode) -> int:
    return node.location.line if node.location else 1


def _span(node: FlowNode) -> Tuple[int, int]:
    loc = node.location
    if loc is None:
        return (1, 1)
    return (loc.line, loc.end_line or loc.line)


def _top_level_functions(nodes: Sequence[FlowNode]) -> List[FlowNode]:
    """Function nodes not nested inside another function's span."""
    functions = [n for n in nodes if n.kind == NodeKind.FUNCTION and n.location is not None]

    def nested(fn: FlowNode) -> bool:
        start, end = _span(fn)
        return any(
            o is not fn and _span(o)[0] <= start and end <= _span(o)[1] and _span(o) != (start, end)
            for o in functions
        )

    return [fn for fn in functions if not nested(fn)]


def group_nodes(
    nodes: Sequence[FlowNode],
    sections: Sequence[Section] = (),
    file_path: str = "main.js",
) -> List[HierarchyNode]:
    """Feature-level groups in source order, the global group last.

    Every flow node is in exactly one group.
    """
    groups: List[HierarchyNode] = []
    leftovers: List[FlowNode] = []

    if sections:
        members: Dict[int, List[FlowNode]] = {i: [] for i in range(len(sections))}
        for n in nodes:
            owner = next((i for i, s in enumerate(sections) if s.contains(_line(n))), None)
            if owner is None or n.kind == NodeKind.START:
                leftovers.append(n)
            else:
                members[owner].append(n)
        for i, s in enumerate(sections):
            gid = generate_id("section", "global", file_path, s.start_line, 0, signature=s.name)
            groups.append(_group(gid, s.name, members[i]))
        global_label = "Global"
    else:
        functions = _top_level_functions(nodes)
        members_by_fn: Dict[str, List[FlowNode]] = {fn.id: [] for fn in functions}
        for n in nodes:
            owner = next((fn for fn in functions if _span(fn)[0] <= _line(n) <= _span(fn)[1]), None)
            if owner is None or n.kind == NodeKind.START:
                leftovers.append(n)
            else:
                members_by_fn[owner.id].append(n)
        for fn in functions:
            groups.append(_group(f"group_{fn.id}", fn.label, members_by_fn[fn.id]))
        global_label = "Global Flow"

    if leftovers:
        first = leftovers[0]
        gid = generate_id("group", "global", file_path, _line(first), 0, signature=global_label)
        groups.append(_group(gid, global_label, leftovers))
    return groups


def _group(group_id: str, label: str, members: List[FlowNode]) -> HierarchyNode:
    return HierarchyNode(
        id=group_id,
        level=ZoomLevel.FEATURE,
        label=label,
        parent_id=SYSTEM_ROOT_ID,
        children=[n.id for n in members],
        flow_nodes=list(members),
        summary=f"{len(members)} nodes",
    )


class HierarchicalView:
    """Zoom and collapse state over the groups of one compiled graph."""

    def __init__(
        self,
        nodes: Sequence[FlowNode],
        sections: Sequence[Section] = (),
        file_path: str = "main.js",
    ):
        self.nodes = list(nodes)
        self.zoom = ZoomLevel.FUNCTION
        self.collapsed: Set[str] = set()
        self.focused_node_id: Optional[str] = None

        self.groups = group_nodes(self.nodes, sections, file_path)
        self.hierarchy: Dict[str, HierarchyNode] = {}
        self.hierarchy[SYSTEM_ROOT_ID] = HierarchyNode(
            id=SYSTEM_ROOT_ID,
            level=ZoomLevel.SYSTEM,
            label="Code Overview",
            children=[g.id for g in self.groups],
            flow_nodes=list(self.nodes),
            summary=f"{len(self.groups)} groups, {len(self.nodes)} nodes",
        )
        for g in self.groups:
            self.hierarchy[g.id] = g
            for n in g.flow_nodes:
                self.hierarchy[n.id] = HierarchyNode(
                    id=n.id,
                    level=ZoomLevel.FUNCTION,
                    label=n.label,
                    parent_id=g.id,
                    flow_nodes=[n],
                )
        logger.debug("Hierarchy built: %s", self.hierarchy[SYSTEM_ROOT_ID].summary)

    @classmethod
    def from_source(cls, source: str, nodes: Sequence[FlowNode], file_path: str = "main.js") -> "HierarchicalView":
        return cls(nodes, find_sections(source, file_path), file_path)

    # ------------------------------------------------------------------
    # Zoom
    # ------------------------------------------------------------------

    def set_zoom(self, level: ZoomLevel) -> None:
        self.zoom = ZoomLevel(level)

    def zoom_in(self) -> ZoomLevel:
        i = _ZOOM_ORDER.index(self.zoom)
        self.zoom = _ZOOM_ORDER[min(i + 1, len(_ZOOM_ORDER) - 1)]
        return self.zoom

    def zoom_out(self) -> ZoomLevel:
        i = _ZOOM_ORDER.index(self.zoom)
        self.zoom = _ZOOM_ORDER[max(i - 1, 0)]
        return self.zoom

    # ------------------------------------------------------------------
    # Collapse / focus
    # ------------------------------------------------------------------

    def collapse(self, group_id: str) -> None:
        self.collapsed.add(group_id)

    def expand(self, group_id: str) -> None:
        self.collapsed.discard(group_id)

    def toggle(self, group_id: str) -> bool:
        """Returns True when the group is collapsed afterwards."""
        if group_id in self.collapsed:
            self.collapsed.discard(group_id)
            return False
        self.collapsed.add(group_id)
        return True

    def focus_node(self, node_id: str) -> None:
        """Focus a node: expand its group and zoom in far enough to show it."""
        self.focused_node_id = node_id
        h = self.hierarchy.get(node_id)
        if h is None:
            return
        if h.parent_id and h.parent_id != SYSTEM_ROOT_ID:
            self.expand(h.parent_id)
        if _ZOOM_ORDER.index(self.zoom) < _ZOOM_ORDER.index(ZoomLevel.FUNCTION):
            self.zoom = ZoomLevel.FUNCTION

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def visible(self) -> List[Dict[str, Any]]:
        """Render-ready cards and node dicts for the current zoom level."""
        if self.zoom == ZoomLevel.SYSTEM:
            return [self.hierarchy[SYSTEM_ROOT_ID].to_dict()]
        if self.zoom == ZoomLevel.FEATURE:
            return [g.to_dict(collapsed=g.id in self.collapsed) for g in self.groups]

        out: List[Dict[str, Any]] = []
        for g in self.groups:
            if self.zoom == ZoomLevel.FUNCTION and g.id in self.collapsed:
                out.append(g.to_dict(collapsed=True))
                continue
            for n in g.flow_nodes:
                d = n.to_dict()
                d["parentId"] = g.id
                out.append(d)
        return out

    def get(self, node_id: str) -> Optional[HierarchyNode]:
        return self.hierarchy.get(node_id)

    def nodes_at_level(self, level: ZoomLevel) -> List[HierarchyNode]:
        return [h for h in self.hierarchy.values() if h.level == ZoomLevel(level)]

    def group_of(self, node_id: str) -> Optional[HierarchyNode]:
        h = self.hierarchy.get(node_id)
        if h is None or h.level != ZoomLevel.FUNCTION:
            return None
        return self.hierarchy.get(h.parent_id or "")

    def breadcrumb(self, node_id: str) -> List[str]:
        """Labels from the overview card down to `node_id`."""
        path: List[str] = []
        current = self.hierarchy.get(node_id)
        while current is not None:
            path.insert(0, current.label)
            current = self.hierarchy.get(current.parent_id) if current.parent_id else None
        return path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zoom": self.zoom.value,
            "collapsed": sorted(self.collapsed),
            "focusedNodeId": self.focused_node_id,
            "groups": [g.to_dict(collapsed=g.id in self.collapsed) for g in self.groups],
        }
