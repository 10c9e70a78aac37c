from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class NodeKind(str, Enum):
    """Flow node types produced by the compiler."""

    START = "start"
    FUNCTION = "function"
    DECISION = "decision"
    LOOP = "loop"
    STATEMENT = "statement"
    RETURN = "return"


class EdgeLabel(str, Enum):
    TRUE = "true"
    FALSE = "false"
    LOOP = "loop"
    CONTINUE = "continue"


# Kinds drawn as diamonds by renderers (and given square boxes by the layout).
DECISION_KINDS = frozenset({NodeKind.DECISION, NodeKind.LOOP})


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int  # 1-based
    column: int  # 0-based
    end_line: Optional[int] = None
    end_column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "endLine": self.end_line,
            "endColumn": self.end_column,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SourceLocation":
        return cls(
            file=str(d.get("file") or ""),
            line=int(d.get("line") or 0),
            column=int(d.get("column") or 0),
            end_line=d.get("endLine"),
            end_column=d.get("endColumn"),
        )


@dataclass(frozen=True)
class Position:
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class FlowNode:
    id: str
    kind: NodeKind
    label: str
    location: Optional[SourceLocation] = None
    scope_path: str = "global"
    # First line of the enclosing function (own line for FUNCTION nodes, 1 at top level).
    scope_line: int = 1
    position: Optional[Position] = None

    @property
    def line(self) -> Optional[int]:
        return self.location.line if self.location else None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "kind": self.kind.value,
            "label": self.label,
            "sourceLocation": self.location.to_dict() if self.location else None,
            "scopePath": self.scope_path,
            "scopeLine": self.scope_line,
        }
        if self.position is not None:
            out["position"] = self.position.to_dict()
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FlowNode":
        loc = d.get("sourceLocation")
        pos = d.get("position")
        return cls(
            id=str(d["id"]),
            kind=NodeKind(d["kind"]),
            label=str(d.get("label") or ""),
            location=SourceLocation.from_dict(loc) if isinstance(loc, dict) else None,
            scope_path=str(d.get("scopePath") or "global"),
            scope_line=int(d.get("scopeLine") or 1),
            position=Position(**pos) if isinstance(pos, dict) else None,
        )


@dataclass(frozen=True)
class FlowEdge:
    """
    A control-flow edge between two nodes.
    """

    id: str
    source: str
    target: str
    label: Optional[EdgeLabel] = None
    style: str = "solid"  # solid|dashed

    def key(self) -> str:
        """Unique key for deduplication."""
        return f"{self.source}->{self.target}:{self.label.value if self.label else ''}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "label": self.label.value if self.label else None,
            "style": self.style,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FlowEdge":
        label = d.get("label")
        return cls(
            id=str(d["id"]),
            source=str(d["source"]),
            target=str(d["target"]),
            label=EdgeLabel(label) if label else None,
            style=str(d.get("style") or "solid"),
        )


def make_edge(source: str, target: str, label: Optional[EdgeLabel] = None) -> FlowEdge:
    suffix = f"_{label.value}" if label else ""
    style = "dashed" if label == EdgeLabel.CONTINUE else "solid"
    return FlowEdge(id=f"e_{source}_{target}{suffix}", source=source, target=target, label=label, style=style)


@dataclass(frozen=True)
class CheckpointMetadata:
    node_id: str
    file: str
    line: int
    column: int
    label: str
    kind: NodeKind
    parent_function: str = "global"
    captured_variable_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "label": self.label,
            "kind": self.kind.value,
            "parentFunction": self.parent_function,
            "capturedVariableNames": list(self.captured_variable_names),
        }


@dataclass
class FlowGraph:
    """
    Flow graph with O(1) lookups and edge de-duplication.
    """

    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)

    _node_map: Dict[str, FlowNode] = field(default_factory=dict, repr=False)
    _edges_from: Dict[str, List[FlowEdge]] = field(default_factory=dict, repr=False)
    _edges_to: Dict[str, List[FlowEdge]] = field(default_factory=dict, repr=False)
    _edge_keys: Set[str] = field(default_factory=set, repr=False)

    def rebuild_indexes(self) -> None:
        """Rebuild all indexes after modification."""
        self._node_map = {n.id: n for n in self.nodes}
        self._edges_from = {}
        self._edges_to = {}
        self._edge_keys = set()
        for e in self.edges:
            self._edges_from.setdefault(e.source, []).append(e)
            self._edges_to.setdefault(e.target, []).append(e)
            self._edge_keys.add(e.key())

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return self._node_map.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    def get_edges_from(self, node_id: str) -> List[FlowEdge]:
        return self._edges_from.get(node_id, [])

    def get_edges_to(self, node_id: str) -> List[FlowEdge]:
        return self._edges_to.get(node_id, [])

    def add_node(self, node: FlowNode) -> bool:
        """Add node if not exists. Returns True if added."""
        if node.id in self._node_map:
            return False
        self.nodes.append(node)
        self._node_map[node.id] = node
        return True

    def add_edge(self, edge: FlowEdge) -> bool:
        """Add edge if not duplicate. Returns True if added."""
        key = edge.key()
        if key in self._edge_keys:
            return False
        self.edges.append(edge)
        self._edge_keys.add(key)
        self._edges_from.setdefault(edge.source, []).append(edge)
        self._edges_to.setdefault(edge.target, []).append(edge)
        return True

    def stats(self) -> Dict[str, int]:
        out = {kind.value: 0 for kind in NodeKind}
        for n in self.nodes:
            out[n.kind.value] += 1
        out["edges"] = len(self.edges)
        return out


@dataclass
class CompileResult:
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    checkpoints: Dict[str, CheckpointMetadata] = field(default_factory=dict)
    functions: List[str] = field(default_factory=list)
    # "line:column" of a statement start -> node id (consumed by the interpreter)
    node_map: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def graph(self) -> FlowGraph:
        g = FlowGraph(nodes=list(self.nodes), edges=list(self.edges))
        g.rebuild_indexes()
        return g

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "checkpoints": {k: v.to_dict() for k, v in self.checkpoints.items()},
            "functions": list(self.functions),
        }
