"""Checkpoint instrumentation: make JavaScript report its own flow nodes.

`instrument(source, path)` compiles the source, then inserts a
`<runtime>.checkpoint("<node id>", {captured variables})` call in front of
every statement-level checkpoint (statements, returns, decisions and loops).
The ids are the compiler's structural ids, so checkpoints emitted by the
instrumented program line up with the graph of the same source, and the
returned manifest version is the one a session compiled from that source
reports.

Rewrites keep the program's meaning:
- a statement that is the braceless body of a control statement
  (`if (a) return b;`) is wrapped in a block together with its call
- an arrow function with an expression body becomes
  `{ <call>; return <expression>; }`
- labeled and exported statements get the call before the label/`export`
- switch cases are not instrumented (a call cannot precede `case`)

Captured names that could still be in their temporal dead zone at the
checkpoint (a `let`/`const`/`class` of an enclosing block at or after the
statement) are left out of the call.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from tree_sitter import Node

from ..config import INSTRUMENT_RUNTIME
from ..core.identity import file_checksum, manifest_hash
from ..core.models import CheckpointMetadata, NodeKind
from .compiler import compile_source, pattern_names
from .treesitter import FUNCTION_TYPES, get_field, iter_named_nodes, named_children, parse_source

logger = logging.getLogger(__name__)

_INSTRUMENTED_KINDS = frozenset({NodeKind.STATEMENT, NodeKind.RETURN, NodeKind.DECISION, NodeKind.LOOP})

# Parents whose children are statements in a statement list.
_STATEMENT_LISTS = frozenset({"program", "statement_block", "switch_case", "switch_default", "class_static_block"})

# Wrappers the call has to go in front of.
_PREFIXES = frozenset({"labeled_statement", "export_statement"})

_LEXICAL_TYPES = frozenset({"lexical_declaration", "class_declaration"})


@dataclass
class InstrumentResult:
    code: str
    file: str
    manifest_version: Optional[str] = None
    checkpoints: Dict[str, CheckpointMetadata] = field(default_factory=dict)
    # Node ids that received a call, in source order
    injected: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "file": self.file,
            "manifestVersion": self.manifest_version,
            "checkpoints": {k: v.to_dict() for k, v in self.checkpoints.items()},
            "injected": list(self.injected),
            "error": self.error,
        }


@dataclass(frozen=True)
class _Insert:
    offset: int
    closing: bool
    depth: int
    text: str

    def order(self) -> Tuple[int, int, int]:
        # At one offset: closers before openers, inner closers and outer openers first.
        return (self.offset, 0 if self.closing else 1, -self.depth if self.closing else self.depth)


def _depth(node: Node) -> int:
    d = 0
    while node.parent is not None:
        node = node.parent
        d += 1
    return d


def _declared_names(node: Node, src: bytes) -> List[str]:
    if node.type == "class_declaration":
        name = get_field(node, "name")
        return pattern_names(src, name)
    names: List[str] = []
    for d in named_children(node):
        if d.type == "variable_declarator":
            names.extend(pattern_names(src, get_field(d, "name")))
    return names


def _dead_zone_names(anchor: Node, src: bytes) -> Set[str]:
    """Lexical names of enclosing statement lists declared at or after `anchor`.

    Stops at the enclosing function: outer bindings are initialized or not
    depending on when the function runs, which is not known here.
    """
    out: Set[str] = set()
    node = anchor
    while node.parent is not None and node.parent.type not in FUNCTION_TYPES:
        parent = node.parent
        if parent.type in _STATEMENT_LISTS:
            for sibling in named_children(parent):
                if sibling.type in _LEXICAL_TYPES and sibling.start_byte >= node.start_byte:
                    out.update(_declared_names(sibling, src))
        node = parent
    return out


def checkpoint_call(node_id: str, variables: List[str], runtime: str = INSTRUMENT_RUNTIME) -> str:
    captured = ", ".join(f"{v}: typeof {v} !== 'undefined' ? {v} : undefined" for v in variables)
    payload = f"{{ {captured} }}" if captured else "{}"
    return f"{runtime}.checkpoint({json.dumps(node_id)}, {payload})"


def _statement_starts(root: Node) -> Dict[Tuple[int, int], Node]:
    """Outermost named node starting at each (line, column), the root excluded."""
    starts: Dict[Tuple[int, int], Node] = {}
    for node in iter_named_nodes(root):
        if node.parent is None:
            continue
        (line, col) = node.start_point
        starts.setdefault((line + 1, col), node)
    return starts


def instrument(source: str, file_path: str = "main.js", runtime: str = INSTRUMENT_RUNTIME) -> InstrumentResult:
    """Insert checkpoint calls; source that does not compile is returned untouched."""
    compiled = compile_source(source, file_path)
    if not compiled.ok:
        logger.debug("Not instrumenting %s: %s", file_path, compiled.error)
        return InstrumentResult(code=source, file=file_path, error=compiled.error)

    parsed = parse_source(source, file_path=file_path)
    src = parsed.src
    starts = _statement_starts(parsed.root)

    inserts: List[_Insert] = []
    injected: List[Tuple[int, str]] = []
    seen: Set[int] = set()
    for node_id, meta in compiled.checkpoints.items():
        if meta.kind not in _INSTRUMENTED_KINDS:
            continue
        node = starts.get((meta.line, meta.column))
        if node is None or node.type in ("switch_case", "switch_default"):
            continue

        anchor = node
        while anchor.parent is not None and anchor.parent.type in _PREFIXES:
            anchor = anchor.parent
        if anchor.start_byte in seen or anchor.parent is None:
            continue
        seen.add(anchor.start_byte)

        hidden = _dead_zone_names(anchor, src)
        call = checkpoint_call(node_id, [v for v in meta.captured_variable_names if v not in hidden], runtime)
        depth = _depth(anchor)
        parent = anchor.parent

        if parent.type in _STATEMENT_LISTS:
            inserts.append(_Insert(anchor.start_byte, False, depth, f"{call}; "))
        elif parent.type == "arrow_function" and meta.kind == NodeKind.RETURN:
            inserts.append(_Insert(anchor.start_byte, False, depth, f"{{ {call}; return "))
            inserts.append(_Insert(anchor.end_byte, True, depth, "; }"))
        else:
            inserts.append(_Insert(anchor.start_byte, False, depth, f"{{ {call}; "))
            inserts.append(_Insert(anchor.end_byte, True, depth, " }"))
        injected.append((anchor.start_byte, node_id))

    out: List[bytes] = []
    pos = 0
    for ins in sorted(inserts, key=_Insert.order):
        out.append(src[pos : ins.offset])
        out.append(ins.text.encode("utf-8"))
        pos = ins.offset
    out.append(src[pos:])

    logger.debug("Instrumented %s with %d checkpoints", file_path, len(injected))
    return InstrumentResult(
        code=b"".join(out).decode("utf-8", errors="replace"),
        file=file_path,
        manifest_version=manifest_hash([file_checksum(source)]),
        checkpoints=dict(compiled.checkpoints),
        injected=[node_id for _, node_id in sorted(injected)],
    )
