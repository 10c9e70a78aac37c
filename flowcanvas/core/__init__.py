"""Core domain types and algorithms."""

from .diff import DiffNode, DiffResult, DiffStats, DiffStatus, GhostDiff, diff
from .identity import file_checksum, generate_id, manifest_hash
from .models import (
    CheckpointMetadata,
    CompileResult,
    EdgeLabel,
    FlowEdge,
    FlowGraph,
    FlowNode,
    NodeKind,
    Position,
    SourceLocation,
)

__all__ = [
    # models
    "CheckpointMetadata",
    "CompileResult",
    "EdgeLabel",
    "FlowEdge",
    "FlowGraph",
    "FlowNode",
    "NodeKind",
    "Position",
    "SourceLocation",
    # identity
    "file_checksum",
    "generate_id",
    "manifest_hash",
    # diff
    "DiffNode",
    "DiffResult",
    "DiffStats",
    "DiffStatus",
    "GhostDiff",
    "diff",
]
