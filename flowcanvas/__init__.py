"""
FlowCanvas: control-flow graphs, ghost diffs and live checkpoints for JavaScript.

Main interface: compile_source()
"""

__version__ = "0.1.0"

from .core.diff import GhostDiff, diff
from .parser.compiler import compile_source
from .views.layout import layout

__all__ = ["GhostDiff", "compile_source", "diff", "layout"]
