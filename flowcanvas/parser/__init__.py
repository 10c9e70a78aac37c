"""FlowCanvas parser - tree-sitter JavaScript front end and flow compiler.

Usage:
    from flowcanvas.parser import compile_source
    result = compile_source(source, "main.js")
"""

from .compiler import compile_source, truncate_label
from .treesitter import parse_source

__all__ = ["compile_source", "parse_source", "truncate_label"]
