"""Tree-sitter backend for the FlowCanvas compiler and interpreter.

Provides parsing plus the small set of AST helpers both walkers share.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from tree_sitter import Node, Parser
from tree_sitter_language_pack import get_language

from ...config import detect_language
from ...core.models import SourceLocation


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class TsParsed:
    """Parsed source code with tree-sitter AST."""

    language: str
    src: bytes
    tree: Any
    root: Node


# Node types that introduce a function body.
FUNCTION_TYPES = frozenset(
    {
        "function_declaration",
        "generator_function_declaration",
        "function_expression",
        "function",
        "generator_function",
        "arrow_function",
        "method_definition",
    }
)

# Named nodes that never carry semantics for either walker.
TRIVIA_TYPES = frozenset({"comment", "hash_bang_line", "html_comment"})


# =============================================================================
# Parser Infrastructure
# =============================================================================

_THREAD_LOCAL = threading.local()


def _get_parser(language_name: str) -> Parser:
    """Get or create a thread-local parser for the given language."""
    parsers = getattr(_THREAD_LOCAL, "parsers", None)
    if parsers is None:
        parsers = {}
        _THREAD_LOCAL.parsers = parsers

    parser = parsers.get(language_name)
    if parser is None:
        lang = get_language(language_name)
        parser = Parser()
        if hasattr(parser, "set_language"):
            parser.set_language(lang)
        else:
            parser.language = lang
        parsers[language_name] = parser
    return parser


# =============================================================================
# AST Utilities
# =============================================================================


def iter_named_nodes(root: Node) -> Iterable[Node]:
    """Iterate over all named nodes in the AST (pre-order)."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        for child in reversed(node.named_children):
            stack.append(child)


def node_text(src: bytes, node: Node) -> str:
    """Extract text content of a node."""
    return src[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def node_location(node: Node, file: str) -> SourceLocation:
    """1-based line, 0-based column (acorn/ESTree convention)."""
    (sl, sc) = node.start_point
    (el, ec) = node.end_point
    return SourceLocation(file=file, line=sl + 1, column=sc, end_line=el + 1, end_column=ec)


def location_key(node: Node) -> str:
    """`line:column` key shared by the compiler's node map and the interpreter."""
    (sl, sc) = node.start_point
    return f"{sl + 1}:{sc}"


def named_children(node: Node) -> List[Node]:
    """Named children without comments."""
    return [c for c in node.named_children if c.type not in TRIVIA_TYPES]


def get_field(node: Node, name: str) -> Optional[Node]:
    return node.child_by_field_name(name)


def body_statements(node: Optional[Node]) -> List[Node]:
    """Statements of a block, or the single statement of a braceless body."""
    if node is None:
        return []
    if node.type == "statement_block":
        return named_children(node)
    if node.type == "else_clause":
        inner = named_children(node)
        return body_statements(inner[0]) if inner else []
    return [node]


def unwrap(node: Optional[Node]) -> Optional[Node]:
    """Strip parentheses and expression_statement wrappers (for-loop headers)."""
    while node is not None and node.type in {"parenthesized_expression", "expression_statement"}:
        inner = named_children(node)
        if not inner:
            return None
        node = inner[0]
    if node is not None and node.type == "empty_statement":
        return None
    return node


def operator_of(node: Node) -> str:
    op = node.child_by_field_name("operator")
    if op is not None:
        return op.type
    # Older grammars keep the operator as an unnamed child without a field.
    for child in node.children:
        if not child.is_named:
            return child.type
    return ""


def first_syntax_error(root: Node) -> Optional[Tuple[int, int]]:
    """(line, column) of the first ERROR/MISSING node, or None."""
    if not root.has_error:
        return None
    for node in iter_named_nodes(root):
        if node.type == "ERROR" or node.is_missing:
            (line, col) = node.start_point
            return line + 1, col
    # has_error can be set by an unnamed MISSING token.
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_missing or node.type == "ERROR":
            (line, col) = node.start_point
            return line + 1, col
        stack.extend(reversed(node.children))
    (line, col) = root.start_point
    return line + 1, col


# =============================================================================
# Core Parsing
# =============================================================================


def parse_source(text: str, *, file_path: str = "main.js") -> TsParsed:
    """Parse source code with tree-sitter.

    Tree-sitter never fails outright; callers check `first_syntax_error`.
    """
    language = detect_language(file_path)
    src = text.encode("utf-8", errors="replace")
    parser = _get_parser(language)
    tree = parser.parse(src)
    return TsParsed(language=language, src=src, tree=tree, root=tree.root_node)


__all__ = [
    "FUNCTION_TYPES",
    "TRIVIA_TYPES",
    "TsParsed",
    "body_statements",
    "get_field",
    "first_syntax_error",
    "iter_named_nodes",
    "location_key",
    "named_children",
    "node_location",
    "node_text",
    "operator_of",
    "parse_source",
    "unwrap",
]
