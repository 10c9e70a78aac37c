"""Structural node ids.

Ids are a pure function of (file, scope path, syntactic kind, line, column,
optional signature). The readable prefix exists for debugging only.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

# tree-sitter node type -> debug prefix
_PREFIXES: Dict[str, str] = {
    "program": "start",
    "function_declaration": "fn",
    "generator_function_declaration": "fn",
    "function_expression": "fn",
    "function": "fn",
    "arrow_function": "fn",
    "method_definition": "fn",
    "if_statement": "if",
    "switch_case": "case",
    "switch_default": "case",
    "for_statement": "for",
    "for_in_statement": "forin",
    "while_statement": "while",
    "do_statement": "dowhile",
    "return_statement": "return",
    "implicit_return": "return",
    "throw_statement": "throw",
    "lexical_declaration": "var",
    "variable_declaration": "var",
    "expression_statement": "expr",
    "break_statement": "break",
    "continue_statement": "continue",
    "statement_block": "block",
    "error": "error",
    "section": "section",
    "group": "group",
}


def fnv1a_32(s: str) -> int:
    """FNV-1a over the string's code points."""
    h = 2166136261
    for c in s:
        h ^= ord(c)
        h = (h * 16777619) & 0xFFFFFFFF
    return h


def short_hash(s: str) -> str:
    """Fixed-width (8 hex digit) hash."""
    return format(fnv1a_32(s), "08x")


def id_prefix(node_kind: str) -> str:
    return _PREFIXES.get(node_kind, "stmt")


def generate_id(
    node_kind: str,
    scope_path: str,
    file: str,
    line: int,
    column: int,
    signature: Optional[str] = None,
) -> str:
    """Generate a stable node id.

    Same inputs give the same id across runs; a line/column pair already
    distinguishes two nodes of one parse, `signature` covers anything else.
    """
    parts = [file, scope_path, node_kind, str(line), str(column)]
    if signature:
        parts.append(signature)
    return f"{id_prefix(node_kind)}_{short_hash('|'.join(parts))}"


def file_checksum(content: str) -> str:
    return short_hash(content)


def manifest_hash(checksums: Iterable[str]) -> str:
    """Order-independent version for a set of file checksums."""
    return short_hash("|".join(sorted(checksums)))
