"""Flow compiler: JavaScript syntax tree -> flow graph.

One pass over the tree-sitter AST. The walker keeps a scope stack (scope paths
and captured-variable inference) and a *frontier*: the list of pending
(node id, edge label) pairs the next emitted node connects from. Branches
leave several entries on the frontier, which is how they join again.

Statement kinds without a handler are skipped on purpose so small grammar
extensions never break compilation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from tree_sitter import Node

from ..config import MAX_CAPTURED_VARIABLES, MAX_CONDITION_LENGTH, MAX_LABEL_LENGTH
from ..core.identity import generate_id
from ..core.models import (
    CheckpointMetadata,
    CompileResult,
    EdgeLabel,
    FlowGraph,
    FlowNode,
    NodeKind,
    SourceLocation,
    make_edge,
)
from .treesitter import (
    FUNCTION_TYPES,
    body_statements,
    first_syntax_error,
    get_field,
    location_key,
    named_children,
    node_location,
    node_text,
    parse_source,
    unwrap,
)

logger = logging.getLogger(__name__)

Frontier = List[Tuple[str, Optional[EdgeLabel]]]

_DECLARATION_TYPES = frozenset({"function_declaration", "generator_function_declaration"})


def truncate_label(text: str, limit: int = MAX_LABEL_LENGTH) -> str:
    """Collapse whitespace, drop the trailing semicolon and ellipsis-truncate."""
    flat = " ".join(text.split()).rstrip(";").rstrip()
    if len(flat) > limit:
        return flat[: limit - 3] + "..."
    return flat


@dataclass
class _Scope:
    kind: str  # global|function|class|block
    name: str
    variables: Dict[str, None] = field(default_factory=dict)
    line: int = 1


@dataclass
class _BreakTarget:
    kind: str  # loop|switch
    node_id: str
    breaks: Frontier = field(default_factory=list)


def _error_result(file_path: str, message: str) -> CompileResult:
    node = FlowNode(
        id=generate_id("error", "global", file_path, 1, 0),
        kind=NodeKind.START,
        label="Syntax Error",
        location=SourceLocation(file=file_path, line=1, column=0),
    )
    return CompileResult(nodes=[node], error=message)


class FlowCompiler:
    def __init__(self, source_text: str, file_path: str = "main.js"):
        self.text = source_text
        self.file = file_path
        self.src = b""

        self.graph = FlowGraph()
        self.checkpoints: Dict[str, CheckpointMetadata] = {}
        self.functions: List[str] = []
        self.node_map: Dict[str, str] = {}

        self._frontier: Frontier = []
        self._scopes: List[_Scope] = [_Scope(kind="global", name="global")]
        self._breaks: List[_BreakTarget] = []
        self._current_function: Optional[str] = None

        self._handlers: Dict[str, Callable[[Node], None]] = {
            "expression_statement": self._expression_statement,
            "lexical_declaration": self._declaration,
            "variable_declaration": self._declaration,
            "if_statement": self._if,
            "for_statement": self._loop,
            "for_in_statement": self._loop,
            "while_statement": self._loop,
            "do_statement": self._loop,
            "switch_statement": self._switch,
            "try_statement": self._try,
            "return_statement": self._return,
            "throw_statement": self._return,
            "break_statement": self._break,
            "continue_statement": self._continue,
            "statement_block": self._nested_block,
            "function_declaration": self._function_declaration,
            "generator_function_declaration": self._function_declaration,
            "class_declaration": self._class,
            "export_statement": self._export,
            "labeled_statement": self._labeled,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def compile(self) -> CompileResult:
        try:
            parsed = parse_source(self.text, file_path=self.file)
        except Exception as e:
            logger.warning("Parser unavailable for %s: %s", self.file, e)
            return _error_result(self.file, f"Parser error: {e}")

        err = first_syntax_error(parsed.root)
        if err is not None:
            line, col = err
            logger.debug("Syntax error in %s at %d:%d", self.file, line, col)
            return _error_result(self.file, f"Syntax error at line {line}, column {col}")

        self.src = parsed.src
        try:
            start_id = self._emit(
                NodeKind.START,
                parsed.root,
                "Start",
                id_kind="program",
                location=SourceLocation(file=self.file, line=1, column=0),
            )
            self._frontier = [(start_id, None)]
            self._block(named_children(parsed.root))
        except Exception as e:
            # Keep the compiler total: callers always get a renderable graph.
            logger.exception("Flow compilation failed for %s", self.file)
            return _error_result(self.file, f"Compilation failed: {e}")

        return CompileResult(
            nodes=list(self.graph.nodes),
            edges=list(self.graph.edges),
            checkpoints=dict(self.checkpoints),
            functions=list(self.functions),
            node_map=dict(self.node_map),
        )

    # ------------------------------------------------------------------
    # Graph primitives
    # ------------------------------------------------------------------

    def _scope_path(self) -> str:
        return "/".join(s.name or s.kind for s in self._scopes)

    def _function_line(self) -> int:
        for scope in reversed(self._scopes):
            if scope.kind == "function":
                return scope.line
        return 1

    def _captured(self) -> List[str]:
        out: List[str] = []
        for scope in reversed(self._scopes):
            for name in scope.variables:
                if name not in out:
                    out.append(name)
                if len(out) >= MAX_CAPTURED_VARIABLES:
                    return out
        return out

    def _declare(self, names: List[str]) -> None:
        frame = self._scopes[-1]
        for name in names:
            frame.variables[name] = None

    def _text(self, node: Optional[Node]) -> str:
        return node_text(self.src, node) if node is not None else ""

    def _emit(
        self,
        kind: NodeKind,
        ts_node: Node,
        label: str,
        *,
        id_kind: Optional[str] = None,
        location: Optional[SourceLocation] = None,
    ) -> str:
        loc = location or node_location(ts_node, self.file)
        scope_path = self._scope_path()
        syntactic_kind = id_kind or ts_node.type
        node_id = generate_id(syntactic_kind, scope_path, self.file, loc.line, loc.column)
        n = 0
        while self.graph.has_node(node_id):
            n += 1
            node_id = generate_id(syntactic_kind, scope_path, self.file, loc.line, loc.column, signature=f"#{n}")

        scope_line = loc.line if kind == NodeKind.FUNCTION else self._function_line()
        self.graph.add_node(
            FlowNode(
                id=node_id,
                kind=kind,
                label=label,
                location=loc,
                scope_path=scope_path,
                scope_line=scope_line,
            )
        )
        if location is None:
            self.node_map.setdefault(location_key(ts_node), node_id)
        self.checkpoints[node_id] = CheckpointMetadata(
            node_id=node_id,
            file=self.file,
            line=loc.line,
            column=loc.column,
            label=label,
            kind=kind,
            parent_function=self._current_function or "global",
            captured_variable_names=self._captured(),
        )
        return node_id

    def _edge(self, source: str, target: str, label: Optional[EdgeLabel] = None) -> None:
        if source == target and label != EdgeLabel.CONTINUE:
            return
        self.graph.add_edge(make_edge(source, target, label))

    def _attach(self, node_id: str) -> None:
        for source, label in self._frontier:
            self._edge(source, node_id, label)
        self._frontier = [(node_id, None)]

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _block(self, statements: List[Node]) -> None:
        for stmt in statements:
            handler = self._handlers.get(stmt.type)
            if handler is not None:
                handler(stmt)

    def _scoped_block(self, statements: List[Node], names: Optional[List[str]] = None) -> None:
        self._scopes.append(_Scope(kind="block", name="block"))
        if names:
            self._declare(names)
        try:
            self._block(statements)
        finally:
            self._scopes.pop()

    def _nested_block(self, node: Node) -> None:
        self._scoped_block(named_children(node))

    def _expression_statement(self, node: Node) -> None:
        node_id = self._emit(NodeKind.STATEMENT, node, truncate_label(self._text(node)))
        self._attach(node_id)
        self._nested_functions(node)

    def _declaration(self, node: Node) -> None:
        declarators = [c for c in named_children(node) if c.type == "variable_declarator"]
        names: List[str] = []
        for d in declarators:
            names.extend(pattern_names(self.src, get_field(d, "name")))
        self._declare(names)

        node_id = self._emit(NodeKind.STATEMENT, node, truncate_label(self._text(node)))
        self._attach(node_id)

        for d in declarators:
            value = get_field(d, "value")
            if value is None:
                continue
            if value.type in FUNCTION_TYPES:
                name_node = get_field(d, "name")
                self._function(value, self._text(name_node) or "anonymous")
            else:
                self._nested_functions(value)

    def _return(self, node: Node) -> None:
        node_id = self._emit(NodeKind.RETURN, node, truncate_label(self._text(node)))
        self._attach(node_id)
        self._nested_functions(node)
        self._frontier = []

    def _break(self, node: Node) -> None:
        node_id = self._emit(NodeKind.STATEMENT, node, "break")
        self._attach(node_id)
        if self._breaks:
            self._breaks[-1].breaks.append((node_id, None))
        self._frontier = []

    def _continue(self, node: Node) -> None:
        node_id = self._emit(NodeKind.STATEMENT, node, "continue")
        self._attach(node_id)
        for target in reversed(self._breaks):
            if target.kind == "loop":
                self._edge(node_id, target.node_id, EdgeLabel.CONTINUE)
                break
        self._frontier = []

    def _if(self, node: Node) -> None:
        test = unwrap(get_field(node, "condition"))
        label = truncate_label(self._text(test), MAX_CONDITION_LENGTH) or "condition"
        decision_id = self._emit(NodeKind.DECISION, node, label)
        self._attach(decision_id)

        self._frontier = [(decision_id, EdgeLabel.TRUE)]
        self._scoped_block(body_statements(get_field(node, "consequence")))
        # An empty consequent leaves (decision, TRUE) pending for the next statement.
        exits = self._frontier

        alternative = get_field(node, "alternative")
        if alternative is not None:
            self._frontier = [(decision_id, EdgeLabel.FALSE)]
            self._scoped_block(body_statements(alternative))
            exits = exits + self._frontier
        else:
            exits = exits + [(decision_id, EdgeLabel.FALSE)]
        self._frontier = exits

    def _loop_header(self, node: Node) -> Tuple[str, List[str]]:
        """Loop label and the names the header declares."""
        if node.type == "for_statement":
            init = get_field(node, "initializer")
            names: List[str] = []
            if init is not None and init.type in {"lexical_declaration", "variable_declaration"}:
                for d in named_children(init):
                    if d.type == "variable_declarator":
                        names.extend(pattern_names(self.src, get_field(d, "name")))
            test = unwrap(get_field(node, "condition"))
            return (self._text(test) if test is not None else "true"), names

        if node.type == "for_in_statement":
            left = get_field(node, "left")
            right = get_field(node, "right")
            if left is None or right is None:
                return "each", []
            header = self.src[left.start_byte : right.end_byte].decode("utf-8", errors="replace")
            return header, pattern_names(self.src, left)

        test = unwrap(get_field(node, "condition"))
        return (self._text(test) if test is not None else "true"), []

    def _loop(self, node: Node) -> None:
        header, names = self._loop_header(node)
        label = truncate_label(header, MAX_CONDITION_LENGTH) or "true"
        loop_id = self._emit(NodeKind.LOOP, node, label)
        self._attach(loop_id)

        target = _BreakTarget(kind="loop", node_id=loop_id)
        self._breaks.append(target)
        self._frontier = [(loop_id, EdgeLabel.LOOP)]
        try:
            self._scoped_block(body_statements(get_field(node, "body")), names)
        finally:
            self._breaks.pop()

        for source, label_ in self._frontier:
            if source == loop_id:
                continue  # empty body
            back = label_ if label_ in (EdgeLabel.TRUE, EdgeLabel.FALSE) else EdgeLabel.CONTINUE
            self._edge(source, loop_id, back)

        self._frontier = [(loop_id, EdgeLabel.FALSE)] + target.breaks

    def _switch(self, node: Node) -> None:
        discriminant = truncate_label(self._text(unwrap(get_field(node, "value"))), MAX_CONDITION_LENGTH)
        body = get_field(node, "body")
        cases = [c for c in named_children(body)] if body is not None else []
        cases = [c for c in cases if c.type in {"switch_case", "switch_default"}]
        if not cases:
            return

        target = _BreakTarget(kind="switch", node_id="")
        self._breaks.append(target)
        self._scopes.append(_Scope(kind="block", name="block"))
        incoming = self._frontier
        fallthrough: Frontier = []
        try:
            for case in cases:
                value = get_field(case, "value")
                if case.type == "switch_default" or value is None:
                    label = "default"
                else:
                    label = truncate_label(f"{discriminant} === {self._text(value)}", MAX_CONDITION_LENGTH)
                case_id = self._emit(NodeKind.DECISION, case, label)
                self._frontier = incoming
                self._attach(case_id)

                self._frontier = [(case_id, EdgeLabel.TRUE)] + fallthrough
                statements = [c for c in named_children(case) if value is None or c.id != value.id]
                self._block(statements)
                fallthrough = self._frontier
                incoming = [] if label == "default" else [(case_id, EdgeLabel.FALSE)]
        finally:
            self._scopes.pop()
            self._breaks.pop()

        self._frontier = fallthrough + incoming + target.breaks

    def _try(self, node: Node) -> None:
        before = list(self._frontier)
        self._scoped_block(body_statements(get_field(node, "body")))
        exits = self._frontier

        handler = get_field(node, "handler")
        if handler is not None:
            self._frontier = before
            self._scoped_block(
                body_statements(get_field(handler, "body")),
                pattern_names(self.src, get_field(handler, "parameter")),
            )
            exits = exits + self._frontier

        self._frontier = exits
        finalizer = get_field(node, "finalizer")
        if finalizer is not None:
            self._scoped_block(body_statements(get_field(finalizer, "body")))

    def _export(self, node: Node) -> None:
        declaration = get_field(node, "declaration")
        if declaration is not None:
            self._block([declaration])
            return
        for child in named_children(node):
            if child.type in FUNCTION_TYPES:
                self._function(child, self._text(get_field(child, "name")) or "default")
            elif child.type in self._handlers:
                self._block([child])

    def _labeled(self, node: Node) -> None:
        self._block(body_statements(get_field(node, "body")))

    # ------------------------------------------------------------------
    # Functions and classes
    # ------------------------------------------------------------------

    def _function_declaration(self, node: Node) -> None:
        self._function(node, self._text(get_field(node, "name")) or "anonymous")

    def _class(self, node: Node) -> None:
        class_name = self._text(get_field(node, "name")) or "AnonymousClass"
        body = get_field(node, "body")
        if body is None:
            return
        self._scopes.append(_Scope(kind="class", name=class_name))
        try:
            for member in named_children(body):
                if member.type == "method_definition":
                    method = self._text(get_field(member, "name")) or "method"
                    self._function(member, f"{class_name}.{method}")
                elif member.type in {"field_definition", "public_field_definition"}:
                    value = get_field(member, "value")
                    if value is not None and value.type in FUNCTION_TYPES:
                        prop = self._text(get_field(member, "property")) or "field"
                        self._function(value, f"{class_name}.{prop}")
        finally:
            self._scopes.pop()

    def _function(self, node: Node, name: str) -> None:
        """Compile a function as a root of its own subtree."""
        params_node = get_field(node, "parameters") or get_field(node, "parameter")
        params = pattern_names(self.src, params_node)
        label = truncate_label(f"function {name}({', '.join(params)})")
        fn_id = self._emit(NodeKind.FUNCTION, node, label)
        if node.type in _DECLARATION_TYPES:
            self.functions.append(name)

        saved = (self._frontier, self._breaks, self._current_function)
        self._frontier = [(fn_id, None)]
        self._breaks = []
        self._current_function = name
        scope = _Scope(kind="function", name=name, line=node_location(node, self.file).line)
        for p in params:
            scope.variables[p] = None
        self._scopes.append(scope)
        try:
            body = get_field(node, "body")
            if body is None:
                pass
            elif body.type == "statement_block":
                self._block(named_children(body))
            else:
                # Arrow function with an expression body.
                ret_id = self._emit(
                    NodeKind.RETURN,
                    body,
                    truncate_label(f"return {self._text(body)}"),
                    id_kind="implicit_return",
                )
                self._attach(ret_id)
                self._nested_functions(body)
        finally:
            self._scopes.pop()
            self._frontier, self._breaks, self._current_function = saved

    def _nested_functions(self, node: Node) -> None:
        """Compile function expressions inside a statement (callbacks) as roots."""
        stack = list(reversed(named_children(node)))
        while stack:
            child = stack.pop()
            if child.type in FUNCTION_TYPES:
                self._function(child, _infer_function_name(self.src, child))
                continue
            if child.type == "class":
                continue
            stack.extend(reversed(named_children(child)))


def pattern_names(src: bytes, node: Optional[Node]) -> List[str]:
    """Identifiers bound by a parameter list or destructuring pattern."""
    if node is None:
        return []
    t = node.type
    if t in {"identifier", "shorthand_property_identifier_pattern"}:
        return [node_text(src, node)]
    if t in {"assignment_pattern", "object_assignment_pattern"}:
        return pattern_names(src, get_field(node, "left"))
    if t == "pair_pattern":
        return pattern_names(src, get_field(node, "value"))
    if t in {"formal_parameters", "object_pattern", "array_pattern", "rest_pattern"}:
        out: List[str] = []
        for child in named_children(node):
            out.extend(pattern_names(src, child))
        return out
    return []


def _infer_function_name(src: bytes, node: Node) -> str:
    name_node = get_field(node, "name")
    if name_node is not None:
        return node_text(src, name_node)
    parent = node.parent
    if parent is not None:
        if parent.type == "variable_declarator":
            target = get_field(parent, "name")
        elif parent.type == "pair":
            target = get_field(parent, "key")
        elif parent.type == "assignment_expression":
            target = get_field(parent, "left")
        else:
            target = None
        if target is not None:
            return node_text(src, target)
    return "anonymous"


def compile_source(source_text: str, file_path: str = "main.js") -> CompileResult:
    """Compile source text into a flow graph. Never raises."""
    return FlowCompiler(source_text, file_path).compile()
