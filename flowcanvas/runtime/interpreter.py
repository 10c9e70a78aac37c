"""Step interpreter: offline time-travel execution over a compiled flow graph.

`prepare()` runs the chosen function eagerly, recording one snapshot each time
a statement that the compiler gave a node is about to execute. Stepping only
moves a cursor over those snapshots, so going backwards never re-executes.
"""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from tree_sitter import Node

from ..config import MAX_LOOP_ITERATIONS
from ..errors import InterpreterError
from ..parser.treesitter import (
    body_statements,
    first_syntax_error,
    get_field,
    location_key,
    named_children,
    node_text,
    operator_of,
    parse_source,
    unwrap,
)
from .values import (
    BINARY_OPERATORS,
    MATH_CONSTANTS,
    MATH_FUNCTIONS,
    UNDEFINED,
    is_number,
    normalize,
    parse_number,
    strict_equals,
    to_js_string,
    to_jsonable,
    to_number,
    truthy,
    type_of,
)

logger = logging.getLogger(__name__)

_DECLARATIONS = frozenset({"lexical_declaration", "variable_declaration"})
_FUNCTION_DECLARATIONS = frozenset({"function_declaration", "generator_function_declaration"})

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class CallFrame:
    function_name: str
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionState:
    variables: Dict[str, Any] = field(default_factory=dict)
    call_stack: List[CallFrame] = field(default_factory=list)
    current_node_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.IDLE
    output: List[str] = field(default_factory=list)
    error: Optional[str] = None
    return_value: Any = UNDEFINED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variables": {k: to_jsonable(v) for k, v in self.variables.items()},
            "callStack": [
                {"functionName": f.function_name, "variables": to_jsonable(f.variables)} for f in self.call_stack
            ],
            "currentNodeId": self.current_node_id,
            "status": self.status.value,
            "output": list(self.output),
            "error": self.error,
            "returnValue": to_jsonable(self.return_value),
        }


@dataclass(frozen=True)
class InterpreterStep:
    index: int
    node_id: str
    state: ExecutionState
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "nodeId": self.node_id,
            "state": self.state.to_dict(),
            "timestamp": self.timestamp,
        }


@dataclass
class Breakpoint:
    node_id: str
    line: Optional[int] = None
    condition: Optional[str] = None
    enabled: bool = True


@dataclass
class VariableChange:
    step: int
    value: Any
    timestamp: float


@dataclass
class _Completion:
    """Abrupt completion of a statement list."""

    kind: str  # return|break|continue
    value: Any = UNDEFINED


class _Thrown(InterpreterError):
    """A JavaScript `throw`; catchable by try/catch inside the trace."""

    def __init__(self, value: Any):
        super().__init__(f"Uncaught {to_js_string(value)}")
        self.value = value


class Interpreter:
    def __init__(
        self,
        source_text: str,
        node_map: Mapping[str, str],
        *,
        max_iterations: int = MAX_LOOP_ITERATIONS,
        file_path: str = "main.js",
    ):
        self.node_map = dict(node_map)
        self.max_iterations = max_iterations
        self.state = ExecutionState()
        self.steps: List[InterpreterStep] = []
        self.breakpoints: Dict[str, Breakpoint] = {}
        self.variable_history: Dict[str, List[VariableChange]] = {}

        self._cursor = 0
        self._final: Optional[ExecutionState] = None
        self._functions: Dict[str, Node] = {}
        self._call_depth = 0
        self._recording = True

        parsed = parse_source(source_text, file_path=file_path)
        self._src = parsed.src
        self._root: Optional[Node] = parsed.root
        err = first_syntax_error(parsed.root)
        if err is not None:
            self._root = None
            self.state.status = ExecutionStatus.ERROR
            self.state.error = f"Syntax error at line {err[0]}, column {err[1]}"
            return

        for stmt in named_children(parsed.root):
            if stmt.type == "export_statement":
                stmt = get_field(stmt, "declaration") or stmt
            if stmt.type in _FUNCTION_DECLARATIONS:
                name = get_field(stmt, "name")
                if name is not None:
                    self._functions.setdefault(self._text(name), stmt)

        self._statements: Dict[str, Callable[[Node], Optional[_Completion]]] = {
            "expression_statement": self._exec_expression,
            "lexical_declaration": self._exec_declaration,
            "variable_declaration": self._exec_declaration,
            "if_statement": self._exec_if,
            "for_statement": self._exec_for,
            "for_in_statement": self._exec_for_in,
            "while_statement": self._exec_while,
            "do_statement": self._exec_do,
            "switch_statement": self._exec_switch,
            "try_statement": self._exec_try,
            "return_statement": self._exec_return,
            "throw_statement": self._exec_throw,
            "break_statement": self._exec_break,
            "continue_statement": self._exec_continue,
            "statement_block": lambda n: self._exec_block(named_children(n)),
            "labeled_statement": lambda n: self._exec_block(body_statements(get_field(n, "body"))),
        }
        self._expressions: Dict[str, Callable[[Node], Any]] = {
            "number": lambda n: parse_number(self._text(n)),
            "string": self._eval_string,
            "template_string": self._eval_template,
            "true": lambda n: True,
            "false": lambda n: False,
            "null": lambda n: None,
            "undefined": lambda n: UNDEFINED,
            "identifier": self._eval_identifier,
            "parenthesized_expression": lambda n: self._eval(unwrap(n)),
            "sequence_expression": self._eval_sequence,
            "array": self._eval_array,
            "object": self._eval_object,
            "member_expression": self._eval_member,
            "subscript_expression": self._eval_member,
            "binary_expression": self._eval_binary,
            "unary_expression": self._eval_unary,
            "update_expression": self._eval_update,
            "assignment_expression": self._eval_assignment,
            "augmented_assignment_expression": self._eval_assignment,
            "ternary_expression": self._eval_ternary,
            "call_expression": self._eval_call,
        }

    @property
    def functions(self) -> List[str]:
        return list(self._functions)

    # ------------------------------------------------------------------
    # Breakpoints
    # ------------------------------------------------------------------

    def add_breakpoint(self, node_id: str, *, line: Optional[int] = None, condition: Optional[str] = None) -> None:
        self.breakpoints[node_id] = Breakpoint(node_id=node_id, line=line, condition=condition)

    def remove_breakpoint(self, node_id: str) -> None:
        self.breakpoints.pop(node_id, None)

    def toggle_breakpoint(self, node_id: str) -> bool:
        bp = self.breakpoints.get(node_id)
        if bp is None:
            self.add_breakpoint(node_id)
            return True
        bp.enabled = not bp.enabled
        return bp.enabled

    def has_breakpoint(self, node_id: str) -> bool:
        bp = self.breakpoints.get(node_id)
        return bp is not None and bp.enabled

    def get_breakpoints(self) -> List[Breakpoint]:
        return list(self.breakpoints.values())

    # ------------------------------------------------------------------
    # Variable history
    # ------------------------------------------------------------------

    def _record_change(self, name: str, value: Any) -> None:
        if not self._recording:
            return
        self.variable_history.setdefault(name, []).append(
            VariableChange(step=len(self.steps), value=copy.deepcopy(value), timestamp=time.time())
        )

    def get_variable_history(self, name: Optional[str] = None) -> Dict[str, List[VariableChange]]:
        if name is not None:
            return {name: list(self.variable_history[name])} if name in self.variable_history else {}
        return {k: list(v) for k, v in self.variable_history.items()}

    def get_variable_at_step(self, name: str, step: int) -> Any:
        """Value of `name` as seen by snapshot `step` (UNDEFINED before it is set)."""
        value: Any = UNDEFINED
        for change in self.variable_history.get(name, []):
            if change.step > step:
                break
            value = change.value
        return value

    # ------------------------------------------------------------------
    # Trace collection
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self.state = ExecutionState()
        self.steps = []
        self.variable_history = {}
        self._cursor = 0
        self._final = None
        self._call_depth = 0
        self._recording = True

    def prepare(self, function_name: Optional[str] = None, args: Sequence[Any] = ()) -> bool:
        """Run `function_name` (default: first declared) and record its trace.

        Returns False when there is nothing to run (syntax error or unknown
        function). A runtime error still returns True: the steps up to the
        failure are kept and the final state carries status "error".
        """
        if self._root is None:
            return False

        self.reset()
        if function_name is None:
            target = next(iter(self._functions.values()), None)
            function_name = next(iter(self._functions), "default")
        else:
            target = self._functions.get(function_name)
        if target is None:
            self.state.status = ExecutionStatus.ERROR
            self.state.error = f"Function {function_name} not found"
            return False

        self.state.status = ExecutionStatus.RUNNING
        self.state.call_stack.append(CallFrame(function_name=function_name))
        self._bind_parameters(target, copy.deepcopy(list(args)))
        initial = copy.deepcopy(self.state)

        try:
            completion = self._exec_block(named_children(get_field(target, "body")))
            self.state.status = ExecutionStatus.COMPLETED
            if completion is not None and completion.kind == "return":
                self.state.return_value = completion.value
        except InterpreterError as e:
            logger.debug("Trace of %s stopped: %s", function_name, e)
            self.state.status = ExecutionStatus.ERROR
            self.state.error = str(e)
        except RecursionError:
            self.state.status = ExecutionStatus.ERROR
            self.state.error = "Maximum nesting depth exceeded"
        except Exception as e:
            logger.warning("Trace of %s failed unexpectedly", function_name, exc_info=True)
            self.state.status = ExecutionStatus.ERROR
            self.state.error = f"Internal error: {e}"

        self._final = copy.deepcopy(self.state)
        self.state = initial
        return True

    def _bind_parameters(self, fn: Node, args: List[Any]) -> None:
        params = get_field(fn, "parameters") or get_field(fn, "parameter")
        if params is None:
            return
        items = named_children(params) if params.type == "formal_parameters" else [params]
        for idx, param in enumerate(items):
            if param.type == "rest_pattern":
                inner = named_children(param)
                if inner:
                    self._bind_pattern(inner[0], args[idx:])
                break
            self._bind_pattern(param, args[idx] if idx < len(args) else UNDEFINED)

    def _bind_pattern(self, pattern: Optional[Node], value: Any) -> None:
        if pattern is None:
            return
        t = pattern.type
        if t in ("identifier", "shorthand_property_identifier_pattern"):
            self._set_var(self._text(pattern), value)
        elif t in ("assignment_pattern", "object_assignment_pattern"):
            if value is UNDEFINED:
                value = self._eval(get_field(pattern, "right"))
            self._bind_pattern(get_field(pattern, "left"), value)
        elif t == "array_pattern":
            seq = value if isinstance(value, list) else []
            for idx, child in enumerate(named_children(pattern)):
                self._bind_pattern(child, seq[idx] if idx < len(seq) else UNDEFINED)
        elif t == "object_pattern":
            obj = value if isinstance(value, dict) else {}
            for child in named_children(pattern):
                if child.type == "pair_pattern":
                    key = self._property_key(get_field(child, "key"))
                    self._bind_pattern(get_field(child, "value"), obj.get(key, UNDEFINED))
                elif child.type == "object_assignment_pattern":
                    left = get_field(child, "left")
                    v = obj.get(self._text(left), UNDEFINED) if left is not None else UNDEFINED
                    self._bind_pattern(child, v)
                else:
                    self._bind_pattern(child, obj.get(self._text(child), UNDEFINED))

    def _record(self, node: Node) -> None:
        if not self._recording:
            return
        node_id = self.node_map.get(location_key(node))
        if node_id is None:
            return
        self.state.current_node_id = node_id
        self.steps.append(
            InterpreterStep(
                index=len(self.steps),
                node_id=node_id,
                state=copy.deepcopy(self.state),
                timestamp=time.time(),
            )
        )

    def _check_iterations(self, node: Node, count: int) -> None:
        if count > self.max_iterations:
            line = node.start_point[0] + 1
            raise InterpreterError(f"Loop iteration limit ({self.max_iterations}) exceeded at line {line}")

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _exec_block(self, statements: List[Node]) -> Optional[_Completion]:
        for stmt in statements:
            handler = self._statements.get(stmt.type)
            if handler is None:
                continue
            completion = handler(stmt)
            if completion is not None:
                return completion
        return None

    def _exec_expression(self, node: Node) -> None:
        self._record(node)
        self._eval(unwrap(node))

    def _declare(self, node: Node) -> None:
        for d in named_children(node):
            if d.type != "variable_declarator":
                continue
            value = get_field(d, "value")
            self._bind_pattern(get_field(d, "name"), self._eval(value) if value is not None else UNDEFINED)

    def _exec_declaration(self, node: Node) -> None:
        self._record(node)
        self._declare(node)

    def _exec_if(self, node: Node) -> Optional[_Completion]:
        self._record(node)
        if truthy(self._eval(unwrap(get_field(node, "condition")))):
            return self._exec_block(body_statements(get_field(node, "consequence")))
        alternative = get_field(node, "alternative")
        if alternative is not None:
            return self._exec_block(body_statements(alternative))
        return None

    def _loop_body(self, node: Node) -> Optional[_Completion]:
        """Run one iteration. Returns a completion only when the loop must stop."""
        completion = self._exec_block(body_statements(get_field(node, "body")))
        if completion is None or completion.kind == "continue":
            return None
        return completion

    def _exec_for(self, node: Node) -> Optional[_Completion]:
        init = get_field(node, "initializer")
        if init is not None:
            if init.type in _DECLARATIONS:
                self._declare(init)
            else:
                self._eval(unwrap(init))
        test = unwrap(get_field(node, "condition"))
        update = get_field(node, "increment")

        count = 0
        while True:
            ok = truthy(self._eval(test)) if test is not None else True
            self._record(node)
            if not ok:
                return None
            count += 1
            self._check_iterations(node, count)
            completion = self._loop_body(node)
            if completion is not None:
                return completion if completion.kind == "return" else None
            if update is not None:
                self._eval(update)

    def _exec_while(self, node: Node) -> Optional[_Completion]:
        test = unwrap(get_field(node, "condition"))
        count = 0
        while True:
            ok = truthy(self._eval(test))
            self._record(node)
            if not ok:
                return None
            count += 1
            self._check_iterations(node, count)
            completion = self._loop_body(node)
            if completion is not None:
                return completion if completion.kind == "return" else None

    def _exec_do(self, node: Node) -> Optional[_Completion]:
        test = unwrap(get_field(node, "condition"))
        count = 0
        while True:
            count += 1
            self._check_iterations(node, count)
            completion = self._loop_body(node)
            if completion is not None:
                return completion if completion.kind == "return" else None
            ok = truthy(self._eval(test))
            self._record(node)
            if not ok:
                return None

    def _exec_for_in(self, node: Node) -> Optional[_Completion]:
        left = get_field(node, "left")
        if left is not None and left.type in _DECLARATIONS:
            declarators = [d for d in named_children(left) if d.type == "variable_declarator"]
            left = get_field(declarators[0], "name") if declarators else None
        iterable = self._eval(get_field(node, "right"))
        op = get_field(node, "operator")
        if op is not None:
            is_of = self._text(op) == "of"
        else:
            is_of = any(c.type == "of" for c in node.children)

        if is_of:
            if isinstance(iterable, list):
                items = list(iterable)
            elif isinstance(iterable, str):
                items = list(iterable)
            else:
                raise InterpreterError(f"TypeError: {to_js_string(iterable)} is not iterable")
        else:
            if isinstance(iterable, list):
                items = [str(i) for i in range(len(iterable))]
            elif isinstance(iterable, dict):
                items = list(iterable)
            elif isinstance(iterable, str):
                items = [str(i) for i in range(len(iterable))]
            else:
                items = []

        for count, item in enumerate(items, start=1):
            self._record(node)
            self._check_iterations(node, count)
            self._bind_pattern(left, item)
            completion = self._loop_body(node)
            if completion is not None:
                return completion if completion.kind == "return" else None
        self._record(node)
        return None

    def _exec_switch(self, node: Node) -> Optional[_Completion]:
        discriminant = self._eval(unwrap(get_field(node, "value")))
        body = get_field(node, "body")
        cases = [c for c in named_children(body) if c.type in ("switch_case", "switch_default")] if body else []

        start: Optional[int] = None
        default: Optional[int] = None
        for idx, case in enumerate(cases):
            value = get_field(case, "value")
            self._record(case)
            if case.type == "switch_default" or value is None:
                default = idx
                continue
            if strict_equals(discriminant, self._eval(value)):
                start = idx
                break
        if start is None:
            start = default
        if start is None:
            return None

        for case in cases[start:]:
            value = get_field(case, "value")
            statements = [c for c in named_children(case) if value is None or c.id != value.id]
            completion = self._exec_block(statements)
            if completion is not None:
                return None if completion.kind == "break" else completion
        return None

    def _exec_try(self, node: Node) -> Optional[_Completion]:
        completion: Optional[_Completion] = None
        try:
            completion = self._exec_block(body_statements(get_field(node, "body")))
        except _Thrown as thrown:
            handler = get_field(node, "handler")
            if handler is None:
                raise
            self._bind_pattern(get_field(handler, "parameter"), thrown.value)
            completion = self._exec_block(body_statements(get_field(handler, "body")))
        finally:
            finalizer = get_field(node, "finalizer")
            if finalizer is not None:
                override = self._exec_block(body_statements(get_field(finalizer, "body")))
                if override is not None:
                    completion = override
        return completion

    def _exec_return(self, node: Node) -> _Completion:
        self._record(node)
        args = named_children(node)
        return _Completion("return", self._eval(args[0]) if args else UNDEFINED)

    def _exec_throw(self, node: Node) -> None:
        self._record(node)
        args = named_children(node)
        raise _Thrown(self._eval(args[0]) if args else UNDEFINED)

    def _exec_break(self, node: Node) -> _Completion:
        self._record(node)
        return _Completion("break")

    def _exec_continue(self, node: Node) -> _Completion:
        self._record(node)
        return _Completion("continue")

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _text(self, node: Node) -> str:
        return node_text(self._src, node)

    def _set_var(self, name: str, value: Any) -> None:
        self.state.variables[name] = value
        self._record_change(name, value)

    def _eval(self, node: Optional[Node]) -> Any:
        if node is None:
            return UNDEFINED
        handler = self._expressions.get(node.type)
        if handler is None:
            return UNDEFINED
        return handler(node)

    def _unescape(self, raw: str) -> str:
        body = raw[1:]
        if not body:
            return ""
        if body[0] in _ESCAPES and len(body) == 1:
            return _ESCAPES[body[0]]
        if body[0] == "u":
            hexdigits = body[1:].strip("{}")
            try:
                return chr(int(hexdigits, 16))
            except ValueError:
                return body
        if body[0] == "x":
            try:
                return chr(int(body[1:], 16))
            except ValueError:
                return body
        if body[0] in "\r\n":
            return ""  # line continuation
        return body

    def _string_parts(self, node: Node, start: int, end: int) -> str:
        parts: List[str] = []
        pos = start
        for child in named_children(node):
            parts.append(self._src[pos : child.start_byte].decode("utf-8", errors="replace"))
            if child.type == "escape_sequence":
                parts.append(self._unescape(self._text(child)))
            elif child.type == "template_substitution":
                inner = named_children(child)
                parts.append(to_js_string(self._eval(inner[0])) if inner else "")
            else:
                parts.append(self._text(child))
            pos = child.end_byte
        parts.append(self._src[pos:end].decode("utf-8", errors="replace"))
        return "".join(parts)

    def _eval_string(self, node: Node) -> str:
        return self._string_parts(node, node.start_byte + 1, node.end_byte - 1)

    def _eval_template(self, node: Node) -> str:
        return self._string_parts(node, node.start_byte + 1, node.end_byte - 1)

    def _eval_identifier(self, node: Node) -> Any:
        name = self._text(node)
        if name in self.state.variables:
            return self.state.variables[name]
        if name == "NaN":
            return float("nan")
        if name == "Infinity":
            return float("inf")
        return UNDEFINED

    def _eval_sequence(self, node: Node) -> Any:
        value: Any = UNDEFINED
        for child in named_children(node):
            value = self._eval(child)
        return value

    def _eval_array(self, node: Node) -> List[Any]:
        out: List[Any] = []
        for child in named_children(node):
            if child.type == "spread_element":
                inner = named_children(child)
                spread = self._eval(inner[0]) if inner else UNDEFINED
                if isinstance(spread, (list, str)):
                    out.extend(spread)
                continue
            out.append(self._eval(child))
        return out

    def _property_key(self, key: Optional[Node]) -> str:
        if key is None:
            return ""
        if key.type == "string":
            return self._eval_string(key)
        if key.type == "number":
            return to_js_string(parse_number(self._text(key)))
        if key.type == "computed_property_name":
            inner = named_children(key)
            return to_js_string(self._eval(inner[0])) if inner else ""
        return self._text(key)

    def _eval_object(self, node: Node) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for child in named_children(node):
            if child.type == "pair":
                out[self._property_key(get_field(child, "key"))] = self._eval(get_field(child, "value"))
            elif child.type == "shorthand_property_identifier":
                out[self._text(child)] = self._eval_identifier(child)
            elif child.type == "spread_element":
                inner = named_children(child)
                spread = self._eval(inner[0]) if inner else UNDEFINED
                if isinstance(spread, dict):
                    out.update(spread)
        return out

    def _member_key(self, node: Node) -> Any:
        if node.type == "subscript_expression":
            return self._eval(unwrap(get_field(node, "index")))
        prop = get_field(node, "property")
        return self._text(prop) if prop is not None else ""

    def _eval_member(self, node: Node) -> Any:
        obj_node = get_field(node, "object")
        if (
            obj_node is not None
            and obj_node.type == "identifier"
            and self._text(obj_node) == "Math"
            and "Math" not in self.state.variables
        ):
            return MATH_CONSTANTS.get(str(self._member_key(node)), UNDEFINED)
        return get_property(self._eval(obj_node), self._member_key(node))

    def _eval_binary(self, node: Node) -> Any:
        op = operator_of(node)
        left = self._eval(get_field(node, "left"))
        if op == "&&":
            return self._eval(get_field(node, "right")) if truthy(left) else left
        if op == "||":
            return left if truthy(left) else self._eval(get_field(node, "right"))
        if op == "??":
            return self._eval(get_field(node, "right")) if left is None or left is UNDEFINED else left
        fn = BINARY_OPERATORS.get(op)
        right = self._eval(get_field(node, "right"))
        if fn is None:
            return UNDEFINED
        return fn(left, right)

    def _eval_unary(self, node: Node) -> Any:
        op = operator_of(node)
        arg_node = get_field(node, "argument")
        if op == "typeof":
            return type_of(self._eval(arg_node))
        value = self._eval(arg_node)
        if op == "!":
            return not truthy(value)
        if op == "-":
            return normalize(-to_number(value))
        if op == "+":
            return to_number(value)
        if op == "~":
            return BINARY_OPERATORS["^"](value, -1)
        if op == "void":
            return UNDEFINED
        return UNDEFINED

    def _assign(self, target: Optional[Node], value: Any) -> Any:
        if target is None:
            return value
        if target.type == "identifier":
            self._set_var(self._text(target), value)
        elif target.type in ("member_expression", "subscript_expression"):
            obj_node = get_field(target, "object")
            set_property(self._eval(obj_node), self._member_key(target), value)
            root = obj_node
            while root is not None and root.type in ("member_expression", "subscript_expression"):
                root = get_field(root, "object")
            if root is not None and root.type == "identifier":
                name = self._text(root)
                if name in self.state.variables:
                    self._record_change(name, self.state.variables[name])
        elif target.type in ("array_pattern", "object_pattern"):
            self._bind_pattern(target, value)
        return value

    def _eval_assignment(self, node: Node) -> Any:
        target = get_field(node, "left")
        if node.type == "assignment_expression":
            return self._assign(target, self._eval(get_field(node, "right")))

        op = operator_of(node)[:-1]  # "+=" -> "+"
        current = self._eval(target)
        if op in ("&&", "||", "??"):
            keep = {
                "&&": not truthy(current),
                "||": truthy(current),
                "??": current is not None and current is not UNDEFINED,
            }[op]
            if keep:
                return current
            return self._assign(target, self._eval(get_field(node, "right")))
        fn = BINARY_OPERATORS.get(op)
        right = self._eval(get_field(node, "right"))
        return self._assign(target, fn(current, right) if fn else UNDEFINED)

    def _eval_update(self, node: Node) -> Any:
        target = get_field(node, "argument")
        op = operator_of(node)
        prefix = bool(node.children) and node.children[0].type in ("++", "--")
        old = to_number(self._eval(target))
        new = normalize(old + 1 if op == "++" else old - 1)
        self._assign(target, new)
        return new if prefix else old

    def _eval_ternary(self, node: Node) -> Any:
        if truthy(self._eval(get_field(node, "condition"))):
            return self._eval(get_field(node, "consequence"))
        return self._eval(get_field(node, "alternative"))

    def _eval_call(self, node: Node) -> Any:
        callee = get_field(node, "function")
        args_node = get_field(node, "arguments")
        args = [self._eval(a) for a in named_children(args_node)] if args_node is not None else []
        if callee is None:
            return UNDEFINED

        if callee.type == "member_expression":
            obj = get_field(callee, "object")
            prop = get_field(callee, "property")
            if obj is None or prop is None:
                return UNDEFINED
            owner, method = self._text(obj), self._text(prop)
            if owner == "Math" and method in MATH_FUNCTIONS:
                return normalize(MATH_FUNCTIONS[method](*[to_number(a) for a in args]))
            if owner == "console" and method in ("log", "info", "warn", "error", "debug"):
                self.state.output.append(" ".join(to_js_string(a) for a in args))
                return UNDEFINED
            return UNDEFINED

        if callee.type == "identifier":
            fn = self._functions.get(self._text(callee))
            if fn is not None:
                return self._call(self._text(callee), fn, args)
        return UNDEFINED

    def _call(self, name: str, fn: Node, args: List[Any]) -> Any:
        """Single-level call to a sibling declaration; nested calls yield UNDEFINED."""
        if self._call_depth >= 1:
            return UNDEFINED
        saved_vars = self.state.variables
        saved_recording = self._recording
        self._call_depth += 1
        self._recording = False
        self.state.variables = {}
        self.state.call_stack.append(CallFrame(function_name=name))
        try:
            self._bind_parameters(fn, list(args))
            body = get_field(fn, "body")
            completion = self._exec_block(named_children(body)) if body is not None else None
            return completion.value if completion is not None and completion.kind == "return" else UNDEFINED
        finally:
            self.state.call_stack.pop()
            self.state.variables = saved_vars
            self._recording = saved_recording
            self._call_depth -= 1

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _show(self, step: InterpreterStep) -> InterpreterStep:
        """Move the live state to `step`; callers get a copy, never the recorded step."""
        self.state = copy.deepcopy(step.state)
        self.state.status = ExecutionStatus.PAUSED
        return copy.deepcopy(step)

    def step_forward(self) -> Optional[InterpreterStep]:
        if self._cursor < len(self.steps):
            step = self.steps[self._cursor]
            self._cursor += 1
            return self._show(step)
        if self._final is not None:
            self.state = copy.deepcopy(self._final)
        return None

    def step_backward(self) -> Optional[InterpreterStep]:
        if self._cursor > 1:
            self._cursor -= 1
            return self._show(self.steps[self._cursor - 1])
        return None

    def jump_to_step(self, index: int) -> Optional[InterpreterStep]:
        if not 0 <= index < len(self.steps):
            return None
        self._cursor = index + 1
        return self._show(self.steps[index])

    def run_until_breakpoint(self) -> Optional[InterpreterStep]:
        """Advance to the next step whose enabled breakpoint condition holds."""
        while self._cursor < len(self.steps):
            step = self.step_forward()
            if step is None:
                break
            bp = self.breakpoints.get(step.node_id)
            if bp is not None and bp.enabled:
                if bp.condition is None or evaluate_condition(bp.condition, step.state.variables):
                    return step
        self.step_forward()
        return None

    def get_current_step(self) -> Optional[InterpreterStep]:
        if 0 < self._cursor <= len(self.steps):
            return copy.deepcopy(self.steps[self._cursor - 1])
        return None

    def get_all_steps(self) -> List[InterpreterStep]:
        return copy.deepcopy(self.steps)

    def get_progress(self) -> Dict[str, int]:
        return {"current": self._cursor, "total": len(self.steps)}

    def get_state(self) -> ExecutionState:
        return copy.deepcopy(self.state)

    def get_final_state(self) -> Optional[ExecutionState]:
        return copy.deepcopy(self._final) if self._final is not None else None


def get_property(obj: Any, key: Any) -> Any:
    if isinstance(obj, (list, str)):
        if key == "length":
            return len(obj)
        if is_number(key) and float(key).is_integer() and 0 <= key < len(obj):
            return obj[int(key)]
        if isinstance(key, str) and key.isdigit() and int(key) < len(obj):
            return obj[int(key)]
        return UNDEFINED
    if isinstance(obj, dict):
        return obj.get(to_js_string(key), UNDEFINED)
    return UNDEFINED


def set_property(obj: Any, key: Any, value: Any) -> None:
    if isinstance(obj, dict):
        obj[to_js_string(key)] = value
        return
    if isinstance(obj, list):
        idx = to_number(key)
        if not (is_number(idx) and float(idx).is_integer() and idx >= 0):
            return
        idx = int(idx)
        if idx >= len(obj):
            obj.extend([UNDEFINED] * (idx + 1 - len(obj)))
        obj[idx] = value
        return
    raise InterpreterError(f"TypeError: Cannot set properties of {to_js_string(obj)}")


def evaluate_condition(condition: str, variables: Mapping[str, Any]) -> bool:
    """Evaluate a breakpoint condition against a variable snapshot.

    Conditions that fail to parse or evaluate count as true, so a bad condition
    still stops execution.
    """
    scratch = Interpreter(f"({condition});", {})
    if scratch._root is None:
        return True
    statements = named_children(scratch._root)
    if not statements or statements[0].type != "expression_statement":
        return True
    scratch.state.variables = copy.deepcopy(dict(variables))
    try:
        return truthy(scratch._eval(unwrap(statements[0])))
    except InterpreterError:
        return True
