"""Tests for the flow compiler."""

from __future__ import annotations

from flowcanvas.core.models import EdgeLabel, NodeKind
from flowcanvas.parser.compiler import compile_source, truncate_label

SUM = """function sum(arr) {
  let t = 0;
  for (let i = 0; i < arr.length; i++) {
    t += arr[i];
  }
  return t;
}
"""


def _by_label(result, label):
    matches = [n for n in result.nodes if n.label == label]
    assert matches, f"no node labeled {label!r}: {[n.label for n in result.nodes]}"
    return matches[0]


def _edge(result, source, target):
    found = [e for e in result.edges if e.source == source.id and e.target == target.id]
    assert found, f"no edge {source.label!r} -> {target.label!r}"
    return found[0]


def test_truncate_label() -> None:
    assert truncate_label("x = 1;") == "x = 1"
    assert truncate_label("a\n   +  b") == "a + b"
    long = "x" * 80
    out = truncate_label(long)
    assert len(out) == 50
    assert out.endswith("...")


def test_compile_function_shape() -> None:
    result = compile_source(SUM)
    assert result.ok
    assert result.functions == ["sum"]

    kinds = [n.kind for n in result.nodes]
    assert kinds[0] == NodeKind.START
    assert kinds.count(NodeKind.FUNCTION) == 1
    assert kinds.count(NodeKind.LOOP) == 1
    assert kinds.count(NodeKind.RETURN) == 1

    fn = _by_label(result, "function sum(arr)")
    decl = _by_label(result, "let t = 0")
    loop = _by_label(result, "i < arr.length")
    body = _by_label(result, "t += arr[i]")
    ret = _by_label(result, "return t")

    assert _edge(result, fn, decl).label is None
    assert _edge(result, decl, loop).label is None
    assert _edge(result, loop, body).label == EdgeLabel.LOOP
    back = _edge(result, body, loop)
    assert back.label == EdgeLabel.CONTINUE
    assert back.style == "dashed"
    assert _edge(result, loop, ret).label == EdgeLabel.FALSE


def test_functions_are_roots() -> None:
    result = compile_source(SUM)
    start = result.nodes[0]
    fn = _by_label(result, "function sum(arr)")
    assert not [e for e in result.edges if e.target == fn.id]
    assert not [e for e in result.edges if e.source == start.id]


def test_if_else_edges() -> None:
    src = """function f(a) {
  if (a > 1) {
    a = 2;
  } else {
    a = 3;
  }
  return a;
}
"""
    result = compile_source(src)
    cond = _by_label(result, "a > 1")
    assert cond.kind == NodeKind.DECISION
    then_ = _by_label(result, "a = 2")
    else_ = _by_label(result, "a = 3")
    ret = _by_label(result, "return a")

    assert _edge(result, cond, then_).label == EdgeLabel.TRUE
    assert _edge(result, cond, else_).label == EdgeLabel.FALSE
    _edge(result, then_, ret)
    _edge(result, else_, ret)


def test_if_without_else_falls_through_on_false() -> None:
    src = "function f(a) {\n  if (a) {\n    a = 0;\n  }\n  return a;\n}\n"
    result = compile_source(src)
    cond = _by_label(result, "a")
    ret = _by_label(result, "return a")
    assert _edge(result, cond, ret).label == EdgeLabel.FALSE


def test_while_break_leaves_loop() -> None:
    src = """function f(n) {
  while (true) {
    if (n > 3) {
      break;
    }
    n++;
  }
  return n;
}
"""
    result = compile_source(src)
    loop = _by_label(result, "true")
    assert loop.kind == NodeKind.LOOP
    brk = _by_label(result, "break")
    ret = _by_label(result, "return n")
    _edge(result, brk, ret)
    assert _edge(result, loop, ret).label == EdgeLabel.FALSE


def test_continue_targets_loop() -> None:
    src = """function f(xs) {
  for (const x of xs) {
    if (!x) {
      continue;
    }
    console.log(x);
  }
}
"""
    result = compile_source(src)
    loop = next(n for n in result.nodes if n.kind == NodeKind.LOOP)
    assert loop.label.endswith("x of xs")
    cont = _by_label(result, "continue")
    edge = _edge(result, cont, loop)
    assert edge.label == EdgeLabel.CONTINUE


def test_switch_becomes_decision_chain() -> None:
    src = """function f(k) {
  switch (k) {
    case 1:
      k = 10;
      break;
    default:
      k = 0;
  }
  return k;
}
"""
    result = compile_source(src)
    case1 = _by_label(result, "k === 1")
    default = _by_label(result, "default")
    assert case1.kind == NodeKind.DECISION
    assert _edge(result, case1, default).label == EdgeLabel.FALSE
    assert _edge(result, case1, _by_label(result, "k = 10")).label == EdgeLabel.TRUE


def test_arrow_callbacks_are_compiled_as_roots() -> None:
    src = "const double = (x) => x * 2;\nitems.forEach(function each(i) { console.log(i); });\n"
    result = compile_source(src)
    labels = [n.label for n in result.nodes]
    assert "function double(x)" in labels
    assert "return x * 2" in labels
    assert "function each(i)" in labels
    # Expression-bodied arrows are not declarations.
    assert result.functions == []


def test_class_methods() -> None:
    src = "class Box {\n  open(lid) {\n    return lid;\n  }\n}\n"
    result = compile_source(src)
    assert "function Box.open(lid)" in [n.label for n in result.nodes]


def test_syntax_error_yields_single_node() -> None:
    result = compile_source("function (\n")
    assert not result.ok
    assert result.error.startswith("Syntax error at line")
    assert len(result.nodes) == 1
    assert result.nodes[0].label == "Syntax Error"
    assert result.nodes[0].kind == NodeKind.START
    assert result.edges == []


def test_compile_is_deterministic() -> None:
    a = compile_source(SUM, "src/sum.js")
    b = compile_source(SUM, "src/sum.js")
    assert [n.id for n in a.nodes] == [n.id for n in b.nodes]
    assert [e.id for e in a.edges] == [e.id for e in b.edges]

    other = compile_source(SUM, "src/other.js")
    assert {n.id for n in a.nodes}.isdisjoint({n.id for n in other.nodes})


def test_edges_reference_existing_nodes() -> None:
    result = compile_source(SUM)
    ids = {n.id for n in result.nodes}
    assert len(ids) == len(result.nodes)
    for e in result.edges:
        assert e.source in ids
        assert e.target in ids
    assert len({e.id for e in result.edges}) == len(result.edges)


def test_checkpoint_metadata_captures_scope() -> None:
    result = compile_source(SUM)
    body = _by_label(result, "t += arr[i]")
    meta = result.checkpoints[body.id]
    assert meta.parent_function == "sum"
    assert meta.line == 4
    assert {"t", "i", "arr"} <= set(meta.captured_variable_names)
    assert body.scope_line == 1


def test_node_map_points_at_statements() -> None:
    result = compile_source(SUM)
    loop = _by_label(result, "i < arr.length")
    assert result.node_map["3:2"] == loop.id


def test_empty_source() -> None:
    result = compile_source("")
    assert result.ok
    assert [n.kind for n in result.nodes] == [NodeKind.START]


def test_no_decision_has_two_true_edges() -> None:
    src = """function f(a, b) {
  if (a) {
    if (b) {
      return 1;
    }
  } else if (b) {
    return 2;
  }
  while (a) {
    a--;
  }
  return 0;
}
"""
    result = compile_source(src)
    for n in result.nodes:
        if n.kind in (NodeKind.DECISION, NodeKind.LOOP):
            labels = [e.label for e in result.edges if e.source == n.id]
            assert labels.count(EdgeLabel.TRUE) <= 1
            assert labels.count(EdgeLabel.FALSE) <= 1


def test_empty_consequent_joins_the_next_statement() -> None:
    src = "function f(a) {\n  if (a) {\n  }\n  return a;\n}\n"
    result = compile_source(src)
    cond = _by_label(result, "a")
    ret = _by_label(result, "return a")
    labels = sorted(e.label.value for e in result.edges if e.source == cond.id and e.target == ret.id)
    assert labels == ["false", "true"]


def test_trailing_empty_if_has_no_outgoing_edges() -> None:
    src = "function f(a) {\n  a = 1;\n  if (a) {\n  }\n}\n"
    result = compile_source(src)
    cond = _by_label(result, "a")
    assert [e for e in result.edges if e.source == cond.id] == []
    assert [e.label for e in result.edges if e.target == cond.id] == [None]
