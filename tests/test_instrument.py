"""Tests for checkpoint instrumentation."""

from __future__ import annotations

from flowcanvas.core.identity import file_checksum, manifest_hash
from flowcanvas.core.models import NodeKind
from flowcanvas.parser.compiler import compile_source
from flowcanvas.parser.instrument import checkpoint_call, instrument

SUM = """function sum(arr) {
  let t = 0;
  for (let i = 0; i < arr.length; i++) {
    t += arr[i];
  }
  return t;
}
"""


def _id(source: str, label: str) -> str:
    return next(n.id for n in compile_source(source).nodes if n.label == label)


def _call(code: str, node_id: str) -> str:
    start = code.index(f'FlowCanvas.checkpoint("{node_id}"')
    return code[start : code.index("})", start) + 2]


def test_every_statement_gets_a_call() -> None:
    result = instrument(SUM, "sum.js")
    assert result.ok
    assert result.manifest_version == manifest_hash([file_checksum(SUM)])

    compiled = compile_source(SUM, "sum.js")
    expected = [n.id for n in compiled.nodes if n.kind not in (NodeKind.START, NodeKind.FUNCTION)]
    assert sorted(result.injected) == sorted(expected)
    assert set(result.checkpoints) == set(compiled.checkpoints)
    for node_id in expected:
        assert result.code.count(f'.checkpoint("{node_id}"') == 1

    assert compile_source(result.code, "sum.js").ok


def test_calls_capture_scope_variables() -> None:
    result = instrument(SUM, "sum.js")
    ret = _call(result.code, _id(SUM, "return t"))
    assert "arr: typeof arr !== 'undefined' ? arr : undefined" in ret
    assert "t: typeof t" in ret

    # A declaration never reads the names it is about to bind.
    decl = _call(result.code, _id(SUM, "let t = 0"))
    assert "arr: typeof arr" in decl
    assert "t: typeof t" not in decl


def test_call_precedes_the_statement() -> None:
    result = instrument(SUM, "sum.js")
    ret_id = _id(SUM, "return t")
    assert f'{checkpoint_call(ret_id, ["arr", "t"])}; return t;' in result.code


def test_braceless_bodies_are_wrapped() -> None:
    src = "function f(a) {\n  if (a) return 1;\n  return 2;\n}\n"
    result = instrument(src)
    ret1 = _id(src, "return 1")
    assert f"if (a) {{ {checkpoint_call(ret1, ['a'])}; return 1; }}" in result.code
    assert compile_source(result.code).ok


def test_else_if_is_wrapped() -> None:
    src = "function f(a, b) {\n  if (a) {\n    return 1;\n  } else if (b) {\n    return 2;\n  }\n  return 3;\n}\n"
    result = instrument(src)
    inner = _id(src, "b")
    assert f"else {{ {checkpoint_call(inner, ['a', 'b'])}; if (b)" in result.code
    assert compile_source(result.code).ok


def test_arrow_expression_body_becomes_a_block() -> None:
    src = "const inc = (x) => x + 1;\n"
    result = instrument(src)
    ret = _id(src, "return x + 1")
    assert f"(x) => {{ {checkpoint_call(ret, ['x', 'inc'])}; return x + 1; }};" in result.code
    assert result.code.startswith(f"{checkpoint_call(_id(src, 'const inc = (x) => x + 1'), [])}; const inc")
    assert compile_source(result.code).ok


def test_switch_cases_are_left_alone() -> None:
    src = """function f(k) {
  switch (k) {
    case 1:
      k = 2;
      break;
    default:
      k = 3;
  }
  return k;
}
"""
    result = instrument(src)
    case_id = _id(src, "k === 1")
    assert case_id not in result.injected
    assert f'.checkpoint("{_id(src, "k = 2")}"' in result.code
    assert compile_source(result.code).ok


def test_labels_and_exports_keep_their_call_in_front() -> None:
    src = "outer: for (const x of [1]) {\n  continue outer;\n}\nexport const y = 1;\n"
    result = instrument(src)
    loop_id = next(n.id for n in compile_source(src).nodes if n.kind == NodeKind.LOOP)
    assert result.code.startswith(f"{checkpoint_call(loop_id, [])}; outer: for")
    assert "; export const y = 1;" in result.code
    assert compile_source(result.code).ok


def test_shadowed_names_in_dead_zone_are_not_read() -> None:
    src = "let x = 1;\n{\n  foo();\n  let x = 2;\n}\n"
    result = instrument(src)
    assert _call(result.code, _id(src, "foo()")).endswith(", {})")
    assert _call(result.code, _id(src, "let x = 2")).endswith(", {})")
    assert "x: typeof x" not in result.code


def test_custom_runtime_name() -> None:
    result = instrument("a();\n", runtime="window.__trace")
    assert result.code.startswith('window.__trace.checkpoint("')


def test_syntax_error_leaves_code_untouched() -> None:
    result = instrument("function (", "bad.js")
    assert not result.ok
    assert result.code == "function ("
    assert result.injected == []
    assert result.to_dict()["error"].startswith("Syntax error")
