from __future__ import annotations

import json
from pathlib import Path

from flowcanvas.cli import main

SUM = """function sum(arr) {
  let t = 0;
  for (let i = 0; i < arr.length; i++) {
    t += arr[i];
  }
  return t;
}
"""


def _write(tmp_path: Path, name: str, text: str) -> str:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 1
    assert "compile" in capsys.readouterr().out


def test_compile_text(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "sum.js", SUM)
    assert main(["compile", path]) == 0
    out = capsys.readouterr().out
    assert "[function]" in out
    assert "i < arr.length" in out


def test_compile_json_with_layout(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "sum.js", SUM)
    assert main(["compile", path, "--layout", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["functions"] == ["sum"]
    assert all("position" in n for n in data["nodes"])
    assert data["edges"] and all(len(e["points"]) >= 2 for e in data["edges"])


def test_compile_syntax_error(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "bad.js", "function (")
    assert main(["compile", path]) == 1
    assert "Syntax error" in capsys.readouterr().err


def test_missing_file(tmp_path: Path, capsys) -> None:
    assert main(["compile", str(tmp_path / "nope.js")]) == 1
    assert "Error reading" in capsys.readouterr().err


def test_diff(tmp_path: Path, capsys) -> None:
    old = _write(tmp_path, "old.js", SUM)
    new = _write(tmp_path, "new.js", SUM.replace("return t;", "return t * 2;"))
    assert main(["diff", old, new]) == 0
    out = capsys.readouterr().out
    assert "modified 1" in out
    assert "was: return t" in out

    assert main(["diff", old, new, "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["stats"]["modified"] == 1


def test_simulate(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "sum.js", SUM)
    assert main(["simulate", path, "-f", "sum", "-a", "[[1, 2, 3]]"]) == 0
    out = capsys.readouterr().out
    assert "Status: completed" in out
    assert "Returned: 6" in out

    assert main(["simulate", path, "-a", "[[2]]", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["final"]["returnValue"] == 2


def test_simulate_bad_args(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "sum.js", SUM)
    assert main(["simulate", path, "-a", "[oops"]) == 1
    assert "not valid JSON" in capsys.readouterr().err


def test_simulate_loop_cap(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "spin.js", "function spin() {\n  while (true) {\n  }\n}\n")
    assert main(["simulate", path, "--max-iterations", "3"]) == 1
    assert "iteration limit (3)" in capsys.readouterr().out


def test_manifest(tmp_path: Path, capsys) -> None:
    src = tmp_path / "src"
    src.mkdir()
    _write(src, "sum.js", SUM)
    out = tmp_path / "flow-manifest.json"
    assert main(["manifest", str(src), "-o", str(out)]) == 0
    data = json.loads(out.read_text(encoding="utf-8"))
    assert list(data["files"]) == ["sum.js"]
    assert data["version"] in capsys.readouterr().out


def test_instrument_to_file(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "sum.js", SUM)
    out_path = tmp_path / "sum.instrumented.js"
    assert main(["instrument", path, "-o", str(out_path)]) == 0
    assert "4 checkpoints" in capsys.readouterr().out
    assert out_path.read_text(encoding="utf-8").count("FlowCanvas.checkpoint(") == 4


def test_instrument_json_runtime(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "sum.js", SUM)
    assert main(["instrument", path, "--runtime", "Tracer", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert "Tracer.checkpoint(" in data["code"]
    assert data["error"] is None


def test_outline_groups_functions(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, "sum.js", SUM + "sum([1]);\n")
    assert main(["outline", path, "--zoom", "function"]) == 0
    out = capsys.readouterr().out
    assert "## function sum(arr) (5 nodes)" in out
    assert "## Global Flow (2 nodes)" in out
    assert "L6: return t" in out
