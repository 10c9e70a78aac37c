"""Tests for section detection and the zoomable hierarchy."""

from __future__ import annotations

import pytest

from flowcanvas.core.models import NodeKind
from flowcanvas.parser.compiler import compile_source
from flowcanvas.views.hierarchy import (
    SYSTEM_ROOT_ID,
    HierarchicalView,
    Section,
    ZoomLevel,
    find_sections,
    group_nodes,
    section_name,
)

SECTIONED = """// --- Setup ---
let total = 0;
const items = [1, 2];

// --- Sum ---
for (const x of items) {
  total += x;
}
console.log(total);
"""

FUNCTIONS = """function a(x) {
  return x + 1;
}

function b(y) {
  const inner = (z) => z * 2;
  return inner(y);
}

a(1);
"""


@pytest.mark.parametrize(
    "comment, expected",
    [
        ("// --- Setup ---", "Setup"),
        ("//----- Data Access -----", "Data Access"),
        ("// #region Parsing", "Parsing"),
        ("// MARK: - Output", "Output"),
        ("/** @section Helpers */", "Helpers"),
        ("// just a comment", None),
        ("// -- too short --", None),
    ],
)
def test_section_name(comment, expected) -> None:
    assert section_name(comment) == expected


def test_find_sections() -> None:
    assert find_sections(SECTIONED) == [
        Section(name="Setup", start_line=1, end_line=4),
        Section(name="Sum", start_line=5, end_line=9),
    ]
    assert find_sections("let a = 1;\n") == []
    assert find_sections("function (") == []


def test_group_by_sections() -> None:
    compiled = compile_source(SECTIONED)
    groups = group_nodes(compiled.nodes, find_sections(SECTIONED))
    assert [g.label for g in groups] == ["Setup", "Sum", "Global"]

    setup, total, global_ = groups
    assert [n.label for n in setup.flow_nodes] == ["let total = 0", "const items = [1, 2]"]
    assert [n.label for n in total.flow_nodes][-1] == "console.log(total)"
    assert [n.kind for n in global_.flow_nodes] == [NodeKind.START]

    members = [n.id for g in groups for n in g.flow_nodes]
    assert sorted(members) == sorted(n.id for n in compiled.nodes)


def test_group_by_top_level_function() -> None:
    compiled = compile_source(FUNCTIONS)
    groups = group_nodes(compiled.nodes)
    assert [g.label for g in groups] == ["function a(x)", "function b(y)", "Global Flow"]

    b = groups[1]
    # The nested arrow and its implicit return stay inside b.
    assert "function inner(z)" in [n.label for n in b.flow_nodes]
    assert "return z * 2" in [n.label for n in b.flow_nodes]
    assert [n.label for n in groups[2].flow_nodes] == ["Start", "a(1)"]


def test_group_ids_are_stable() -> None:
    first = [g.id for g in group_nodes(compile_source(SECTIONED).nodes, find_sections(SECTIONED))]
    second = [g.id for g in group_nodes(compile_source(SECTIONED).nodes, find_sections(SECTIONED))]
    assert first == second
    assert len(set(first)) == 3


def test_zoom_levels() -> None:
    compiled = compile_source(SECTIONED)
    view = HierarchicalView.from_source(SECTIONED, compiled.nodes)
    assert view.zoom == ZoomLevel.FUNCTION
    assert len(view.visible()) == len(compiled.nodes)

    assert view.zoom_out() == ZoomLevel.FEATURE
    assert [v["label"] for v in view.visible()] == ["Setup", "Sum", "Global"]
    assert view.zoom_out() == ZoomLevel.SYSTEM
    assert view.zoom_out() == ZoomLevel.SYSTEM
    (overview,) = view.visible()
    assert overview["id"] == SYSTEM_ROOT_ID
    assert overview["summary"] == f"3 groups, {len(compiled.nodes)} nodes"

    view.set_zoom("statement")
    assert view.zoom_in() == ZoomLevel.STATEMENT


def test_collapse_shows_the_group_card() -> None:
    compiled = compile_source(SECTIONED)
    view = HierarchicalView.from_source(SECTIONED, compiled.nodes)
    setup = view.groups[0]

    assert view.toggle(setup.id) is True
    visible = view.visible()
    assert visible[0]["id"] == setup.id
    assert visible[0]["collapsed"] is True
    assert len(visible) == len(compiled.nodes) - len(setup.flow_nodes) + 1

    # The statement level ignores collapse state.
    view.set_zoom(ZoomLevel.STATEMENT)
    assert len(view.visible()) == len(compiled.nodes)

    assert view.toggle(setup.id) is False
    assert setup.id not in view.to_dict()["collapsed"]


def test_focus_expands_and_zooms_in() -> None:
    compiled = compile_source(SECTIONED)
    view = HierarchicalView.from_source(SECTIONED, compiled.nodes)
    node = view.groups[0].flow_nodes[0]
    view.collapse(view.groups[0].id)
    view.set_zoom(ZoomLevel.SYSTEM)

    view.focus_node(node.id)
    assert view.zoom == ZoomLevel.FUNCTION
    assert view.groups[0].id not in view.collapsed
    assert view.to_dict()["focusedNodeId"] == node.id


def test_breadcrumb_and_lookups() -> None:
    compiled = compile_source(SECTIONED)
    view = HierarchicalView.from_source(SECTIONED, compiled.nodes)
    node = view.groups[1].flow_nodes[-1]
    assert view.breadcrumb(node.id) == ["Code Overview", "Sum", "console.log(total)"]
    assert view.group_of(node.id).label == "Sum"
    assert view.group_of(view.groups[1].id) is None
    assert view.breadcrumb("missing") == []
    assert len(view.nodes_at_level(ZoomLevel.FEATURE)) == 3
    assert len(view.nodes_at_level("function")) == len(compiled.nodes)
