#!/usr/bin/env python3
"""
FlowCanvas MCP Server - control-flow graphs and live checkpoints for LLM agents

Tools cover the whole loop an agent needs when reasoning about a function:
1. Compile source into a flow graph (optionally laid out)
2. Diff two versions of the source to see which nodes changed
3. Simulate a function step by step and inspect variables
4. Instrument source so a running program reports checkpoints
5. Outline the graph by comment section or function
6. Open a session, feed it runtime checkpoints and read them back
"""

import json
from enum import Enum
from typing import Any, List, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel, ConfigDict, Field

from .config import INSTRUMENT_RUNTIME, CorrelatorSettings
from .core.diff import GhostDiff
from .errors import FlowCanvasError
from .parser.compiler import compile_source
from .parser.instrument import instrument
from .runtime.correlator import SessionRegistry
from .runtime.interpreter import Interpreter
from .runtime.values import to_jsonable
from .views.hierarchy import SYSTEM_ROOT_ID, HierarchicalView, ZoomLevel
from .views.layout import layout, routed_edges

# Constants
CHARACTER_LIMIT = 25000

_READ_ONLY = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": False,
}
_SESSION_WRITE = {
    "readOnlyHint": False,
    "destructiveHint": False,
    "idempotentHint": False,
    "openWorldHint": False,
}


class ResponseFormat(str, Enum):
    """Output format for tool responses."""
    MARKDOWN = "markdown"
    JSON = "json"


# ============================================================================
# Input Models
# ============================================================================

class CompileInput(BaseModel):
    """Input for compiling source into a flow graph."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    source: str = Field(..., description="JavaScript source text", min_length=1)
    file_path: str = Field(default="main.js", description="Logical file path used in node ids")
    with_layout: bool = Field(default=False, description="Attach x/y/width/height to every node")
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="'markdown' for a node outline, 'json' for the full graph"
    )


class DiffInput(BaseModel):
    """Input for diffing two versions of a file."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    old_source: str = Field(..., description="Previous source text")
    new_source: str = Field(..., description="Current source text")
    file_path: str = Field(default="main.js", description="Logical file path used in node ids")
    match_by: str = Field(
        default="signature",
        description="'signature' (survives line shifts) or 'id'",
        pattern="^(signature|id)$"
    )
    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN)


class SimulateInput(BaseModel):
    """Input for simulating a function."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    source: str = Field(..., description="JavaScript source declaring the function", min_length=1)
    function_name: Optional[str] = Field(default=None, description="Function to run (default: first declared)")
    args: List[Any] = Field(default_factory=list, description="Positional arguments (JSON values)")
    max_steps: int = Field(default=200, description="Maximum steps to include in the response", ge=1, le=5000)
    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN)


class InstrumentInput(BaseModel):
    """Input for instrumenting source with checkpoint calls."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    source: str = Field(..., description="JavaScript source text", min_length=1)
    file_path: str = Field(default="main.js", description="Logical file path used in node ids")
    runtime: str = Field(
        default=INSTRUMENT_RUNTIME,
        description="Global object whose checkpoint(id, vars) receives the calls",
        pattern=r"^[A-Za-z_$][\w$]*(\.[A-Za-z_$][\w$]*)*$",
    )
    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN)


class OutlineInput(BaseModel):
    """Input for the grouped (section / function) outline."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    source: str = Field(..., description="JavaScript source text", min_length=1)
    file_path: str = Field(default="main.js", description="Logical file path used in node ids")
    zoom: ZoomLevel = Field(default=ZoomLevel.FEATURE, description="system, feature, function or statement")
    collapsed: List[str] = Field(default_factory=list, description="Group ids to show collapsed")
    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN)


class CreateSessionInput(BaseModel):
    """Input for opening a live session."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    name: Optional[str] = Field(default=None, description="Display name", max_length=200)
    code: Optional[str] = Field(default=None, description="Source the checkpoints will refer to")


class CheckpointInput(BaseModel):
    """Input for recording a checkpoint."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    session_id: str = Field(..., description="Session id returned by flowcanvas_session_create", min_length=1)
    node_id: str = Field(..., description="Flow node id the checkpoint belongs to", min_length=1)
    variables: dict = Field(default_factory=dict, description="Captured variable values")
    manifest_version: Optional[str] = Field(default=None, description="Version of the instrumented build")


class SessionInput(BaseModel):
    """Input for session queries."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    session_id: str = Field(..., description="Session id", min_length=1)
    limit: int = Field(default=50, description="Most recent checkpoints to include", ge=0, le=1000)


# ============================================================================
# Helper Functions
# ============================================================================

def _truncate_response(response: str, message: str = "") -> str:
    """Truncate response if too long."""
    if len(response) <= CHARACTER_LIMIT:
        return response

    truncated = response[:CHARACTER_LIMIT - 200]
    truncated += f"\n\n---\n**TRUNCATED**: Response exceeded {CHARACTER_LIMIT} characters. {message}"
    return truncated


def render_compile(params: CompileInput) -> str:
    result = compile_source(params.source, params.file_path)
    nodes = layout(result.nodes, result.edges) if params.with_layout else result.nodes

    if params.response_format == ResponseFormat.JSON:
        data = result.to_dict()
        data["nodes"] = [n.to_dict() for n in nodes]
        if params.with_layout:
            data["edges"] = routed_edges(nodes, result.edges)
        data["error"] = result.error
        return _truncate_response(json.dumps(data, indent=2))

    if result.error:
        return f"Error: {result.error}"

    lines = [f"# Flow graph: {params.file_path}\n"]
    lines.append(f"**Nodes:** {len(result.nodes)}  **Edges:** {len(result.edges)}")
    lines.append(f"**Functions:** {', '.join(result.functions) or '(none)'}\n")
    for n in nodes:
        line = n.line if n.line is not None else "?"
        lines.append(f"- `{n.id}` [{n.kind.value}] L{line}: {n.label}")
    return _truncate_response("\n".join(lines), "Request json and page through nodes instead.")


def render_diff(params: DiffInput) -> str:
    old = compile_source(params.old_source, params.file_path)
    new = compile_source(params.new_source, params.file_path)
    result = GhostDiff(params.match_by).diff_trees(old.nodes, new.nodes)

    if params.response_format == ResponseFormat.JSON:
        return _truncate_response(json.dumps(result.to_dict(), indent=2))

    s = result.stats
    lines = [
        "# Flow diff\n",
        f"added {s.added}, removed {s.removed}, modified {s.modified}, unchanged {s.unchanged}\n",
    ]
    for d in result.nodes:
        if d.status.value == "unchanged":
            continue
        lines.append(f"- **{d.status.value}** [{d.node.kind.value}] {d.node.label}")
        if d.old_value is not None:
            lines.append(f"  - was: {d.old_value.label}")
    return _truncate_response("\n".join(lines))


def render_instrument(params: InstrumentInput) -> str:
    result = instrument(params.source, params.file_path, params.runtime)
    if params.response_format == ResponseFormat.JSON:
        return _truncate_response(json.dumps(result.to_dict(), indent=2))
    if result.error:
        return f"Error: {result.error}"
    lines = [
        f"# Instrumented {params.file_path}\n",
        f"**Checkpoints:** {len(result.injected)}  **Manifest version:** {result.manifest_version}\n",
        "```javascript",
        result.code.rstrip("\n"),
        "```",
    ]
    return _truncate_response("\n".join(lines), "Instrument smaller files.")


def render_outline(params: OutlineInput) -> str:
    compiled = compile_source(params.source, params.file_path)
    if compiled.error:
        return f"Error: {compiled.error}"

    view = HierarchicalView.from_source(params.source, compiled.nodes, params.file_path)
    view.set_zoom(params.zoom)
    for group_id in params.collapsed:
        view.collapse(group_id)

    if params.response_format == ResponseFormat.JSON:
        data = {"view": view.to_dict(), "visible": view.visible()}
        return _truncate_response(json.dumps(data, indent=2))

    root = view.get(SYSTEM_ROOT_ID)
    lines = [f"# {root.label}\n", f"{root.summary}\n"]
    for g in view.groups:
        state = " (collapsed)" if g.id in view.collapsed else ""
        lines.append(f"## {g.label}{state}\n`{g.id}`: {g.summary}")
        if params.zoom in (ZoomLevel.FUNCTION, ZoomLevel.STATEMENT) and not (
            params.zoom == ZoomLevel.FUNCTION and g.id in view.collapsed
        ):
            for n in g.flow_nodes:
                lines.append(f"- `{n.id}` [{n.kind.value}] L{n.line}: {n.label}")
    return _truncate_response("\n".join(lines), "Use a coarser zoom level.")


def render_simulation(params: SimulateInput) -> str:
    compiled = compile_source(params.source, "main.js")
    if compiled.error:
        return f"Error: {compiled.error}"

    interp = Interpreter(params.source, compiled.node_map)
    if not interp.prepare(params.function_name, params.args):
        return f"Error: {interp.state.error}"

    final = interp.get_final_state()
    steps = interp.get_all_steps()[: params.max_steps]
    if params.response_format == ResponseFormat.JSON:
        data = {
            "steps": [s.to_dict() for s in steps],
            "total": len(interp.steps),
            "final": final.to_dict() if final else None,
        }
        return _truncate_response(json.dumps(data, indent=2))

    labels = {n.id: n.label for n in compiled.nodes}
    lines = [f"# Simulation ({len(interp.steps)} steps)\n"]
    for s in steps:
        vars_ = ", ".join(f"{k}={json.dumps(to_jsonable(v))}" for k, v in s.state.variables.items())
        lines.append(f"{s.index:>4}. {labels.get(s.node_id, s.node_id)}  ({vars_})")
    if final is not None:
        lines.append(f"\n**Status:** {final.status.value}")
        if final.error:
            lines.append(f"**Error:** {final.error}")
        lines.append(f"**Return value:** {json.dumps(to_jsonable(final.return_value))}")
        if final.output:
            lines.append("**Output:**\n" + "\n".join(f"    {o}" for o in final.output))
    return _truncate_response("\n".join(lines), "Lower max_steps.")


# ============================================================================
# MCP Tools
# ============================================================================

def create_mcp(registry: Optional[SessionRegistry] = None) -> FastMCP:
    """Build the MCP server around an explicit session registry."""
    if registry is None:
        registry = SessionRegistry(CorrelatorSettings.from_env())
    mcp = FastMCP("flowcanvas_mcp")

    @mcp.tool(name="flowcanvas_compile", annotations={"title": "Compile Flow Graph", **_READ_ONLY})
    async def flowcanvas_compile(params: CompileInput) -> str:
        """
        Compile JavaScript source into a control-flow graph.

        Every function is a root; decisions and loops carry true/false/loop/continue edges.

        Example:
            flowcanvas_compile(source="function f(a){ if (a) return 1; return 2; }")
        """
        return render_compile(params)

    @mcp.tool(name="flowcanvas_diff", annotations={"title": "Diff Flow Graphs", **_READ_ONLY})
    async def flowcanvas_diff(params: DiffInput) -> str:
        """
        Classify the flow nodes of two source versions as added/removed/modified/unchanged.
        """
        return render_diff(params)

    @mcp.tool(name="flowcanvas_simulate", annotations={"title": "Simulate Function", **_READ_ONLY})
    async def flowcanvas_simulate(params: SimulateInput) -> str:
        """
        Run a function offline and return one variable snapshot per executed flow node.
        """
        return render_simulation(params)

    @mcp.tool(name="flowcanvas_instrument", annotations={"title": "Instrument Source", **_READ_ONLY})
    async def flowcanvas_instrument(params: InstrumentInput) -> str:
        """
        Insert runtime checkpoint calls keyed by flow node id.

        Send the returned manifest version with each checkpoint so a session
        can tell stale builds apart.
        """
        return render_instrument(params)

    @mcp.tool(name="flowcanvas_outline", annotations={"title": "Grouped Outline", **_READ_ONLY})
    async def flowcanvas_outline(params: OutlineInput) -> str:
        """
        Group flow nodes by comment sections (// --- Name ---) or by top-level function.
        """
        return render_outline(params)

    @mcp.tool(name="flowcanvas_session_create", annotations={"title": "Open Session", **_SESSION_WRITE})
    async def flowcanvas_session_create(params: CreateSessionInput) -> str:
        """
        Open a live session. Checkpoints sent to it are matched against the compiled code.
        """
        try:
            session_id = registry.create_session(params.name, params.code)
        except FlowCanvasError as e:
            return f"Error: {e}"
        return json.dumps({"sessionId": session_id, **registry.get_session_info(session_id)}, indent=2)

    @mcp.tool(name="flowcanvas_session_checkpoint", annotations={"title": "Record Checkpoint", **_SESSION_WRITE})
    async def flowcanvas_session_checkpoint(params: CheckpointInput) -> str:
        """
        Record a runtime checkpoint for a flow node.
        """
        data = {"nodeId": params.node_id, "variables": params.variables}
        if params.manifest_version:
            data["manifestVersion"] = params.manifest_version
        try:
            cp = registry.add_checkpoint(params.session_id, data)
        except FlowCanvasError as e:
            return f"Error: {e}"
        if cp is None:
            return "Ignored: checkpoint manifest version does not match the session's code."
        return json.dumps(cp.to_dict(), indent=2, default=str)

    @mcp.tool(name="flowcanvas_session_info", annotations={"title": "Session Info", **_READ_ONLY})
    async def flowcanvas_session_info(params: SessionInput) -> str:
        """
        Session metadata plus the most recent checkpoints.
        """
        try:
            info = registry.get_session_info(params.session_id)
            checkpoints = registry.get_checkpoints(params.session_id)
        except FlowCanvasError as e:
            return f"Error: {e}"
        recent = checkpoints[-params.limit:] if params.limit else []
        info["checkpoints"] = [c.to_dict() for c in recent]
        return _truncate_response(json.dumps(info, indent=2, default=str), "Lower limit.")

    @mcp.tool(name="flowcanvas_session_end", annotations={"title": "End Session", **_SESSION_WRITE})
    async def flowcanvas_session_end(params: SessionInput) -> str:
        """
        End a session and disconnect its subscribers.
        """
        try:
            registry.end_session(params.session_id)
        except FlowCanvasError as e:
            return f"Error: {e}"
        return f"Session {params.session_id} ended."

    return mcp


# Entry point for running the server
def main():
    """Run the MCP server."""
    registry = SessionRegistry(CorrelatorSettings.from_env()).start()
    try:
        create_mcp(registry).run()
    finally:
        registry.shutdown()


if __name__ == "__main__":
    main()
