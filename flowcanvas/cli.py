#!/usr/bin/env python3
"""
FlowCanvas CLI - control-flow graphs, diffs and offline simulation

Usage:
    flowcanvas compile <file> [--layout] [--json]   Compile a file into a flow graph
    flowcanvas diff <old> <new> [--json]            Classify nodes across two versions
    flowcanvas simulate <file> [-f NAME] [-a JSON]  Step through a function offline
    flowcanvas instrument <file> [-o FILE]          Insert runtime checkpoint calls
    flowcanvas outline <file> [--zoom LEVEL]        Group nodes by section or function
    flowcanvas manifest <path> [-o FILE]            Write a checkpoint manifest
    flowcanvas serve-mcp                            Run the MCP server (stdio)
    flowcanvas serve-remote [--port N]              Run the HTTP/SSE session server
"""

import argparse
import json
import logging
import sys
from pathlib import Path


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="FlowCanvas: control-flow graphs for JavaScript",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    flowcanvas compile app.js --layout --json
    flowcanvas diff before.js after.js
    flowcanvas simulate sum.js -f sum -a '[[1, 2, 3]]'
    flowcanvas instrument app.js -o app.instrumented.js
    flowcanvas outline app.js --zoom feature
    flowcanvas manifest ./src -o flow-manifest.json
        """
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # compile command
    compile_parser = subparsers.add_parser("compile", help="Compile a file into a flow graph")
    compile_parser.add_argument("file", help="JavaScript file")
    compile_parser.add_argument("--layout", "-l", action="store_true", help="Attach node positions")
    compile_parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # diff command
    diff_parser = subparsers.add_parser("diff", help="Diff the flow graphs of two file versions")
    diff_parser.add_argument("old", help="Previous version")
    diff_parser.add_argument("new", help="Current version")
    diff_parser.add_argument("--match-by", choices=["signature", "id"], default="signature")
    diff_parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # simulate command
    sim_parser = subparsers.add_parser("simulate", help="Run a function and print its trace")
    sim_parser.add_argument("file", help="JavaScript file")
    sim_parser.add_argument("--function", "-f", dest="function_name", help="Function to run")
    sim_parser.add_argument("--args", "-a", default="[]", help="Arguments as a JSON array")
    sim_parser.add_argument("--max-iterations", type=int, default=None, help="Per-loop iteration cap")
    sim_parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # instrument command
    instrument_parser = subparsers.add_parser("instrument", help="Insert checkpoint calls into a file")
    instrument_parser.add_argument("file", help="JavaScript file")
    instrument_parser.add_argument("--output", "-o", help="Write the instrumented code here instead of stdout")
    instrument_parser.add_argument("--runtime", default=None, help="Global object that receives the calls")
    instrument_parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # outline command
    outline_parser = subparsers.add_parser("outline", help="Group flow nodes by section or function")
    outline_parser.add_argument("file", help="JavaScript file")
    outline_parser.add_argument(
        "--zoom", "-z", choices=["system", "feature", "function", "statement"], default="feature"
    )
    outline_parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # manifest command
    manifest_parser = subparsers.add_parser("manifest", help="Compile a directory into a manifest")
    manifest_parser.add_argument("path", help="File or directory")
    manifest_parser.add_argument("--output", "-o", default="flow-manifest.json", help="Output file path")

    # servers
    subparsers.add_parser("serve-mcp", help="Run the MCP server over stdio")
    remote_parser = subparsers.add_parser("serve-remote", help="Run the HTTP/SSE session server")
    remote_parser.add_argument("--host", default="127.0.0.1")
    remote_parser.add_argument("--port", "-p", type=int, default=5000)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "compile": cmd_compile,
        "diff": cmd_diff,
        "simulate": cmd_simulate,
        "instrument": cmd_instrument,
        "outline": cmd_outline,
        "manifest": cmd_manifest,
        "serve-mcp": cmd_serve_mcp,
        "serve-remote": cmd_serve_remote,
    }
    return commands[args.command](args)


def _read(path):
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error reading {path}: {e}", file=sys.stderr)
        return None


def cmd_compile(args):
    """Handle compile command."""
    from .parser.compiler import compile_source
    from .views.layout import layout, routed_edges

    source = _read(args.file)
    if source is None:
        return 1

    result = compile_source(source, Path(args.file).name)
    nodes = layout(result.nodes, result.edges) if args.layout else result.nodes

    if args.json:
        data = result.to_dict()
        data["nodes"] = [n.to_dict() for n in nodes]
        if args.layout:
            data["edges"] = routed_edges(nodes, result.edges)
        data["error"] = result.error
        print(json.dumps(data, indent=2))
        return 0 if result.ok else 1

    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    print(f"# Flow graph: {args.file} ({len(result.nodes)} nodes, {len(result.edges)} edges)")
    print("")
    for n in nodes:
        pos = f"  @({n.position.x:.0f},{n.position.y:.0f})" if n.position else ""
        print(f"- `{n.id}` [{n.kind.value}] L{n.line}: {n.label}{pos}")
    return 0


def cmd_diff(args):
    """Handle diff command."""
    from .core.diff import GhostDiff
    from .parser.compiler import compile_source

    old_src, new_src = _read(args.old), _read(args.new)
    if old_src is None or new_src is None:
        return 1

    name = Path(args.new).name
    result = GhostDiff(args.match_by).diff_trees(
        compile_source(old_src, name).nodes,
        compile_source(new_src, name).nodes,
    )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    s = result.stats
    print(f"# Flow diff: added {s.added}, removed {s.removed}, modified {s.modified}, unchanged {s.unchanged}")
    print("")
    for d in result.nodes:
        if d.status.value == "unchanged":
            continue
        print(f"- {d.status.value:<9} [{d.node.kind.value}] {d.node.label}")
        if d.old_value is not None:
            print(f"    was: {d.old_value.label}")
    return 0


def cmd_simulate(args):
    """Handle simulate command."""
    from .config import MAX_LOOP_ITERATIONS
    from .parser.compiler import compile_source
    from .runtime.interpreter import Interpreter
    from .runtime.values import to_jsonable

    source = _read(args.file)
    if source is None:
        return 1
    try:
        call_args = json.loads(args.args)
    except ValueError as e:
        print(f"Error: --args is not valid JSON: {e}", file=sys.stderr)
        return 1
    if not isinstance(call_args, list):
        call_args = [call_args]

    name = Path(args.file).name
    compiled = compile_source(source, name)
    if compiled.error:
        print(f"Error: {compiled.error}", file=sys.stderr)
        return 1

    interp = Interpreter(
        source,
        compiled.node_map,
        max_iterations=args.max_iterations or MAX_LOOP_ITERATIONS,
        file_path=name,
    )
    if not interp.prepare(args.function_name, call_args):
        print(f"Error: {interp.state.error}", file=sys.stderr)
        return 1

    final = interp.get_final_state()
    if args.json:
        print(json.dumps({
            "steps": [s.to_dict() for s in interp.get_all_steps()],
            "final": final.to_dict() if final else None,
        }, indent=2))
        return 0 if final and final.status.value == "completed" else 1

    labels = {n.id: n.label for n in compiled.nodes}
    for step in interp.get_all_steps():
        variables = ", ".join(f"{k}={json.dumps(to_jsonable(v))}" for k, v in step.state.variables.items())
        print(f"{step.index:>4}. {labels.get(step.node_id, step.node_id):<50} {variables}")

    if final is not None:
        print("")
        for line in final.output:
            print(f"> {line}")
        print(f"Status: {final.status.value}")
        if final.error:
            print(f"Error: {final.error}")
            return 1
        print(f"Returned: {json.dumps(to_jsonable(final.return_value))}")
    return 0


def cmd_instrument(args):
    """Handle instrument command."""
    from .config import INSTRUMENT_RUNTIME
    from .parser.instrument import instrument

    source = _read(args.file)
    if source is None:
        return 1

    result = instrument(source, Path(args.file).name, args.runtime or INSTRUMENT_RUNTIME)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.ok else 1

    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(result.code, encoding="utf-8")
        print(f"{len(result.injected)} checkpoints, manifest {result.manifest_version} -> {args.output}")
    else:
        print(result.code, end="")
    return 0


def cmd_outline(args):
    """Handle outline command."""
    from .parser.compiler import compile_source
    from .views.hierarchy import SYSTEM_ROOT_ID, HierarchicalView

    source = _read(args.file)
    if source is None:
        return 1

    name = Path(args.file).name
    compiled = compile_source(source, name)
    if compiled.error:
        print(f"Error: {compiled.error}", file=sys.stderr)
        return 1

    view = HierarchicalView.from_source(source, compiled.nodes, name)
    view.set_zoom(args.zoom)
    if args.json:
        print(json.dumps({"view": view.to_dict(), "visible": view.visible()}, indent=2))
        return 0

    root = view.get(SYSTEM_ROOT_ID)
    print(f"# {root.label}: {root.summary}")
    print("")
    for g in view.groups:
        print(f"## {g.label} ({g.summary})")
        if args.zoom in ("function", "statement"):
            for n in g.flow_nodes:
                print(f"- [{n.kind.value}] L{n.line}: {n.label}")
    return 0


def cmd_manifest(args):
    """Handle manifest command."""
    from .core.manifest import build_manifest, collect_sources, write_manifest

    root = Path(args.path)
    if not root.exists():
        print(f"Error: {root} does not exist", file=sys.stderr)
        return 1

    sources = collect_sources(root)
    manifest = build_manifest(sources)
    write_manifest(Path(args.output), manifest)

    failed = [p for p, f in manifest["files"].items() if f["error"]]
    print(f"Manifest {manifest['version']}: {len(sources)} files -> {args.output}")
    for p in failed:
        print(f"  ! {p}: {manifest['files'][p]['error']}", file=sys.stderr)
    return 0


def cmd_serve_mcp(args):
    """Handle serve-mcp command."""
    from .mcp_server import main as mcp_main

    mcp_main()
    return 0


def cmd_serve_remote(args):
    """Handle serve-remote command."""
    import uvicorn

    from .remote import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
