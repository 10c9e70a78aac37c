"""Layered (Sugiyama-style) layout for flow graphs.

Pipeline:
  1. split into columns, one per root (a function or the program start)
  2. break cycles with an iterative DFS; back edges do not take part in ranking
  3. longest-path ranking (Kahn)
  4. barycenter ordering sweeps, keeping the ordering with the fewest crossings
  5. coordinates from fixed box sizes

Everything is a pure function of the input order, so the same graph always
gets the same positions.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..core.models import DECISION_KINDS, FlowEdge, FlowNode, Position
from .geometry import (
    Point,
    Rect,
    bounding_box,
    polyline_intersects_any_rect,
    route_down,
    route_via_outer_lane,
)


@dataclass(frozen=True)
class LayoutConfig:
    node_width: float = 180.0
    node_height: float = 60.0
    decision_size: float = 120.0
    node_sep: float = 60.0
    rank_sep: float = 80.0
    margin: float = 20.0
    column_gap: float = 120.0
    sweeps: int = 8
    lane_gap: float = 24.0


def _box(node: FlowNode, cfg: LayoutConfig) -> Tuple[float, float]:
    if node.kind in DECISION_KINDS:
        return cfg.decision_size, cfg.decision_size
    return cfg.node_width, cfg.node_height


def _adjacency(ids: Sequence[str], edges: Sequence[FlowEdge]) -> Dict[str, List[str]]:
    known = set(ids)
    out: Dict[str, List[str]] = {i: [] for i in ids}
    for e in edges:
        if e.source in known and e.target in known and e.source != e.target:
            if e.target not in out[e.source]:
                out[e.source].append(e.target)
    return out


def _columns(ids: Sequence[str], out: Dict[str, List[str]]) -> List[List[str]]:
    """Group nodes by the first root (in input order) that reaches them."""
    indeg = {i: 0 for i in ids}
    for a in ids:
        for b in out[a]:
            indeg[b] += 1

    seeds = [i for i in ids if indeg[i] == 0] + [i for i in ids if indeg[i] > 0]
    assigned: Set[str] = set()
    cols: List[List[str]] = []
    for seed in seeds:
        if seed in assigned:
            continue
        col: List[str] = []
        q = deque([seed])
        assigned.add(seed)
        while q:
            cur = q.popleft()
            col.append(cur)
            for nxt in out[cur]:
                if nxt not in assigned:
                    assigned.add(nxt)
                    q.append(nxt)
        cols.append(col)
    return cols


def _back_edges(col: List[str], out: Dict[str, List[str]]) -> Set[Tuple[str, str]]:
    """Edges closing a cycle, found by iterative DFS from the column root."""
    members = set(col)
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done
    back: Set[Tuple[str, str]] = set()

    for start in col:
        if start in state:
            continue
        stack: List[Tuple[str, int]] = [(start, 0)]  # (node, child_index)
        state[start] = 1
        while stack:
            node, idx = stack.pop()
            children = [c for c in out[node] if c in members]
            if idx < len(children):
                stack.append((node, idx + 1))
                child = children[idx]
                s = state.get(child)
                if s is None:
                    state[child] = 1
                    stack.append((child, 0))
                elif s == 1:
                    back.add((node, child))
            else:
                state[node] = 2
    return back


def _ranks(col: List[str], dag: Dict[str, List[str]]) -> Dict[str, int]:
    in_deg = {n: 0 for n in col}
    for a in col:
        for b in dag[a]:
            in_deg[b] += 1

    # Kahn-style longest path
    q = deque([n for n in col if in_deg[n] == 0])
    rank: Dict[str, int] = {n: 0 for n in q}
    while q:
        cur = q.popleft()
        for nxt in dag[cur]:
            in_deg[nxt] -= 1
            rank[nxt] = max(rank.get(nxt, 0), rank[cur] + 1)
            if in_deg[nxt] == 0:
                q.append(nxt)

    for n in col:
        rank.setdefault(n, 0)
    return rank


def _crossings(layers: List[List[str]], dag: Dict[str, List[str]], rank: Dict[str, int]) -> int:
    total = 0
    for r in range(len(layers) - 1):
        pos_lo = {n: i for i, n in enumerate(layers[r])}
        pos_hi = {n: i for i, n in enumerate(layers[r + 1])}
        pairs = [(pos_lo[a], pos_hi[b]) for a in layers[r] for b in dag[a] if rank[b] == r + 1]
        for i in range(len(pairs)):
            for j in range(i + 1, len(pairs)):
                (a1, b1), (a2, b2) = pairs[i], pairs[j]
                if (a1 - a2) * (b1 - b2) < 0:
                    total += 1
    return total


def _order(
    col: List[str],
    dag: Dict[str, List[str]],
    rank: Dict[str, int],
    sweeps: int,
) -> List[List[str]]:
    depth = max(rank.values()) + 1 if rank else 0
    layers: List[List[str]] = [[] for _ in range(depth)]
    for n in col:  # BFS discovery order
        layers[rank[n]].append(n)

    preds: Dict[str, List[str]] = {n: [] for n in col}
    for a in col:
        for b in dag[a]:
            preds[b].append(a)

    best = [list(layer) for layer in layers]
    best_cross = _crossings(best, dag, rank)

    for sweep in range(sweeps):
        if best_cross == 0:
            break
        down = sweep % 2 == 0
        rng = range(1, depth) if down else range(depth - 2, -1, -1)
        for r in rng:
            ref = layers[r - 1] if down else layers[r + 1]
            pos = {n: i for i, n in enumerate(ref)}

            def bary(item: Tuple[int, str]) -> Tuple[float, int]:
                idx, n = item
                nbrs = [pos[m] for m in (preds[n] if down else dag[n]) if m in pos]
                return (sum(nbrs) / len(nbrs) if nbrs else float(idx), idx)

            layers[r] = [n for _, n in sorted(enumerate(layers[r]), key=bary)]

        cross = _crossings(layers, dag, rank)
        if cross < best_cross:
            best_cross = cross
            best = [list(layer) for layer in layers]
    return best


def layout(
    nodes: Sequence[FlowNode],
    edges: Sequence[FlowEdge],
    config: Optional[LayoutConfig] = None,
) -> List[FlowNode]:
    """Return `nodes` (same order) with `position` set to a top-left box."""
    cfg = config or LayoutConfig()
    if not nodes:
        return []

    by_id = {n.id: n for n in nodes}
    ids = list(by_id)
    out = _adjacency(ids, edges)

    positions: Dict[str, Position] = {}
    x_offset = cfg.margin
    for col in _columns(ids, out):
        back = _back_edges(col, out)
        dag = {n: [m for m in out[n] if (n, m) not in back] for n in col}
        rank = _ranks(col, dag)
        layers = _order(col, dag, rank, cfg.sweeps)

        sizes = {n: _box(by_id[n], cfg) for n in col}
        widths = [sum(sizes[n][0] for n in layer) + cfg.node_sep * (len(layer) - 1) for layer in layers]
        col_width = max(widths) if widths else 0.0

        y = cfg.margin
        for layer, layer_w in zip(layers, widths):
            row_h = max(sizes[n][1] for n in layer)
            x = x_offset + (col_width - layer_w) / 2
            for n in layer:
                w, h = sizes[n]
                # Vertically centered within the rank's row.
                positions[n] = Position(x=x, y=y + (row_h - h) / 2, width=w, height=h)
                x += w + cfg.node_sep
            y += row_h + cfg.rank_sep

        x_offset += col_width + cfg.column_gap

    return [replace(n, position=positions[n.id]) for n in nodes]


def _outer_lane(src: Rect, dst: Rect, rects: Sequence[Rect], offset: float) -> List[Point]:
    """Detour along a vertical lane beside everything the edge spans.

    The right side is preferred; the left one is used when only it keeps the
    horizontal legs clear of other boxes.
    """
    lo, hi = min(src.top, dst.top), max(src.bottom, dst.bottom)
    box = bounding_box(r for r in rects if r.bottom >= lo and r.top <= hi) or src
    right = route_via_outer_lane(src, dst, side="right", lane_x=box.right + offset)
    if not polyline_intersects_any_rect(right, rects, ignore=(src, dst)):
        return right
    left = route_via_outer_lane(src, dst, side="left", lane_x=box.left - offset)
    if not polyline_intersects_any_rect(left, rects, ignore=(src, dst)):
        return left
    return right


def route_edges(
    nodes: Sequence[FlowNode],
    edges: Sequence[FlowEdge],
    config: Optional[LayoutConfig] = None,
) -> Dict[str, List[Point]]:
    """Orthogonal polylines keyed by edge id.

    Edges pointing downward go straight between ranks unless that would cut
    through another box (a branch skipping over its consequent). Those, and
    edges that point up or sideways (loop back edges), take an outer lane.
    Every lane gets its own offset so parallel detours never coincide.
    """
    cfg = config or LayoutConfig()
    rects = {n.id: Rect.from_position(n.position) for n in nodes if n.position is not None}
    boxes = list(rects.values())
    routes: Dict[str, List[Point]] = {}
    lanes_used = 0
    for e in edges:
        src = rects.get(e.source)
        dst = rects.get(e.target)
        if src is None or dst is None:
            continue
        if dst.top >= src.bottom:
            pts = route_down(src, dst)
            if not polyline_intersects_any_rect(pts, boxes, ignore=(src, dst)):
                routes[e.id] = pts
                continue
        lanes_used += 1
        routes[e.id] = _outer_lane(src, dst, boxes, cfg.lane_gap * lanes_used)
    return routes


def routed_edges(
    nodes: Sequence[FlowNode],
    edges: Sequence[FlowEdge],
    config: Optional[LayoutConfig] = None,
) -> List[Dict[str, Any]]:
    """Edge dicts with a `points` polyline for every edge whose ends are placed."""
    routes = route_edges(nodes, edges, config)
    out = []
    for e in edges:
        d = e.to_dict()
        if e.id in routes:
            d["points"] = [[x, y] for x, y in routes[e.id]]
        out.append(d)
    return out
