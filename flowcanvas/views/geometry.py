"""Box geometry for laid-out flow nodes and orthogonal edge routes."""

from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.models import Position

Point = Tuple[float, float]


@dataclass(frozen=True)
class Rect:
    """Axis-aligned node box; (x, y) is the top-left corner."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_position(cls, p: Position) -> "Rect":
        return cls(p.x, p.y, p.width, p.height)

    @classmethod
    def spanning(cls, a: Point, b: Point) -> "Rect":
        """Degenerate box covering a segment (zero width or height when orthogonal)."""
        left, right = sorted((a[0], b[0]))
        top, bottom = sorted((a[1], b[1]))
        return cls(left, top, right - left, bottom - top)

    @property
    def left(self) -> float:
        return self.x

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def union(self, other: "Rect") -> "Rect":
        left = min(self.left, other.left)
        top = min(self.top, other.top)
        return Rect(left, top, max(self.right, other.right) - left, max(self.bottom, other.bottom) - top)

    def overlaps(self, other: "Rect") -> bool:
        """Inclusive overlap: touching borders count."""
        return (
            self.left <= other.right
            and other.left <= self.right
            and self.top <= other.bottom
            and other.top <= self.bottom
        )


def ports(r: Rect) -> Dict[str, Point]:
    """Compass attachment points (N, S, W, E) at the middle of each side."""
    cx, cy = r.center
    return {"N": (cx, r.top), "S": (cx, r.bottom), "W": (r.left, cy), "E": (r.right, cy)}


def bounding_box(rects: Iterable[Rect]) -> Optional[Rect]:
    return reduce(lambda acc, r: r if acc is None else acc.union(r), rects, None)


def segment_intersects_rect(p1: Point, p2: Point, r: Rect) -> bool:
    """Whether an orthogonal segment touches or crosses `r`.

    Routes are orthogonal polylines, so diagonal segments never match.
    """
    if p1[0] != p2[0] and p1[1] != p2[1]:
        return False
    return Rect.spanning(p1, p2).overlaps(r)


def polyline_intersects_any_rect(
    pts: List[Point],
    rects: Iterable[Rect],
    *,
    ignore: Optional[Iterable[Rect]] = None,
) -> bool:
    skip = set(ignore or ())
    targets = [r for r in rects if r not in skip]
    return any(segment_intersects_rect(a, b, r) for a, b in zip(pts, pts[1:]) for r in targets)


def route_down(src: Rect, dst: Rect) -> List[Point]:
    """Forward edge from the bottom of `src` to the top of `dst`.

    Misaligned boxes get a horizontal jog halfway between the two ranks.
    """
    (sx, sy), (dx, dy) = ports(src)["S"], ports(dst)["N"]
    if sx == dx:
        return [(sx, sy), (dx, dy)]
    mid = (sy + dy) / 2
    return [(sx, sy), (sx, mid), (dx, mid), (dx, dy)]


def route_via_outer_lane(src: Rect, dst: Rect, *, side: str, lane_x: float) -> List[Point]:
    """Back edge that leaves `src` sideways, runs along `lane_x` and re-enters `dst`.

    `side` is 'left' or 'right' and picks the W or E ports.
    """
    port = "W" if side == "left" else "E"
    start, end = ports(src)[port], ports(dst)[port]
    return [start, (lane_x, start[1]), (lane_x, end[1]), end]
