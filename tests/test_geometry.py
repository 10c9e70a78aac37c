from __future__ import annotations

from flowcanvas.core.models import Position
from flowcanvas.views.geometry import (
    Rect,
    bounding_box,
    polyline_intersects_any_rect,
    ports,
    route_down,
    route_via_outer_lane,
    segment_intersects_rect,
)


def test_rect_from_position() -> None:
    r = Rect.from_position(Position(x=10, y=20, width=100, height=50))
    assert (r.left, r.top, r.right, r.bottom) == (10, 20, 110, 70)
    assert ports(r)["S"] == (60, 70)
    assert ports(r)["E"] == (110, 45)


def test_segment_intersects_rect() -> None:
    r = Rect(0, 0, 10, 10)
    assert segment_intersects_rect((5, -5), (5, 15), r)
    assert segment_intersects_rect((-5, 10), (15, 10), r)  # touches the border
    assert not segment_intersects_rect((11, -5), (11, 15), r)
    assert not segment_intersects_rect((0, 0), (10, 10), r)  # diagonal


def test_bounding_box() -> None:
    assert bounding_box([]) is None
    box = bounding_box([Rect(0, 0, 10, 10), Rect(20, 5, 10, 30)])
    assert box == Rect(0, 0, 30, 35)


def test_route_down_jogs_between_ranks() -> None:
    src = Rect(0, 0, 100, 50)
    assert route_down(src, Rect(0, 100, 100, 50)) == [(50, 50), (50, 100)]
    assert route_down(src, Rect(200, 100, 100, 50)) == [(50, 50), (50, 75), (250, 75), (250, 100)]


def test_outer_lane_clears_obstacles() -> None:
    src = Rect(0, 200, 100, 50)
    dst = Rect(0, 0, 100, 50)
    blocker = Rect(0, 100, 100, 50)
    pts = route_via_outer_lane(src, dst, side="right", lane_x=130)
    assert pts[0] == (100, 225)
    assert pts[-1] == (100, 25)
    assert not polyline_intersects_any_rect(pts, [blocker])
    assert polyline_intersects_any_rect([(50, 225), (50, 25)], [blocker])


def test_overlap_and_union() -> None:
    a = Rect(0, 0, 10, 10)
    assert a.center == (5, 5)
    assert a.overlaps(Rect(10, 0, 5, 5))
    assert not a.overlaps(Rect(11, 0, 5, 5))
    assert a.union(Rect(20, 20, 5, 5)) == Rect(0, 0, 25, 25)
    assert Rect.spanning((5, 8), (5, 2)) == Rect(5, 2, 0, 6)
