"""Layout, edge routing and hierarchical grouping for flow graphs."""

from .geometry import Rect, ports
from .hierarchy import SYSTEM_ROOT_ID, HierarchicalView, ZoomLevel, find_sections, group_nodes
from .layout import LayoutConfig, layout, route_edges, routed_edges

__all__ = [
    "HierarchicalView",
    "LayoutConfig",
    "Rect",
    "SYSTEM_ROOT_ID",
    "ZoomLevel",
    "find_sections",
    "group_nodes",
    "layout",
    "ports",
    "route_edges",
    "routed_edges",
]
