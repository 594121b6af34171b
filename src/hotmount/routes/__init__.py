"""Route table extraction from mounted routers."""

from hotmount.routes.adapters import to_routing_node, to_routing_tree
from hotmount.routes.extractor import Delta, RouteEntry, RouteSnapshot, diff, extract_routes
from hotmount.routes.tree import (
    HttpMethod,
    MiddlewareNode,
    MountNode,
    RouteNode,
    RoutingNode,
    canonicalize_prefix,
    join_paths,
)

__all__ = [
    "Delta",
    "HttpMethod",
    "MiddlewareNode",
    "MountNode",
    "RouteEntry",
    "RouteNode",
    "RouteSnapshot",
    "RoutingNode",
    "canonicalize_prefix",
    "diff",
    "extract_routes",
    "join_paths",
    "to_routing_node",
    "to_routing_tree",
]
