"""Starlette / FastAPI adapter for the routing tree."""

import inspect
import logging
from typing import Any

from fastapi.routing import APIRoute
from starlette.routing import BaseRoute, Mount, Route

from hotmount.routes.tree import (
    HttpMethod,
    MiddlewareNode,
    MountNode,
    RouteNode,
    RoutingNode,
    canonicalize_prefix,
)

logger = logging.getLogger(__name__)


def _declared_methods(route: Route) -> tuple[HttpMethod, ...]:
    if route.methods is None:
        # HTTPEndpoint classes dispatch on their handler methods; bare ASGI
        # endpoints accept any verb.
        endpoint = route.endpoint
        if inspect.isclass(endpoint):
            names = {method for method in HttpMethod if hasattr(endpoint, method.value.lower())}
        else:
            names = set(HttpMethod)
    else:
        names = set()
        for raw in route.methods:
            try:
                names.add(HttpMethod(raw.upper()))
            except ValueError:
                logger.debug(f"Skipping non-standard method {raw} on {route.path}")

        # Starlette adds HEAD next to every GET route; FastAPI does not
        if HttpMethod.GET in names and not isinstance(route, APIRoute):
            names.discard(HttpMethod.HEAD)

    return HttpMethod.ordered(names)


def to_routing_node(route: BaseRoute) -> RoutingNode:
    """Translate one Starlette route object into a routing tree node."""
    if isinstance(route, Route):
        return RouteNode(
            methods=_declared_methods(route),
            paths=(route.path,),
            name=route.name,
        )

    if isinstance(route, Mount):
        return MountNode(
            prefix=canonicalize_prefix(route.path_regex.pattern),
            children=tuple(to_routing_node(child) for child in route.routes),
        )

    return MiddlewareNode(name=type(route).__name__)


def to_routing_tree(router: Any) -> tuple[RoutingNode, ...]:
    """Translate anything exposing a Starlette-style ``routes`` list.

    Covers APIRouter, FastAPI, Router and Starlette instances.

    Raises:
        TypeError: If the object has no routes list.
    """
    routes = getattr(router, "routes", None)
    if routes is None:
        raise TypeError(f"{type(router).__name__} does not expose a routes list")
    return tuple(to_routing_node(route) for route in routes)
