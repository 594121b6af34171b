"""Listening side of a generation: ports, connections and the host app."""

from hotmount.server.connections import ConnectionRegistry, connection_key, tracked_protocol
from hotmount.server.host import (
    FALLBACK_MESSAGE,
    FailureReporter,
    RouterNotFoundError,
    SwappableApp,
    build_host_app,
    resolve_router,
)
from hotmount.server.ports import (
    PortExhaustedError,
    PortUnavailableError,
    bind_listener,
    find_free_port,
    is_port_free,
)

__all__ = [
    "FALLBACK_MESSAGE",
    "ConnectionRegistry",
    "FailureReporter",
    "PortExhaustedError",
    "PortUnavailableError",
    "RouterNotFoundError",
    "SwappableApp",
    "bind_listener",
    "build_host_app",
    "connection_key",
    "find_free_port",
    "is_port_free",
    "resolve_router",
    "tracked_protocol",
]
