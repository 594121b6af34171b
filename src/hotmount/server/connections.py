"""Per-generation connection tracking and forced teardown."""

import asyncio
import logging

logger = logging.getLogger(__name__)


def connection_key(transport: asyncio.BaseTransport) -> str:
    """Key a transport by its remote ``address:port``."""
    peer = transport.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return f"transport-{id(transport)}"


class ConnectionRegistry:
    """Live connections accepted by one server instance.

    Connections add themselves on connect and remove themselves on close;
    the registry must be empty before the server counts as torn down.
    """

    def __init__(self) -> None:
        self._connections: dict[str, asyncio.BaseTransport] = {}
        self._drained = asyncio.Event()
        self._drained.set()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, key: object) -> bool:
        return key in self._connections

    def keys(self) -> list[str]:
        """Keys of the live connections, in connect order."""
        return list(self._connections)

    @property
    def empty(self) -> bool:
        return not self._connections

    def register(self, transport: asyncio.BaseTransport) -> str:
        """Add a connection, replacing any entry under the same key.

        Returns:
            The key the connection was stored under.
        """
        key = connection_key(transport)
        self._connections[key] = transport
        self._drained.clear()
        logger.debug(f"Connection opened: {key} ({len(self._connections)} live)")
        return key

    def release(self, transport: asyncio.BaseTransport) -> None:
        """Remove a closed connection.

        A transport that was already replaced under its key is ignored.
        """
        key = connection_key(transport)
        if self._connections.get(key) is transport:
            del self._connections[key]
            logger.debug(f"Connection closed: {key} ({len(self._connections)} live)")
        if not self._connections:
            self._drained.set()

    def close_all(self) -> int:
        """Abort every live connection without waiting for the client.

        Returns:
            Number of connections aborted.
        """
        transports = list(self._connections.values())
        for transport in transports:
            transport.abort()
        if transports:
            logger.debug(f"Aborted {len(transports)} connections")
        return len(transports)

    async def wait_drained(self) -> None:
        """Wait until every connection has reported its close."""
        await self._drained.wait()


def tracked_protocol(base: type[asyncio.Protocol], registry: ConnectionRegistry) -> type[asyncio.Protocol]:
    """Subclass an HTTP protocol class so its connections land in the registry.

    Registration happens in ``connection_made``, before the protocol reads a
    single byte, so no request can reach application code untracked.
    """

    class TrackedProtocol(base):  # type: ignore[valid-type, misc]
        def connection_made(self, transport):  # type: ignore[no-untyped-def]
            self._registry_transport = transport
            registry.register(transport)
            super().connection_made(transport)

        def connection_lost(self, exc):  # type: ignore[no-untyped-def]
            try:
                super().connection_lost(exc)
            finally:
                registry.release(self._registry_transport)

    TrackedProtocol.__name__ = f"Tracked{base.__name__}"
    TrackedProtocol.__qualname__ = TrackedProtocol.__name__
    return TrackedProtocol
