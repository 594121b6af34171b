"""Generation lifecycle: bind, serve, mount, report.

A generation moves through:

    ALLOCATING_PORT -> LISTENING -> MOUNTING -> MOUNTED | MOUNT_FAILED -> READY_FOR_WATCH

and ends in CLOSED once torn down. Failures while mounting user code are
contained in the generation; failures binding the port are not.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import uvicorn
from uvicorn.protocols.http.h11_impl import H11Protocol

from hotmount.config import Settings
from hotmount.deps.loader import ModuleLoader, TrackingModuleLoader
from hotmount.deps.tracker import DependencyBoundary, DependencyTracker
from hotmount.routes.adapters import to_routing_tree
from hotmount.routes.extractor import Delta, RouteSnapshot, diff, extract_routes
from hotmount.server.connections import ConnectionRegistry, tracked_protocol
from hotmount.server.host import FailureReporter, SwappableApp, build_host_app, resolve_router
from hotmount.server.ports import bind_listener, find_free_port
from hotmount.target import TargetSpec

logger = logging.getLogger(__name__)


class MountState(str, Enum):
    """Lifecycle states of a generation."""

    ALLOCATING_PORT = "allocating_port"
    LISTENING = "listening"
    MOUNTING = "mounting"
    MOUNTED = "mounted"
    MOUNT_FAILED = "mount_failed"
    READY_FOR_WATCH = "ready_for_watch"
    CLOSED = "closed"


@dataclass(eq=False)
class Generation:
    """One mount-to-teardown lifecycle of the server."""

    number: int
    port: int
    base_url: str
    registry: ConnectionRegistry
    app: SwappableApp
    state: MountState = MountState.ALLOCATING_PORT
    outcome: MountState | None = None
    server: uvicorn.Server | None = None
    sockets: list[socket.socket] = field(default_factory=list)
    router: Any = None
    error: Exception | None = None
    dependencies: frozenset[Path] = field(default_factory=frozenset)
    snapshot: RouteSnapshot | None = None
    delta: Delta | None = None
    failure: BaseException | None = None
    _failed: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _main_loop: asyncio.Task | None = field(default=None, init=False, repr=False)

    @property
    def mounted(self) -> bool:
        return self.outcome is MountState.MOUNTED

    @property
    def closed(self) -> bool:
        return self.state is MountState.CLOSED

    def report_failure(self, exc: BaseException) -> None:
        """Record an uncaught failure raised while serving requests."""
        if self.failure is None:
            self.failure = exc
            logger.warning(f"Generation {self.number} hit a runtime error: {exc!r}")
        self._failed.set()

    async def wait_failure(self) -> BaseException:
        """Block until the first runtime failure of this generation is reported."""
        await self._failed.wait()
        assert self.failure is not None
        return self.failure

    async def close(self) -> None:
        """Tear down: stop accepting, abort live connections, release the port."""
        if self.closed:
            return

        server = self.server
        if server is not None:
            server.should_exit = True
            server.force_exit = True
            if self._main_loop is not None:
                await self._main_loop

            for listener in getattr(server, "servers", []):
                listener.close()
            aborted = self.registry.close_all()

            try:
                await server.shutdown(sockets=self.sockets)
            except Exception as e:
                logger.error(f"Error shutting down generation {self.number}: {e}")
            await self.registry.wait_drained()
            logger.debug(f"Generation {self.number} torn down ({aborted} connections aborted)")

        for sock in self.sockets:
            sock.close()
        self.state = MountState.CLOSED


class MountOrchestrator:
    """Produces generations for one target."""

    def __init__(
        self,
        target: TargetSpec,
        settings: Settings,
        loader: ModuleLoader | None = None,
    ):
        self.target = target
        self.settings = settings
        self.loader = loader or TrackingModuleLoader(
            DependencyTracker(DependencyBoundary(vendor_dirs=settings.vendor_dirs))
        )

    def _server_config(self, app: FailureReporter, registry: ConnectionRegistry) -> uvicorn.Config:
        verbose = self.settings.log_level <= logging.DEBUG
        return uvicorn.Config(
            app,
            host=self.settings.host,
            http=tracked_protocol(H11Protocol, registry),
            lifespan="off",
            log_config=None,
            log_level=logging.DEBUG if verbose else logging.WARNING,
        )

    async def _listen(self, generation: Generation, sock: socket.socket) -> None:
        config = self._server_config(
            FailureReporter(generation.app, generation.report_failure),
            generation.registry,
        )
        config.load()

        server = uvicorn.Server(config)
        server.lifespan = config.lifespan_class(config)
        generation.server = server
        generation.sockets = [sock]

        await server.startup(sockets=generation.sockets)
        generation._main_loop = asyncio.create_task(
            server.main_loop(), name=f"hotmount-generation-{generation.number}"
        )
        generation.state = MountState.LISTENING
        logger.debug(f"Generation {generation.number} listening on port {generation.port}")

    def _mount(self, generation: Generation, previous: RouteSnapshot | None) -> None:
        generation.state = MountState.MOUNTING
        result = self.loader.load(self.target)
        generation.dependencies = result.files

        error = result.error
        if error is None:
            try:
                router = resolve_router(result.module, self.settings.router_names)
                snapshot = extract_routes(to_routing_tree(router), generation.base_url)
                host = build_host_app(router, cors=self.settings.cors)
            except Exception as e:
                error = e

        if error is not None:
            generation.error = error
            generation.outcome = MountState.MOUNT_FAILED
            logger.debug(f"Generation {generation.number} failed to mount: {error!r}")
            return

        generation.app.app = host
        generation.router = router
        generation.snapshot = snapshot
        generation.delta = diff(previous, snapshot)
        generation.outcome = MountState.MOUNTED

    async def start(
        self,
        number: int,
        port: int,
        previous: RouteSnapshot | None = None,
        allocate: bool = False,
    ) -> Generation:
        """Bring up a generation and mount the target into it.

        Args:
            number: Generation counter, for logging.
            port: Port to listen on (the preferred port when allocating).
            previous: Last successful snapshot, for the route delta.
            allocate: Scan for a free port at or above ``port`` first.

        Raises:
            PortExhaustedError: If allocation finds no free port.
            PortUnavailableError: If the port cannot be bound.
        """
        if allocate:
            port = find_free_port(self.settings.host, port)
        sock = bind_listener(self.settings.host, port)
        port = sock.getsockname()[1]

        generation = Generation(
            number=number,
            port=port,
            base_url=self.settings.base_url(port),
            registry=ConnectionRegistry(),
            app=SwappableApp(build_host_app(cors=self.settings.cors)),
        )
        try:
            await self._listen(generation, sock)
        except BaseException:
            sock.close()
            raise

        self._mount(generation, previous)
        generation.state = MountState.READY_FOR_WATCH
        return generation
