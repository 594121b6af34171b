"""The watch and restart loop.

One iteration per generation: mount, report, watch, wait for the first
trigger, tear down. Generations never overlap; the next one binds only after
the previous one has released its port.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from hotmount.config import Settings
from hotmount.reload.reporter import Reporter
from hotmount.reload.orchestrator import Generation, MountOrchestrator
from hotmount.reload.triggers import ReloadTrigger, TriggerReason
from hotmount.reload.watcher import DependencyWatch
from hotmount.routes.extractor import RouteSnapshot

logger = logging.getLogger(__name__)


class Watch(Protocol):
    async def first_change(self) -> Path | None: ...

    def stop(self) -> None: ...


WatchFactory = Callable[[frozenset[Path], Path | None, int], Watch]


class RestartController:
    """Owns the single long-lived reload loop and the last route snapshot."""

    def __init__(
        self,
        orchestrator: MountOrchestrator,
        settings: Settings,
        reporter: Reporter | None = None,
        watch_factory: WatchFactory | None = None,
    ):
        self.orchestrator = orchestrator
        self.settings = settings
        self.reporter = reporter or Reporter(cors=settings.cors)
        self.watch_factory: WatchFactory = watch_factory or DependencyWatch
        self.generation: Generation | None = None
        self.last_snapshot: RouteSnapshot | None = None
        self.generations = 0
        self._port = settings.port

    @property
    def port(self) -> int:
        return self._port

    async def _wait_for_trigger(self, generation: Generation, watch: Watch) -> ReloadTrigger:
        watching = asyncio.create_task(watch.first_change())
        failing = asyncio.create_task(generation.wait_failure())
        try:
            await asyncio.wait({watching, failing}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watch.stop()
            failing.cancel()

        failure = failing.result() if failing.done() and not failing.cancelled() else None

        try:
            changed = await watching
        except Exception as e:
            if failure is None:
                logger.error(f"Watch error: {e}")
                await asyncio.sleep(self.settings.watch_retry_delay)
                return ReloadTrigger(reason=TriggerReason.WATCH_ERROR, error=e)
            changed = None

        if failure is not None:
            return ReloadTrigger(reason=TriggerReason.RUNTIME_ERROR, error=failure)
        if changed is None:
            return ReloadTrigger(
                reason=TriggerReason.WATCH_ERROR,
                error=RuntimeError("watch stopped without a change"),
            )
        return ReloadTrigger(reason=TriggerReason.CHANGE, path=changed)

    async def step(self) -> ReloadTrigger:
        """Run one generation from mount to teardown.

        Returns:
            The trigger that ended the generation.
        """
        first = self.generations == 0
        self.generations += 1
        target = self.orchestrator.target

        generation = await self.orchestrator.start(
            self.generations,
            self._port,
            previous=self.last_snapshot,
            allocate=first,
        )
        self.generation = generation
        self._port = generation.port

        if generation.mounted:
            self.last_snapshot = generation.snapshot
        self.reporter.mount_result(generation, target)

        # With no recorded files, only the target directory can bring it back
        fallback = target.containing_directory if first or not generation.dependencies else None
        watch = self.watch_factory(generation.dependencies, fallback, self.settings.debounce_ms)
        if first:
            self.reporter.watching(str(target.containing_directory))

        trigger = await self._wait_for_trigger(generation, watch)
        self.reporter.reload(trigger)

        await generation.close()
        self.generation = None
        return trigger

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if self.generation is not None and isinstance(exc, Exception):
            self.generation.report_failure(exc)
        loop.default_exception_handler(context)

    async def run(self) -> None:
        """Loop generations until cancelled or a fatal error escapes."""
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_exception)
        try:
            while True:
                await self.step()
        finally:
            loop.set_exception_handler(previous_handler)
            if self.generation is not None:
                await self.generation.close()
                self.generation = None
