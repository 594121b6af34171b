"""Tests for the watch and restart loop."""

import asyncio
import io
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import pytest
from rich.console import Console

from hotmount.deps import LoadResult, ModuleLoader
from hotmount.reload import MountOrchestrator, MountState, Reporter, RestartController, TriggerReason
from hotmount.server import PortExhaustedError, is_port_free, ports
from hotmount.target import resolve_target

HOST = "127.0.0.1"


class FakeWatch:
    """Watch fed by a queue: a Path is a change, an exception is a watch failure."""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue
        self._stopped = asyncio.Event()

    async def first_change(self) -> Path | None:
        getter = asyncio.ensure_future(self.queue.get())
        stopper = asyncio.ensure_future(self._stopped.wait())
        done, pending = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()

        if getter not in done:
            return None
        item = getter.result()
        if isinstance(item, Exception):
            raise item
        return item

    def stop(self) -> None:
        self._stopped.set()


class NothingRecordedLoader(ModuleLoader):
    """Fails every load without reporting any file."""

    def load(self, target):
        return LoadResult(error=FileNotFoundError(target.requested_path))


@dataclass
class Harness:
    """A controller wired to a FakeWatch, with its console output captured."""

    controller: RestartController
    changes: asyncio.Queue
    output: io.StringIO
    watch_calls: list[tuple[frozenset[Path], Path | None, int]] = field(default_factory=list)

    def lines(self) -> list[str]:
        return self.output.getvalue().splitlines()

    async def wait_ready(self) -> None:
        while True:
            generation = self.controller.generation
            if generation is not None and generation.state is MountState.READY_FOR_WATCH:
                return
            await asyncio.sleep(0.01)


@pytest.fixture
async def harness(tmp_path: Path, write_file, sources, make_settings) -> AsyncIterator[Harness]:
    write_file("api.py", sources.v1)
    settings = make_settings(tmp_path / "api.py")
    output = io.StringIO()
    changes: asyncio.Queue = asyncio.Queue()

    orchestrator = MountOrchestrator(resolve_target("api.py", cwd=tmp_path), settings)
    reporter = Reporter(Console(file=output, width=200), cors=settings.cors)

    calls: list[tuple[frozenset[Path], Path | None, int]] = []

    def watch_factory(dependencies, fallback, debounce_ms):
        calls.append((dependencies, fallback, debounce_ms))
        return FakeWatch(changes)

    controller = RestartController(orchestrator, settings, reporter=reporter, watch_factory=watch_factory)
    harness = Harness(controller=controller, changes=changes, output=output, watch_calls=calls)
    yield harness

    if controller.generation is not None:
        await controller.generation.close()


class TestRestartController:
    """Tests for RestartController."""

    @pytest.mark.asyncio
    async def test_first_generation(self, tmp_path: Path, harness: Harness):
        """The first generation mounts, lists routes and watches the target directory."""
        api = (tmp_path / "api.py").resolve()
        harness.changes.put_nowait(api)

        trigger = await asyncio.wait_for(harness.controller.step(), timeout=10)

        assert trigger.reason is TriggerReason.CHANGE
        assert trigger.path == api
        assert harness.controller.generation is None
        assert harness.controller.port > 0

        dependencies, fallback, debounce_ms = harness.watch_calls[0]
        assert api in dependencies
        assert fallback == tmp_path.resolve()
        assert debounce_ms == 50

        lines = harness.lines()
        port = harness.controller.port
        assert f"> Mounted on http://localhost:{port} with CORS support" in lines
        assert f"* GET  http://localhost:{port}/users" in lines
        assert f"* POST http://localhost:{port}/users" in lines
        assert f"+ watching {tmp_path.resolve()}/*" in lines
        assert any(line.endswith(f"reload due to {api}") for line in lines)

    @pytest.mark.asyncio
    async def test_later_generations_reuse_port_without_fallback(self, tmp_path: Path, harness: Harness):
        """Later generations rebind the same port and watch only dependencies."""
        api = (tmp_path / "api.py").resolve()
        harness.changes.put_nowait(api)
        harness.changes.put_nowait(api)

        await asyncio.wait_for(harness.controller.step(), timeout=10)
        port = harness.controller.port
        await asyncio.wait_for(harness.controller.step(), timeout=10)

        assert harness.controller.port == port
        assert harness.controller.generations == 2
        assert harness.watch_calls[1][1] is None

    @pytest.mark.asyncio
    async def test_unchanged_routes_print_nothing(self, tmp_path: Path, harness: Harness):
        """A reload with identical routes prints no listing or delta."""
        api = (tmp_path / "api.py").resolve()
        harness.changes.put_nowait(api)
        harness.changes.put_nowait(api)

        await asyncio.wait_for(harness.controller.step(), timeout=10)
        listed = [line for line in harness.lines() if line.startswith("* ")]
        await asyncio.wait_for(harness.controller.step(), timeout=10)

        assert [line for line in harness.lines() if line.startswith("* ")] == listed
        assert not any(line.startswith(("+ GET", "- ")) for line in harness.lines())
        assert sum("Mounted on" in line for line in harness.lines()) == 1

    @pytest.mark.asyncio
    async def test_route_changes_are_reported(self, tmp_path: Path, write_file, sources, harness: Harness):
        """Added and removed routes are printed after a reload."""
        api = (tmp_path / "api.py").resolve()
        harness.changes.put_nowait(api)
        await asyncio.wait_for(harness.controller.step(), timeout=10)

        write_file("api.py", sources.v2)
        harness.changes.put_nowait(api)
        await asyncio.wait_for(harness.controller.step(), timeout=10)

        port = harness.controller.port
        lines = harness.lines()
        assert f"+ DELETE http://localhost:{port}/users/{{user_id}}" in lines
        assert f"- POST http://localhost:{port}/users" in lines
        assert harness.controller.last_snapshot is not None
        assert "DELETE /users/{user_id}" in {entry.key for entry in harness.controller.last_snapshot}

    @pytest.mark.asyncio
    async def test_mount_failure_recovery(self, tmp_path: Path, write_file, sources, harness: Harness):
        """A broken first mount reports the failure, then lists routes once fixed."""
        api = (tmp_path / "api.py").resolve()
        write_file("api.py", sources.broken)
        harness.changes.put_nowait(api)

        trigger = await asyncio.wait_for(harness.controller.step(), timeout=10)

        assert trigger.reason is TriggerReason.CHANGE
        assert harness.controller.last_snapshot is None
        assert api in harness.watch_calls[0][0]
        assert '> Failed to mount "api.py", waiting for change' in harness.lines()

        write_file("api.py", sources.v1)
        harness.changes.put_nowait(api)
        await asyncio.wait_for(harness.controller.step(), timeout=10)

        port = harness.controller.port
        lines = harness.lines()
        assert f"> Mounted on http://localhost:{port} with CORS support" in lines
        assert f"* GET  http://localhost:{port}/users" in lines
        assert not any(line.startswith("+ GET") for line in lines)

    @pytest.mark.asyncio
    async def test_failed_remount_keeps_last_snapshot(self, tmp_path: Path, write_file, sources, harness: Harness):
        """The delta after a failed remount is taken against the last good mount."""
        api = (tmp_path / "api.py").resolve()
        harness.changes.put_nowait(api)
        await asyncio.wait_for(harness.controller.step(), timeout=10)
        snapshot = harness.controller.last_snapshot

        write_file("api.py", sources.broken)
        harness.changes.put_nowait(api)
        await asyncio.wait_for(harness.controller.step(), timeout=10)
        assert harness.controller.last_snapshot == snapshot

        write_file("api.py", sources.v2)
        harness.changes.put_nowait(api)
        await asyncio.wait_for(harness.controller.step(), timeout=10)

        port = harness.controller.port
        assert f"+ DELETE http://localhost:{port}/users/{{user_id}}" in harness.lines()
        assert sum("Mounted on" in line for line in harness.lines()) == 1

    @pytest.mark.asyncio
    async def test_runtime_error_triggers_reload(self, write_file, sources, harness: Harness):
        """An exception in a request handler ends the generation."""
        write_file("api.py", sources.failing)
        step = asyncio.create_task(harness.controller.step())
        await asyncio.wait_for(harness.wait_ready(), timeout=10)
        port = harness.controller.generation.port

        async with httpx.AsyncClient() as client:
            response = await client.get(f"http://{HOST}:{port}/boom")
            assert response.status_code == 500

        trigger = await asyncio.wait_for(step, timeout=10)

        assert trigger.reason is TriggerReason.RUNTIME_ERROR
        assert isinstance(trigger.error, ValueError)
        assert any("reload due to runtime error" in line for line in harness.lines())

    @pytest.mark.asyncio
    async def test_background_task_error_triggers_reload(self, harness: Harness):
        """An exception reaching the loop handler ends the generation."""
        step = asyncio.create_task(harness.controller.step())
        await asyncio.wait_for(harness.wait_ready(), timeout=10)

        # Only run() installs the loop handler; call it as the loop would
        loop = asyncio.get_running_loop()
        harness.controller._handle_loop_exception(
            loop, {"message": "Task exception was never retrieved", "exception": KeyError("late")}
        )

        trigger = await asyncio.wait_for(step, timeout=10)
        assert trigger.reason is TriggerReason.RUNTIME_ERROR
        assert isinstance(trigger.error, KeyError)

    @pytest.mark.asyncio
    async def test_watch_error_triggers_reload(self, harness: Harness):
        """A failing watch ends the generation with a watch error trigger."""
        harness.changes.put_nowait(OSError("inotify watch limit reached"))

        trigger = await asyncio.wait_for(harness.controller.step(), timeout=10)

        assert trigger.reason is TriggerReason.WATCH_ERROR
        assert isinstance(trigger.error, OSError)
        assert any("reload due to watch error" in line for line in harness.lines())

    @pytest.mark.asyncio
    async def test_run_until_cancelled(self, harness: Harness):
        """Cancelling run() closes the generation, frees the port and restores the handler."""
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()

        runner = asyncio.create_task(harness.controller.run())
        await asyncio.wait_for(harness.wait_ready(), timeout=10)
        port = harness.controller.generation.port
        assert loop.get_exception_handler() == harness.controller._handle_loop_exception

        runner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await runner

        assert harness.controller.generation is None
        assert loop.get_exception_handler() is previous_handler
        assert is_port_free(HOST, port)

    @pytest.mark.asyncio
    async def test_empty_dependencies_watch_target_directory(self, tmp_path: Path, make_settings):
        """A later generation that recorded no files falls back to the target directory."""
        (tmp_path / "api.py").write_text("")
        settings = make_settings(tmp_path / "api.py")
        changes: asyncio.Queue = asyncio.Queue()
        calls: list[tuple[frozenset[Path], Path | None, int]] = []

        def watch_factory(dependencies, fallback, debounce_ms):
            calls.append((dependencies, fallback, debounce_ms))
            return FakeWatch(changes)

        orchestrator = MountOrchestrator(
            resolve_target("api.py", cwd=tmp_path), settings, loader=NothingRecordedLoader()
        )
        controller = RestartController(
            orchestrator,
            settings,
            reporter=Reporter(Console(file=io.StringIO(), width=200)),
            watch_factory=watch_factory,
        )

        changes.put_nowait(tmp_path / "api.py")
        changes.put_nowait(tmp_path / "api.py")
        await asyncio.wait_for(controller.step(), timeout=10)
        await asyncio.wait_for(controller.step(), timeout=10)

        assert calls[1] == (frozenset(), tmp_path.resolve(), 50)

    @pytest.mark.asyncio
    async def test_port_exhaustion_ends_run(self, tmp_path: Path, write_file, sources, make_settings, monkeypatch):
        """No free port for the first generation escapes run() with the handler restored."""
        write_file("api.py", sources.v1)
        settings = make_settings(tmp_path / "api.py", port=65530)
        monkeypatch.setattr(ports, "is_port_free", lambda host, port: False)
        controller = RestartController(
            MountOrchestrator(resolve_target("api.py", cwd=tmp_path), settings),
            settings,
            reporter=Reporter(Console(file=io.StringIO(), width=200)),
            watch_factory=lambda *args: FakeWatch(asyncio.Queue()),
        )
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()

        with pytest.raises(PortExhaustedError):
            await asyncio.wait_for(controller.run(), timeout=10)

        assert controller.generation is None
        assert loop.get_exception_handler() is previous_handler
