"""Hotmount CLI entry point."""

import asyncio
import logging

import click
import uvicorn
import watchfiles
from rich.console import Console
from rich.logging import RichHandler

from hotmount import __version__
from hotmount.config import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_ROUTER_NAMES,
    Settings,
)
from hotmount.deps import DEFAULT_VENDOR_DIRS, DependencyBoundary, DependencyTracker, TrackingModuleLoader
from hotmount.reload import MountOrchestrator, Reporter, RestartController
from hotmount.target import TargetNotFoundError, TargetSpec, resolve_target

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

# Frames from these packages are collapsed in fatal tracebacks
SUPPRESSED_FRAMES = [click, asyncio, uvicorn, watchfiles]


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_controller(target: TargetSpec, settings: Settings) -> RestartController:
    """Wire the loader, orchestrator and reporter for one target."""
    tracker = DependencyTracker(DependencyBoundary(vendor_dirs=settings.vendor_dirs))
    orchestrator = MountOrchestrator(target, settings, loader=TrackingModuleLoader(tracker))
    return RestartController(
        orchestrator,
        settings,
        reporter=Reporter(console, cors=settings.cors),
    )


@click.command()
@click.argument("target")
@click.option(
    "-p", "--port", default=DEFAULT_PORT, envvar="PORT", show_default=True,
    help="Preferred port; the next free one is used if it is taken",
)
@click.option("--host", default=DEFAULT_HOST, envvar="HOTMOUNT_HOST", show_default=True, help="Host to bind to")
@click.option(
    "--router-name", "router_names", multiple=True,
    help=f"Module attribute holding the router (default: {', '.join(DEFAULT_ROUTER_NAMES)})",
)
@click.option(
    "--vendor-dir", "vendor_dirs", multiple=True,
    help="Extra directory name whose files are never watched",
)
@click.option("--cors/--no-cors", default=True, show_default=True, help="Allow cross-origin requests")
@click.option(
    "--debounce", "debounce_ms", default=DEFAULT_DEBOUNCE_MS, envvar="HOTMOUNT_DEBOUNCE_MS",
    show_default=True, help="Milliseconds to gather file events before reloading",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.version_option(__version__, prog_name="hotmount")
def cli(
    target: str,
    port: int,
    host: str,
    router_names: tuple[str, ...],
    vendor_dirs: tuple[str, ...],
    cors: bool,
    debounce_ms: int,
    verbose: bool,
) -> None:
    """Serve the router in TARGET and reload it whenever its source changes.

    TARGET is a Python file, or a directory holding __init__.py, app.py or
    main.py, that exposes a Starlette/FastAPI router.
    """
    setup_logging(verbose)

    settings = Settings(
        target=target,
        port=port,
        host=host,
        router_names=router_names or DEFAULT_ROUTER_NAMES,
        vendor_dirs=DEFAULT_VENDOR_DIRS | frozenset(vendor_dirs),
        cors=cors,
        debounce_ms=debounce_ms,
        log_level=logging.DEBUG if verbose else logging.INFO,
    )

    try:
        mount_target = resolve_target(settings.target)
    except TargetNotFoundError as e:
        err_console.print(f"[red]{e}[/red]")
        raise SystemExit(1) from e

    controller = build_controller(mount_target, settings)

    try:
        asyncio.run(controller.run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")
    except Exception as e:
        err_console.print_exception(suppress=SUPPRESSED_FRAMES)
        raise SystemExit(1) from e


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
