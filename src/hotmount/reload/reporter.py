"""Human-facing console output."""

from rich.console import Console
from rich.markup import escape
from rich.traceback import Traceback

from hotmount.reload.orchestrator import Generation
from hotmount.reload.triggers import ReloadTrigger, TriggerReason
from hotmount.routes.extractor import Delta, RouteSnapshot
from hotmount.target import TargetSpec


class Reporter:
    """Prints mount banners, route listings and reload notices."""

    def __init__(self, output: Console | None = None, cors: bool = True):
        self.console = output or Console(highlight=False)
        self.cors = cors

    def mounted(self, base_url: str) -> None:
        """Print the banner shown once, on the first successful mount."""
        suffix = " with CORS support" if self.cors else ""
        self.console.print(f"\n[dim]> Mounted on {escape(base_url)}{suffix}[/dim]")

    def mount_failed(self, target: TargetSpec, error: BaseException) -> None:
        """Print the failure line and the traceback of the mount error."""
        self.console.print(
            f'[red]> Failed to mount "{escape(target.requested_path)}", waiting for change[/red]'
        )
        self.console.print(
            Traceback.from_exception(type(error), error, error.__traceback__, show_locals=False)
        )

    def listing(self, snapshot: RouteSnapshot) -> None:
        """Print the full route table."""
        self.console.print()
        for entry in snapshot:
            self.console.print(f"[dim]* {escape(entry.display)}[/dim]")
        self.console.print()

    def changes(self, snapshot: RouteSnapshot, delta: Delta, base_url: str) -> None:
        """Print the route table with additions highlighted, then the removals.

        Args:
            snapshot: Routes of the new generation.
            delta: Difference from the last successful snapshot.
            base_url: Prefix for the removed routes, which have no entry to display.
        """
        self.console.print()
        for entry in snapshot:
            if entry.key in delta.added:
                self.console.print(f"[white on green]+ {escape(entry.display)}[/white on green]")
            else:
                self.console.print(f"[dim]* {escape(entry.display)}[/dim]")
        for key in sorted(delta.removed):
            method, path = key.split(" ", 1)
            self.console.print(f"[red]- {escape(f'{method:<4} {base_url}{path}')}[/red]")
        self.console.print()

    def mount_result(self, generation: Generation, target: TargetSpec) -> None:
        """Report a freshly started generation.

        The first mount gets the banner and full listing. Later mounts print
        only the delta, if any. A failed mount prints its error.
        """
        if not generation.mounted:
            assert generation.error is not None
            self.mount_failed(target, generation.error)
            return

        assert generation.snapshot is not None and generation.delta is not None
        if generation.delta.initial:
            self.mounted(generation.base_url)
            self.listing(generation.snapshot)
        elif not generation.delta.is_empty:
            self.changes(generation.snapshot, generation.delta, generation.base_url)

    def watching(self, directory: str) -> None:
        """Print the watched directory."""
        self.console.print(f"[dim]+ watching {escape(directory)}/*[/dim]")

    def reload(self, trigger: ReloadTrigger) -> None:
        """Print a timestamped line naming what ended the generation."""
        stamp = trigger.at.strftime("%H:%M:%S")
        if trigger.reason is TriggerReason.CHANGE:
            cause = str(trigger.path)
        elif trigger.reason is TriggerReason.RUNTIME_ERROR:
            cause = f"runtime error: {trigger.error!r}"
        else:
            cause = f"watch error: {trigger.error}"
        self.console.print(f"[dim]+ {stamp} reload due to {escape(cause)}[/dim]")
