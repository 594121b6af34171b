"""File watching over a generation's dependency set.

Watches the directories holding the recorded dependencies (plus, on the
first generation, the whole target directory) and resolves on the first
relevant change. The watch is disposed as soon as that first batch arrives,
so a burst of saves coalesces into a single restart.
"""

import asyncio
import contextlib
import logging
from collections.abc import Iterable
from pathlib import Path

from watchfiles import Change, DefaultFilter, awatch

logger = logging.getLogger(__name__)


class DependencyFilter(DefaultFilter):
    """Admit changes to recorded dependencies, or anywhere under the fallback directory.

    Editor swap files, bytecode and VCS folders are rejected by DefaultFilter first.
    """

    def __init__(
        self,
        dependencies: Iterable[Path],
        fallback_directory: Path | None = None,
    ):
        super().__init__()
        self.dependencies = frozenset(Path(p).resolve() for p in dependencies)
        self.fallback_directory = fallback_directory.resolve() if fallback_directory else None

    def __call__(self, change: Change, path: str) -> bool:
        if not super().__call__(change, path):
            return False

        resolved = Path(path).resolve()
        if resolved in self.dependencies:
            return True
        if self.fallback_directory is not None:
            return resolved.is_relative_to(self.fallback_directory)
        return False


class DependencyWatch:
    """One-shot watch over a dependency set.

    Usage:
        watch = DependencyWatch(files, fallback_directory=root)
        changed = await watch.first_change()
    """

    def __init__(
        self,
        dependencies: Iterable[Path],
        fallback_directory: Path | None = None,
        debounce_ms: int = 200,
    ):
        self.dependencies = frozenset(Path(p).resolve() for p in dependencies)
        self.fallback_directory = fallback_directory.resolve() if fallback_directory else None
        self.debounce_ms = debounce_ms
        self.watch_filter = DependencyFilter(self.dependencies, self.fallback_directory)
        self._stop_event = asyncio.Event()

    def watch_paths(self) -> list[Path]:
        """Directories handed to the OS watcher, deduplicated and existing."""
        roots = {path.parent for path in self.dependencies}
        if self.fallback_directory is not None:
            roots.add(self.fallback_directory)
            # Anything under the recursive fallback is already covered
            roots = {
                root
                for root in roots
                if root == self.fallback_directory or not root.is_relative_to(self.fallback_directory)
            }
        return sorted(root for root in roots if root.is_dir())

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    async def first_change(self) -> Path | None:
        """Wait for the first relevant change.

        Returns:
            The changed path, or None if the watch was stopped first.
        """
        paths = self.watch_paths()
        if not paths:
            logger.warning("Nothing to watch")
            await self._stop_event.wait()
            return None

        for path in paths:
            logger.debug(f"Watching {path}")

        changes = awatch(
            *paths,
            watch_filter=self.watch_filter,
            debounce=self.debounce_ms,
            stop_event=self._stop_event,
            recursive=self.fallback_directory is not None,
        )
        async with contextlib.aclosing(changes):
            async for batch in changes:
                self.stop()
                changed = sorted(path for _change, path in batch)
                logger.debug(f"Change batch of {len(changed)}: {changed}")
                return Path(changed[0])

        return None
