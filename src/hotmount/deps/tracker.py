"""Dependency tracking at the import boundary.

A recording finder sits at the front of ``sys.meta_path`` for the life of the
process. While a TrackingSession is armed, every module the import system
finds is recorded by its source file, so a mount pass ends with the exact set
of files the mounted router was built from.
"""

import importlib.abc
import logging
import sys
import sysconfig
from dataclasses import dataclass, field
from importlib.machinery import ModuleSpec
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_VENDOR_DIRS = frozenset({"site-packages", "dist-packages", "__pypackages__"})


def _tool_root() -> Path:
    return Path(__file__).resolve().parent.parent


def _stdlib_roots() -> tuple[Path, ...]:
    paths = sysconfig.get_paths()
    roots = {Path(paths[key]).resolve() for key in ("stdlib", "platstdlib") if key in paths}
    return tuple(sorted(roots))


@dataclass(frozen=True)
class DependencyBoundary:
    """Decides which loaded files count as the developer's own source.

    Files under any excluded root (the tool itself, the standard library) or
    under a directory whose name is a vendor directory are left out.
    """

    excluded_roots: tuple[Path, ...] = field(
        default_factory=lambda: (_tool_root(), *_stdlib_roots())
    )
    vendor_dirs: frozenset[str] = DEFAULT_VENDOR_DIRS

    def includes(self, path: Path) -> bool:
        """Check if a file belongs to the watched source tree."""
        if any(part in self.vendor_dirs for part in path.parts):
            return False
        return not any(path.is_relative_to(root) for root in self.excluded_roots)


class TrackingSession:
    """One armed recording pass. Recording the same file twice is a no-op."""

    def __init__(self, tracker: "DependencyTracker"):
        self._tracker = tracker
        self._files: set[Path] = set()

    @property
    def active(self) -> bool:
        return self._tracker.active is self

    def record(self, path: str | Path) -> bool:
        """Record a loaded file.

        Returns:
            True if the file was newly added to the set.
        """
        resolved = Path(path).resolve()
        if not self._tracker.boundary.includes(resolved):
            return False
        if resolved in self._files:
            return False

        self._files.add(resolved)
        logger.debug(f"Recorded dependency {resolved}")
        return True

    def record_spec(self, spec: ModuleSpec) -> bool:
        """Record the file behind a found module spec, if it has one on disk."""
        if not spec.has_location or not spec.origin:
            return False
        origin = Path(spec.origin)
        if not origin.is_absolute() or not origin.is_file():
            return False
        return self.record(origin)

    def recorded_files(self) -> frozenset[Path]:
        return frozenset(self._files)

    def stop(self) -> frozenset[Path]:
        """Disarm the tracker and return what was recorded."""
        self._tracker._end(self)
        return self.recorded_files()

    def __enter__(self) -> "TrackingSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


class _RecordingFinder(importlib.abc.MetaPathFinder):
    """Meta path finder that delegates to the finders behind it and records hits."""

    def __init__(self, tracker: "DependencyTracker"):
        self._tracker = tracker
        self._searching = False

    def find_spec(self, fullname, path, target=None):
        session = self._tracker.active
        if session is None or self._searching:
            return None

        self._searching = True
        try:
            for finder in sys.meta_path:
                if finder is self:
                    continue
                find_spec = getattr(finder, "find_spec", None)
                if find_spec is None:
                    continue
                spec = find_spec(fullname, path, target)
                if spec is not None:
                    session.record_spec(spec)
                    return spec
            return None
        finally:
            self._searching = False


class DependencyTracker:
    """Process-wide import hook, re-armed once per generation.

    Usage:
        tracker = DependencyTracker()
        tracker.install()
        with tracker.begin() as session:
            import something
        files = session.recorded_files()
    """

    def __init__(self, boundary: DependencyBoundary | None = None):
        self.boundary = boundary or DependencyBoundary()
        self._finder = _RecordingFinder(self)
        self._session: TrackingSession | None = None

    @property
    def installed(self) -> bool:
        return self._finder in sys.meta_path

    @property
    def active(self) -> TrackingSession | None:
        return self._session

    def install(self) -> None:
        """Insert the recording finder into sys.meta_path. Idempotent."""
        if not self.installed:
            sys.meta_path.insert(0, self._finder)
            logger.debug("Dependency tracker installed")

    def uninstall(self) -> None:
        if self.installed:
            sys.meta_path.remove(self._finder)
        self._session = None

    def begin(self) -> TrackingSession:
        """Arm a fresh, empty recording session, ending any previous one."""
        self.install()
        self._session = TrackingSession(self)
        return self._session

    def _end(self, session: TrackingSession) -> None:
        if self._session is session:
            self._session = None
