"""Module loading with dependency reporting."""

import importlib
import importlib.util
import logging
import sys
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType

from hotmount.deps.tracker import DependencyTracker, TrackingSession
from hotmount.target import TargetSpec

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of loading a target: the module or the error, plus touched files."""

    module: ModuleType | None = None
    error: Exception | None = None
    files: frozenset[Path] = field(default_factory=frozenset)

    @property
    def ok(self) -> bool:
        return self.module is not None and self.error is None


class ModuleLoader(ABC):
    """Loads a target module and reports every source file it touched.

    Implementations must not raise for failures inside the target's own code;
    those are returned in LoadResult.error.
    """

    @abstractmethod
    def load(self, target: TargetSpec) -> LoadResult:
        """Load the target fresh from disk."""
        ...


class TrackingModuleLoader(ModuleLoader):
    """ModuleLoader backed by the import-hook DependencyTracker."""

    def __init__(self, tracker: DependencyTracker | None = None):
        self.tracker = tracker or DependencyTracker()
        self.tracker.install()
        self._previous_files: frozenset[Path] = frozenset()

    def _is_stale(self, module: ModuleType, target: TargetSpec) -> bool:
        file_attr = getattr(module, "__file__", None)
        if not file_attr:
            return False
        try:
            path = Path(file_attr).resolve()
        except (OSError, ValueError):
            return False
        if not self.tracker.boundary.includes(path):
            return False
        return path.is_relative_to(target.containing_directory) or path in self._previous_files

    def evict(self, target: TargetSpec) -> list[str]:
        """Drop cached modules belonging to the target so they load fresh.

        Returns:
            Names of the evicted modules.
        """
        evicted = [
            name
            for name, module in list(sys.modules.items())
            if module is not None and self._is_stale(module, target)
        ]
        for name in evicted:
            del sys.modules[name]

        if evicted:
            logger.debug(f"Evicted {len(evicted)} cached modules")
        return evicted

    def _ensure_import_root(self, target: TargetSpec) -> None:
        root = str(target.import_root)
        if root not in sys.path:
            sys.path.insert(0, root)

    def _execute(self, target: TargetSpec, entry: Path) -> ModuleType:
        name = target.module_name
        search_locations = [str(target.resolved_path)] if target.is_package else None
        spec = importlib.util.spec_from_file_location(
            name, entry, submodule_search_locations=search_locations
        )
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load {entry}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(name, None)
            raise
        return module

    def _entry(self, target: TargetSpec, session: TrackingSession) -> Path:
        try:
            entry = target.entry_file()
        except FileNotFoundError:
            for candidate in target.entry_candidates():
                session.record(candidate)
            raise
        session.record(entry)
        return entry

    def load(self, target: TargetSpec) -> LoadResult:
        self.evict(target)
        importlib.invalidate_caches()
        self._ensure_import_root(target)

        # .pyc validation keys on whole-second mtime plus size; an empty
        # cache prefix forces a compile from source for this load
        write_bytecode = sys.dont_write_bytecode
        pycache_prefix = sys.pycache_prefix
        with tempfile.TemporaryDirectory(prefix="hotmount-pycache-") as cache_dir:
            sys.dont_write_bytecode = True
            sys.pycache_prefix = cache_dir
            try:
                with self.tracker.begin() as session:
                    try:
                        entry = self._entry(target, session)
                        module = self._execute(target, entry)
                    except Exception as e:
                        logger.debug(f"Loading {target.requested_path} failed: {e!r}")
                        # Deleted dependencies stay watched until they come back
                        missing = {path for path in self._previous_files if not path.exists()}
                        result = LoadResult(error=e, files=session.recorded_files() | missing)
                    else:
                        result = LoadResult(module=module, files=session.recorded_files())
            finally:
                sys.dont_write_bytecode = write_bytecode
                sys.pycache_prefix = pycache_prefix

        self._previous_files = result.files
        logger.debug(f"Loaded {target.requested_path}: {len(result.files)} dependency files")
        return result
