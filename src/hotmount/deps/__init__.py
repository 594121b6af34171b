"""Discovery of the source files a mounted router depends on."""

from hotmount.deps.loader import LoadResult, ModuleLoader, TrackingModuleLoader
from hotmount.deps.tracker import (
    DEFAULT_VENDOR_DIRS,
    DependencyBoundary,
    DependencyTracker,
    TrackingSession,
)

__all__ = [
    "DEFAULT_VENDOR_DIRS",
    "DependencyBoundary",
    "DependencyTracker",
    "LoadResult",
    "ModuleLoader",
    "TrackingModuleLoader",
    "TrackingSession",
]
