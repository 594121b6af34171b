"""Hot-reload orchestration.

- Generation lifecycle (bind, serve, mount, teardown)
- Dependency watching
- The restart loop
"""

from hotmount.reload.controller import RestartController
from hotmount.reload.orchestrator import Generation, MountOrchestrator, MountState
from hotmount.reload.reporter import Reporter
from hotmount.reload.triggers import ReloadTrigger, TriggerReason
from hotmount.reload.watcher import DependencyFilter, DependencyWatch

__all__ = [
    "DependencyFilter",
    "DependencyWatch",
    "Generation",
    "MountOrchestrator",
    "MountState",
    "ReloadTrigger",
    "Reporter",
    "RestartController",
    "TriggerReason",
]
