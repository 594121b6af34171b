"""Reasons a generation is torn down."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class TriggerReason(str, Enum):
    """What ended a generation."""

    CHANGE = "change"
    RUNTIME_ERROR = "runtime_error"
    WATCH_ERROR = "watch_error"


@dataclass(frozen=True)
class ReloadTrigger:
    """The event that ended a generation."""

    reason: TriggerReason
    path: Path | None = None
    error: BaseException | None = None
    at: datetime = field(default_factory=datetime.now)
