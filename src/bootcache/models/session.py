from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class AppStateStatus(StrEnum):
    ACTIVE = "active"
    BACKGROUND = "background"
    INACTIVE = "inactive"


@dataclass
class BootSession:
    """One full lane sequence for one viewer in this process."""

    viewer_id: str
    has_prefetched: bool = False
    dispatched_at: datetime | None = None


@dataclass
class ThrottleState:
    # Monotonic seconds; None until the first resume refresh runs.
    last_refresh_at: float | None = None


@dataclass
class LaneResult:
    """Settlement summary of one lane's batch."""

    lane: int
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def failed_count(self) -> int:
        return len(self.failed)
