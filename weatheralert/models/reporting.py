"""Orchestrator state and cycle reporting models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class OrchestratorState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    DONE = "done"
    ERROR = "error"


class Trigger(StrEnum):
    MANUAL = "manual"
    MOUNT = "mount"
    POLL = "poll"
    FOREGROUND = "foreground"
    PLACE = "place"


@dataclass
class CycleSummary:
    cycle_id: str
    trigger: str
    status: str = OrchestratorState.LOADING.value
    latitude: float | None = None
    longitude: float | None = None
    used_cached: bool = False
    forecast_changed: bool = False
    slot_count: int = 0
    next_bad_time: datetime | None = None
    alert_scheduled: bool = False
    fetch_attempts: int = 0
    duration_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)
