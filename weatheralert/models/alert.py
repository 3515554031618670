"""Slot assessment and alert request models."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class ReasonTag(StrEnum):
    HEAVY_RAIN = "heavy rain"
    RAIN = "rain"
    STRONG_WIND = "strong wind"
    COLD = "cold"
    HEAT = "heat"


@dataclass(frozen=True)
class Assessment:
    is_bad: bool
    reasons: tuple[ReasonTag, ...]
    advice: str


@dataclass(frozen=True)
class AlertRequest:
    slot_time: datetime
    fires_at: datetime
    title: str
    body: str
