"""Forecast and location data models."""

from dataclasses import asdict, dataclass
from datetime import datetime

from weatheralert.models.common import parse_timestamp


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Place:
    """Reverse-geocoded display metadata. Both fields None when unknown."""

    city: str | None = None
    country: str | None = None

    @property
    def is_known(self) -> bool:
        return bool(self.city or self.country)


@dataclass(frozen=True)
class PlaceMatch:
    label: str
    latitude: float
    longitude: float
    city: str | None
    country: str | None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class ForecastSlot:
    time: datetime  # UTC
    temperature_c: float | None
    precipitation_mm: float | None
    wind_speed_ms: float | None
    symbol_code: int | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["time"] = self.time.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ForecastSlot":
        time = parse_timestamp(data["time"])
        if time is None:
            raise ValueError(f"Invalid slot time: {data['time']!r}")
        return cls(
            time=time,
            temperature_c=_opt_float(data.get("temperature_c")),
            precipitation_mm=_opt_float(data.get("precipitation_mm")),
            wind_speed_ms=_opt_float(data.get("wind_speed_ms")),
            symbol_code=_opt_int(data.get("symbol_code")),
        )


@dataclass(frozen=True)
class Forecast:
    slots: tuple[ForecastSlot, ...]

    def __post_init__(self) -> None:
        if not self.slots:
            raise ValueError("Forecast requires at least one slot")

    @property
    def current(self) -> ForecastSlot:
        return self.slots[0]

    def differs_from(self, other: "Forecast | None") -> bool:
        """Cheap change check: slot count or current-slot time."""
        if other is None:
            return True
        return (
            len(self.slots) != len(other.slots)
            or self.current.time != other.current.time
        )

    def to_dict(self) -> dict:
        return {"slots": [s.to_dict() for s in self.slots]}

    @classmethod
    def from_dict(cls, data: dict) -> "Forecast":
        return cls(slots=tuple(ForecastSlot.from_dict(s) for s in data["slots"]))


def _opt_float(value: object) -> float | None:
    return None if value is None else float(value)  # type: ignore[arg-type]


def _opt_int(value: object) -> int | None:
    return None if value is None else int(value)  # type: ignore[call-overload]
