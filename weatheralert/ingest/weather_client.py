"""Meteomatics forecast client: one request for now..now+N hours at 1h steps."""

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import httpx
from pydantic import BaseModel, ValidationError

from weatheralert.config.defaults import METEOMATICS_BASE_URL
from weatheralert.models.common import parse_timestamp
from weatheralert.models.forecast import Coordinate, Forecast, ForecastSlot

logger = logging.getLogger(__name__)

TEMPERATURE = "t_2m:C"
PRECIPITATION = "precip_1h:mm"
WIND_SPEED = "wind_speed_10m:ms"
SYMBOL = "weather_symbol_1h:idx"
PARAMETERS = (TEMPERATURE, PRECIPITATION, WIND_SPEED, SYMBOL)
STEP = "PT1H"


class WeatherClientError(Exception):
    """Base class for forecast acquisition failures."""


class CredentialsMissing(WeatherClientError):
    pass


class Unauthorized(WeatherClientError):
    pass


class WeatherTimeout(WeatherClientError):
    pass


class ProviderError(WeatherClientError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# --- Response schema ---

class _DateValue(BaseModel):
    date: str
    value: float | None = None


class _SeriesCoordinate(BaseModel):
    lat: float | None = None
    lon: float | None = None
    dates: list[_DateValue] = []


class _Series(BaseModel):
    parameter: str
    coordinates: list[_SeriesCoordinate] = []


class _Response(BaseModel):
    data: list[_Series] = []


class WeatherClient:
    def __init__(
        self,
        username: str,
        password: str,
        base_url: str = METEOMATICS_BASE_URL,
        timeout: float = 12.0,
        model: str = "mix",
        horizon_hours: int = 6,
    ):
        self.username = username
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.model = model
        self.horizon_hours = horizon_hours
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="meteomatics")

    def build_url(self, coord: Coordinate, now: datetime | None = None) -> str:
        if now is None:
            now = datetime.now(UTC)
        start = now.astimezone(UTC)
        end = start + timedelta(hours=self.horizon_hours)
        fmt = "%Y-%m-%dT%H:%M:%SZ"
        return (
            f"{self.base_url}/{start.strftime(fmt)}--{end.strftime(fmt)}:{STEP}"
            f"/{','.join(PARAMETERS)}/{coord.latitude},{coord.longitude}/json"
        )

    def fetch(self, coord: Coordinate, now: datetime | None = None) -> Forecast:
        """Fetch the hourly forecast. Single attempt; retry is the caller's job.

        The timeout is a total deadline for the whole exchange, not a
        per-read limit, so a provider trickling its body still fails with
        WeatherTimeout once the deadline passes.
        """
        if not self.username or not self.password:
            raise CredentialsMissing(
                "Missing Meteomatics credentials "
                "(set METEOMATICS_USERNAME / METEOMATICS_PASSWORD)"
            )

        url = self.build_url(coord, now)
        deadline = time.monotonic() + self.timeout
        future = self._executor.submit(self._download, url, deadline)
        try:
            status_code, body = future.result(timeout=self.timeout)
        except (TimeoutError, httpx.TimeoutException) as e:
            raise WeatherTimeout("Weather request timed out.") from e
        except httpx.RequestError as e:
            raise ProviderError(f"Meteomatics request failed: {e}") from e

        if status_code == 401:
            raise Unauthorized(
                "401 Unauthorized from Meteomatics, check username/password."
            )
        if status_code >= 400:
            logger.error(
                "Meteomatics %d: %s", status_code, body[:200].decode(errors="replace")
            )
            raise ProviderError(f"Meteomatics error: {status_code}", status_code)

        try:
            raw = json.loads(body)
        except ValueError as e:
            raise ProviderError("Meteomatics returned invalid JSON") from e
        return parse_forecast(raw)

    def _download(self, url: str, deadline: float) -> tuple[int, bytes]:
        # Runs on a worker thread; stops reading once the deadline passes.
        chunks = []
        with httpx.stream(
            "GET",
            url,
            params={"model": self.model},
            auth=(self.username, self.password),
            timeout=self.timeout,
        ) as resp:
            for chunk in resp.iter_bytes():
                if time.monotonic() > deadline:
                    raise WeatherTimeout("Weather request timed out.")
                chunks.append(chunk)
            return resp.status_code, b"".join(chunks)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def parse_forecast(raw: dict) -> Forecast:
    """Transpose per-parameter series into one slot per timestamp.

    All series must share the same timestamp sequence; a parameter that is
    absent altogether yields None for that field.
    """
    try:
        response = _Response.model_validate(raw)
    except ValidationError as e:
        raise ProviderError(f"Unexpected Meteomatics response shape: {e}") from e

    columns: dict[str, list[_DateValue]] = {}
    for series in response.data:
        columns[series.parameter] = series.coordinates[0].dates if series.coordinates else []

    timeline: list[str] | None = None
    for parameter, dates in columns.items():
        stamps = [d.date for d in dates]
        if timeline is None:
            timeline = stamps
        elif stamps != timeline:
            raise ProviderError(
                f"Series {parameter} is not aligned with the other parameters"
            )

    if not timeline:
        raise ProviderError("Meteomatics response contained no forecast slots")

    slots = []
    for i, stamp in enumerate(timeline):
        time = parse_timestamp(stamp)
        if time is None:
            raise ProviderError(f"Invalid timestamp in response: {stamp!r}")
        symbol = _value_at(columns, SYMBOL, i)
        slots.append(
            ForecastSlot(
                time=time.astimezone(UTC),
                temperature_c=_value_at(columns, TEMPERATURE, i),
                precipitation_mm=_value_at(columns, PRECIPITATION, i),
                wind_speed_ms=_value_at(columns, WIND_SPEED, i),
                symbol_code=_symbol_code(symbol, stamp),
            )
        )

    slots.sort(key=lambda s: s.time)
    return Forecast(slots=tuple(slots))


def _value_at(columns: dict[str, list[_DateValue]], parameter: str, index: int) -> float | None:
    dates = columns.get(parameter)
    if dates is None or index >= len(dates):
        return None
    return dates[index].value


def _symbol_code(value: float | None, stamp: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, OverflowError) as e:
        raise ProviderError(f"Invalid weather symbol {value!r} at {stamp}") from e
