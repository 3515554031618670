"""Shared test fixtures."""

import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml

from weatheralert.config.schema import AppConfig
from weatheralert.models.forecast import Forecast, ForecastSlot
from weatheralert.storage.database import connect, run_migrations

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    conn = connect(tmp_path / "test.db")
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def default_config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "location": {"source": "static", "static_latitude": 53.35, "static_longitude": -6.26},
        "ops": {"poll_interval_minutes": 5},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


@pytest.fixture
def make_forecast() -> Callable[..., Forecast]:
    """Build an hourly forecast starting at NOW from per-slot precipitation."""

    def _make(
        precip: list[float],
        start: datetime = NOW,
        temp: float = 15.0,
        wind: float = 3.0,
    ) -> Forecast:
        return Forecast(
            slots=tuple(
                ForecastSlot(
                    time=start + timedelta(hours=i),
                    temperature_c=temp,
                    precipitation_mm=p,
                    wind_speed_ms=wind,
                    symbol_code=1,
                )
                for i, p in enumerate(precip)
            )
        )

    return _make


@pytest.fixture
def meteomatics_payload() -> Callable[..., dict]:
    """Build a Meteomatics JSON body with one series per parameter."""

    def _payload(
        precip: list[float],
        start: datetime = NOW,
        temp: float = 15.0,
        wind: float = 3.0,
        lat: float = 53.3501,
        lon: float = -6.2661,
    ) -> dict:
        stamps = [
            (start + timedelta(hours=i)).strftime("%Y-%m-%dT%H:%M:%SZ")
            for i in range(len(precip))
        ]

        def series(parameter: str, values: list) -> dict:
            return {
                "parameter": parameter,
                "coordinates": [
                    {
                        "lat": lat,
                        "lon": lon,
                        "dates": [
                            {"date": d, "value": v} for d, v in zip(stamps, values, strict=True)
                        ],
                    }
                ],
            }

        n = len(precip)
        return {
            "version": "3.0",
            "status": "OK",
            "data": [
                series("t_2m:C", [temp] * n),
                series("precip_1h:mm", precip),
                series("wind_speed_10m:ms", [wind] * n),
                series("weather_symbol_1h:idx", [1] * n),
            ],
        }

    return _payload
