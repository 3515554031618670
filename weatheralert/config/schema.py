"""Pydantic v2 configuration schema with strict validation."""

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from weatheralert.config.defaults import (
    BIGDATACLOUD_URL,
    DEFAULT_FALLBACK,
    DEFAULT_USER_AGENT,
    IP_LOOKUP_URL,
    METEOMATICS_BASE_URL,
    NOMINATIM_URL,
)


class LocationSource(StrEnum):
    STATIC = "static"
    IP = "ip"


class AlertBackend(StrEnum):
    LOCAL = "local"
    WEBHOOK = "webhook"


class ProviderConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = METEOMATICS_BASE_URL
    username: str = ""
    password: str = ""
    timeout_seconds: float = Field(default=12.0, gt=0.0)
    model: str = "mix"
    horizon_hours: int = Field(default=6, ge=1, le=24)


class LocationConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = True
    source: LocationSource = LocationSource.IP
    static_latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    static_longitude: float | None = Field(default=None, ge=-180.0, le=180.0)
    fix_timeout_seconds: float = Field(default=4.0, gt=0.0)
    fallback_latitude: float = Field(default=DEFAULT_FALLBACK.latitude, ge=-90.0, le=90.0)
    fallback_longitude: float = Field(default=DEFAULT_FALLBACK.longitude, ge=-180.0, le=180.0)
    ip_lookup_url: str = IP_LOOKUP_URL


class GeocodingConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = True
    nominatim_url: str = NOMINATIM_URL
    bigdatacloud_url: str = BIGDATACLOUD_URL
    timeout_seconds: float = Field(default=8.0, gt=0.0)
    user_agent: str = DEFAULT_USER_AGENT


class AlertConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = True
    backend: AlertBackend = AlertBackend.LOCAL
    webhook_url: str = ""
    timezone: str | None = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class OpsConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_minutes: int = Field(default=5, ge=1)
    fetch_attempts: int = Field(default=2, ge=1, le=5)
    retry_base_delay_ms: int = Field(default=500, ge=0)


class AppConfig(BaseModel):
    model_config = {"extra": "forbid"}

    provider: ProviderConfig = ProviderConfig()
    location: LocationConfig = LocationConfig()
    geocoding: GeocodingConfig = GeocodingConfig()
    alerts: AlertConfig = AlertConfig()
    ops: OpsConfig = OpsConfig()
