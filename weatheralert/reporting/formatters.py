"""Text formatters for forecasts, locations, and cycle summaries."""

import json
from datetime import datetime, tzinfo

from weatheralert.alerts.classifier import assess
from weatheralert.models.forecast import Coordinate, Forecast, ForecastSlot, Place
from weatheralert.models.reporting import CycleSummary, OrchestratorState

WINDY_CHIP_KMH = 25


def location_label(place: Place | None, coord: Coordinate | None) -> str:
    """City, country when known; otherwise the raw coordinate."""
    if place is not None:
        parts = [p for p in (place.city, place.country) if p]
        if parts:
            return ", ".join(parts)
    if coord is not None:
        return f"{coord.latitude:.3f}, {coord.longitude:.3f}"
    return "Locating..."


def header_subtitle(
    state: OrchestratorState, forecast: Forecast | None, now: datetime
) -> str:
    if state == OrchestratorState.DONE and forecast is not None:
        minutes = int((now - forecast.current.time).total_seconds() // 60)
        if minutes <= 0:
            return "Updated just now"
        if minutes < 60:
            return f"Updated {minutes} min ago"
        return f"Updated {minutes // 60} h ago"
    if state == OrchestratorState.LOADING:
        return "Fetching your local weather..."
    return "Weather alerts an hour ahead"


def format_slot_row(slot: ForecastSlot, tz: tzinfo | None = None) -> str:
    local = slot.time.astimezone(tz).strftime("%H:%M")
    temp = "--" if slot.temperature_c is None else f"{round(slot.temperature_c)}"
    rain = slot.precipitation_mm or 0.0
    row = f"{local}  {temp:>3}°C  rain {rain:4.1f} mm"
    wind_kmh = round((slot.wind_speed_ms or 0.0) * 3.6)
    if wind_kmh >= WINDY_CHIP_KMH:
        row += f"  wind {wind_kmh} km/h"
    verdict = assess(slot)
    if verdict.is_bad:
        row += f"  ⚠ {', '.join(r.value for r in verdict.reasons)}"
    return row


def format_forecast_text(
    forecast: Forecast, label: str, tz: tzinfo | None = None
) -> str:
    current = assess(forecast.current)
    lines = [f"=== {label} ===", f"Now: {format_slot_row(forecast.current, tz)}"]
    lines.append(current.advice)
    lines.append("Next hours:")
    lines.extend(f"  {format_slot_row(s, tz)}" for s in forecast.slots[1:])
    return "\n".join(lines)


def format_error_text(error: str, hint: str) -> str:
    return f"Error: {error}\n{hint}"


def format_summary_text(s: CycleSummary) -> str:
    """Plain text summary for logging."""
    lines = [f"=== Refresh {s.status} ({s.trigger}) | Cycle {s.cycle_id[:8]} ==="]
    if s.latitude is not None and s.longitude is not None:
        lines.append(f"Location: {s.latitude:.3f}, {s.longitude:.3f}")
    lines.append(
        f"Slots: {s.slot_count} | cached: {'yes' if s.used_cached else 'no'} | "
        f"changed: {'yes' if s.forecast_changed else 'no'} | "
        f"attempts: {s.fetch_attempts}"
    )
    if s.next_bad_time is not None:
        state = "scheduled" if s.alert_scheduled else "not scheduled"
        lines.append(f"Next bad weather: {s.next_bad_time.isoformat()} (alert {state})")
    else:
        lines.append("Next bad weather: none in window")
    if s.errors:
        lines.append(f"Errors: {'; '.join(s.errors)}")
    lines.append(f"Duration: {s.duration_seconds:.1f}s")
    return "\n".join(lines)


def format_summary_json(s: CycleSummary) -> str:
    """JSON summary for programmatic consumption."""
    data = {
        "cycle_id": s.cycle_id,
        "trigger": s.trigger,
        "status": s.status,
        "latitude": s.latitude,
        "longitude": s.longitude,
        "used_cached": s.used_cached,
        "forecast_changed": s.forecast_changed,
        "slot_count": s.slot_count,
        "next_bad_time": s.next_bad_time.isoformat() if s.next_bad_time else None,
        "alert_scheduled": s.alert_scheduled,
        "fetch_attempts": s.fetch_attempts,
        "duration_seconds": s.duration_seconds,
        "errors": s.errors,
    }
    return json.dumps(data, indent=2)
