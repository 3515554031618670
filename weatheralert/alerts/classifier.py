"""Bad-weather classification for a single forecast slot."""

from datetime import UTC, datetime

from weatheralert.models.alert import Assessment, ReasonTag
from weatheralert.models.forecast import Forecast, ForecastSlot

COLD_MAX_C = 3.0
HEAT_MIN_C = 30.0
HEAVY_RAIN_MIN_MM = 2.0
RAIN_MIN_MM = 0.2
STRONG_WIND_MIN_MS = 10.0  # ~36 km/h

NORMAL_ADVICE = "Normal conditions."
ADVICE = {
    ReasonTag.HEAVY_RAIN: "Bring a sturdy umbrella and waterproof jacket.",
    ReasonTag.RAIN: "Pack an umbrella or raincoat.",
    ReasonTag.STRONG_WIND: "Wear a windbreaker and secure loose items.",
    ReasonTag.COLD: "Dress warmly (coat, gloves).",
    ReasonTag.HEAT: "Stay hydrated and wear sunscreen.",
}


def assess(slot: ForecastSlot) -> Assessment:
    """Classify a slot. Missing values never trip a threshold."""
    temp = slot.temperature_c
    precip = slot.precipitation_mm
    wind = slot.wind_speed_ms

    reasons: list[ReasonTag] = []
    if precip is not None and precip >= HEAVY_RAIN_MIN_MM:
        reasons.append(ReasonTag.HEAVY_RAIN)
    elif precip is not None and precip >= RAIN_MIN_MM:
        reasons.append(ReasonTag.RAIN)
    if wind is not None and wind >= STRONG_WIND_MIN_MS:
        reasons.append(ReasonTag.STRONG_WIND)
    if temp is not None and temp <= COLD_MAX_C:
        reasons.append(ReasonTag.COLD)
    if temp is not None and temp >= HEAT_MIN_C:
        reasons.append(ReasonTag.HEAT)

    if not reasons:
        return Assessment(is_bad=False, reasons=(), advice=NORMAL_ADVICE)
    return Assessment(
        is_bad=True,
        reasons=tuple(reasons),
        advice=" ".join(ADVICE[r] for r in reasons),
    )


def find_next_bad_slot(
    forecast: Forecast, now: datetime | None = None
) -> ForecastSlot | None:
    """First slot strictly after now that assesses as bad."""
    if now is None:
        now = datetime.now(UTC)
    for slot in forecast.slots:
        if slot.time > now and assess(slot).is_bad:
            return slot
    return None
