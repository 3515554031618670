"""Reverse and forward geocoding with a Nominatim primary and BigDataCloud fallback.

Every call here is best-effort: failures are logged and turned into empty
results, never raised.
"""

import itertools
import logging
import threading

import httpx

from weatheralert.config.defaults import BIGDATACLOUD_URL, DEFAULT_USER_AGENT, NOMINATIM_URL
from weatheralert.models.forecast import Coordinate, Place, PlaceMatch

logger = logging.getLogger(__name__)

_CITY_KEYS = ("city", "town", "village", "suburb", "county", "state_district", "state")


class Geocoder:
    def __init__(
        self,
        nominatim_url: str = NOMINATIM_URL,
        bigdatacloud_url: str = BIGDATACLOUD_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 8.0,
    ):
        self.nominatim_url = nominatim_url.rstrip("/")
        self.bigdatacloud_url = bigdatacloud_url
        self.user_agent = user_agent
        self.timeout = timeout

    def _get_json(self, url: str, params: dict) -> object:
        resp = httpx.get(
            url,
            params=params,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    # --- Reverse ---

    def reverse(self, coord: Coordinate) -> Place:
        """City/country for a coordinate, or Place(None, None) if both services fail."""
        for name, lookup in (
            ("nominatim", self._reverse_nominatim),
            ("bigdatacloud", self._reverse_bigdatacloud),
        ):
            try:
                place = lookup(coord)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Reverse geocode via %s failed: %s", name, e)
                continue
            if place.is_known:
                return place
        return Place()

    def _reverse_nominatim(self, coord: Coordinate) -> Place:
        data = self._get_json(
            f"{self.nominatim_url}/reverse",
            {
                "format": "jsonv2",
                "lat": coord.latitude,
                "lon": coord.longitude,
                "addressdetails": 1,
            },
        )
        if not isinstance(data, dict):
            return Place()
        address = data.get("address") or {}
        return Place(city=_pick_city(address), country=address.get("country"))

    def _reverse_bigdatacloud(self, coord: Coordinate) -> Place:
        data = self._get_json(
            self.bigdatacloud_url,
            {
                "latitude": coord.latitude,
                "longitude": coord.longitude,
                "localityLanguage": "en",
            },
        )
        if not isinstance(data, dict):
            return Place()
        city = data.get("city") or data.get("locality") or None
        return Place(city=city, country=data.get("countryName") or None)

    # --- Forward ---

    def search(self, query: str, limit: int = 8) -> list[PlaceMatch]:
        q = (query or "").strip()
        if not q:
            return []
        try:
            data = self._get_json(
                f"{self.nominatim_url}/search",
                {"format": "jsonv2", "q": q, "addressdetails": 1, "limit": limit},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Place search for %r failed: %s", q, e)
            return []
        if not isinstance(data, list):
            return []
        matches = []
        for item in data:
            try:
                matches.append(_normalize_match(item))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed search result: %s", item)
        return matches


class PlaceSearch:
    """Search wrapper where only the latest request's results are applied.

    Each call takes a new generation; a completion that finds a newer
    generation already issued is discarded.
    """

    def __init__(self, geocoder: Geocoder):
        self.geocoder = geocoder
        self._generations = itertools.count(1)
        self._latest = 0
        self._lock = threading.Lock()
        self.results: list[PlaceMatch] = []

    def begin(self) -> int:
        with self._lock:
            self._latest = next(self._generations)
            return self._latest

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._latest

    def run(self, query: str) -> list[PlaceMatch] | None:
        """Search and apply results. Returns None if superseded while in flight."""
        generation = self.begin()
        matches = self.geocoder.search(query)
        with self._lock:
            if generation != self._latest:
                logger.debug("Discarding superseded search %d for %r", generation, query)
                return None
            self.results = matches
        return matches


def _pick_city(address: dict) -> str | None:
    for key in _CITY_KEYS:
        if address.get(key):
            return address[key]
    return None


def _normalize_match(item: dict) -> PlaceMatch:
    address = item.get("address") or {}
    city = _pick_city(address)
    country = address.get("country")
    display = item.get("display_name") or ""
    label = (
        ", ".join(part.strip() for part in display.split(",")[:3])
        or ", ".join(p for p in (city, country) if p)
        or item.get("name")
        or "Unknown"
    )
    return PlaceMatch(
        label=label,
        latitude=float(item["lat"]),
        longitude=float(item["lon"]),
        city=city,
        country=country,
    )
