"""Device location providers for hosts without a GPS stack."""

import json
import logging
import sqlite3
from typing import Protocol

import httpx

from weatheralert.config.defaults import IP_LOOKUP_URL
from weatheralert.models.forecast import Coordinate
from weatheralert.storage import state_repo

logger = logging.getLogger(__name__)

LAST_POSITION_KEY = "last_position"


class LocationUnavailable(Exception):
    """Raised by current_position() when no fix can be produced."""


class LocationProvider(Protocol):
    def request_permission(self) -> bool: ...

    def last_known_position(self) -> Coordinate | None: ...

    def current_position(self) -> Coordinate: ...

    def remember(self, coord: Coordinate) -> None: ...


class StaticLocationProvider:
    """A fixed, configured position. No permission prompt exists."""

    def __init__(self, coord: Coordinate | None, enabled: bool = True):
        self.coord = coord
        self.enabled = enabled

    def request_permission(self) -> bool:
        return self.enabled

    def last_known_position(self) -> Coordinate | None:
        return self.coord

    def current_position(self) -> Coordinate:
        if self.coord is None:
            raise LocationUnavailable("No static position configured")
        return self.coord

    def remember(self, coord: Coordinate) -> None:
        pass


class IpLocationProvider:
    """Approximate position from an IP geolocation service.

    The last successful fix is kept in system_state and serves as the
    "last known position" on the next start.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        url: str = IP_LOOKUP_URL,
        enabled: bool = True,
        timeout: float = 10.0,
    ):
        self.conn = conn
        self.url = url
        self.enabled = enabled
        self.timeout = timeout

    def request_permission(self) -> bool:
        return self.enabled

    def last_known_position(self) -> Coordinate | None:
        raw = state_repo.get_system_state(self.conn, LAST_POSITION_KEY)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return Coordinate(float(data["latitude"]), float(data["longitude"]))
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed last position: %r", raw)
            return None

    def current_position(self) -> Coordinate:
        # Runs on a worker thread: no database access here.
        try:
            resp = httpx.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LocationUnavailable(f"IP lookup failed: {e}") from e
        if data.get("status") not in (None, "success"):
            raise LocationUnavailable(f"IP lookup failed: {data.get('message', 'unknown')}")
        try:
            return Coordinate(float(data["lat"]), float(data["lon"]))
        except (KeyError, TypeError, ValueError) as e:
            raise LocationUnavailable("IP lookup returned no coordinates") from e

    def remember(self, coord: Coordinate) -> None:
        state_repo.set_system_state(
            self.conn,
            LAST_POSITION_KEY,
            json.dumps({"latitude": coord.latitude, "longitude": coord.longitude}),
        )
