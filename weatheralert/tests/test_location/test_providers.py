"""Tests for static and IP-based location providers."""

import httpx
import pytest
import respx

from weatheralert.location.providers import (
    LAST_POSITION_KEY,
    IpLocationProvider,
    LocationUnavailable,
    StaticLocationProvider,
)
from weatheralert.models.forecast import Coordinate
from weatheralert.storage import state_repo

IP_URL = "http://ip.test/json"


class TestStaticProvider:
    def test_configured(self):
        provider = StaticLocationProvider(Coordinate(1.0, 2.0))
        assert provider.request_permission()
        assert provider.last_known_position() == Coordinate(1.0, 2.0)
        assert provider.current_position() == Coordinate(1.0, 2.0)

    def test_unconfigured(self):
        provider = StaticLocationProvider(None)
        assert provider.last_known_position() is None
        with pytest.raises(LocationUnavailable):
            provider.current_position()

    def test_disabled(self):
        assert not StaticLocationProvider(Coordinate(1.0, 2.0), enabled=False).request_permission()


class TestIpProvider:
    @respx.mock
    def test_current_position(self, db):
        respx.get(IP_URL).mock(
            return_value=httpx.Response(200, json={"status": "success", "lat": 53.34, "lon": -6.27})
        )
        assert IpLocationProvider(db, IP_URL).current_position() == Coordinate(53.34, -6.27)

    @respx.mock
    def test_lookup_failure_status(self, db):
        respx.get(IP_URL).mock(
            return_value=httpx.Response(200, json={"status": "fail", "message": "reserved range"})
        )
        with pytest.raises(LocationUnavailable, match="reserved range"):
            IpLocationProvider(db, IP_URL).current_position()

    @respx.mock
    def test_http_error(self, db):
        respx.get(IP_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(LocationUnavailable):
            IpLocationProvider(db, IP_URL).current_position()

    @respx.mock
    def test_connect_error(self, db):
        respx.get(IP_URL).mock(side_effect=httpx.ConnectError("offline"))
        with pytest.raises(LocationUnavailable):
            IpLocationProvider(db, IP_URL).current_position()

    def test_remember_and_reload(self, db):
        provider = IpLocationProvider(db, IP_URL)
        assert provider.last_known_position() is None
        provider.remember(Coordinate(48.86, 2.35))
        assert IpLocationProvider(db, IP_URL).last_known_position() == Coordinate(48.86, 2.35)

    def test_malformed_last_position(self, db):
        state_repo.set_system_state(db, LAST_POSITION_KEY, "garbage")
        assert IpLocationProvider(db, IP_URL).last_known_position() is None
