"""Tests for the refresh orchestrator: cycle sequencing, retry, polling, and enrichment."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from weatheralert.alerts.notifier import LocalNotifier
from weatheralert.alerts.scheduler import AlertScheduler
from weatheralert.config.schema import AppConfig
from weatheralert.ingest.weather_client import ProviderError, Unauthorized
from weatheralert.location.providers import StaticLocationProvider
from weatheralert.location.resolver import LocationResolver
from weatheralert.models.forecast import Coordinate, Place
from weatheralert.models.reporting import OrchestratorState, Trigger
from weatheralert.pipeline.refresh import REMEDIATION_HINT, RefreshOrchestrator, create_orchestrator
from weatheralert.storage import alert_repo, state_repo
from weatheralert.storage.cache_store import CacheStore, key_for

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)
DUBLIN = Coordinate(53.3498, -6.2603)
PARIS = Coordinate(48.8566, 2.3522)


class FakeWeather:
    """Returns or raises the queued outcomes in order, repeating the last one."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[Coordinate] = []
        self.on_fetch = None

    def fetch(self, coord, now=None):
        self.calls.append(coord)
        if self.on_fetch is not None:
            self.on_fetch()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        pass


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def resolver():
    mock = MagicMock()
    mock.resolve.return_value = DUBLIN
    return mock


@pytest.fixture
def backend():
    mock = MagicMock()
    mock.schedule.return_value = "1"
    return mock


@pytest.fixture
def build(db, resolver, backend):
    created = []

    def _build(weather, geocoder=None, clock=None, config=None, cache=None, resolver_=None):
        orch = RefreshOrchestrator(
            config or AppConfig(),
            db,
            weather=weather,
            resolver=resolver_ or resolver,
            scheduler=AlertScheduler(backend, tz=UTC, clock=lambda: NOW),
            cache=cache or CacheStore(db),
            geocoder=geocoder,
            clock=clock or FakeClock(),
            now=lambda: NOW,
        )
        created.append(orch)
        return orch

    yield _build
    for orch in created:
        orch.close()


class TestCycle:
    def test_dublin_heavy_rain_schedules_one_alert(self, build, make_forecast, backend, db):
        forecast = make_forecast([0, 0, 0, 2.5, 0, 0, 0])
        orch = build(FakeWeather(forecast))

        summary = orch.refresh()

        assert orch.state == OrchestratorState.DONE
        assert orch.error is None
        assert orch.forecast == forecast
        assert summary.next_bad_time == NOW + timedelta(hours=3)
        assert summary.alert_scheduled
        request = backend.schedule.call_args.args[0]
        assert request.fires_at == NOW + timedelta(hours=2)
        assert request.body == (
            "heavy rain around 15:00. Bring a sturdy umbrella and waterproof jacket."
        )

        cycle = state_repo.get_latest_cycle(db)
        assert cycle["status"] == "done"
        assert cycle["slot_count"] == 7
        assert cycle["alert_scheduled"] == 1

    def test_second_cycle_does_not_reschedule_same_slot(self, build, make_forecast, backend):
        orch = build(FakeWeather(make_forecast([0, 0, 0, 2.5, 0, 0, 0])))
        orch.refresh()
        summary = orch.refresh(Trigger.POLL)
        assert not summary.alert_scheduled
        assert backend.schedule.call_count == 1

    def test_good_weather_schedules_nothing(self, build, make_forecast, backend):
        orch = build(FakeWeather(make_forecast([0.0] * 7)))
        summary = orch.refresh()
        assert summary.next_bad_time is None
        backend.schedule.assert_not_called()

    def test_result_cached_under_hour_key(self, build, make_forecast, db):
        forecast = make_forecast([0.0] * 7)
        build(FakeWeather(forecast)).refresh()
        assert CacheStore(db).get(key_for(DUBLIN, NOW)) == forecast


class TestFailures:
    @patch("weatheralert.pipeline.refresh.time.sleep")
    def test_retries_once_then_errors(self, mock_sleep, build):
        weather = FakeWeather(ProviderError("HTTP 503", status_code=503))
        orch = build(weather)

        summary = orch.refresh()

        assert len(weather.calls) == 2
        mock_sleep.assert_called_once_with(0.5)
        assert orch.state == OrchestratorState.ERROR
        assert orch.forecast is None
        assert "503" in orch.error
        assert summary.fetch_attempts == 2
        assert summary.status == "error"

    @patch("weatheralert.pipeline.refresh.time.sleep")
    def test_second_attempt_succeeds(self, mock_sleep, build, make_forecast):
        weather = FakeWeather(ProviderError("boom"), make_forecast([0.0] * 7))
        orch = build(weather)
        orch.refresh()
        assert orch.state == OrchestratorState.DONE
        assert orch.error is None

    @patch("weatheralert.pipeline.refresh.time.sleep")
    def test_stale_forecast_kept_on_failure(self, mock_sleep, build, make_forecast):
        first = make_forecast([0.0] * 7)
        orch = build(FakeWeather(first, ProviderError("HTTP 500", status_code=500)))
        orch.refresh()
        orch.refresh()
        assert orch.state == OrchestratorState.DONE
        assert orch.forecast == first
        assert "500" in orch.error

    @patch("weatheralert.pipeline.refresh.time.sleep")
    def test_unauthorized_not_retried(self, mock_sleep, build):
        weather = FakeWeather(Unauthorized("Meteomatics rejected the credentials"))
        orch = build(weather)
        orch.refresh()
        assert len(weather.calls) == 1
        mock_sleep.assert_not_called()
        assert orch.state == OrchestratorState.ERROR

    def test_unexpected_exception_becomes_error_state(self, build):
        orch = build(FakeWeather(RuntimeError("parser exploded")))
        summary = orch.refresh()
        assert orch.state == OrchestratorState.ERROR
        assert summary.errors == ["parser exploded"]

    @patch("weatheralert.pipeline.refresh.time.sleep")
    def test_cached_forecast_shown_when_offline(self, mock_sleep, build, make_forecast, db):
        cached = make_forecast([0.0, 0.5, 0.0])
        CacheStore(db).put(key_for(DUBLIN, NOW), cached)
        orch = build(FakeWeather(ProviderError("offline")))

        summary = orch.refresh()

        assert summary.used_cached
        assert orch.forecast == cached
        assert orch.state == OrchestratorState.DONE
        assert orch.error == "offline"

    def test_remediation_hint(self):
        assert "Meteomatics credentials" in REMEDIATION_HINT


class TestChangeSuppression:
    def test_same_shape_forecast_not_replaced(self, build, make_forecast, db):
        first = make_forecast([0.0] * 7)
        second = make_forecast([1.0] * 7)
        cache = MagicMock(wraps=CacheStore(db))
        cache.get.return_value = None
        orch = build(FakeWeather(first, second), cache=cache)

        orch.refresh()
        summary = orch.refresh()

        assert orch.forecast is first
        assert not summary.forecast_changed
        assert cache.put.call_count == 1

    def test_shifted_forecast_replaced(self, build, make_forecast):
        first = make_forecast([0.0] * 7)
        second = make_forecast([0.0] * 7, start=NOW + timedelta(hours=1))
        orch = build(FakeWeather(first, second))
        orch.refresh()
        orch.refresh()
        assert orch.forecast is second


class TestGuard:
    def test_trigger_during_cycle_is_dropped(self, build, make_forecast):
        weather = FakeWeather(make_forecast([0.0] * 7))
        orch = build(weather)
        nested = []
        weather.on_fetch = lambda: nested.append(orch.refresh(Trigger.POLL))

        assert orch.refresh() is not None
        assert nested == [None]
        assert len(weather.calls) == 1

    def test_lock_released_after_failure(self, build, make_forecast):
        orch = build(FakeWeather(RuntimeError("x"), make_forecast([0.0])))
        orch.refresh()
        assert orch.refresh() is not None
        assert orch.state == OrchestratorState.DONE


class TestPolling:
    def test_mount_arms_poll(self, build, make_forecast):
        clock = FakeClock(0.0)
        orch = build(FakeWeather(make_forecast([0.0])), clock=clock)
        orch.mount()
        assert orch.next_poll_at == 300.0

        clock.t = 299.0
        assert orch.poll_due() is None
        clock.t = 300.0
        summary = orch.poll_due()
        assert summary.trigger == "poll"
        assert orch.next_poll_at == 600.0

    def test_background_stops_polling(self, build, make_forecast):
        clock = FakeClock(0.0)
        orch = build(FakeWeather(make_forecast([0.0])), clock=clock)
        orch.mount()
        orch.on_background()
        clock.t = 10_000.0
        assert orch.poll_due() is None

    def test_foreground_catches_up_after_long_gap(self, build, make_forecast):
        clock = FakeClock(0.0)
        weather = FakeWeather(make_forecast([0.0]))
        orch = build(weather, clock=clock)
        orch.mount()
        orch.on_background()

        clock.t = 301.0
        summary = orch.on_foreground()
        assert summary.trigger == "foreground"
        assert len(weather.calls) == 2
        assert orch.next_poll_at == 601.0

    def test_foreground_within_interval_only_rearms(self, build, make_forecast):
        clock = FakeClock(0.0)
        weather = FakeWeather(make_forecast([0.0]))
        orch = build(weather, clock=clock)
        orch.mount()
        orch.on_background()

        clock.t = 120.0
        assert orch.on_foreground() is None
        assert len(weather.calls) == 1
        assert orch.next_poll_at == 420.0

    def test_foreground_without_success_refreshes(self, build, make_forecast):
        orch = build(FakeWeather(make_forecast([0.0])))
        assert orch.on_foreground() is not None


class TestLocation:
    def test_refresh_for_skips_resolver_and_geocoder(self, build, make_forecast, resolver):
        geocoder = MagicMock()
        weather = FakeWeather(make_forecast([0.0]))
        orch = build(weather, geocoder=geocoder)

        orch.refresh_for(PARIS, city="Paris", country="France")

        resolver.resolve.assert_not_called()
        geocoder.reverse.assert_not_called()
        assert weather.calls == [PARIS]
        assert orch.place == Place("Paris", "France")
        assert orch.coordinate == PARIS

    def test_reverse_geocode_applies(self, build, make_forecast):
        geocoder = MagicMock()
        geocoder.reverse.return_value = Place("Dublin", "Ireland")
        orch = build(FakeWeather(make_forecast([0.0])), geocoder=geocoder)

        orch.refresh()
        assert orch.wait_for_enrichment(timeout=5) == Place("Dublin", "Ireland")
        assert orch.place.city == "Dublin"

    def test_superseded_reverse_geocode_dropped(self, build, make_forecast):
        orch = build(FakeWeather(make_forecast([0.0])))
        orch.refresh()
        orch.refresh_for(PARIS, city="Paris")
        orch.geocoder = MagicMock()
        orch.geocoder.reverse.return_value = Place("Dublin", "Ireland")

        orch._reverse_geocode(DUBLIN, orch._generation - 1)
        assert orch.place.city == "Paris"

        orch._reverse_geocode(PARIS, orch._generation)
        assert orch.place.city == "Dublin"

    def test_geocode_failure_keeps_coordinates(self, build, make_forecast):
        geocoder = MagicMock()
        geocoder.reverse.return_value = Place()
        orch = build(FakeWeather(make_forecast([0.0])), geocoder=geocoder)
        orch.refresh()
        orch.wait_for_enrichment(timeout=5)
        assert not orch.place.is_known
        assert orch.coordinate == DUBLIN

    def test_permission_denied_uses_fallback(self, build, make_forecast, backend):
        resolver = LocationResolver(
            StaticLocationProvider(PARIS, enabled=False), fallback=DUBLIN
        )
        weather = FakeWeather(make_forecast([0, 0, 0, 2.5, 0, 0, 0]))
        orch = build(weather, resolver_=resolver)

        orch.refresh()

        assert weather.calls == [DUBLIN]
        assert orch.state == OrchestratorState.DONE
        backend.schedule.assert_called_once()


class TestSnapshot:
    def test_initial_view(self, build):
        view = build(FakeWeather(RuntimeError("unused"))).snapshot()
        assert view["state"] == "idle"
        assert view["forecast"] is None
        assert view["next_bad_slot"] is None

    def test_after_cycle(self, build, make_forecast):
        forecast = make_forecast([0, 0, 0, 2.5, 0, 0, 0])
        orch = build(FakeWeather(forecast))
        orch.refresh()

        view = orch.snapshot()
        assert view["state"] == "done"
        assert view["error"] is None
        assert view["coordinate"] == DUBLIN
        assert view["forecast"] is forecast
        assert view["next_bad_slot"] == forecast.slots[3]
        assert view["last_notified_slot_time"] == NOW + timedelta(hours=3)


class TestWiring:
    def test_create_orchestrator_static_location(self, db, config_yaml_path):
        from weatheralert.config.loader import load_config

        config = load_config(config_yaml_path)
        orch = create_orchestrator(config, db)
        try:
            assert isinstance(orch.scheduler.backend, LocalNotifier)
            assert orch.resolver.resolve() == Coordinate(53.35, -6.26)
        finally:
            orch.close()

    @staticmethod
    def _run_local(db, forecast):
        orch = create_orchestrator(AppConfig(), db)
        orch.resolver = MagicMock(resolve=MagicMock(return_value=DUBLIN))
        orch.geocoder = None
        orch.now = lambda: NOW
        orch.scheduler.clock = lambda: NOW
        orch.weather.close()
        orch.weather = FakeWeather(forecast)
        try:
            return orch.refresh()
        finally:
            orch.close()

    def test_local_backend_persists_alert(self, db, make_forecast):
        self._run_local(db, make_forecast([0, 0, 0, 2.5, 0, 0, 0]))
        pending = alert_repo.get_pending_alerts(db)
        assert len(pending) == 1
        assert pending[0]["title"] == "Incoming bad weather"

    def test_second_process_does_not_duplicate_alert(self, db, make_forecast):
        forecast = make_forecast([0, 0, 0, 2.5, 0, 0, 0])
        first = self._run_local(db, forecast)
        second = self._run_local(db, forecast)

        assert first.alert_scheduled
        assert not second.alert_scheduled
        pending = alert_repo.get_pending_alerts(db)
        assert [a["slot_time"] for a in pending] == ["2026-10-16T15:00:00+00:00"]
