"""Refresh orchestrator: one forecast-and-alert cycle, its retry policy, and poll cadence."""

import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from zoneinfo import ZoneInfo

from weatheralert.alerts.classifier import assess, find_next_bad_slot
from weatheralert.alerts.notifier import LocalNotifier, NotificationBackend, WebhookNotifier
from weatheralert.alerts.scheduler import AlertScheduler
from weatheralert.config.loader import config_hash
from weatheralert.config.schema import AlertBackend, AppConfig, LocationSource
from weatheralert.ingest.geocoder import Geocoder
from weatheralert.ingest.weather_client import (
    CredentialsMissing,
    Unauthorized,
    WeatherClient,
    WeatherClientError,
)
from weatheralert.location.providers import IpLocationProvider, StaticLocationProvider
from weatheralert.location.resolver import LocationResolver
from weatheralert.models.common import utc_now
from weatheralert.models.forecast import Coordinate, Forecast, Place
from weatheralert.models.reporting import CycleSummary, OrchestratorState, Trigger
from weatheralert.storage import alert_repo, state_repo
from weatheralert.storage.cache_store import CacheStore, key_for

logger = logging.getLogger(__name__)

REMEDIATION_HINT = "Check your internet connection and Meteomatics credentials."

# Retrying identical credentials cannot succeed.
NON_RETRYABLE = (Unauthorized, CredentialsMissing)


class RefreshOrchestrator:
    """Sequences location -> cache -> fetch -> classify -> alert -> cache.

    At most one cycle runs at a time; triggers that arrive mid-cycle are
    dropped. Reverse geocoding runs on a worker thread and only applies
    its result if no newer cycle has started since.
    """

    def __init__(
        self,
        config: AppConfig,
        conn: sqlite3.Connection,
        weather: WeatherClient,
        resolver: LocationResolver,
        scheduler: AlertScheduler,
        cache: CacheStore,
        geocoder: Geocoder | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
        geocode_executor: ThreadPoolExecutor | None = None,
    ):
        self.config = config
        self.conn = conn
        self.weather = weather
        self.resolver = resolver
        self.scheduler = scheduler
        self.cache = cache
        self.geocoder = geocoder
        self.clock = clock
        self.now = now
        self._geocode_executor = geocode_executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="reverse-geocode"
        )

        self.state = OrchestratorState.IDLE
        self.error: str | None = None
        self.coordinate: Coordinate | None = None
        self.place = Place()
        self.forecast: Forecast | None = None
        self.last_success_at: float | None = None

        self._cycle_lock = threading.Lock()
        self._meta_lock = threading.Lock()
        self._generation = 0
        self._geocode_future: Future | None = None
        self._foreground = False
        self._next_poll_at: float | None = None
        self._config_hash = config_hash(config)

    @property
    def poll_interval(self) -> float:
        return self.config.ops.poll_interval_minutes * 60.0

    # --- Triggers ---

    def refresh(self, trigger: Trigger = Trigger.MANUAL) -> CycleSummary | None:
        """Run one cycle. Returns None if a cycle is already in flight."""
        return self._guarded(trigger, None, None)

    def refresh_for(
        self,
        coord: Coordinate,
        city: str | None = None,
        country: str | None = None,
    ) -> CycleSummary | None:
        """Cycle for a user-picked place; skips location resolution.

        Reverse geocoding is skipped too when city or country is given.
        """
        place = Place(city, country) if (city or country) else None
        return self._guarded(Trigger.PLACE, coord, place)

    def mount(self) -> CycleSummary | None:
        self._foreground = True
        self._arm_poll()
        return self.refresh(Trigger.MOUNT)

    def on_foreground(self) -> CycleSummary | None:
        """Re-arm polling; catch up immediately if the gap exceeded the interval."""
        self._foreground = True
        self._arm_poll()
        if (
            self.last_success_at is None
            or self.clock() - self.last_success_at > self.poll_interval
        ):
            return self.refresh(Trigger.FOREGROUND)
        return None

    def on_background(self) -> None:
        self._foreground = False
        self._next_poll_at = None

    def poll_due(self) -> CycleSummary | None:
        """Run a poll cycle if the timer has elapsed."""
        if self._next_poll_at is None or self.clock() < self._next_poll_at:
            return None
        self._arm_poll()
        return self.refresh(Trigger.POLL)

    def _arm_poll(self) -> None:
        self._next_poll_at = self.clock() + self.poll_interval

    @property
    def next_poll_at(self) -> float | None:
        return self._next_poll_at

    # --- Cycle ---

    def _guarded(
        self, trigger: Trigger, coord: Coordinate | None, place: Place | None
    ) -> CycleSummary | None:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Refresh (%s) ignored: cycle already running", trigger.value)
            return None
        try:
            return self._run_cycle(trigger, coord, place)
        finally:
            self._cycle_lock.release()

    def _run_cycle(
        self, trigger: Trigger, override: Coordinate | None, place: Place | None
    ) -> CycleSummary:
        start = time.monotonic()
        summary = CycleSummary(cycle_id=str(uuid.uuid4()), trigger=trigger.value)
        state_repo.create_cycle(self.conn, summary.cycle_id, trigger.value, self._config_hash)

        self.state = OrchestratorState.LOADING
        self.error = None
        with self._meta_lock:
            self._generation += 1
            generation = self._generation

        try:
            coord = override if override is not None else self.resolver.resolve()
            self._set_location(coord, place, generation)
            summary.latitude, summary.longitude = coord.latitude, coord.longitude

            key = key_for(coord, self.now())
            if self.forecast is None:
                cached = self.cache.get(key)
                if cached is not None:
                    logger.info("Showing cached forecast for %s", key)
                    self.forecast = cached
                    summary.used_cached = True

            fresh = self._fetch_with_retry(coord, summary)

            if fresh.differs_from(self.forecast):
                self.forecast = fresh
                self.cache.put(key, fresh)
                summary.forecast_changed = True
            summary.slot_count = len(fresh.slots)

            next_bad = find_next_bad_slot(fresh, self.now())
            if next_bad is not None:
                summary.next_bad_time = next_bad.time
                request = self.scheduler.schedule_next(assess(next_bad), next_bad.time)
                summary.alert_scheduled = request is not None

            self.state = OrchestratorState.DONE
            self.last_success_at = self.clock()
        except WeatherClientError as e:
            self._fail(summary, str(e))
        except Exception as e:
            logger.exception("Refresh cycle %s crashed", summary.cycle_id)
            self._fail(summary, str(e) or e.__class__.__name__)

        summary.status = self.state.value
        summary.duration_seconds = time.monotonic() - start
        self._record(summary)
        return summary

    def _fail(self, summary: CycleSummary, message: str) -> None:
        # Stale-but-present data beats an error screen.
        self.error = message
        summary.errors.append(message)
        self.state = (
            OrchestratorState.DONE if self.forecast is not None else OrchestratorState.ERROR
        )
        logger.error(
            "Refresh failed (%s), state=%s: %s",
            summary.trigger, self.state.value, message,
        )

    def _fetch_with_retry(self, coord: Coordinate, summary: CycleSummary) -> Forecast:
        attempts = self.config.ops.fetch_attempts
        base_delay = self.config.ops.retry_base_delay_ms / 1000.0
        for attempt in range(1, attempts + 1):
            summary.fetch_attempts = attempt
            try:
                return self.weather.fetch(coord)
            except NON_RETRYABLE:
                raise
            except WeatherClientError as e:
                if attempt >= attempts:
                    raise
                delay = base_delay * attempt
                logger.warning(
                    "Forecast fetch failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt, attempts, delay, e,
                )
                time.sleep(delay)
        raise AssertionError("unreachable")

    def _record(self, summary: CycleSummary) -> None:
        state_repo.complete_cycle(
            self.conn,
            summary.cycle_id,
            summary.status,
            error_message=summary.errors[-1] if summary.errors else None,
            latitude=summary.latitude,
            longitude=summary.longitude,
            city=self.place.city,
            country=self.place.country,
            slot_count=summary.slot_count,
            next_bad_time=summary.next_bad_time.isoformat() if summary.next_bad_time else None,
            alert_scheduled=int(summary.alert_scheduled),
        )

    # --- Location metadata ---

    def _set_location(self, coord: Coordinate, place: Place | None, generation: int) -> None:
        with self._meta_lock:
            moved = self.coordinate != coord
            self.coordinate = coord
            if place is not None:
                self.place = place
            elif moved:
                self.place = Place()

        if place is not None or self.geocoder is None or not self.config.geocoding.enabled:
            return
        self._geocode_future = self._geocode_executor.submit(
            self._reverse_geocode, coord, generation
        )

    def _reverse_geocode(self, coord: Coordinate, generation: int) -> Place:
        assert self.geocoder is not None
        try:
            place = self.geocoder.reverse(coord)
        except Exception:
            logger.warning("Reverse geocoding crashed", exc_info=True)
            return Place()
        with self._meta_lock:
            if generation != self._generation:
                logger.debug("Dropping reverse geocode from superseded cycle %d", generation)
                return place
            if place.is_known:
                self.place = place
        return place

    def wait_for_enrichment(self, timeout: float | None = None) -> Place | None:
        """Block until the latest reverse geocode finishes (CLI and tests)."""
        future = self._geocode_future
        if future is None:
            return None
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            return None

    def snapshot(self) -> dict:
        """Read-only view for display layers."""
        next_bad = find_next_bad_slot(self.forecast, self.now()) if self.forecast else None
        return {
            "state": self.state.value,
            "error": self.error,
            "coordinate": self.coordinate,
            "place": self.place,
            "forecast": self.forecast,
            "next_bad_slot": next_bad,
            "last_notified_slot_time": self.scheduler.last_notified_slot_time,
        }

    def close(self) -> None:
        self._geocode_executor.shutdown(wait=False, cancel_futures=True)
        self.resolver.shutdown()
        self.weather.close()


# --- Wiring ---

def create_notifier(config: AppConfig, conn: sqlite3.Connection) -> NotificationBackend:
    if config.alerts.backend == AlertBackend.WEBHOOK:
        return WebhookNotifier(config.alerts.webhook_url, enabled=config.alerts.enabled)
    return LocalNotifier(conn, enabled=config.alerts.enabled)


def create_orchestrator(
    config: AppConfig,
    conn: sqlite3.Connection,
    notifier: NotificationBackend | None = None,
) -> RefreshOrchestrator:
    """Build an orchestrator and its collaborators from config."""
    loc = config.location
    if loc.source == LocationSource.STATIC:
        static = (
            Coordinate(loc.static_latitude, loc.static_longitude)
            if loc.static_latitude is not None and loc.static_longitude is not None
            else None
        )
        provider = StaticLocationProvider(static, enabled=loc.enabled)
    else:
        provider = IpLocationProvider(conn, url=loc.ip_lookup_url, enabled=loc.enabled)

    resolver = LocationResolver(
        provider,
        fallback=Coordinate(loc.fallback_latitude, loc.fallback_longitude),
        fix_timeout=loc.fix_timeout_seconds,
    )
    weather = WeatherClient(
        username=config.provider.username,
        password=config.provider.password,
        base_url=config.provider.base_url,
        timeout=config.provider.timeout_seconds,
        model=config.provider.model,
        horizon_hours=config.provider.horizon_hours,
    )
    geo = config.geocoding
    geocoder = Geocoder(
        nominatim_url=geo.nominatim_url,
        bigdatacloud_url=geo.bigdatacloud_url,
        user_agent=geo.user_agent,
        timeout=geo.timeout_seconds,
    )
    tz = ZoneInfo(config.alerts.timezone) if config.alerts.timezone else None
    scheduler = AlertScheduler(
        notifier or create_notifier(config, conn),
        tz=tz,
    )
    # Alerts stored by an earlier process still count as notified.
    scheduler.last_notified_slot_time = alert_repo.get_latest_pending_slot_time(conn)
    return RefreshOrchestrator(
        config,
        conn,
        weather=weather,
        resolver=resolver,
        scheduler=scheduler,
        cache=CacheStore(conn),
        geocoder=geocoder,
    )
