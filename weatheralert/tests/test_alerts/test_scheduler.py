"""Tests for alert scheduling, lead time, and per-slot dedup."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from weatheralert.alerts.classifier import assess
from weatheralert.alerts.notifier import NotificationError
from weatheralert.alerts.scheduler import ALERT_TITLE, AlertScheduler, build_request
from weatheralert.models.forecast import ForecastSlot

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)


def _bad_slot(hours_ahead: float, precip: float = 2.5) -> ForecastSlot:
    return ForecastSlot(
        time=NOW + timedelta(hours=hours_ahead),
        temperature_c=15.0,
        precipitation_mm=precip,
        wind_speed_ms=3.0,
    )


@pytest.fixture
def backend() -> MagicMock:
    mock = MagicMock()
    mock.schedule.return_value = "handle-1"
    return mock


@pytest.fixture
def scheduler(backend) -> AlertScheduler:
    return AlertScheduler(backend, tz=UTC, clock=lambda: NOW)


class TestBuildRequest:
    def test_body_and_fire_time(self):
        slot = _bad_slot(3)
        request = build_request(assess(slot), slot.time, tz=UTC)
        assert request.title == ALERT_TITLE
        assert request.fires_at == slot.time - timedelta(hours=1)
        assert request.body == (
            "heavy rain around 15:00. Bring a sturdy umbrella and waterproof jacket."
        )

    def test_multiple_reasons_joined(self):
        slot = ForecastSlot(
            time=NOW + timedelta(hours=2), temperature_c=1.0,
            precipitation_mm=0.5, wind_speed_ms=12.0,
        )
        request = build_request(assess(slot), slot.time, tz=UTC)
        assert request.body.startswith("rain, strong wind, cold around 14:00.")


class TestScheduleNext:
    def test_schedules_one_hour_before(self, scheduler, backend):
        slot = _bad_slot(3)
        request = scheduler.schedule_next(assess(slot), slot.time)
        assert request is not None
        assert request.fires_at == NOW + timedelta(hours=2)
        backend.schedule.assert_called_once_with(request)
        assert scheduler.last_notified_slot_time == slot.time

    def test_same_slot_twice_schedules_once(self, scheduler, backend):
        slot = _bad_slot(3)
        scheduler.schedule_next(assess(slot), slot.time)
        assert scheduler.schedule_next(assess(slot), slot.time) is None
        assert backend.schedule.call_count == 1

    def test_new_slot_schedules_again(self, scheduler, backend):
        first, second = _bad_slot(3), _bad_slot(5)
        scheduler.schedule_next(assess(first), first.time)
        scheduler.schedule_next(assess(second), second.time)
        assert backend.schedule.call_count == 2
        assert scheduler.last_notified_slot_time == second.time

    @pytest.mark.parametrize("hours_ahead", [0.5, 1.0])
    def test_fire_time_not_in_future_is_noop(self, scheduler, backend, hours_ahead):
        slot = _bad_slot(hours_ahead)
        assert scheduler.schedule_next(assess(slot), slot.time) is None
        backend.schedule.assert_not_called()
        assert scheduler.last_notified_slot_time is None

    def test_good_assessment_is_noop(self, scheduler, backend):
        slot = _bad_slot(3, precip=0.0)
        assert scheduler.schedule_next(assess(slot), slot.time) is None
        backend.schedule.assert_not_called()

    def test_backend_failure_is_warning_not_error(self, scheduler, backend, caplog):
        backend.schedule.side_effect = NotificationError("permission revoked")
        slot = _bad_slot(3)
        assert scheduler.schedule_next(assess(slot), slot.time) is None
        assert scheduler.last_notified_slot_time is None
        assert "permission revoked" in caplog.text

    def test_retry_after_backend_failure(self, scheduler, backend):
        backend.schedule.side_effect = [NotificationError("busy"), "handle-2"]
        slot = _bad_slot(3)
        scheduler.schedule_next(assess(slot), slot.time)
        assert scheduler.schedule_next(assess(slot), slot.time) is not None
        assert backend.schedule.call_count == 2
