"""Turns the next bad-weather slot into one local notification, deduplicated per slot."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta, tzinfo

from weatheralert.alerts.notifier import NotificationBackend, NotificationError
from weatheralert.models.alert import AlertRequest, Assessment

logger = logging.getLogger(__name__)

ALERT_LEAD = timedelta(hours=1)
ALERT_TITLE = "Incoming bad weather"


def build_request(
    assessment: Assessment, event_time: datetime, tz: tzinfo | None = None
) -> AlertRequest:
    local = event_time.astimezone(tz)
    reasons = ", ".join(r.value for r in assessment.reasons)
    return AlertRequest(
        slot_time=event_time,
        fires_at=event_time - ALERT_LEAD,
        title=ALERT_TITLE,
        body=f"{reasons} around {local.strftime('%H:%M')}. {assessment.advice}",
    )


class AlertScheduler:
    """Owns the "last notified slot time" marker for one orchestrator."""

    def __init__(
        self,
        backend: NotificationBackend,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.backend = backend
        self.tz = tz
        self.clock = clock
        self.last_notified_slot_time: datetime | None = None

    def schedule_next(
        self, assessment: Assessment, event_time: datetime
    ) -> AlertRequest | None:
        """Schedule an alert one hour before event_time.

        No-op when the fire time is not in the future or the slot was already
        notified. Backend failures are logged, not raised.
        """
        if not assessment.is_bad:
            return None
        if event_time == self.last_notified_slot_time:
            logger.debug("Alert for %s already scheduled", event_time.isoformat())
            return None

        request = build_request(assessment, event_time, self.tz)
        if request.fires_at <= self.clock():
            logger.info(
                "Skipping alert for %s: fire time %s already passed",
                event_time.isoformat(), request.fires_at.isoformat(),
            )
            return None

        try:
            handle = self.backend.schedule(request)
        except NotificationError as e:
            logger.warning("Could not schedule weather alert: %s", e)
            return None

        self.last_notified_slot_time = event_time
        logger.info(
            "Scheduled alert %s for %s (%s)",
            handle, request.fires_at.isoformat(), request.body,
        )
        return request
