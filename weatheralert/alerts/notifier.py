"""Notification backends: where a scheduled AlertRequest ends up."""

import logging
import sqlite3
from datetime import datetime
from typing import Protocol

import httpx

from weatheralert.models.alert import AlertRequest
from weatheralert.storage import alert_repo

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a backend refuses or fails to schedule a notification."""


class NotificationBackend(Protocol):
    def request_permission(self) -> bool: ...

    def schedule(self, request: AlertRequest) -> str: ...


class LocalNotifier:
    """Stores alerts in SQLite; the daemon delivers them once fires_at passes."""

    def __init__(self, conn: sqlite3.Connection, enabled: bool = True):
        self.conn = conn
        self.enabled = enabled

    def request_permission(self) -> bool:
        return self.enabled

    def schedule(self, request: AlertRequest) -> str:
        if not self.enabled:
            raise NotificationError("Notification permission not granted")
        try:
            existing = alert_repo.get_pending_for_slot(self.conn, request.slot_time)
            if existing is not None:
                logger.info(
                    "Alert for %s already pending as #%d", request.slot_time.isoformat(), existing["id"]
                )
                return str(existing["id"])
            alert_id = alert_repo.save_alert(
                self.conn, request.slot_time, request.fires_at, request.title, request.body
            )
        except sqlite3.Error as e:
            raise NotificationError(f"Could not store alert: {e}") from e
        return str(alert_id)

    def deliver_due(self, now: datetime) -> list[dict]:
        """Emit every pending alert whose fire time has passed."""
        delivered = []
        for alert in alert_repo.get_due_alerts(self.conn, now):
            logger.info("ALERT %s: %s", alert["title"], alert["body"])
            print(f"🔔 {alert['title']}: {alert['body']}")
            alert_repo.mark_delivered(self.conn, alert["id"], now)
            delivered.append(alert)
        return delivered


class WebhookNotifier:
    """Hands the alert to an HTTP receiver that owns delivery timing."""

    def __init__(self, url: str, enabled: bool = True, timeout: float = 10.0):
        self.url = url
        self.enabled = enabled
        self.timeout = timeout

    def request_permission(self) -> bool:
        return self.enabled and bool(self.url)

    def schedule(self, request: AlertRequest) -> str:
        if not self.request_permission():
            raise NotificationError("Webhook notifications not configured")
        payload = {
            "title": request.title,
            "body": request.body,
            "fires_at": request.fires_at.isoformat(),
            "slot_time": request.slot_time.isoformat(),
        }
        try:
            resp = httpx.post(self.url, json=payload, timeout=self.timeout)
        except httpx.RequestError as e:
            raise NotificationError(f"Webhook request failed: {e}") from e
        if resp.status_code >= 400:
            raise NotificationError(f"Webhook returned HTTP {resp.status_code}")
        try:
            handle = resp.json().get("id")
        except (ValueError, AttributeError):
            handle = None
        return str(handle) if handle is not None else request.fires_at.isoformat()
