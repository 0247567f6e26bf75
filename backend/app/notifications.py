# backend/app/notifications.py - Alert notifications & scheduled reports
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx
from fastapi import Request
from fastapi.encoders import jsonable_encoder

from .alert_generator import HIGH
from .capacity import GaugeStatus, as_date

logger = logging.getLogger(__name__)

# Event types
ALERT_RAISED = "alert_raised"
CALIBRATION_REPORT = "calibration_report"
HEALTH_REPORT = "health_report"

SEVERITY_EMOJI = {"low": "🟢", "medium": "🟡", "high": "🔴"}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class NotificationEvent:
    """
    What should be communicated, not how. ``payload`` is free-form structured
    data; ``subject`` is a one-line human summary for mail or chat relays.
    """
    type: str
    subject: str
    payload: Dict[str, Any]
    severity: Optional[str] = None
    source: Optional[str] = None
    ts: str = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return jsonable_encoder(asdict(self))


class Notifier(Protocol):
    async def notify(self, event: NotificationEvent) -> None:
        ...


# ============================================================================
# WEBHOOK DELIVERY
# ============================================================================
@dataclass(frozen=True)
class WebhookConfig:
    url: str
    timeout_s: float = 5.0
    verify_tls: bool = True
    auth_header: Optional[str] = None


class WebhookNotifier:
    """
    POSTs each event as JSON to a webhook endpoint (chat relay, mail or SMS
    gateway). HTTP errors surface through ``raise_for_status()``.
    """

    def __init__(self, cfg: WebhookConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._cfg = cfg
        self._transport = transport

    async def notify(self, event: NotificationEvent) -> None:
        headers = {"Content-Type": "application/json"}
        if self._cfg.auth_header:
            headers["Authorization"] = self._cfg.auth_header

        async with httpx.AsyncClient(
            timeout=self._cfg.timeout_s,
            verify=self._cfg.verify_tls,
            transport=self._transport,
        ) as client:
            r = await client.post(self._cfg.url, json=event.to_dict(), headers=headers)
            r.raise_for_status()


def build_notifier(settings) -> Optional[Notifier]:
    if not settings.NOTIFICATIONS_ENABLED:
        return None
    if not settings.NOTIFY_WEBHOOK_URL:
        logger.warning("⚠️ Notifications enabled but NOTIFY_WEBHOOK_URL is empty, notifications stay off")
        return None
    logger.info(f"📣 Notifications via webhook {settings.NOTIFY_WEBHOOK_URL}")
    return WebhookNotifier(WebhookConfig(
        url=settings.NOTIFY_WEBHOOK_URL,
        timeout_s=settings.NOTIFY_TIMEOUT_SECONDS,
        verify_tls=settings.NOTIFY_VERIFY_TLS,
        auth_header=settings.NOTIFY_WEBHOOK_AUTH_HEADER or None,
    ))


def get_notifier(request: Request) -> Optional[Notifier]:
    return getattr(request.app.state, "notifier", None)


async def deliver(notifier: Optional[Notifier], event: NotificationEvent) -> bool:
    """Send one event. A failed delivery is logged and reported as False."""
    if notifier is None:
        return False
    try:
        await notifier.notify(event)
    except Exception as e:
        logger.error(f"❌ Notification '{event.type}' failed: {e}")
        return False
    logger.info(f"📣 Notification sent: {event.subject}")
    return True


# ============================================================================
# EVENTS
# ============================================================================
def alert_event(alert: Dict[str, Any]) -> NotificationEvent:
    severity = alert["severity"]
    return NotificationEvent(
        type=ALERT_RAISED,
        subject=f"{SEVERITY_EMOJI.get(severity, '')} Capacity System Alert: {alert['gauge_id']}".strip(),
        payload=alert,
        severity=severity,
        source=alert["gauge_id"],
    )


async def notify_alerts(notifier: Optional[Notifier], alerts: Iterable[Dict[str, Any]]) -> int:
    """Deliver the high-severity alerts; returns how many went out."""
    if notifier is None:
        return 0
    sent = 0
    for alert in alerts:
        if alert["severity"] == HIGH and await deliver(notifier, alert_event(alert)):
            sent += 1
    return sent


def upcoming_calibrations(gauges: Iterable[Dict[str, Any]], today: date, days: int) -> List[Dict[str, Any]]:
    """Non-safe gauges whose next calibration falls within ``days`` of today (or earlier)."""
    horizon = today + timedelta(days=days)
    upcoming = [
        g for g in gauges
        if g["status"] != GaugeStatus.SAFE.value
        and as_date(g["next_calibration_date"], "next_calibration_date") <= horizon
    ]
    return sorted(upcoming, key=lambda g: as_date(g["next_calibration_date"]))


def calibration_report_event(upcoming: List[Dict[str, Any]], today: date) -> NotificationEvent:
    return NotificationEvent(
        type=CALIBRATION_REPORT,
        subject=f"📊 Daily Calibration Report - {len(upcoming)} Gauges Require Attention",
        payload={
            "report_date": today,
            "count": len(upcoming),
            "gauges": [
                {
                    "gauge_id": g["gauge_id"],
                    "gauge_type": g["gauge_type"],
                    "status": g["status"],
                    "next_calibration_date": g["next_calibration_date"],
                    "remaining_capacity": g["remaining_capacity"],
                    "max_capacity": g["max_capacity"],
                }
                for g in upcoming
            ],
        },
        severity=HIGH if any(g["status"] == GaugeStatus.OVERDUE.value for g in upcoming) else None,
        source="scheduler",
    )


def health_report_event(statistics: Dict[str, Any], alert_summary: Dict[str, Any], today: date) -> NotificationEvent:
    return NotificationEvent(
        type=HEALTH_REPORT,
        subject=f"📊 Weekly Health Report - {today.isoformat()}",
        payload={
            "report_date": today,
            "gauge_statistics": statistics,
            "alert_statistics": alert_summary,
        },
        source="scheduler",
    )
