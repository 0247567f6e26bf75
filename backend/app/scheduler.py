# backend/app/scheduler.py - Periodic status recalculation, reports & audit cleanup
import asyncio
import logging
import time
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import crud
from .alert_generator import SYSTEM_GAUGE_ID, summarize_alerts
from .capacity import ThresholdConfig, enrich
from .notifications import (
    Notifier, deliver, notify_alerts,
    upcoming_calibrations, calibration_report_event, health_report_event,
)
from .websocket import ConnectionManager, GAUGE_UPDATED, ALERT_CREATED

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400


class CalibrationScheduler:
    """
    Runs inside the FastAPI event loop. Statuses drift with the calendar even
    when nobody edits a gauge, so every ``interval`` seconds all gauges are
    recomputed and alerts are regenerated for the ones whose status moved.

    With a notifier configured it also sends a daily report of gauges due for
    calibration within ``report_days`` and, on ``health_report_weekday``
    (0 = Monday), a weekly health summary. Each report goes out at most once
    per calendar day.
    """

    def __init__(self, session_factory, ws_manager: ConnectionManager,
                 interval: int = 3600, retention_days: int = 90,
                 notifier: Optional[Notifier] = None,
                 report_days: int = 7, health_report_weekday: int = 0):
        self.session_factory = session_factory
        self.ws_manager = ws_manager
        self.interval = interval
        self.retention_days = retention_days
        self.notifier = notifier
        self.report_days = report_days
        self.health_report_weekday = health_report_weekday
        self.last_cleanup = 0.0
        self.last_calibration_report: Optional[date] = None
        self.last_health_report: Optional[date] = None
        self.task: Optional[asyncio.Task] = None

    def start(self):
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self._loop())
            logger.info(f"🕐 Scheduler started (every {self.interval}s)")

    async def stop(self):
        if self.task is not None and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        self.task = None
        logger.info("🛑 Scheduler stopped")

    async def _loop(self):
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Scheduled recalculation failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def run_once(self, today: Optional[date] = None) -> dict:
        today = today or date.today()
        async with self.session_factory() as db:
            thresholds = await crud.get_thresholds(db)
            changed, alerts = await crud.recalculate_all(db, thresholds, today=today)

            purged = 0
            now = time.time()
            if now - self.last_cleanup >= DAY_SECONDS:
                purged = await crud.purge_audit(db, int(now) - self.retention_days * DAY_SECONDS)
                self.last_cleanup = now

            reports = await self._send_reports(db, thresholds, today)

        for gauge in changed:
            await self.ws_manager.broadcast(GAUGE_UPDATED, crud.gauge_to_dict(gauge))
        alert_dicts = [crud.alert_to_dict(a) for a in alerts]
        for alert in alert_dicts:
            await self.ws_manager.broadcast(ALERT_CREATED, alert)
        notified = await notify_alerts(self.notifier, alert_dicts)

        if changed or purged:
            logger.info(f"🔄 Recalculated: {len(changed)} status changes, {len(alerts)} alerts, {purged} audit entries purged")
        return {
            "gauges_changed": len(changed),
            "alerts_created": len(alerts),
            "audit_purged": purged,
            "alerts_notified": notified,
            **reports,
        }

    # ============================================================================
    # REPORTS
    # ============================================================================
    async def _send_reports(self, db: AsyncSession, thresholds: ThresholdConfig, today: date) -> dict:
        sent = {"calibration_report": False, "health_report": False}
        if self.notifier is None:
            return sent

        gauges = [crud.gauge_to_dict(g, enrich(g, thresholds, today)) for g in await crud.list_gauges(db)]

        if self.last_calibration_report != today:
            upcoming = upcoming_calibrations(gauges, today, self.report_days)
            if upcoming:
                event = calibration_report_event(upcoming, today)
                sent["calibration_report"] = await deliver(self.notifier, event)
                if sent["calibration_report"]:
                    crud.add_audit(db, SYSTEM_GAUGE_ID, "report", "scheduler", None, {
                        "report": event.type,
                        "count": len(upcoming),
                        "gauges": [g["gauge_id"] for g in upcoming],
                    })
            if sent["calibration_report"] or not upcoming:
                self.last_calibration_report = today

        if today.weekday() == self.health_report_weekday and self.last_health_report != today:
            active_alerts = await crud.list_alerts(db, acknowledged=False)
            event = health_report_event(crud.fleet_statistics(gauges), summarize_alerts(active_alerts), today)
            sent["health_report"] = await deliver(self.notifier, event)
            if sent["health_report"]:
                crud.add_audit(db, SYSTEM_GAUGE_ID, "report", "scheduler", None, {"report": event.type})
                self.last_health_report = today

        await db.commit()
        return sent
