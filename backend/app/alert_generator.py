# backend/app/alert_generator.py - Capacity & calibration alert rules
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from .capacity import (
    GaugeSnapshot,
    GaugeStatus,
    ThresholdConfig,
    classify,
    months_between,
)

CAPACITY = "capacity"
CALIBRATION = "calibration"

LOW = "low"
MEDIUM = "medium"
HIGH = "high"

SYSTEM_GAUGE_ID = "SYSTEM"
SYSTEM_NEAR_LIMIT_COUNT = 5


@dataclass
class AlertRecord:
    gauge_id: str
    alert_type: str
    severity: str
    message: str
    alert_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: int = field(default_factory=lambda: int(time.time()))
    acknowledged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _qty(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.2f}"


def _alert(gauge_id: str, alert_type: str, severity: str, text: str) -> AlertRecord:
    return AlertRecord(
        gauge_id=gauge_id,
        alert_type=alert_type,
        severity=severity,
        message=f"[{severity.upper()}] Gauge {gauge_id} {text}",
    )


# ============================================================================
# LEVEL-TRIGGERED ALERTS
# ============================================================================
def generate_alerts(gauge: Any, thresholds: ThresholdConfig, today: Optional[date] = None) -> List[AlertRecord]:
    """
    Alerts for the gauge's current condition. Called on create and on full
    recalculation; at most one capacity and one calibration alert.
    """
    g = GaugeSnapshot.of(gauge)
    today = today or date.today()
    alerts: List[AlertRecord] = []

    utilization = g.capacity_utilization
    if g.remaining_capacity <= 0:
        alerts.append(_alert(
            g.gauge_id, CAPACITY, HIGH,
            f"has exceeded maximum capacity ({_qty(g.produced_quantity)}/{_qty(g.max_capacity)})",
        ))
    elif utilization >= thresholds.near_limit_percentage:
        alerts.append(_alert(
            g.gauge_id, CAPACITY, MEDIUM,
            f"is near capacity limit ({utilization:.1f}% used, limit {thresholds.near_limit_percentage:.1f}%)",
        ))

    months_since = months_between(g.last_calibration_date, today)
    if months_since >= g.calibration_frequency:
        alerts.append(_alert(
            g.gauge_id, CALIBRATION, HIGH,
            f"calibration is overdue ({months_since} months since last calibration, "
            f"frequency {g.calibration_frequency} months)",
        ))
    else:
        months_until = g.calibration_frequency - months_since
        if months_until <= thresholds.calibration_warning_months:
            alerts.append(_alert(
                g.gauge_id, CALIBRATION, MEDIUM,
                f"calibration due in {months_until} month(s) "
                f"(warning window {thresholds.calibration_warning_months} month(s))",
            ))

    return alerts


# ============================================================================
# EDGE-TRIGGERED ALERTS (on update)
# ============================================================================
def generate_update_alerts(
    old_gauge: Any,
    new_gauge: Any,
    thresholds: ThresholdConfig,
    today: Optional[date] = None,
) -> List[AlertRecord]:
    """Alerts only for conditions the update moved the gauge into."""
    old = GaugeSnapshot.of(old_gauge)
    new = GaugeSnapshot.of(new_gauge)
    today = today or date.today()
    alerts: List[AlertRecord] = []

    limit = thresholds.near_limit_percentage
    if old.capacity_utilization < limit <= new.capacity_utilization:
        alerts.append(_alert(
            new.gauge_id, CAPACITY, MEDIUM,
            f"has crossed capacity threshold ({old.capacity_utilization:.1f}% -> "
            f"{new.capacity_utilization:.1f}% used, limit {limit:.1f}%)",
        ))

    if old.produced_quantity <= old.max_capacity and new.produced_quantity > new.max_capacity:
        alerts.append(_alert(
            new.gauge_id, CAPACITY, HIGH,
            f"has exceeded maximum capacity ({_qty(new.produced_quantity)}/{_qty(new.max_capacity)})",
        ))

    if old.last_calibration_date != new.last_calibration_date:
        if new.last_calibration_date > today:
            alerts.append(_alert(
                new.gauge_id, CALIBRATION, LOW,
                f"calibration date updated to future date {new.last_calibration_date.isoformat()}",
            ))
        else:
            months_since = months_between(new.last_calibration_date, today)
            if months_since >= new.calibration_frequency:
                alerts.append(_alert(
                    new.gauge_id, CALIBRATION, HIGH,
                    f"calibration is still overdue after update ({months_since} months since "
                    f"{new.last_calibration_date.isoformat()}, frequency {new.calibration_frequency} months)",
                ))

    return alerts


# ============================================================================
# SYSTEM-WIDE ALERTS
# ============================================================================
def generate_system_alerts(
    gauges: Iterable[Any],
    thresholds: ThresholdConfig,
    today: Optional[date] = None,
) -> List[AlertRecord]:
    counts = {status: 0 for status in GaugeStatus}
    for gauge in gauges:
        counts[classify(gauge, thresholds, today)] += 1

    alerts: List[AlertRecord] = []
    overdue = counts[GaugeStatus.OVERDUE]
    if overdue > 0:
        alerts.append(AlertRecord(
            gauge_id=SYSTEM_GAUGE_ID,
            alert_type=CALIBRATION,
            severity=HIGH,
            message=f"[HIGH] System alert: {overdue} gauge(s) are overdue",
        ))
    near_limit = counts[GaugeStatus.NEAR_LIMIT]
    if near_limit > SYSTEM_NEAR_LIMIT_COUNT:
        alerts.append(AlertRecord(
            gauge_id=SYSTEM_GAUGE_ID,
            alert_type=CAPACITY,
            severity=MEDIUM,
            message=f"[MEDIUM] System alert: {near_limit} gauge(s) are near capacity limits",
        ))
    return alerts


# ============================================================================
# FILTERING / SUMMARY / AUTO-ACKNOWLEDGE
# ============================================================================
def filter_alerts(
    alerts: Iterable[Any],
    acknowledged: Optional[bool] = None,
    severity: Optional[str] = None,
    alert_type: Optional[str] = None,
    gauge_id: Optional[str] = None,
    since: Optional[int] = None,
) -> List[Any]:
    result = list(alerts)
    if acknowledged is not None:
        result = [a for a in result if bool(a.acknowledged) == acknowledged]
    if severity:
        result = [a for a in result if a.severity == severity]
    if alert_type:
        result = [a for a in result if a.alert_type == alert_type]
    if gauge_id:
        result = [a for a in result if a.gauge_id == gauge_id]
    if since is not None:
        result = [a for a in result if a.created_at >= since]
    return result


def summarize_alerts(alerts: Iterable[Any]) -> Dict[str, Any]:
    alerts = list(alerts)
    by_severity = {LOW: 0, MEDIUM: 0, HIGH: 0}
    by_type = {CAPACITY: 0, CALIBRATION: 0}
    for a in alerts:
        by_severity[a.severity] = by_severity.get(a.severity, 0) + 1
        by_type[a.alert_type] = by_type.get(a.alert_type, 0) + 1
    return {
        "total": len(alerts),
        "unacknowledged": sum(1 for a in alerts if not a.acknowledged),
        "by_severity": by_severity,
        "by_type": by_type,
    }


def should_auto_acknowledge(
    alert: Any,
    gauge: Any,
    thresholds: ThresholdConfig,
    today: Optional[date] = None,
) -> bool:
    """
    Capacity alerts clear once the gauge is safe. Calibration alerts clear once
    the gauge was calibrated on or after the day the alert was raised and is
    no longer inside the warning window.
    """
    if alert.alert_type == CAPACITY:
        return classify(gauge, thresholds, today) == GaugeStatus.SAFE
    if alert.alert_type == CALIBRATION:
        g = GaugeSnapshot.of(gauge)
        today = today or date.today()
        if g.last_calibration_date < datetime.fromtimestamp(alert.created_at).date():
            return False
        months_until = g.calibration_frequency - months_between(g.last_calibration_date, today)
        return months_until > thresholds.calibration_warning_months
    return False
