# backend/app/crud.py
import time
from datetime import date
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, desc

from . import alert_generator
from .capacity import GaugeSnapshot, GaugeMetrics, GaugeStatus, ThresholdConfig, enrich
from .config import settings
from .models import auth as model_auth
from .models import config as model_config
from .models import data as model_data

SOURCE_FIELDS = (
    "gauge_id",
    "gauge_type",
    "calibration_frequency",
    "last_calibration_date",
    "monthly_usage",
    "produced_quantity",
    "max_capacity",
    "last_modified_by",
)


def _now() -> int:
    return int(time.time())

# ============================================================================
# USERS
# ============================================================================
async def get_user_by_username(db: AsyncSession, username: str):
    result = await db.execute(select(model_auth.User).where(model_auth.User.username == username))
    return result.scalar_one_or_none()

async def create_user(db: AsyncSession, username: str, hashed_password: str, role: str, full_name: str = None):
    db_user = model_auth.User(
        username=username,
        hashed_password=hashed_password,
        role=role,
        full_name=full_name,
        is_active=True
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user

# ============================================================================
# THRESHOLDS (singleton row)
# ============================================================================
def default_thresholds() -> Dict[str, Any]:
    return {
        "overdue_cutoff": settings.DEFAULT_OVERDUE_CUTOFF,
        "calibration_required_cutoff": settings.DEFAULT_CALIBRATION_REQUIRED_CUTOFF,
        "near_limit_cutoff": settings.DEFAULT_NEAR_LIMIT_CUTOFF,
        "calibration_warning_months": settings.DEFAULT_CALIBRATION_WARNING_MONTHS,
    }

async def get_thresholds_row(db: AsyncSession) -> model_config.CapacityThresholds:
    result = await db.execute(select(model_config.CapacityThresholds).where(model_config.CapacityThresholds.id == 1))
    row = result.scalar_one_or_none()
    if row is None:
        row = model_config.CapacityThresholds(id=1, updated_at=_now(), updated_by="system", **default_thresholds())
        db.add(row)
        await db.commit()
        await db.refresh(row)
    return row

def thresholds_config(row: model_config.CapacityThresholds) -> ThresholdConfig:
    return ThresholdConfig(
        overdue_cutoff=row.overdue_cutoff,
        calibration_required_cutoff=row.calibration_required_cutoff,
        near_limit_cutoff=row.near_limit_cutoff,
        calibration_warning_months=row.calibration_warning_months,
    )

async def get_thresholds(db: AsyncSession) -> ThresholdConfig:
    return thresholds_config(await get_thresholds_row(db))

def thresholds_to_dict(row: model_config.CapacityThresholds) -> Dict[str, Any]:
    return {
        "overdue_cutoff": row.overdue_cutoff,
        "calibration_required_cutoff": row.calibration_required_cutoff,
        "near_limit_cutoff": row.near_limit_cutoff,
        "calibration_warning_months": row.calibration_warning_months,
        "near_limit_percentage": thresholds_config(row).near_limit_percentage,
        "updated_at": row.updated_at,
        "updated_by": row.updated_by,
    }

async def update_thresholds(db: AsyncSession, changes: Dict[str, Any], updated_by: str) -> model_config.CapacityThresholds:
    """Raises InvalidInput (nothing written) if the merged values are inconsistent."""
    row = await get_thresholds_row(db)
    merged = {**thresholds_to_dict(row), **{k: v for k, v in changes.items() if v is not None}}
    ThresholdConfig(
        overdue_cutoff=merged["overdue_cutoff"],
        calibration_required_cutoff=merged["calibration_required_cutoff"],
        near_limit_cutoff=merged["near_limit_cutoff"],
        calibration_warning_months=merged["calibration_warning_months"],
    )
    for key in default_thresholds():
        setattr(row, key, merged[key])
    row.updated_at = _now()
    row.updated_by = updated_by
    await db.commit()
    await db.refresh(row)
    return row

async def reset_thresholds(db: AsyncSession, updated_by: str) -> model_config.CapacityThresholds:
    return await update_thresholds(db, default_thresholds(), updated_by)

# ============================================================================
# GAUGES
# ============================================================================
def gauge_snapshot(gauge) -> Dict[str, Any]:
    """JSON-safe copy of the source fields, for the audit trail."""
    snap = {}
    for name in SOURCE_FIELDS:
        value = getattr(gauge, name, None)
        snap[name] = value.isoformat() if isinstance(value, date) else value
    return snap

def apply_metrics(gauge: model_data.Gauge, thresholds: ThresholdConfig, today: Optional[date] = None) -> GaugeMetrics:
    metrics = enrich(gauge, thresholds, today)
    gauge.remaining_capacity = metrics.remaining_capacity
    gauge.capacity_utilization = round(metrics.capacity_utilization, 2)
    gauge.next_calibration_date = metrics.next_calibration_date
    gauge.status = metrics.status.value
    return metrics

def gauge_to_dict(gauge: model_data.Gauge, metrics: Optional[GaugeMetrics] = None) -> Dict[str, Any]:
    data = {name: getattr(gauge, name) for name in SOURCE_FIELDS}
    data.update({
        "id": gauge.id,
        "remaining_capacity": gauge.remaining_capacity,
        "capacity_utilization": gauge.capacity_utilization,
        "next_calibration_date": gauge.next_calibration_date,
        "status": gauge.status,
        "months_until_exhaustion": None,
        "created_at": gauge.created_at,
        "updated_at": gauge.updated_at,
    })
    if metrics is not None:
        data.update(metrics.as_dict())
    return data

def fleet_statistics(gauges: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Status counts and mean utilization over enriched gauge dicts."""
    counts = {s.value: 0 for s in GaugeStatus}
    for g in gauges:
        counts[g["status"]] += 1
    average = round(sum(g["capacity_utilization"] for g in gauges) / len(gauges), 2) if gauges else 0.0
    return {
        "total_gauges": len(gauges),
        "status_counts": counts,
        "average_capacity_utilization": average,
    }

async def get_gauge(db: AsyncSession, gauge_id: str) -> Optional[model_data.Gauge]:
    result = await db.execute(select(model_data.Gauge).where(model_data.Gauge.gauge_id == gauge_id))
    return result.scalar_one_or_none()

async def list_gauges(db: AsyncSession) -> List[model_data.Gauge]:
    result = await db.execute(select(model_data.Gauge).order_by(model_data.Gauge.gauge_id))
    return list(result.scalars().all())

def add_audit(db: AsyncSession, gauge_id: str, action: str, user: str,
              old_values: Optional[Dict] = None, new_values: Optional[Dict] = None):
    db.add(model_data.AuditEntry(
        gauge_id=gauge_id,
        action=action,
        old_values=old_values,
        new_values=new_values,
        user=user,
        timestamp=_now(),
    ))

def persist_alerts(db: AsyncSession, records: List[alert_generator.AlertRecord]) -> List[model_data.Alert]:
    rows = [
        model_data.Alert(
            alert_id=r.alert_id,
            gauge_id=r.gauge_id,
            alert_type=r.alert_type,
            severity=r.severity,
            message=r.message,
            created_at=r.created_at,
            acknowledged=False,
        )
        for r in records
    ]
    db.add_all(rows)
    return rows

def _new_gauge(data: Dict[str, Any], user: str) -> model_data.Gauge:
    now = _now()
    return model_data.Gauge(
        gauge_id=data["gauge_id"],
        gauge_type=data["gauge_type"],
        calibration_frequency=data["calibration_frequency"],
        last_calibration_date=data["last_calibration_date"],
        monthly_usage=data.get("monthly_usage") or 0.0,
        produced_quantity=data["produced_quantity"],
        max_capacity=data["max_capacity"],
        last_modified_by=data.get("last_modified_by") or user,
        created_at=now,
        updated_at=now,
    )

async def _finish(db: AsyncSession, gauge: model_data.Gauge, commit: bool):
    if commit:
        await db.commit()
        await db.refresh(gauge)
    else:
        await db.flush()

async def create_gauge(
    db: AsyncSession,
    data: Dict[str, Any],
    user: str,
    thresholds: ThresholdConfig,
    action: str = "create",
    commit: bool = True,
) -> Tuple[model_data.Gauge, List[model_data.Alert]]:
    gauge = _new_gauge(data, user)
    apply_metrics(gauge, thresholds)
    db.add(gauge)
    await db.flush()
    alerts = persist_alerts(db, alert_generator.generate_alerts(gauge, thresholds))
    add_audit(db, gauge.gauge_id, action, user, None, gauge_snapshot(gauge))
    await _finish(db, gauge, commit)
    return gauge, alerts

async def _auto_acknowledge(db: AsyncSession, gauge: model_data.Gauge, thresholds: ThresholdConfig, user: str) -> List[model_data.Alert]:
    result = await db.execute(
        select(model_data.Alert).where(
            model_data.Alert.gauge_id == gauge.gauge_id,
            model_data.Alert.acknowledged.is_(False),
        )
    )
    cleared = []
    for alert in result.scalars().all():
        if alert_generator.should_auto_acknowledge(alert, gauge, thresholds):
            alert.acknowledged = True
            alert.acknowledged_by = user
            alert.acknowledged_at = _now()
            cleared.append(alert)
    return cleared

async def update_gauge(
    db: AsyncSession,
    gauge: model_data.Gauge,
    changes: Dict[str, Any],
    user: str,
    thresholds: ThresholdConfig,
    action: str = "update",
    commit: bool = True,
) -> Tuple[model_data.Gauge, List[model_data.Alert], List[model_data.Alert]]:
    """
    Returns (gauge, new alerts, auto-acknowledged alerts). The merged values are
    validated before the row is touched, so InvalidInput leaves it unchanged.
    """
    changes = {k: v for k, v in changes.items() if v is not None and k in SOURCE_FIELDS and k != "gauge_id"}
    before = gauge_snapshot(gauge)
    old = GaugeSnapshot.of(gauge)
    new = GaugeSnapshot.of(SimpleNamespace(**{**{n: getattr(gauge, n) for n in SOURCE_FIELDS}, **changes}))

    for key, value in changes.items():
        setattr(gauge, key, value)
    gauge.last_modified_by = changes.get("last_modified_by") or user
    gauge.updated_at = _now()
    apply_metrics(gauge, thresholds)

    # Acknowledge stale alerts before adding this update's alerts
    cleared = await _auto_acknowledge(db, gauge, thresholds, user)
    alerts = persist_alerts(db, alert_generator.generate_update_alerts(old, new, thresholds))
    add_audit(db, gauge.gauge_id, action, user, before, gauge_snapshot(gauge))
    await _finish(db, gauge, commit)
    return gauge, alerts, cleared

async def delete_gauge(db: AsyncSession, gauge: model_data.Gauge, user: str) -> int:
    """Deletes the gauge and its alerts; returns the number of alerts removed."""
    removed = await db.execute(delete(model_data.Alert).where(model_data.Alert.gauge_id == gauge.gauge_id))
    add_audit(db, gauge.gauge_id, "delete", user, gauge_snapshot(gauge), None)
    await db.delete(gauge)
    await db.commit()
    return removed.rowcount or 0

async def regenerate_alerts(
    db: AsyncSession,
    gauge: model_data.Gauge,
    thresholds: ThresholdConfig,
    today: Optional[date] = None,
) -> List[model_data.Alert]:
    await db.execute(delete(model_data.Alert).where(model_data.Alert.gauge_id == gauge.gauge_id))
    return persist_alerts(db, alert_generator.generate_alerts(gauge, thresholds, today))

async def recalculate_all(
    db: AsyncSession,
    thresholds: ThresholdConfig,
    regenerate_all: bool = False,
    today: Optional[date] = None,
) -> Tuple[List[model_data.Gauge], List[model_data.Alert]]:
    """
    Recompute cached fields of every gauge. Alerts are regenerated for gauges
    whose status changed, or for all gauges when ``regenerate_all`` is set.
    """
    changed, alerts = [], []
    for gauge in await list_gauges(db):
        previous = gauge.status
        metrics = apply_metrics(gauge, thresholds, today)
        status_changed = metrics.status.value != previous
        if status_changed:
            changed.append(gauge)
        if status_changed or regenerate_all:
            alerts.extend(await regenerate_alerts(db, gauge, thresholds, today))
    await db.commit()
    return changed, alerts

async def import_gauges(
    db: AsyncSession,
    rows: List[Dict[str, Any]],
    overwrite: bool,
    user: str,
    thresholds: ThresholdConfig,
) -> Dict[str, Any]:
    """
    All rows go in one transaction. Rows are only flushed as they are applied,
    so an error part-way leaves nothing committed once the caller rolls back.
    """
    created, updated, skipped = [], [], []
    alerts: List[model_data.Alert] = []
    for row in rows:
        existing = await get_gauge(db, row["gauge_id"])
        if existing is None:
            gauge, new_alerts = await create_gauge(db, row, user, thresholds, action="import", commit=False)
            created.append(gauge)
        elif overwrite:
            gauge, new_alerts, _ = await update_gauge(
                db, existing, row, user, thresholds, action="import", commit=False
            )
            updated.append(gauge)
        else:
            skipped.append(row["gauge_id"])
            continue
        alerts.extend(new_alerts)
    await db.commit()
    return {"created": created, "updated": updated, "skipped": skipped, "alerts": alerts}

# ============================================================================
# ALERTS
# ============================================================================
def alert_to_dict(alert: model_data.Alert) -> Dict[str, Any]:
    return {
        "alert_id": alert.alert_id,
        "gauge_id": alert.gauge_id,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "created_at": alert.created_at,
        "acknowledged": alert.acknowledged,
        "acknowledged_by": alert.acknowledged_by,
        "acknowledged_at": alert.acknowledged_at,
    }

async def list_alerts(db: AsyncSession, **criteria) -> List[model_data.Alert]:
    result = await db.execute(select(model_data.Alert).order_by(desc(model_data.Alert.created_at), desc(model_data.Alert.id)))
    return alert_generator.filter_alerts(result.scalars().all(), **criteria)

async def get_alert(db: AsyncSession, alert_id: str) -> Optional[model_data.Alert]:
    result = await db.execute(select(model_data.Alert).where(model_data.Alert.alert_id == alert_id))
    return result.scalar_one_or_none()

async def acknowledge_alert(db: AsyncSession, alert_id: str, user: str) -> Optional[model_data.Alert]:
    alert = await get_alert(db, alert_id)
    if alert is None:
        return None
    if not alert.acknowledged:
        alert.acknowledged = True
        alert.acknowledged_by = user
        alert.acknowledged_at = _now()
        await db.commit()
        await db.refresh(alert)
    return alert

async def delete_alerts_for_gauge(db: AsyncSession, gauge_id: str) -> int:
    result = await db.execute(delete(model_data.Alert).where(model_data.Alert.gauge_id == gauge_id))
    await db.commit()
    return result.rowcount or 0

# ============================================================================
# AUDIT
# ============================================================================
async def list_audit(db: AsyncSession, gauge_id: Optional[str] = None, action: Optional[str] = None,
                     limit: int = 100) -> List[model_data.AuditEntry]:
    stmt = select(model_data.AuditEntry)
    if gauge_id:
        stmt = stmt.where(model_data.AuditEntry.gauge_id == gauge_id)
    if action:
        stmt = stmt.where(model_data.AuditEntry.action == action)
    stmt = stmt.order_by(desc(model_data.AuditEntry.timestamp), desc(model_data.AuditEntry.id)).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())

async def purge_audit(db: AsyncSession, older_than: int) -> int:
    result = await db.execute(delete(model_data.AuditEntry).where(model_data.AuditEntry.timestamp < older_than))
    await db.commit()
    return result.rowcount or 0
