# ==============================================================================
# == backend/app/routers/gauges.py
# ==============================================================================

import logging
import math
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas, auth, crud
from ..capacity import InvalidInput, GaugeStatus, enrich
from ..database import get_db
from ..models import auth as model_auth
from ..notifications import Notifier, get_notifier, notify_alerts
from ..websocket import (
    ConnectionManager, get_ws_manager,
    GAUGE_CREATED, GAUGE_UPDATED, GAUGE_DELETED, ALERT_CREATED, ALERT_ACKNOWLEDGED,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/gauges",
    tags=["Gauges"]
)

SORTABLE_FIELDS = {
    "gauge_id", "gauge_type", "calibration_frequency", "last_calibration_date",
    "produced_quantity", "max_capacity", "remaining_capacity", "capacity_utilization",
    "next_calibration_date", "status", "updated_at",
}


async def _broadcast_alerts(ws: ConnectionManager, created, acknowledged=(), notifier: Optional[Notifier] = None):
    for alert in created:
        await ws.broadcast(ALERT_CREATED, crud.alert_to_dict(alert))
    for alert in acknowledged:
        await ws.broadcast(ALERT_ACKNOWLEDGED, crud.alert_to_dict(alert))
    await notify_alerts(notifier, [crud.alert_to_dict(a) for a in created])


async def _get_or_404(db: AsyncSession, gauge_id: str):
    gauge = await crud.get_gauge(db, gauge_id)
    if gauge is None:
        raise HTTPException(status_code=404, detail="Gauge not found")
    return gauge

# ============================================================================
# READ
# ============================================================================
@router.get("", response_model=schemas.GaugePage)
async def list_gauges(
    status_filter: Optional[GaugeStatus] = Query(default=None, alias="status"),
    gauge_type: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "gauge_id",
    sort_order: str = Query(default="asc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    if sort_by not in SORTABLE_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by '{sort_by}'")

    thresholds = await crud.get_thresholds(db)
    # Derived fields are recomputed, the cached columns may predate a threshold change
    gauges = [crud.gauge_to_dict(g, enrich(g, thresholds)) for g in await crud.list_gauges(db)]

    if status_filter:
        gauges = [g for g in gauges if g["status"] == status_filter.value]
    if gauge_type:
        needle = gauge_type.lower()
        gauges = [g for g in gauges if needle in g["gauge_type"].lower()]
    if search:
        needle = search.lower()
        gauges = [
            g for g in gauges
            if needle in g["gauge_id"].lower()
            or needle in g["gauge_type"].lower()
            or needle in (g["last_modified_by"] or "").lower()
        ]

    def sort_key(g):
        value = g[sort_by]
        if isinstance(value, str):
            return (value is None, value.lower())
        return (value is None, value)

    gauges.sort(key=sort_key, reverse=(sort_order == "desc"))

    total = len(gauges)
    offset = (page - 1) * limit
    return {
        "data": gauges[offset:offset + limit],
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }

@router.get("/{gauge_id}", response_model=schemas.GaugeResponse)
async def get_gauge(
    gauge_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    gauge = await _get_or_404(db, gauge_id)
    thresholds = await crud.get_thresholds(db)
    return crud.gauge_to_dict(gauge, enrich(gauge, thresholds))

@router.get("/{gauge_id}/alerts", response_model=List[schemas.AlertResponse])
async def get_gauge_alerts(
    gauge_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    await _get_or_404(db, gauge_id)
    return await crud.list_alerts(db, gauge_id=gauge_id)

# ============================================================================
# WRITE
# ============================================================================
@router.post("", response_model=schemas.GaugeResponse, status_code=status.HTTP_201_CREATED)
async def create_gauge(
    gauge_in: schemas.GaugeCreate,
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    notifier: Optional[Notifier] = Depends(get_notifier),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.EDIT_GAUGES))
):
    try:
        if await crud.get_gauge(db, gauge_in.gauge_id):
            raise HTTPException(status_code=409, detail="Gauge ID already exists")

        thresholds = await crud.get_thresholds(db)
        data = gauge_in.model_dump()
        data["last_modified_by"] = data.get("last_modified_by") or current_user.username
        gauge, alerts = await crud.create_gauge(db, data, current_user.username, thresholds)

        logger.info(f"➕ Gauge created: {gauge.gauge_id} ({gauge.status}) by {current_user.username}")
        payload = crud.gauge_to_dict(gauge, enrich(gauge, thresholds))
        await ws.broadcast(GAUGE_CREATED, payload)
        await _broadcast_alerts(ws, alerts, notifier=notifier)
        return payload

    except HTTPException:
        raise
    except InvalidInput as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating gauge: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

@router.put("/{gauge_id}", response_model=schemas.GaugeResponse)
async def update_gauge(
    gauge_id: str,
    gauge_in: schemas.GaugeUpdate,
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    notifier: Optional[Notifier] = Depends(get_notifier),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.EDIT_GAUGES))
):
    try:
        gauge = await _get_or_404(db, gauge_id)
        thresholds = await crud.get_thresholds(db)
        gauge, alerts, cleared = await crud.update_gauge(
            db, gauge, gauge_in.model_dump(exclude_unset=True), current_user.username, thresholds
        )

        logger.info(f"✏️ Gauge updated: {gauge.gauge_id} ({gauge.status}), {len(alerts)} new alerts")
        payload = crud.gauge_to_dict(gauge, enrich(gauge, thresholds))
        await ws.broadcast(GAUGE_UPDATED, payload)
        await _broadcast_alerts(ws, alerts, cleared, notifier)
        return payload

    except HTTPException:
        raise
    except InvalidInput as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating gauge {gauge_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{gauge_id}/calibrate", response_model=schemas.GaugeResponse)
async def calibrate_gauge(
    gauge_id: str,
    body: Optional[schemas.CalibrationRefresh] = None,
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    notifier: Optional[Notifier] = Depends(get_notifier),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.EDIT_GAUGES))
):
    """Record a calibration (today unless a date is given)."""
    try:
        gauge = await _get_or_404(db, gauge_id)
        thresholds = await crud.get_thresholds(db)
        calibrated_on = (body.last_calibration_date if body else None) or date.today()
        gauge, alerts, cleared = await crud.update_gauge(
            db, gauge, {"last_calibration_date": calibrated_on},
            current_user.username, thresholds, action="calibrate",
        )

        logger.info(f"🔧 Gauge calibrated: {gauge.gauge_id} on {calibrated_on}, {len(cleared)} alerts cleared")
        payload = crud.gauge_to_dict(gauge, enrich(gauge, thresholds))
        await ws.broadcast(GAUGE_UPDATED, payload)
        await _broadcast_alerts(ws, alerts, cleared, notifier)
        return payload

    except HTTPException:
        raise
    except InvalidInput as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        await db.rollback()
        logger.error(f"Error calibrating gauge {gauge_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/{gauge_id}")
async def delete_gauge(
    gauge_id: str,
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.EDIT_GAUGES))
):
    try:
        gauge = await _get_or_404(db, gauge_id)
        removed = await crud.delete_gauge(db, gauge, current_user.username)

        logger.info(f"🗑️ Gauge deleted: {gauge_id} ({removed} alerts removed) by {current_user.username}")
        await ws.broadcast(GAUGE_DELETED, {"gauge_id": gauge_id})
        return {"status": "success", "gauge_id": gauge_id, "alerts_deleted": removed}

    except HTTPException:
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting gauge {gauge_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
