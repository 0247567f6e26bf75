# ==============================================================================
# == backend/app/routers/alerts.py
# ==============================================================================

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas, auth, crud
from ..alert_generator import summarize_alerts
from ..database import get_db
from ..models import auth as model_auth
from ..websocket import ConnectionManager, get_ws_manager, ALERT_ACKNOWLEDGED

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/alerts",
    tags=["Alerts"]
)

@router.get("", response_model=List[schemas.AlertResponse])
async def list_alerts(
    acknowledged: Optional[bool] = None,
    severity: Optional[str] = Query(default=None, pattern="^(low|medium|high)$"),
    alert_type: Optional[str] = Query(default=None, pattern="^(capacity|calibration)$"),
    gauge_id: Optional[str] = None,
    since: Optional[int] = Query(default=None, description="Epoch seconds"),
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    return await crud.list_alerts(
        db,
        acknowledged=acknowledged,
        severity=severity,
        alert_type=alert_type,
        gauge_id=gauge_id,
        since=since,
    )

@router.get("/summary")
async def alert_summary(
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    return summarize_alerts(await crud.list_alerts(db))

@router.put("/{alert_id}/acknowledge", response_model=schemas.AlertResponse)
async def acknowledge_alert(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.EDIT_GAUGES))
):
    alert = await crud.acknowledge_alert(db, alert_id, current_user.username)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")

    logger.info(f"✅ Alert {alert_id} acknowledged by {current_user.username}")
    await ws.broadcast(ALERT_ACKNOWLEDGED, crud.alert_to_dict(alert))
    return alert

@router.delete("/gauge/{gauge_id}")
async def delete_gauge_alerts(
    gauge_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.EDIT_GAUGES))
):
    try:
        deleted = await crud.delete_alerts_for_gauge(db, gauge_id)
        logger.info(f"🗑️ Deleted {deleted} alerts for gauge {gauge_id}")
        return {"status": "success", "gauge_id": gauge_id, "deleted_count": deleted}
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting alerts for {gauge_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
