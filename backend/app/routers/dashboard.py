# ==============================================================================
# == backend/app/routers/dashboard.py - Dashboard & audit trail
# ==============================================================================

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas, auth, crud
from ..alert_generator import generate_system_alerts, summarize_alerts
from ..capacity import GaugeStatus, enrich
from ..database import get_db
from ..models import auth as model_auth

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api",
    tags=["Dashboard"]
)

@router.get("/dashboard")
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    thresholds = await crud.get_thresholds(db)
    gauges = await crud.list_gauges(db)
    enriched = [crud.gauge_to_dict(g, enrich(g, thresholds)) for g in gauges]

    attention = [
        g for g in enriched
        if g["status"] in (GaugeStatus.OVERDUE.value, GaugeStatus.CALIBRATION_REQUIRED.value)
    ]

    active_alerts = await crud.list_alerts(db, acknowledged=False)
    return {
        **crud.fleet_statistics(enriched),
        "gauges_needing_attention": attention[:10],
        "near_limit_gauges": [g for g in enriched if g["status"] == GaugeStatus.NEAR_LIMIT.value][:10],
        "alert_summary": summarize_alerts(active_alerts),
        "recent_alerts": [crud.alert_to_dict(a) for a in active_alerts[:10]],
        "system_alerts": [a.to_dict() for a in generate_system_alerts(gauges, thresholds)],
    }

@router.get("/audit", response_model=List[schemas.AuditEntryResponse])
async def get_audit_log(
    gauge_id: Optional[str] = None,
    action: Optional[str] = Query(default=None, pattern="^(create|update|delete|import|calibrate|report)$"),
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    return await crud.list_audit(db, gauge_id=gauge_id, action=action, limit=limit)
