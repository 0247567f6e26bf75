# ==============================================================================
# == backend/app/routers/admin.py
# ==============================================================================

import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func

from .. import schemas, auth, crud
from ..alert_generator import summarize_alerts
from ..capacity import InvalidInput
from ..database import get_db
from ..models import auth as model_auth
from ..models import data as model_data
from ..notifications import Notifier, get_notifier, notify_alerts
from ..websocket import (
    ConnectionManager, get_ws_manager,
    THRESHOLDS_UPDATED, GAUGE_UPDATED, ALERT_CREATED,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/admin",
    tags=["Admin Console"]
)


async def _recalculate_and_broadcast(
    db: AsyncSession,
    ws: ConnectionManager,
    notifier: Optional[Notifier] = None,
    regenerate_all: bool = False,
) -> dict:
    thresholds = await crud.get_thresholds(db)
    changed, alerts = await crud.recalculate_all(db, thresholds, regenerate_all=regenerate_all)
    for gauge in changed:
        await ws.broadcast(GAUGE_UPDATED, crud.gauge_to_dict(gauge))
    for alert in alerts:
        await ws.broadcast(ALERT_CREATED, crud.alert_to_dict(alert))
    await notify_alerts(notifier, [crud.alert_to_dict(a) for a in alerts])
    return {"gauges_updated": len(changed), "alerts_created": len(alerts)}

# ============================================================================
# CAPACITY THRESHOLDS
# ============================================================================

@router.get("/thresholds", response_model=schemas.ThresholdsResponse)
async def get_thresholds(
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    return crud.thresholds_to_dict(await crud.get_thresholds_row(db))

@router.put("/thresholds")
async def update_thresholds(
    thresholds_in: schemas.ThresholdsUpdate,
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    notifier: Optional[Notifier] = Depends(get_notifier),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.MANAGE_THRESHOLDS))
):
    """Update thresholds, then recompute every gauge status against them."""
    try:
        row = await crud.update_thresholds(db, thresholds_in.model_dump(exclude_unset=True), current_user.username)
        data = crud.thresholds_to_dict(row)
        await ws.broadcast(THRESHOLDS_UPDATED, data)

        result = await _recalculate_and_broadcast(db, ws, notifier)
        logger.info(f"⚙️ Thresholds updated by {current_user.username}: {result['gauges_updated']} status changes")
        return {
            "thresholds": data,
            **result,
            "message": f"Thresholds updated successfully. {result['gauges_updated']} gauges had status changes.",
        }

    except InvalidInput as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        await db.rollback()
        logger.error(f"❌ Error updating thresholds: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/thresholds/reset")
async def reset_thresholds(
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    notifier: Optional[Notifier] = Depends(get_notifier),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.MANAGE_THRESHOLDS))
):
    try:
        row = await crud.reset_thresholds(db, current_user.username)
        data = crud.thresholds_to_dict(row)
        await ws.broadcast(THRESHOLDS_UPDATED, data)
        result = await _recalculate_and_broadcast(db, ws, notifier)
        return {"thresholds": data, **result, "message": "Thresholds reset to default values"}
    except InvalidInput as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=f"Configured default thresholds are invalid: {e}")
    except Exception as e:
        await db.rollback()
        logger.error(f"❌ Error resetting thresholds: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/recalculate")
async def recalculate(
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    notifier: Optional[Notifier] = Depends(get_notifier),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.MANAGE_THRESHOLDS))
):
    """Recompute every gauge and regenerate all alerts from scratch."""
    try:
        result = await _recalculate_and_broadcast(db, ws, notifier, regenerate_all=True)
        logger.info(f"🔄 Full recalculation by {current_user.username}: {result}")
        return {"status": "success", **result}
    except Exception as e:
        await db.rollback()
        logger.error(f"❌ Recalculation error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

# ============================================================================
# SYSTEM STATUS
# ============================================================================

@router.get("/system-status")
async def system_status(
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.MANAGE_USERS))
):
    gauge_count = await db.execute(select(func.count(model_data.Gauge.id)))
    audit_count = await db.execute(select(func.count(model_data.AuditEntry.id)))
    return {
        "time": int(time.time()),
        "gauges": gauge_count.scalar(),
        "alerts": summarize_alerts(await crud.list_alerts(db)),
        "audit_entries": audit_count.scalar(),
        "thresholds": crud.thresholds_to_dict(await crud.get_thresholds_row(db)),
        "websocket": ws.status(),
    }

# ============================================================================
# USER MANAGEMENT
# ============================================================================

@router.get("/users", response_model=List[schemas.UserResponse])
async def get_users(
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.MANAGE_USERS))
):
    result = await db.execute(select(model_auth.User))
    users = result.scalars().all()
    return [
        {**schemas.UserResponse.model_validate(u).model_dump(), "permissions": auth.get_user_permissions(u)}
        for u in users
    ]

@router.post("/users", response_model=schemas.UserResponse)
async def create_user(
    user_in: schemas.UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.MANAGE_USERS))
):
    if user_in.role not in auth.Role.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown role '{user_in.role}'")
    if await crud.get_user_by_username(db, user_in.username):
        raise HTTPException(status_code=400, detail="Username already exists")

    hashed_pw = await auth.get_password_hash(user_in.password)
    new_user = await crud.create_user(db, user_in.username, hashed_pw, user_in.role, user_in.full_name)
    logger.info(f"👤 User {new_user.username} ({new_user.role}) created by {current_user.username}")
    return {**schemas.UserResponse.model_validate(new_user).model_dump(), "permissions": auth.get_user_permissions(new_user)}

@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.MANAGE_USERS))
):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot delete yourself")

    await db.execute(delete(model_auth.User).where(model_auth.User.id == user_id))
    await db.commit()
    return {"status": "success"}
