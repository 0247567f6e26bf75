# ==============================================================================
# == backend/app/routers/transfer.py - Spreadsheet import / export
# ==============================================================================

import logging
import time
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas, auth, crud, excel
from ..capacity import InvalidInput, enrich
from ..config import settings
from ..database import get_db
from ..models import auth as model_auth
from ..notifications import Notifier, get_notifier, notify_alerts
from ..websocket import ConnectionManager, get_ws_manager, GAUGES_IMPORTED, ALERT_CREATED

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api",
    tags=["Import / Export"]
)


def _xlsx_response(content: bytes, filename: str) -> StreamingResponse:
    return StreamingResponse(
        BytesIO(content),
        media_type=excel.XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )

@router.post("/upload/excel", response_model=schemas.ImportResult)
async def upload_excel(
    file: UploadFile = File(...),
    overwrite: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
    ws: ConnectionManager = Depends(get_ws_manager),
    notifier: Optional[Notifier] = Depends(get_notifier),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.EDIT_GAUGES))
):
    if not (file.filename or "").lower().endswith((".xlsx", ".xlsm")):
        raise HTTPException(status_code=400, detail="Only .xlsx files are supported")

    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File larger than {settings.MAX_UPLOAD_MB} MB")

    try:
        rows, errors = excel.parse_gauge_workbook(content)
        thresholds = await crud.get_thresholds(db)
        result = await crud.import_gauges(db, rows, overwrite, current_user.username, thresholds)
    except InvalidInput as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        await db.rollback()
        logger.error(f"❌ Import error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(
        f"📥 Import by {current_user.username}: {len(result['created'])} created, "
        f"{len(result['updated'])} updated, {len(result['skipped'])} skipped, {len(errors)} errors"
    )

    await ws.broadcast(GAUGES_IMPORTED, {
        "created": [g.gauge_id for g in result["created"]],
        "updated": [g.gauge_id for g in result["updated"]],
    })
    for alert in result["alerts"]:
        await ws.broadcast(ALERT_CREATED, crud.alert_to_dict(alert))
    await notify_alerts(notifier, [crud.alert_to_dict(a) for a in result["alerts"]])

    return {
        "created": len(result["created"]),
        "updated": len(result["updated"]),
        "skipped": len(result["skipped"]),
        "errors": errors,
        "alerts_created": len(result["alerts"]),
    }

@router.get("/upload/template")
async def download_template(
    current_user: model_auth.User = Depends(auth.get_current_user)
):
    return _xlsx_response(excel.template_workbook(), "gauge_import_template.xlsx")

@router.get("/export/gauges")
async def export_gauges(
    db: AsyncSession = Depends(get_db),
    current_user: model_auth.User = Depends(auth.require_permission(auth.Permission.VIEW_GAUGES))
):
    thresholds = await crud.get_thresholds(db)
    gauges = [crud.gauge_to_dict(g, enrich(g, thresholds)) for g in await crud.list_gauges(db)]
    logger.info(f"📤 Exported {len(gauges)} gauges for {current_user.username}")
    return _xlsx_response(excel.export_gauges(gauges), f"gauges_{int(time.time())}.xlsx")
