# ==============================================================================
# == backend/app/main.py - Calibration & Capacity Management API            ==
# ==============================================================================

import logging
import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from . import schemas, auth, crud
from .config import settings
from .database import engine, Base, SessionLocal, get_db
from .models import auth as model_auth
from .models import config as model_config  # noqa: F401 - registers tables
from .models import data as model_data  # noqa: F401 - registers tables
from .routers import admin, alerts, dashboard, gauges, transfer
from .notifications import build_notifier
from .scheduler import CalibrationScheduler
from .websocket import ConnectionManager

# Logging
_handlers = [logging.StreamHandler()]
if settings.LOG_FILE:
    _handlers.append(logging.FileHandler(settings.LOG_FILE, encoding='utf-8'))
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - API - %(levelname)s - %(message)s',
    handlers=_handlers
)
logger = logging.getLogger(__name__)

# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
async def _ensure_default_admin():
    async with SessionLocal() as db:
        if await crud.get_user_by_username(db, settings.DEFAULT_ADMIN_USERNAME):
            return
        hashed_password = await auth.get_password_hash(settings.DEFAULT_ADMIN_PASSWORD)
        await crud.create_user(db, settings.DEFAULT_ADMIN_USERNAME, hashed_password, auth.Role.ADMIN, "Administrator")
        logger.info(f"✓ Default admin user created ({settings.DEFAULT_ADMIN_USERNAME})")

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Calibration & Capacity Management System starting...")
    scheduler = None

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✓ Database initialized")

        async with asyncio.timeout(10):
            await _ensure_default_admin()
            async with SessionLocal() as db:
                await crud.get_thresholds_row(db)
        logger.info("✓ Default admin and thresholds ready")

        if settings.SCHEDULER_ENABLED:
            scheduler = CalibrationScheduler(
                SessionLocal,
                app.state.ws_manager,
                interval=settings.RECALC_INTERVAL_SECONDS,
                retention_days=settings.AUDIT_RETENTION_DAYS,
                notifier=app.state.notifier,
                report_days=settings.CALIBRATION_REPORT_DAYS,
                health_report_weekday=settings.HEALTH_REPORT_WEEKDAY,
            )
            scheduler.start()
        app.state.scheduler = scheduler

        logger.info("=" * 60)
        logger.info("🎉 System ready to serve!")
        logger.info("=" * 60)

        yield

    finally:
        logger.info("🛑 Shutting down...")
        if scheduler is not None:
            await scheduler.stop()
        await app.state.ws_manager.close()
        await engine.dispose()
        logger.info("✅ Shutdown complete")

# ============================================================================
# APP SETUP
# ============================================================================
app = FastAPI(
    title="Calibration & Capacity Management API",
    lifespan=lifespan,
    version="1.0.0"
)
app.state.ws_manager = ConnectionManager()
app.state.notifier = build_notifier(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(gauges.router)
app.include_router(alerts.router)
app.include_router(transfer.router)
app.include_router(dashboard.router)
app.include_router(admin.router)

# ============================================================================
# AUTHENTICATION ENDPOINTS
# ============================================================================
@app.post("/api/auth/login", response_model=schemas.Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    user = await crud.get_user_by_username(db, form_data.username)

    if not user or not await auth.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled"
        )

    access_token = auth.create_access_token(
        data={"sub": user.username, "role": user.role}
    )

    logger.info(f"✅ Login successful: {user.username}")
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/api/auth/me", response_model=schemas.UserResponse)
async def get_current_user_info(
    current_user: model_auth.User = Depends(auth.get_current_user)
):
    user_response = schemas.UserResponse.model_validate(current_user)
    user_response.permissions = auth.get_user_permissions(current_user)
    return user_response

# ============================================================================
# WEBSOCKET & HEALTH CHECK
# ============================================================================
@app.websocket("/ws/updates")
async def websocket_endpoint(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.ws_manager
    await manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        # Text frames only; anything else closes the socket (1003 = unsupported data)
        logger.warning(f"⚠️ Closing WebSocket after unexpected frame: {e!r}")
        await websocket.close(code=1003)
    finally:
        manager.disconnect(websocket)

@app.get("/api/health")
async def health_check():
    return {"status": "ok", "time": time.time()}
