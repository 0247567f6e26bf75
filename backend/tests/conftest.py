"""
Test configuration: in-memory database, ASGI test client and gauge factories.

Each test gets its own in-memory SQLite database; the app's session and
current-user dependencies are overridden so no login round-trip is needed.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import date
from types import SimpleNamespace

import pandas as pd
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import auth
from app.capacity import ThresholdConfig
from app.database import Base, get_db
from app.main import app
from app.models import auth as model_auth

TODAY = date(2025, 6, 15)


def months_ago(months: int, today: date = None) -> date:
    today = today or date.today()
    return (pd.Timestamp(today) - pd.DateOffset(months=months)).date()


def make_gauge(**overrides):
    fields = {
        "gauge_id": "G-001",
        "gauge_type": "Pressure Gauge",
        "max_capacity": 1000,
        "produced_quantity": 100,
        "monthly_usage": 0,
        "last_calibration_date": date(2025, 3, 1),
        "calibration_frequency": 12,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def thresholds() -> ThresholdConfig:
    return ThresholdConfig()


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_user():
    return model_auth.User(id=1, username="tester", role=auth.Role.ADMIN, is_active=True, full_name="Test Admin")


@pytest.fixture
async def client(test_db, mock_user):
    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth.get_current_user] = lambda: mock_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def gauge_payload():
    def _payload(**overrides):
        body = {
            "gauge_id": "G-100",
            "gauge_type": "Pressure Gauge",
            "calibration_frequency": 12,
            "last_calibration_date": months_ago(2).isoformat(),
            "monthly_usage": 20,
            "produced_quantity": 100,
            "max_capacity": 1000,
        }
        body.update(overrides)
        return body
    return _payload
