# backend/app/database.py
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import settings


def create_db_engine(url):
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
    )

# One database holds users, gauges, thresholds, alerts and the audit trail
engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session
