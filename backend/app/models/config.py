#backend/app/models/config.py
from sqlalchemy import Column, Integer, String, Float, BigInteger
from app.database import Base

class CapacityThresholds(Base):
    """Singleton row (id=1). Capacity cutoffs are fractions (0-1) of max capacity."""
    __tablename__ = "capacity_thresholds"

    id = Column(Integer, primary_key=True)
    overdue_cutoff = Column(Float, nullable=False, default=0.0)
    calibration_required_cutoff = Column(Float, nullable=False, default=0.1)
    near_limit_cutoff = Column(Float, nullable=False, default=0.2)
    calibration_warning_months = Column(Integer, nullable=False, default=1)
    updated_at = Column(BigInteger, nullable=False)
    updated_by = Column(String, nullable=True)
