#backend/app/models/data.py
from sqlalchemy import Column, Integer, String, Boolean, JSON, BigInteger, Float, Date, ForeignKey, Text
from app.database import Base

class Gauge(Base):
    """
    Source fields are authoritative. remaining_capacity, capacity_utilization,
    next_calibration_date and status are cached for querying and are rewritten
    from the source fields on every save.
    """
    __tablename__ = "gauges"

    id = Column(Integer, primary_key=True)
    gauge_id = Column(String(64), unique=True, index=True, nullable=False)
    gauge_type = Column(String(255), nullable=False)
    calibration_frequency = Column(Integer, nullable=False)  # months
    last_calibration_date = Column(Date, nullable=False)
    monthly_usage = Column(Float, nullable=False, default=0.0)
    produced_quantity = Column(Float, nullable=False, default=0.0)
    max_capacity = Column(Float, nullable=False)
    last_modified_by = Column(String, nullable=True)

    remaining_capacity = Column(Float, nullable=True)
    capacity_utilization = Column(Float, nullable=True)
    next_calibration_date = Column(Date, nullable=True)
    status = Column(String(32), index=True, nullable=True)

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True)
    alert_id = Column(String(64), unique=True, index=True, nullable=False)
    gauge_id = Column(String(64), ForeignKey("gauges.gauge_id", ondelete="CASCADE"), index=True, nullable=False)
    alert_type = Column(String(32), index=True, nullable=False)  # capacity, calibration
    severity = Column(String(16), index=True, nullable=False)    # low, medium, high
    message = Column(Text, nullable=False)
    created_at = Column(BigInteger, index=True, nullable=False)
    acknowledged = Column(Boolean, default=False, nullable=False)
    acknowledged_by = Column(String, nullable=True)
    acknowledged_at = Column(BigInteger, nullable=True)

class AuditEntry(Base):
    """Append-only. Not tied to the gauge row so history survives deletion."""
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    gauge_id = Column(String(64), index=True, nullable=False)
    action = Column(String(16), index=True, nullable=False)  # create, update, delete, import, calibrate, report
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    user = Column(String, nullable=False)
    timestamp = Column(BigInteger, index=True, nullable=False)
