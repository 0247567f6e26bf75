#backend/app/schemas.py
from datetime import date
from typing import Optional, Dict, List, Any

from pydantic import BaseModel, Field, model_validator

class GaugeBase(BaseModel):
    gauge_type: str = Field(min_length=1)
    calibration_frequency: int = Field(gt=0)
    last_calibration_date: date
    monthly_usage: float = Field(default=0.0, ge=0)
    produced_quantity: float = Field(ge=0)
    max_capacity: float = Field(gt=0)

class GaugeCreate(GaugeBase):
    gauge_id: str = Field(min_length=1, max_length=64)
    last_modified_by: Optional[str] = None

    @model_validator(mode="after")
    def check_capacity(self):
        if self.produced_quantity > self.max_capacity:
            raise ValueError("Produced quantity cannot exceed maximum capacity")
        self.gauge_id = self.gauge_id.strip()
        self.gauge_type = self.gauge_type.strip()
        return self

class GaugeUpdate(BaseModel):
    """Partial update. Over-capacity is accepted here and surfaces as 'overdue'."""
    gauge_type: Optional[str] = Field(default=None, min_length=1)
    calibration_frequency: Optional[int] = Field(default=None, gt=0)
    last_calibration_date: Optional[date] = None
    monthly_usage: Optional[float] = Field(default=None, ge=0)
    produced_quantity: Optional[float] = Field(default=None, ge=0)
    max_capacity: Optional[float] = Field(default=None, gt=0)

class CalibrationRefresh(BaseModel):
    last_calibration_date: Optional[date] = None

class GaugeResponse(GaugeBase):
    id: int
    gauge_id: str
    last_modified_by: Optional[str] = None
    remaining_capacity: Optional[float] = None
    capacity_utilization: Optional[float] = None
    next_calibration_date: Optional[date] = None
    status: Optional[str] = None
    months_until_exhaustion: Optional[int] = None
    created_at: int
    updated_at: int

    class Config:
        from_attributes = True

class GaugePage(BaseModel):
    data: List[GaugeResponse]
    page: int
    limit: int
    total: int
    pages: int

class AlertResponse(BaseModel):
    alert_id: str
    gauge_id: str
    alert_type: str
    severity: str
    message: str
    created_at: int
    acknowledged: bool
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[int] = None

    class Config:
        from_attributes = True

class AuditEntryResponse(BaseModel):
    id: int
    gauge_id: str
    action: str
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    user: str
    timestamp: int

    class Config:
        from_attributes = True

class ThresholdsUpdate(BaseModel):
    overdue_cutoff: Optional[float] = Field(default=None, ge=0, le=1)
    calibration_required_cutoff: Optional[float] = Field(default=None, ge=0, le=1)
    near_limit_cutoff: Optional[float] = Field(default=None, ge=0, le=1)
    calibration_warning_months: Optional[int] = Field(default=None, ge=0)

class ThresholdsResponse(BaseModel):
    overdue_cutoff: float
    calibration_required_cutoff: float
    near_limit_cutoff: float
    calibration_warning_months: int
    near_limit_percentage: float
    updated_at: int
    updated_by: Optional[str] = None

class ImportResult(BaseModel):
    created: int
    updated: int
    skipped: int
    errors: List[str]
    alerts_created: int

class UserBase(BaseModel):
    username: str
    full_name: Optional[str] = None
    role: str = "viewer"

class UserCreate(UserBase):
    password: str

class UserResponse(UserBase):
    id: int
    is_active: bool
    permissions: List[str] = []

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    token_type: str
