# backend/app/capacity.py - Gauge status classification & calibration dates
"""
Pure capacity/calibration calculations shared by every caller.

Nothing here touches the database, the network or the log. Inputs are any
objects exposing the gauge source attributes (ORM rows, schemas, plain
dataclasses); thresholds arrive as an immutable ``ThresholdConfig`` snapshot.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

import pandas as pd


class InvalidInput(ValueError):
    """Raised for gauge or threshold values the calculations cannot accept."""


class GaugeStatus(str, Enum):
    SAFE = "safe"
    NEAR_LIMIT = "near_limit"
    CALIBRATION_REQUIRED = "calibration_required"
    OVERDUE = "overdue"


# Severity order, least to most urgent
STATUS_ORDER = (
    GaugeStatus.SAFE,
    GaugeStatus.NEAR_LIMIT,
    GaugeStatus.CALIBRATION_REQUIRED,
    GaugeStatus.OVERDUE,
)


# ============================================================================
# THRESHOLDS
# ============================================================================
@dataclass(frozen=True)
class ThresholdConfig:
    """
    All capacity cutoffs are fractions (0-1) of max capacity, compared against
    *remaining* capacity. ``calibration_warning_months`` is how many months
    before the due date a gauge starts reporting ``calibration_required``.
    """
    overdue_cutoff: float = 0.0
    calibration_required_cutoff: float = 0.1
    near_limit_cutoff: float = 0.2
    calibration_warning_months: int = 1

    def __post_init__(self):
        for name in ("overdue_cutoff", "calibration_required_cutoff", "near_limit_cutoff"):
            value = _number(getattr(self, name), name)
            if not 0.0 <= value <= 1.0:
                raise InvalidInput(f"{name} must be between 0 and 1, got {value}")
        if not (self.overdue_cutoff <= self.calibration_required_cutoff <= self.near_limit_cutoff):
            raise InvalidInput(
                "Cutoffs must satisfy overdue_cutoff <= calibration_required_cutoff <= near_limit_cutoff"
            )
        months = self.calibration_warning_months
        if isinstance(months, bool) or not isinstance(months, int) or months < 0:
            raise InvalidInput(f"calibration_warning_months must be a non-negative integer, got {months!r}")

    @property
    def near_limit_percentage(self) -> float:
        """Utilization (%) at which a gauge counts as near its limit."""
        return round((1.0 - self.near_limit_cutoff) * 100.0, 6)


# ============================================================================
# INPUT VALIDATION
# ============================================================================
def _number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    if math.isnan(number) or math.isinf(number):
        raise InvalidInput(f"{name} must be a finite number, got {value!r}")
    return number


def as_date(value: Any, name: str = "date") -> date:
    """Coerce a date, datetime, pandas Timestamp or date string to a ``date``."""
    if value is None:
        raise InvalidInput(f"{name} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} is not a valid date: {value!r}")
    if pd.isna(ts):
        raise InvalidInput(f"{name} is not a valid date: {value!r}")
    return ts.date()


def _frequency(value: Any) -> int:
    number = _number(value, "calibration_frequency")
    if number <= 0 or not number.is_integer():
        raise InvalidInput(f"calibration_frequency must be a positive whole number of months, got {value!r}")
    return int(number)


@dataclass(frozen=True)
class GaugeSnapshot:
    """Validated copy of the gauge source fields."""
    gauge_id: str
    max_capacity: float
    produced_quantity: float
    last_calibration_date: date
    calibration_frequency: int
    monthly_usage: float = 0.0

    @classmethod
    def of(cls, gauge: Any) -> "GaugeSnapshot":
        if isinstance(gauge, cls):
            return gauge
        max_capacity = _number(getattr(gauge, "max_capacity", None), "max_capacity")
        if max_capacity <= 0:
            raise InvalidInput(f"max_capacity must be positive, got {max_capacity}")
        produced = _number(getattr(gauge, "produced_quantity", None), "produced_quantity")
        if produced < 0:
            raise InvalidInput(f"produced_quantity must not be negative, got {produced}")
        monthly_usage = getattr(gauge, "monthly_usage", None)
        monthly_usage = 0.0 if monthly_usage is None else _number(monthly_usage, "monthly_usage")
        return cls(
            gauge_id=str(getattr(gauge, "gauge_id", "") or ""),
            max_capacity=max_capacity,
            produced_quantity=produced,
            last_calibration_date=as_date(getattr(gauge, "last_calibration_date", None), "last_calibration_date"),
            calibration_frequency=_frequency(getattr(gauge, "calibration_frequency", None)),
            monthly_usage=monthly_usage,
        )

    @property
    def remaining_capacity(self) -> float:
        return self.max_capacity - self.produced_quantity

    @property
    def capacity_utilization(self) -> float:
        return self.produced_quantity / self.max_capacity * 100.0


# ============================================================================
# DATE ARITHMETIC
# ============================================================================
def next_calibration_date(last_calibration_date: Any, frequency_months: Any) -> date:
    """
    Add ``frequency_months`` calendar months. Day overflow is clamped to the end
    of the target month (Jan 31 + 1 month -> Feb 28/29).
    """
    start = as_date(last_calibration_date, "last_calibration_date")
    months = _frequency(frequency_months)
    return (pd.Timestamp(start) + pd.DateOffset(months=months)).date()


def months_between(start: date, end: date) -> int:
    # Calendar-month subtraction: Jan 31 -> Feb 1 counts as one month.
    return (end.year - start.year) * 12 + (end.month - start.month)


# ============================================================================
# CLASSIFICATION
# ============================================================================
def classify(gauge: Any, thresholds: ThresholdConfig, today: Optional[date] = None) -> GaugeStatus:
    """First matching rule wins: overdue, calibration_required, near_limit, safe."""
    g = GaugeSnapshot.of(gauge)
    today = today or date.today()
    remaining = g.remaining_capacity

    due = next_calibration_date(g.last_calibration_date, g.calibration_frequency)
    if remaining <= g.max_capacity * thresholds.overdue_cutoff or due < today:
        return GaugeStatus.OVERDUE

    months_until_due = g.calibration_frequency - months_between(g.last_calibration_date, today)
    if (remaining <= g.max_capacity * thresholds.calibration_required_cutoff
            or months_until_due <= thresholds.calibration_warning_months):
        return GaugeStatus.CALIBRATION_REQUIRED

    if remaining <= g.max_capacity * thresholds.near_limit_cutoff:
        return GaugeStatus.NEAR_LIMIT

    return GaugeStatus.SAFE


def months_until_exhaustion(gauge: Any) -> Optional[int]:
    """Whole months of ``monthly_usage`` left before max capacity; None without usage data."""
    g = GaugeSnapshot.of(gauge)
    if g.monthly_usage <= 0:
        return None
    if g.remaining_capacity <= 0:
        return 0
    return math.floor(g.remaining_capacity / g.monthly_usage)


def needs_immediate_attention(gauge: Any, thresholds: ThresholdConfig, today: Optional[date] = None) -> bool:
    return classify(gauge, thresholds, today) in (GaugeStatus.OVERDUE, GaugeStatus.CALIBRATION_REQUIRED)


@dataclass(frozen=True)
class GaugeMetrics:
    remaining_capacity: float
    capacity_utilization: float
    next_calibration_date: date
    status: GaugeStatus
    months_until_exhaustion: Optional[int]

    def as_dict(self) -> dict:
        return {
            "remaining_capacity": self.remaining_capacity,
            "capacity_utilization": round(self.capacity_utilization, 2),
            "next_calibration_date": self.next_calibration_date,
            "status": self.status.value,
            "months_until_exhaustion": self.months_until_exhaustion,
        }


def enrich(gauge: Any, thresholds: ThresholdConfig, today: Optional[date] = None) -> GaugeMetrics:
    g = GaugeSnapshot.of(gauge)
    return GaugeMetrics(
        remaining_capacity=g.remaining_capacity,
        capacity_utilization=g.capacity_utilization,
        next_calibration_date=next_calibration_date(g.last_calibration_date, g.calibration_frequency),
        status=classify(g, thresholds, today),
        months_until_exhaustion=months_until_exhaustion(g),
    )
