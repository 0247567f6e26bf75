"""
tests/test_capacity.py
──────────────────────
Status classification, calibration date arithmetic and threshold validation.
"""
from datetime import date

import pytest

from app.capacity import (
    STATUS_ORDER,
    GaugeStatus,
    InvalidInput,
    ThresholdConfig,
    as_date,
    classify,
    enrich,
    months_between,
    months_until_exhaustion,
    needs_immediate_attention,
    next_calibration_date,
)
from conftest import TODAY, make_gauge


class TestNextCalibrationDate:
    def test_adds_calendar_months(self):
        assert next_calibration_date(date(2024, 3, 15), 12) == date(2025, 3, 15)

    def test_clamps_to_end_of_month(self):
        assert next_calibration_date(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert next_calibration_date(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_accepts_date_strings(self):
        assert next_calibration_date("2024-06-01", 6) == date(2024, 12, 1)

    @pytest.mark.parametrize("months", [0, -1, 1.5])
    def test_rejects_non_positive_or_fractional_frequency(self, months):
        with pytest.raises(InvalidInput):
            next_calibration_date(date(2024, 1, 1), months)

    def test_always_after_start(self):
        start = date(2024, 1, 31)
        for months in range(1, 37):
            assert next_calibration_date(start, months) > start


class TestMonthsBetween:
    def test_crossing_month_boundary_counts_one(self):
        assert months_between(date(2025, 1, 31), date(2025, 2, 1)) == 1

    def test_same_month_is_zero(self):
        assert months_between(date(2025, 2, 1), date(2025, 2, 28)) == 0

    def test_across_years(self):
        assert months_between(date(2024, 5, 15), date(2025, 6, 15)) == 13

    def test_negative_for_future(self):
        assert months_between(date(2025, 8, 1), date(2025, 6, 15)) == -2


class TestClassify:
    def test_near_limit_example(self, thresholds):
        gauge = make_gauge(produced_quantity=850)
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.NEAR_LIMIT

    def test_full_capacity_is_overdue(self, thresholds):
        gauge = make_gauge(produced_quantity=1000)
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.OVERDUE

    def test_over_filled_is_overdue(self, thresholds):
        gauge = make_gauge(produced_quantity=1500)
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.OVERDUE

    def test_calibration_past_due_is_overdue_regardless_of_capacity(self, thresholds):
        gauge = make_gauge(produced_quantity=0, last_calibration_date=date(2024, 5, 15))
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.OVERDUE

    def test_low_remaining_capacity_requires_calibration(self, thresholds):
        gauge = make_gauge(produced_quantity=950)
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.CALIBRATION_REQUIRED

    def test_due_within_warning_window_requires_calibration(self, thresholds):
        # 11 months since calibration, due in 1
        gauge = make_gauge(last_calibration_date=date(2024, 7, 1))
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.CALIBRATION_REQUIRED

    def test_calibration_required_wins_over_near_limit(self, thresholds):
        gauge = make_gauge(produced_quantity=850, last_calibration_date=date(2024, 7, 1))
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.CALIBRATION_REQUIRED

    def test_month_end_rollover_is_not_yet_overdue(self, thresholds):
        # due 2025-06-30, one calendar month has elapsed on 2025-06-01
        gauge = make_gauge(last_calibration_date=date(2025, 5, 31), calibration_frequency=1)
        assert classify(gauge, thresholds, date(2025, 6, 1)) == GaugeStatus.CALIBRATION_REQUIRED

    def test_safe_default(self, thresholds):
        gauge = make_gauge(produced_quantity=100)
        assert classify(gauge, thresholds, TODAY) == GaugeStatus.SAFE

    def test_respects_custom_cutoffs(self):
        strict = ThresholdConfig(overdue_cutoff=0.05, calibration_required_cutoff=0.3, near_limit_cutoff=0.5)
        assert classify(make_gauge(produced_quantity=960), strict, TODAY) == GaugeStatus.OVERDUE
        assert classify(make_gauge(produced_quantity=750), strict, TODAY) == GaugeStatus.CALIBRATION_REQUIRED
        assert classify(make_gauge(produced_quantity=600), strict, TODAY) == GaugeStatus.NEAR_LIMIT

    def test_is_idempotent(self, thresholds):
        gauge = make_gauge(produced_quantity=850)
        assert classify(gauge, thresholds, TODAY) == classify(gauge, thresholds, TODAY)

    def test_status_never_moves_backward_as_production_grows(self, thresholds):
        ranks = [
            STATUS_ORDER.index(classify(make_gauge(produced_quantity=q), thresholds, TODAY))
            for q in range(0, 1201, 10)
        ]
        assert ranks == sorted(ranks)
        assert ranks[0] == STATUS_ORDER.index(GaugeStatus.SAFE)
        assert ranks[-1] == STATUS_ORDER.index(GaugeStatus.OVERDUE)

    @pytest.mark.parametrize("overrides", [
        {"max_capacity": 0},
        {"max_capacity": -10},
        {"max_capacity": float("nan")},
        {"produced_quantity": -1},
        {"produced_quantity": float("nan")},
        {"produced_quantity": "lots"},
        {"calibration_frequency": 0},
        {"calibration_frequency": -3},
        {"last_calibration_date": "not a date"},
        {"last_calibration_date": None},
    ])
    def test_rejects_malformed_input(self, thresholds, overrides):
        with pytest.raises(InvalidInput):
            classify(make_gauge(**overrides), thresholds, TODAY)

    def test_immediate_attention(self, thresholds):
        assert needs_immediate_attention(make_gauge(produced_quantity=1000), thresholds, TODAY)
        assert not needs_immediate_attention(make_gauge(produced_quantity=850), thresholds, TODAY)


class TestThresholdConfig:
    def test_defaults(self):
        config = ThresholdConfig()
        assert config.near_limit_cutoff == 0.2
        assert config.near_limit_percentage == 80.0

    @pytest.mark.parametrize("kwargs", [
        {"near_limit_cutoff": 1.5},
        {"overdue_cutoff": -0.1},
        {"calibration_required_cutoff": 0.3, "near_limit_cutoff": 0.2},
        {"overdue_cutoff": 0.15, "calibration_required_cutoff": 0.1},
        {"calibration_warning_months": -1},
        {"calibration_warning_months": 1.5},
    ])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(InvalidInput):
            ThresholdConfig(**kwargs)


class TestEnrich:
    def test_derived_fields(self, thresholds):
        gauge = make_gauge(produced_quantity=850, monthly_usage=40)
        metrics = enrich(gauge, thresholds, TODAY)
        assert metrics.remaining_capacity == 150
        assert metrics.capacity_utilization == pytest.approx(85.0)
        assert metrics.next_calibration_date == date(2026, 3, 1)
        assert metrics.status == GaugeStatus.NEAR_LIMIT
        assert metrics.months_until_exhaustion == 3
        assert metrics.as_dict()["status"] == "near_limit"

    def test_months_until_exhaustion(self):
        assert months_until_exhaustion(make_gauge(monthly_usage=0)) is None
        assert months_until_exhaustion(make_gauge(produced_quantity=1000, monthly_usage=10)) == 0
        assert months_until_exhaustion(make_gauge(produced_quantity=100, monthly_usage=100)) == 9


class TestAsDate:
    def test_parses_iso_string(self):
        assert as_date("2024-01-15") == date(2024, 1, 15)

    def test_rejects_garbage(self):
        with pytest.raises(InvalidInput):
            as_date("31/31/2024")
