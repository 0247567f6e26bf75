# backend/app/excel.py - Gauge spreadsheet import / export
import logging
import math
import numbers
from io import BytesIO
from typing import Any, Dict, List, Tuple

import pandas as pd
from openpyxl.utils import get_column_letter

from .capacity import InvalidInput, as_date

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Spreadsheet header -> gauge field
COLUMNS = {
    "Gauge ID": "gauge_id",
    "Gauge Type": "gauge_type",
    "Calibration frequency (months)": "calibration_frequency",
    "Last calibration date": "last_calibration_date",
    "Monthly usage": "monthly_usage",
    "Produced quantity": "produced_quantity",
    "Maximum capacity": "max_capacity",
    "Last modified by": "last_modified_by",
}

EXPORT_COLUMNS = {
    **COLUMNS,
    "Remaining capacity": "remaining_capacity",
    "Capacity utilization (%)": "capacity_utilization",
    "Status": "status",
    "Next calibration date": "next_calibration_date",
    "Created at": "created_at",
    "Updated at": "updated_at",
}

TEMPLATE_ROWS = [
    {
        "Gauge ID": "EXAMPLE-001",
        "Gauge Type": "Pressure Gauge",
        "Calibration frequency (months)": 12,
        "Last calibration date": "2024-01-15",
        "Monthly usage": 50,
        "Produced quantity": 750,
        "Maximum capacity": 1000,
        "Last modified by": "System Admin",
    },
    {
        "Gauge ID": "EXAMPLE-002",
        "Gauge Type": "Temperature Gauge",
        "Calibration frequency (months)": 6,
        "Last calibration date": "2024-06-01",
        "Monthly usage": 25,
        "Produced quantity": 400,
        "Maximum capacity": 800,
        "Last modified by": "Technician",
    },
]

# Excel serial dates count from 1899-12-30
EXCEL_EPOCH = pd.Timestamp("1899-12-30")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _number(value: Any, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a number")
    if math.isnan(number) or math.isinf(number):
        raise InvalidInput(f"{label} must be a number")
    return number


def _date(value: Any):
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        # Serials outside the pandas Timestamp range overflow
        try:
            return (EXCEL_EPOCH + pd.Timedelta(days=float(value))).date()
        except (OverflowError, ValueError):
            raise InvalidInput("Invalid last calibration date")
    try:
        return as_date(value, "Last calibration date")
    except InvalidInput:
        raise InvalidInput("Invalid last calibration date")


def convert_row(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Validate one spreadsheet row (keyed by header) and return gauge fields."""
    for header in ("Gauge ID", "Gauge Type"):
        if _is_blank(raw.get(header)):
            raise InvalidInput(f"{header} is required")

    frequency = _number(raw.get("Calibration frequency (months)"), "Calibration frequency")
    if frequency <= 0 or not frequency.is_integer():
        raise InvalidInput("Calibration frequency must be a positive whole number")

    monthly_usage = 0.0
    if not _is_blank(raw.get("Monthly usage")):
        monthly_usage = _number(raw.get("Monthly usage"), "Monthly usage")
        if monthly_usage < 0:
            raise InvalidInput("Monthly usage must be a non-negative number")

    produced = _number(raw.get("Produced quantity"), "Produced quantity")
    if produced < 0:
        raise InvalidInput("Produced quantity must be a non-negative number")

    max_capacity = _number(raw.get("Maximum capacity"), "Maximum capacity")
    if max_capacity <= 0:
        raise InvalidInput("Maximum capacity must be a positive number")

    if produced > max_capacity:
        raise InvalidInput("Produced quantity cannot exceed maximum capacity")

    if _is_blank(raw.get("Last calibration date")):
        raise InvalidInput("Last calibration date is required")

    modified_by = raw.get("Last modified by")
    return {
        "gauge_id": _text(raw["Gauge ID"]),
        "gauge_type": _text(raw["Gauge Type"]),
        "calibration_frequency": int(frequency),
        "last_calibration_date": _date(raw["Last calibration date"]),
        "monthly_usage": monthly_usage,
        "produced_quantity": produced,
        "max_capacity": max_capacity,
        "last_modified_by": "Excel Import" if _is_blank(modified_by) else _text(modified_by),
    }


def parse_gauge_workbook(content: bytes) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Read the first worksheet. File-level problems raise InvalidInput; row-level
    problems are collected as "Row N: ..." (N is the sheet row) and the row is skipped.
    """
    try:
        df = pd.read_excel(BytesIO(content), sheet_name=0, engine="openpyxl")
    except Exception as e:
        raise InvalidInput(f"Failed to parse Excel file: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        raise InvalidInput(f"Missing required columns: {', '.join(missing)}")

    df = df.dropna(how="all")
    if df.empty:
        raise InvalidInput("Excel file must contain a header row and at least one data row")

    rows, errors, seen = [], [], set()
    for position, raw in enumerate(df.to_dict(orient="records")):
        row_number = int(df.index[position]) + 2
        try:
            row = convert_row(raw)
        except InvalidInput as e:
            errors.append(f"Row {row_number}: {e}")
            continue
        if row["gauge_id"] in seen:
            errors.append(f"Row {row_number}: Duplicate Gauge ID {row['gauge_id']} in file")
            continue
        seen.add(row["gauge_id"])
        rows.append(row)

    logger.info(f"📄 Parsed workbook: {len(rows)} valid rows, {len(errors)} errors")
    return rows, errors


def _write_workbook(df: pd.DataFrame, sheet_name: str) -> bytes:
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
        sheet = writer.sheets[sheet_name]
        for idx, column in enumerate(df.columns, start=1):
            sheet.column_dimensions[get_column_letter(idx)].width = max(15, len(str(column)) + 4)
    return output.getvalue()


def export_gauges(gauges: List[Dict[str, Any]]) -> bytes:
    records = [
        {header: gauge.get(field) for header, field in EXPORT_COLUMNS.items()}
        for gauge in gauges
    ]
    df = pd.DataFrame(records, columns=list(EXPORT_COLUMNS))
    return _write_workbook(df, "Gauge Profiles")


def template_workbook() -> bytes:
    return _write_workbook(pd.DataFrame(TEMPLATE_ROWS, columns=list(COLUMNS)), "Gauge Template")
