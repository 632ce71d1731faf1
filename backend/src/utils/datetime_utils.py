"""
Datetime utilities for consistent date handling across the application.

This module provides utilities to ensure all datetime operations use timezone-aware
datetimes consistently. All times are in the clinic's local timezone (UTC-3) for
business logic, and spreadsheet cells are parsed into plain dates and times.
"""

import logging
import math
import re
from datetime import datetime, timezone, timedelta, date, time
from decimal import Decimal
from typing import Any, Optional

from core.constants import EXCEL_EPOCH_YEAR, EXCEL_EPOCH_MONTH, EXCEL_EPOCH_DAY

logger = logging.getLogger(__name__)

# Clinic local timezone constant (UTC-3, no DST)
LOCAL_TZ = timezone(timedelta(hours=-3))

_EXCEL_EPOCH = date(EXCEL_EPOCH_YEAR, EXCEL_EPOCH_MONTH, EXCEL_EPOCH_DAY)
_DMY_PATTERN = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_ISO_PATTERN = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?")


def local_now() -> datetime:
    """
    Get current clinic-local datetime (UTC-3).

    Returns:
        Current datetime with the clinic timezone attached
    """
    return datetime.now(LOCAL_TZ)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_sheet_date(value: Any) -> Optional[date]:
    """
    Parse a spreadsheet cell into a date.

    Handles:
    - date / datetime objects (used as-is)
    - Excel serial day numbers (epoch 1899-12-30)
    - "DD/MM/YYYY" strings (day first, as exported by the scheduling system)
    - "YYYY-MM-DD" strings, optionally followed by a time part

    Args:
        value: Raw cell value

    Returns:
        Parsed date, or None when the value is empty or unparseable
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if isinstance(value, (int, float, Decimal)):
        if not math.isfinite(value):
            return None
        try:
            return _EXCEL_EPOCH + timedelta(days=int(value))
        except (OverflowError, ValueError):
            return None

    text = str(value).strip()
    if not text:
        return None

    match = _DMY_PATTERN.search(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return _safe_date(year, month, day)

    match = _ISO_PATTERN.search(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _safe_date(year, month, day)

    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        logger.debug(f"Unparseable date cell: {text!r}")
        return None


def parse_sheet_time(value: Any) -> Optional[time]:
    """
    Parse a spreadsheet cell into a time of day (second precision).

    Accepts time / datetime objects, "H:MM" or "H:MM:SS" strings, and numeric
    fractions of a day as stored by Excel.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value.time().replace(microsecond=0)
    if isinstance(value, time):
        return value.replace(microsecond=0)

    if isinstance(value, (int, float, Decimal)):
        if not math.isfinite(value):
            return None
        total_seconds = round(float(value) * 86400)
        if total_seconds < 0 or total_seconds >= 86400:
            return None
        return time(total_seconds // 3600, (total_seconds % 3600) // 60, total_seconds % 60)

    match = _TIME_PATTERN.search(str(value))
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    try:
        return time(hours, minutes, seconds)
    except ValueError:
        return None
