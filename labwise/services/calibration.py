"""
Calibration date calculator.
Single source of truth for when an instrument is next due for external calibration.
"""
import re
from datetime import date, datetime
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from ..errors import ParseError


_FIRST_INTEGER = re.compile(r"\d+")

DateInput = Union[date, datetime, str, None]


def parse_periodicity_months(periodicity: Optional[str]) -> int:
    """
    Read the month count from a periodicity expression.

    The first integer found is the number of months: "6 meses" -> 6, "12" -> 12.

    Raises:
        ParseError: no integer in the string, or the count is zero
    """
    match = _FIRST_INTEGER.search(periodicity or "")
    if not match:
        raise ParseError("Periodicity has no month count", periodicity)
    months = int(match.group(0))
    if months <= 0:
        raise ParseError("Periodicity must be at least one month", periodicity)
    return months


def parse_calendar_date(value: DateInput) -> date:
    """
    Coerce a date, datetime or ISO string into a calendar date.

    Raises:
        ParseError: value is empty or not a calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not str(value).strip():
        raise ParseError("Empty date", value)
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ParseError(f"Not a calendar date: {text}", value) from exc


def next_calibration(last_date: DateInput, periodicity: Optional[str]) -> Optional[date]:
    """
    Next external calibration date: last_date plus N months, clamped to month end.

    Returns None when either input cannot be parsed; callers keep the
    previously stored value in that case instead of clearing it.
    """
    try:
        months = parse_periodicity_months(periodicity)
        start = parse_calendar_date(last_date)
    except ParseError:
        return None
    return start + relativedelta(months=months)
