"""Calendar helpers: month keys and spreadsheet cell dates.

Month keys are always taken from the local calendar representation of a
date. Aware datetimes are converted to local time first, so an evening
entry in a negative UTC offset never lands in the following day or month.
"""

import logging
import re
from datetime import date, datetime, timedelta

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

# Google Sheets counts days from 1899-12-30 (Lotus 1-2-3 compatible epoch)
SHEETS_EPOCH = date(1899, 12, 30)
_MIN_SERIAL = -20000
_MAX_SERIAL = 2958465  # 9999-12-31

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def to_local_date(value: date | datetime) -> date:
    """Return the calendar date of *value* as seen on the local clock."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    return value


def format_month_key(value: date | datetime) -> str:
    """Format a date as a ``YYYY-MM`` month key."""
    local = to_local_date(value)
    return f"{local.year:04d}-{local.month:02d}"


def month_key(year: int, month: int) -> str:
    """Build a month key from its parts."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {month}")
    return f"{year:04d}-{month:02d}"


def parse_month_key(key: str) -> date:
    """Parse a ``YYYY-MM`` month key into the first day of that month."""
    match = _MONTH_KEY_RE.match(key.strip())
    if not match:
        raise ValueError(f"Invalid month key: {key!r} (expected YYYY-MM)")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {key!r} (month out of range)")
    return date(year, month, 1)


def month_name(month: int) -> str:
    """Short English month name for chart axes (1 = Jan)."""
    return MONTH_NAMES[month - 1]


def google_serial_to_date(serial: float) -> date:
    """
    Convert a Google Sheets serial date to a calendar date.

    Fractional parts carry the time of day and are discarded.

    Raises:
        ValueError: If the serial is outside the range Sheets can represent
    """
    if serial < _MIN_SERIAL or serial > _MAX_SERIAL:
        raise ValueError(f"Serial date {serial} is out of supported range")
    return SHEETS_EPOCH + timedelta(days=int(serial))


def to_sheet_date(value: date) -> str:
    """Serialize a date for a spreadsheet cell without any UTC shift."""
    return to_local_date(value).isoformat()


def parse_cell_date(value: object) -> date:
    """
    Parse a spreadsheet cell into a date.

    Accepts ``date``/``datetime`` objects, Google serial numbers (as numbers
    or numeric strings), ISO ``YYYY-MM-DD`` strings (a time part is ignored)
    and ``YYYY-MM`` month keys.

    Raises:
        ValueError: If the cell cannot be read as a date
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a date: {value!r}")
    if isinstance(value, (date, datetime)):
        return to_local_date(value)
    if isinstance(value, (int, float)):
        return google_serial_to_date(float(value))
    if not isinstance(value, str):
        raise ValueError(f"Unsupported date cell type: {type(value).__name__}")

    text = value.strip()
    if not text:
        raise ValueError("Empty date cell")

    if _MONTH_KEY_RE.match(text):
        return parse_month_key(text)

    try:
        return google_serial_to_date(float(text))
    except ValueError:
        pass

    # Take the calendar part only; "2025-03-01T00:00:00.000Z" is March 1st
    return date.fromisoformat(text[:10])
