import re
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"

_MONTH_RE = re.compile(MONTH_PATTERN)


def parse_month(value: Optional[str]) -> str:
    """Validate a ``YYYY-MM`` month key and return it unchanged."""
    if not value or not _MONTH_RE.match(value):
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    return value


def month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def today_in(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()
