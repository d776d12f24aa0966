"""Month and date parsing for report and list filters."""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

MONTH_RE = re.compile(r'^\d{4}-\d{2}$')


def parse_month(month: Optional[str]) -> Tuple[date, date]:
    """Return the first and last day of a `YYYY-MM` month.

    Raises ValueError for anything that is not a real calendar month
    (`2024-13` matches the pattern but is rejected too).
    """
    if not month or not MONTH_RE.match(month):
        raise ValueError('Invalid month format, use YYYY-MM')
    year, month_num = (int(p) for p in month.split('-'))
    if not 1 <= month_num <= 12 or year < 1:
        raise ValueError('Invalid month format, use YYYY-MM')
    last_day = calendar.monthrange(year, month_num)[1]
    return date(year, month_num, 1), date(year, month_num, last_day)


def month_datetime_bounds(month: str) -> Tuple[datetime, datetime]:
    """Half-open `[start, end)` datetime range covering the whole month."""
    first, last = parse_month(month)
    start = datetime.combine(first, datetime.min.time())
    end = datetime.combine(last + timedelta(days=1), datetime.min.time())
    return start, end


def parse_iso_date(value: Optional[str], field: str = 'date') -> Optional[date]:
    """Parse a `YYYY-MM-DD` query value; empty values mean no filter."""
    if value is None or value == '':
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f'Invalid {field}, use YYYY-MM-DD')


def parse_branch_id(value: Optional[str]) -> Optional[int]:
    """Parse the optional `branchId` query parameter."""
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError('Invalid branch ID')
