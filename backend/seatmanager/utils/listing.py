"""Search and ordering helpers for list endpoints.

The lists served here are small (one branch worth of students), so
filtering and sorting happen in Python over the already-serialized rows.
"""

import re
from typing import Iterable, List, Optional

_DIGITS = re.compile(r'(\d+)')


def natural_key(value: Optional[str]):
    """Sort key that orders embedded numbers numerically (`A2` < `A10`)."""
    parts = _DIGITS.split(value or '')
    return [(0, int(p), '') if p.isdigit() else (1, 0, p.lower()) for p in parts]


def search_rows(rows: Iterable[dict], term: Optional[str], fields: Iterable[str]) -> List[dict]:
    """Keep rows where any of `fields` contains `term`, case-insensitively."""
    rows = list(rows)
    if not term:
        return rows
    needle = term.strip().lower()
    fields = list(fields)
    out = []
    for r in rows:
        for f in fields:
            v = r.get(f)
            if v is not None and needle in str(v).lower():
                out.append(r)
                break
    return out


def sort_rows(rows: Iterable[dict], column: Optional[str], order: str = 'asc') -> List[dict]:
    """Order student summary rows by `createdAt` or `seatNumber`.

    Unknown columns leave the order unchanged. Rows without a creation
    timestamp sort as the newest.
    """
    rows = list(rows)
    reverse = (order or 'asc').lower() == 'desc'
    if column == 'seatNumber':
        return sorted(rows, key=lambda r: natural_key(r.get('seatNumber')), reverse=reverse)
    if column == 'createdAt':
        return sorted(rows, key=lambda r: r.get('createdAt') or '9999', reverse=reverse)
    return rows
