"""Reports module: filtering, sorting and table display of NOTAM records."""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from notam_dashboard.models.notam import Category, NotamRecord
from notam_dashboard.parser import parse_date

# Category toggles plus the two time-window toggles
DEFAULT_FILTERS: Dict[str, bool] = {
    **{category.value: True for category in Category},
    Category.CANCELLED.value: False,
    'current': True,
    'future': True,
}


def is_current(record: NotamRecord, now: Optional[datetime] = None) -> bool:
    """In force right now (started, and not yet ended)."""
    now = now or datetime.now(timezone.utc)
    valid_from = parse_date(record.valid_from)
    valid_to = parse_date(record.valid_to)
    if valid_from and valid_from > now:
        return False
    return valid_to is None or valid_to >= now


def is_future(record: NotamRecord, now: Optional[datetime] = None) -> bool:
    """Starts after ``now``."""
    now = now or datetime.now(timezone.utc)
    valid_from = parse_date(record.valid_from)
    return bool(valid_from and valid_from > now)


def filter_records(records: Iterable[NotamRecord], filters: Optional[Dict[str, bool]] = None,
                   keyword: str = '', now: Optional[datetime] = None) -> List[NotamRecord]:
    """
    Apply category toggles, time toggles and a keyword search.

    Records whose validity has already ended are dropped.

    Args:
        records: Records to filter
        filters: Toggles keyed by category value, 'current' and 'future';
            missing keys fall back to DEFAULT_FILTERS
        keyword: Case-insensitive substring of summary, body, number or code
        now: Reference time for the time toggles

    Returns:
        Records that pass every filter, in input order
    """
    active = dict(DEFAULT_FILTERS)
    active.update(filters or {})
    now = now or datetime.now(timezone.utc)
    needle = (keyword or '').strip().lower()

    result = []
    for record in records:
        if not active.get(record.category.value, True):
            continue
        if is_future(record, now):
            if not active['future']:
                continue
        elif not is_current(record, now) or not active['current']:
            continue
        if needle:
            haystack = ' '.join((record.summary, record.body, record.number, record.code)).lower()
            if needle not in haystack:
                continue
        result.append(record)
    return result


def sort_records(records: Iterable[NotamRecord]) -> List[NotamRecord]:
    """Category priority first, then most recent validity start."""
    def newest_first(record: NotamRecord) -> float:
        valid_from = parse_date(record.valid_from)
        return -valid_from.timestamp() if valid_from else 0.0

    return sorted(records, key=lambda r: (r.category.priority, newest_first(r)))


def _display_results(results: List[Dict[str, str]]) -> str:
    """Format rows as a pipe-separated table."""
    if not results:
        return "No NOTAMs to display."

    columns = list(results[0].keys())

    widths = {col: len(col) for col in columns}
    for row in results:
        for col in columns:
            val_len = len(str(row[col]))
            if val_len > widths[col]:
                widths[col] = min(val_len, 100)  # Cap at 100 chars

    header = " | ".join(col.ljust(widths[col]) for col in columns)
    separator = "-+-".join("-" * widths[col] for col in columns)
    lines = [header, separator]
    for row in results:
        lines.append(" | ".join(str(row[col])[:widths[col]].ljust(widths[col]) for col in columns))
    lines.append(f"\n{len(results)} NOTAM(s).")
    return "\n".join(lines)


def render_table(records: Iterable[NotamRecord], new_ids: Iterable[str] = ()) -> str:
    """Render records as a text table; new records are starred."""
    new_ids = set(new_ids)
    rows = []
    for r in records:
        rows.append({
            'New': '*' if r.id in new_ids else '',
            'Code': r.code,
            'NOTAM': r.number or '-',
            'Category': r.category.title,
            'From': r.valid_from[:16] if r.valid_from else 'N/A',
            'To': r.valid_to[:16] if r.valid_to else 'PERM',
            'Source': r.source.value,
            'Summary': r.summary[:80],
        })
    return _display_results(rows)
