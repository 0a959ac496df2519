"""Day-key handling for row event maps.

Two key formats coexist while data is migrated:
- legacy: two-digit day of month ("25"), relative to the owning window
- current: ISO date ("2024-06-25")

Read paths merge both and de-duplicate by event id (ISO entries win).
"""
import re
from datetime import date

from loguru import logger

from .models import Event, Row
from .types import Window
from .window import iter_dates, month_bounds

logger = logger.bind(module="schedule.daykeys")

_LEGACY_KEY = re.compile(r"^\d{1,2}$")
_ISO_KEY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_legacy_key(key: str) -> bool:
    return bool(_LEGACY_KEY.match(key))


def is_iso_key(key: str) -> bool:
    return bool(_ISO_KEY.match(key))


def is_valid_day_key(key: str) -> bool:
    """A legacy day of month (1-31) or an ISO key naming a real date."""
    if is_legacy_key(key):
        return 1 <= int(key) <= 31
    if not is_iso_key(key):
        return False
    try:
        date.fromisoformat(key)
    except ValueError:
        return False
    return True


def legacy_key_for(day: date | str) -> str:
    if isinstance(day, str):
        day = date.fromisoformat(day)
    return f"{day.day:02d}"


def resolve_legacy_key(key: str, window: Window) -> str | None:
    """Map a legacy day-of-month key to an ISO date using the owning window.

    Dates inside the window are preferred; otherwise the window's starting
    month is used. Returns None if the day does not exist there.
    """
    day_number = int(key)
    for day in iter_dates(window.start, window.end):
        if day.day == day_number:
            return day.isoformat()

    first, last = month_bounds(window.start.year, window.start.month)
    if 1 <= day_number <= last.day:
        return first.replace(day=day_number).isoformat()
    return None


def _dedupe(events: list[Event]) -> list[Event]:
    seen: set[str] = set()
    result = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        result.append(event)
    return result


def merged_events(row: Row, iso_date: str, legacy_scope: set[str] | None = None) -> list[Event]:
    """Events for one date, merging the ISO bucket with its legacy twin.

    Legacy buckets are only consulted when ``iso_date`` is inside
    ``legacy_scope`` (the dates of the window they were written against);
    with no scope they always apply.
    """
    events = list(row.events.get(iso_date, []))
    if legacy_scope is None or iso_date in legacy_scope:
        day_number = date.fromisoformat(iso_date).day
        for key, bucket in row.events.items():
            if is_legacy_key(key) and int(key) == day_number:
                events.extend(bucket)
    return _dedupe(events)


def merged_view(row: Row, dates: list[str], legacy_scope: set[str] | None = None) -> dict[str, list[Event]]:
    """ISO-keyed view of a row restricted to ``dates``; empty days omitted."""
    view = {}
    for iso_date in dates:
        events = merged_events(row, iso_date, legacy_scope)
        if events:
            view[iso_date] = events
    return view


def migrate_row(row: Row, window: Window) -> int:
    """Rewrite legacy keys of one row to ISO keys.

    Returns the number of events moved. Unresolvable keys are left in place.
    """
    moved = 0
    for key in [k for k in row.events if is_legacy_key(k)]:
        iso_key = resolve_legacy_key(key, window)
        if iso_key is None:
            logger.warning(f"Row {row.id}: cannot resolve legacy day key '{key}' in {window}")
            continue
        bucket = row.events.pop(key)
        row.events[iso_key] = _dedupe(row.events.get(iso_key, []) + bucket)
        moved += len(bucket)
    return moved


def cleanup_legacy_row(row: Row, force: bool = False) -> int:
    """Drop legacy entries that already exist under an ISO key.

    With ``force`` every legacy bucket is dropped. Returns events removed.
    """
    iso_ids = {
        e.id for key, bucket in row.events.items() if is_iso_key(key) for e in bucket
    }
    removed = 0
    for key in [k for k in row.events if is_legacy_key(k)]:
        bucket = row.events[key]
        keep = [] if force else [e for e in bucket if e.id not in iso_ids]
        removed += len(bucket) - len(keep)
        if keep:
            row.events[key] = keep
        else:
            del row.events[key]
    return removed
