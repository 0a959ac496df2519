"""Snapshot integrity verification and repair helpers."""
from collections import Counter

from loguru import logger

from .daykeys import is_iso_key, is_legacy_key, is_valid_day_key
from .models import EVENT_ID_PREFIX, Snapshot

logger = logger.bind(module="schedule.integrity")

REQUIRED_EVENT_FIELDS = ("title", "location", "color")

DEFAULT_TITLE = "-"
DEFAULT_LOCATION = "Por definir"
DEFAULT_COLOR = "#638287"


def verify_snapshot(snapshot: Snapshot) -> list[str]:
    """Return the integrity problems found; empty means the snapshot is sound."""
    problems: list[str] = []

    instructor_ids = Counter(i.id for i in snapshot.instructors)
    row_ids = Counter(r.id for r in snapshot.rows)
    for dup in [k for k, n in instructor_ids.items() if n > 1]:
        problems.append(f"duplicate instructor id {dup}")
    for dup in [k for k, n in row_ids.items() if n > 1]:
        problems.append(f"duplicate row id {dup}")
    for missing in sorted(set(instructor_ids) - set(row_ids)):
        problems.append(f"instructor {missing} has no row")
    for orphan in sorted(set(row_ids) - set(instructor_ids)):
        problems.append(f"row {orphan} has no instructor")

    occurrences: dict[str, list[tuple[str, str]]] = {}
    for row in snapshot.rows:
        for day, events in row.events.items():
            if not is_valid_day_key(day):
                problems.append(f"row {row.id}: invalid day key '{day}'")
            for event in events:
                occurrences.setdefault(event.id, []).append((row.id, day))
                if not event.id.startswith(EVENT_ID_PREFIX):
                    problems.append(f"event '{event.id}' lacks the '{EVENT_ID_PREFIX}' prefix")
                for name in REQUIRED_EVENT_FIELDS:
                    if not getattr(event, name):
                        problems.append(f"event {event.id}: missing {name}")

    for event_id, places in occurrences.items():
        if len(places) > 1 and not _is_migration_twin(places):
            problems.append(f"duplicate event id {event_id}")

    return problems


def _is_migration_twin(places: list[tuple[str, str]]) -> bool:
    """One ISO and one legacy copy of the same day in the same row."""
    if len(places) != 2 or places[0][0] != places[1][0]:
        return False
    keys = sorted((places[0][1], places[1][1]), key=is_legacy_key)
    iso_key, legacy_key = keys
    return (
        is_iso_key(iso_key)
        and is_legacy_key(legacy_key)
        and int(iso_key[-2:]) == int(legacy_key)
    )


def remove_duplicate_events(snapshot: Snapshot) -> int:
    """Keep the first occurrence of every event id (ISO buckets first)."""
    seen: set[str] = set()
    removed = 0
    for row in snapshot.rows:
        ordered = sorted(row.events, key=lambda k: (not is_iso_key(k), k))
        for day in ordered:
            kept = []
            for event in row.events[day]:
                if event.id in seen:
                    removed += 1
                    continue
                seen.add(event.id)
                kept.append(event)
            row.events[day] = kept
    if removed:
        logger.info(f"Removed {removed} duplicate events")
    return removed


def fix_incomplete_events(snapshot: Snapshot) -> int:
    """Fill missing required fields with placeholders. Returns events touched."""
    fixed = 0
    defaults = {"title": DEFAULT_TITLE, "location": DEFAULT_LOCATION, "color": DEFAULT_COLOR}
    for row in snapshot.rows:
        for events in row.events.values():
            for event in events:
                touched = False
                for name, value in defaults.items():
                    if not getattr(event, name):
                        setattr(event, name, value)
                        touched = True
                fixed += touched
    if fixed:
        logger.info(f"Completed {fixed} events with missing fields")
    return fixed
