"""Time-conflict detection for a single row/day cell.

Cells hold a handful of events, so checks are a linear scan. Events without a
parseable time never produce or receive a conflict.
"""
from .models import Event
from .types import ConflictPolicy, ConflictResult, TimeRange
from .window import parse_time_range

_UNTIMED = 24 * 60 + 1


def build_time_range(start: str | None, end: str | None) -> str:
    """Compose the stored range string from form fields."""
    start = (start or "").strip()
    end = (end or "").strip()
    if start and end:
        return f"{start} a {end}"
    return start or end


def _ranges_overlap(a: TimeRange, b: TimeRange) -> bool:
    a_end = a.start if a.end is None else a.end
    b_end = b.start if b.end is None else b.end

    # Single endpoints behave as instants
    if a.end is None and b.end is None:
        return a.start == b.start
    if a.end is None:
        return b.start <= a.start < b_end
    if b.end is None:
        return a.start <= b.start < a_end
    return a.start < b_end and b.start < a_end


def ranges_conflict(a: TimeRange, b: TimeRange, policy: ConflictPolicy = ConflictPolicy.OVERLAP) -> bool:
    if ConflictPolicy(policy) is ConflictPolicy.EXACT:
        return a.normalized() == b.normalized()
    return _ranges_overlap(a, b)


def find_conflict(
    events: list[Event],
    candidate: str | TimeRange | None,
    exclude_event_id: str | None = None,
    policy: ConflictPolicy = ConflictPolicy.OVERLAP,
) -> ConflictResult:
    """Return the first event in ``events`` whose time collides with ``candidate``."""
    if isinstance(candidate, TimeRange):
        proposed = candidate
    else:
        proposed = parse_time_range(candidate)
    if proposed is None:
        return ConflictResult(has_conflict=False)

    for event in events:
        if exclude_event_id and event.id == exclude_event_id:
            continue
        existing = parse_time_range(event.time)
        if existing is None:
            continue
        if ranges_conflict(proposed, existing, policy):
            return ConflictResult(has_conflict=True, conflicting_event=event)

    return ConflictResult(has_conflict=False)


def start_minutes(event: Event) -> int:
    """Sort key: start time in minutes, untimed events last."""
    parsed = parse_time_range(event.time)
    return parsed.start if parsed else _UNTIMED


def sort_events_by_start(events: list[Event]) -> list[Event]:
    return sorted(events, key=start_minutes)
