"""Faceted filtering of a snapshot within the current window.

Facets: instructor name, regional, modality, program (event title) and
module (event detail line). Events whose location carries a scope marker
("Todas las Regionales", "Nacional", ...) are visible under every regional
selection; all other events of an unselected regional are hidden.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable

from .daykeys import merged_view
from .models import Event, Row, Snapshot
from .types import FilterState

DEFAULT_SCOPE_MARKERS = (
    "todas las regionales",
    "nacional",
    "national",
    "nationwide",
    "all regions",
)


def is_scoped(event: Event, markers: Iterable[str] = DEFAULT_SCOPE_MARKERS) -> bool:
    """True if the event's location marks it as applying to every regional."""
    location = (event.location or "").casefold()
    return any(marker.casefold() in location for marker in markers if marker)


def _event_matches(row: Row, event: Event, filters: FilterState) -> bool:
    if filters.instructors and row.instructor not in filters.instructors:
        return False
    if filters.modalities and event.modality not in filters.modalities:
        return False
    if filters.programs and event.title not in filters.programs:
        return False
    if filters.modules and not any(d in filters.modules for d in event.details):
        return False
    return True


def _with_events(row: Row, events: dict[str, list[Event]]) -> Row:
    return Row(
        id=row.id,
        instructor=row.instructor,
        city=row.city,
        regional=row.regional,
        events=events,
    )


def filter_row(
    row: Row,
    filters: FilterState,
    dates: list[str],
    scope_markers: Iterable[str] = DEFAULT_SCOPE_MARKERS,
    legacy_scope: set[str] | None = None,
) -> Row | None:
    """Filtered copy of one row, or None if the row is hidden."""
    view = merged_view(row, dates, legacy_scope)
    if filters.is_empty():
        return _with_events(row, view)

    scoped_only = bool(filters.regionals) and row.regional not in filters.regionals
    markers = tuple(scope_markers)

    kept: dict[str, list[Event]] = {}
    for day, events in view.items():
        candidates = [e for e in events if is_scoped(e, markers)] if scoped_only else events
        matching = [e for e in candidates if _event_matches(row, e, filters)]
        if matching:
            kept[day] = matching

    if not kept:
        return None
    return _with_events(row, kept)


def filter_rows(
    snapshot: Snapshot,
    filters: FilterState,
    dates: list[str],
    scope_markers: Iterable[str] = DEFAULT_SCOPE_MARKERS,
    legacy_scope: set[str] | None = None,
) -> list[Row]:
    """Rows visible under ``filters`` restricted to ``dates``, in row order."""
    result = []
    for row in snapshot.rows:
        filtered = filter_row(row, filters, dates, scope_markers, legacy_scope)
        if filtered is not None:
            result.append(filtered)
    return result


@dataclass
class FacetOptions:
    """Selectable values for each facet."""
    instructors: list[str] = field(default_factory=list)
    regionals: list[str] = field(default_factory=list)
    modalities: list[str] = field(default_factory=list)
    programs: list[str] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "instructors": self.instructors,
            "regionals": self.regionals,
            "modalities": self.modalities,
            "programs": self.programs,
            "modules": self.modules,
        }


def facet_options(
    snapshot: Snapshot,
    dates: list[str],
    legacy_scope: set[str] | None = None,
) -> FacetOptions:
    """Instructors, regionals and modalities across the snapshot; programs
    and modules only from events inside the window.
    """
    instructors = {row.instructor for row in snapshot.rows if row.instructor}
    regionals = {row.regional for row in snapshot.rows if row.regional}
    modalities = {
        e.modality
        for row in snapshot.rows
        for events in row.events.values()
        for e in events
        if e.modality
    }

    programs: set[str] = set()
    modules: set[str] = set()
    for row in snapshot.rows:
        for events in merged_view(row, dates, legacy_scope).values():
            for event in events:
                if event.title:
                    programs.add(event.title)
                modules.update(d for d in event.details if d)

    return FacetOptions(
        instructors=sorted(instructors),
        regionals=sorted(regionals),
        modalities=sorted(modalities),
        programs=sorted(programs),
        modules=sorted(modules),
    )
