"""In-memory schedule state: draft and published snapshots.

The store is an explicit state container. Every mutation is synchronous,
touches only the draft, flags unpublished changes and notifies subscribers
with a full copy of the new draft. Persistence is a separate, explicit step
(see ``service.publish``).

Draft and published never share storage: snapshots enter and leave the
store as deep copies.
"""
import copy
from datetime import date
from typing import Callable, Iterable

from loguru import logger

from . import daykeys, integrity
from . import window as calendar
from .conflicts import build_time_range, find_conflict
from .errors import ConflictError, NotFoundError, ScheduleError, ValidationError
from .filters import DEFAULT_SCOPE_MARKERS, FacetOptions, facet_options, filter_rows
from .models import (
    EVENT_ID_PREFIX,
    Event,
    Instructor,
    Row,
    Snapshot,
    new_event_id,
    new_instructor_id,
)
from .types import (
    ConflictPolicy,
    ConflictResult,
    Direction,
    FilterState,
    Slot,
    ViewMode,
    Window,
)

logger = logger.bind(module="schedule.store")

SnapshotCallback = Callable[[Snapshot], None]


class ScheduleStore:
    """Single source of truth for the draft and published snapshots."""

    def __init__(
        self,
        draft: Snapshot | None = None,
        published: Snapshot | None = None,
        conflict_policy: ConflictPolicy = ConflictPolicy.OVERLAP,
        scope_markers: Iterable[str] = DEFAULT_SCOPE_MARKERS,
        strict: bool = False,
    ):
        """Initialize store.

        Args:
            draft: Initial draft snapshot (copied)
            published: Initial published snapshot (copied); defaults to a copy of the draft
            conflict_policy: How time ranges in one cell are compared
            scope_markers: Location substrings that mark an event as nationwide
            strict: Raise NotFoundError instead of ignoring mutations on missing targets
        """
        self._draft = draft.copy() if draft else Snapshot()
        self._published = published.copy() if published else self._draft.copy()
        self.conflict_policy = ConflictPolicy(conflict_policy)
        self.scope_markers = tuple(scope_markers)
        self.strict = strict
        self.has_unpublished_changes = False
        self._subscribers: list[SnapshotCallback] = []
        self._closed = False

    # ============== Lifecycle ==============

    def close(self) -> None:
        """Drop all subscribers; further mutations raise."""
        self._subscribers.clear()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a draft-change listener. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _ensure_open(self) -> None:
        if self._closed:
            raise ScheduleError("Schedule store is closed")

    def _commit(self, action: str) -> None:
        self.has_unpublished_changes = True
        logger.debug(f"Draft changed: {action}")
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self._draft.copy())
            except Exception as e:
                logger.error(f"Draft subscriber failed: {e}")

    def _missing(self, message: str) -> None:
        if self.strict:
            raise NotFoundError(message)
        logger.warning(f"Ignored mutation: {message}")

    # ============== Snapshots ==============

    @property
    def draft(self) -> Snapshot:
        """Live draft; treat as read-only and mutate through the store."""
        return self._draft

    @property
    def published(self) -> Snapshot:
        """Live published snapshot; treat as read-only."""
        return self._published

    def snapshot(self, slot: Slot | str = Slot.DRAFT) -> Snapshot:
        """Deep copy of the requested slot."""
        return self._slot(slot).copy()

    def _slot(self, slot: Slot | str) -> Snapshot:
        return self._draft if Slot(slot) is Slot.DRAFT else self._published

    def replace_draft(self, snapshot: Snapshot) -> None:
        """Install a complete draft (e.g. pushed by another session)."""
        self._ensure_open()
        self._draft = snapshot.copy()
        self._notify()

    def replace_published(self, snapshot: Snapshot) -> None:
        self._ensure_open()
        self._published = snapshot.copy()

    def mark_clean(self) -> None:
        self.has_unpublished_changes = False

    def mark_dirty(self) -> None:
        self.has_unpublished_changes = True

    # ============== Event Helpers ==============

    def _row(self, row_id: str) -> Row | None:
        return self._draft.find_row(row_id)

    @staticmethod
    def validate_event(event: Event) -> None:
        """Raise ValidationError if a required field is empty."""
        for name in integrity.REQUIRED_EVENT_FIELDS:
            value = getattr(event, name)
            if not value or not str(value).strip():
                raise ValidationError(f"Event {name} is required", field=name)

    @staticmethod
    def validate_day_key(day_key: str) -> None:
        """Raise ValidationError unless the key is a day of month or a real ISO date."""
        if not daykeys.is_valid_day_key(day_key):
            raise ValidationError(f"Invalid day key '{day_key}'", field="day_key")

    def _locate(self, row: Row, day_key: str, event_id: str) -> tuple[str, int] | None:
        """Find an event in a cell.

        ISO keys inside the legacy scope fall back to their legacy twin.
        """
        keys = [day_key]
        if daykeys.is_iso_key(day_key) and day_key in self.legacy_scope():
            legacy = daykeys.legacy_key_for(day_key)
            keys += [k for k in row.events if daykeys.is_legacy_key(k) and int(k) == int(legacy)]
        for key in keys:
            for index, event in enumerate(row.events.get(key, [])):
                if event.id == event_id:
                    return key, index
        return None

    def _cell_events(self, row: Row, day_key: str) -> list[Event]:
        if daykeys.is_iso_key(day_key):
            return daykeys.merged_events(row, day_key, self.legacy_scope())
        return list(row.events.get(day_key, []))

    def _fresh_event_id(self) -> str:
        used = self._draft.event_ids()
        event_id = new_event_id()
        while event_id in used:
            event_id = new_event_id()
        return event_id

    def _veto_conflict(self, row: Row, day_key: str, event: Event) -> None:
        result = find_conflict(
            self._cell_events(row, day_key),
            event.time,
            exclude_event_id=event.id,
            policy=self.conflict_policy,
        )
        if result.has_conflict:
            other = result.conflicting_event
            raise ConflictError(
                f'Time {event.time} collides with "{other.title}" ({other.time})',
                conflicting_event=other,
            )

    @staticmethod
    def _drop_if_empty(row: Row, key: str) -> None:
        if key in row.events and not row.events[key]:
            del row.events[key]

    # ============== Event Operations ==============

    def add_event(self, row_id: str, day_key: str, event: Event, check_conflicts: bool = True) -> Event:
        """Append an event to a cell and return the stored copy.

        The caller's id is kept when it is prefixed and unused; otherwise a
        fresh id is assigned.
        """
        self._ensure_open()
        self.validate_event(event)
        self.validate_day_key(day_key)
        row = self._row(row_id)
        if row is None:
            raise ValidationError(f"Row {row_id} does not exist", field="row_id")

        new_event = copy.deepcopy(event)
        if not new_event.id.startswith(EVENT_ID_PREFIX) or new_event.id in self._draft.event_ids():
            new_event.id = self._fresh_event_id()

        if check_conflicts and new_event.time:
            self._veto_conflict(row, day_key, new_event)

        row.events.setdefault(day_key, []).append(new_event)
        self._commit(f"add {new_event.id} to {row_id}/{day_key}")
        return copy.deepcopy(new_event)

    def update_event(self, row_id: str, day_key: str, event: Event, check_conflicts: bool = True) -> bool:
        """Replace the event with the same id in a cell."""
        self._ensure_open()
        self.validate_event(event)
        self.validate_day_key(day_key)
        row = self._row(row_id)
        found = self._locate(row, day_key, event.id) if row else None
        if row is None or found is None:
            self._missing(f"update of event {event.id} at {row_id}/{day_key}")
            return False

        if check_conflicts and event.time:
            self._veto_conflict(row, day_key, event)

        key, index = found
        row.events[key][index] = copy.deepcopy(event)
        self._commit(f"update {event.id} at {row_id}/{key}")
        return True

    def move_event(self, event_id: str, from_row: str, from_day: str, to_row: str, to_day: str) -> bool:
        """Move an event unmodified from one cell to another."""
        self._ensure_open()
        self.validate_day_key(to_day)
        source = self._row(from_row)
        target = self._row(to_row)
        found = self._locate(source, from_day, event_id) if source else None
        if source is None or target is None or found is None:
            self._missing(f"move of event {event_id} from {from_row}/{from_day} to {to_row}/{to_day}")
            return False

        key, index = found
        event = source.events[key].pop(index)
        self._drop_if_empty(source, key)
        target.events.setdefault(to_day, []).append(event)
        self._commit(f"move {event_id} {from_row}/{key} -> {to_row}/{to_day}")
        return True

    def copy_event(self, event_id: str, from_row: str, from_day: str, to_row: str, to_day: str) -> Event | None:
        """Duplicate an event under a fresh id into another cell."""
        self._ensure_open()
        self.validate_day_key(to_day)
        source = self._row(from_row)
        target = self._row(to_row)
        found = self._locate(source, from_day, event_id) if source else None
        if source is None or target is None or found is None:
            self._missing(f"copy of event {event_id} from {from_row}/{from_day} to {to_row}/{to_day}")
            return None

        key, index = found
        duplicate = copy.deepcopy(source.events[key][index])
        duplicate.id = self._fresh_event_id()
        target.events.setdefault(to_day, []).append(duplicate)
        self._commit(f"copy {event_id} -> {duplicate.id} at {to_row}/{to_day}")
        return copy.deepcopy(duplicate)

    def copy_event_in_same_cell(self, event_id: str, row_id: str, day_key: str) -> Event | None:
        return self.copy_event(event_id, row_id, day_key, row_id, day_key)

    def delete_event(self, row_id: str, day_key: str, event_id: str) -> bool:
        self._ensure_open()
        row = self._row(row_id)
        found = self._locate(row, day_key, event_id) if row else None
        if row is None or found is None:
            self._missing(f"delete of event {event_id} at {row_id}/{day_key}")
            return False

        key, index = found
        del row.events[key][index]
        self._drop_if_empty(row, key)
        self._commit(f"delete {event_id} at {row_id}/{key}")
        return True

    def clear_all_draft_events(self) -> int:
        """Remove every event from every row; instructors are kept."""
        self._ensure_open()
        removed = sum(row.event_count() for row in self._draft.rows)
        for row in self._draft.rows:
            row.events = {}
        self._commit(f"clear {removed} events")
        return removed

    # ============== Instructor Operations ==============

    def add_instructor(self, name: str, city: str = "", regional: str = "") -> Instructor:
        """Create an instructor together with its row."""
        self._ensure_open()
        if not name or not name.strip():
            raise ValidationError("Instructor name is required", field="name")

        used = {i.id for i in self._draft.instructors} | {r.id for r in self._draft.rows}
        instructor_id = new_instructor_id()
        while instructor_id in used:
            instructor_id = new_instructor_id()

        instructor = Instructor(id=instructor_id, name=name.strip(), city=city, regional=regional)
        self._draft.instructors.append(instructor)
        self._draft.rows.append(Row.for_instructor(instructor))
        self._commit(f"add instructor {instructor.id}")
        return copy.deepcopy(instructor)

    def update_instructor(
        self,
        instructor_id: str,
        name: str | None = None,
        city: str | None = None,
        regional: str | None = None,
    ) -> bool:
        """Update an instructor and mirror the change onto its row."""
        self._ensure_open()
        if name is not None and not name.strip():
            raise ValidationError("Instructor name is required", field="name")
        instructor = self._draft.find_instructor(instructor_id)
        row = self._row(instructor_id)
        if instructor is None or row is None:
            self._missing(f"update of instructor {instructor_id}")
            return False

        if name is not None:
            instructor.name = row.instructor = name.strip()
        if city is not None:
            instructor.city = row.city = city
        if regional is not None:
            instructor.regional = row.regional = regional
        self._commit(f"update instructor {instructor_id}")
        return True

    def delete_instructor(self, instructor_id: str) -> bool:
        """Remove an instructor and its row (with all its events)."""
        self._ensure_open()
        if self._draft.find_instructor(instructor_id) is None and self._row(instructor_id) is None:
            self._missing(f"delete of instructor {instructor_id}")
            return False

        self._draft.instructors = [i for i in self._draft.instructors if i.id != instructor_id]
        self._draft.rows = [r for r in self._draft.rows if r.id != instructor_id]
        self._commit(f"delete instructor {instructor_id}")
        return True

    # ============== Config Operations ==============

    def update_title(self, title: str) -> None:
        """Set the schedule's global title."""
        self._ensure_open()
        self._draft.config.title = title
        self._commit("update title")

    def update_window_title(self, title: str, key: str | None = None) -> str:
        """Set the display title of a window (the current one by default)."""
        self._ensure_open()
        key = key or self.current_window_key()
        if title.strip():
            self._draft.config.titles_by_window[key] = title.strip()
        else:
            self._draft.config.titles_by_window.pop(key, None)
        self._commit(f"update window title {key}")
        return key

    def update_window(self, start_date: str, end_date: str) -> Window:
        self._ensure_open()
        try:
            new_window = Window(start_date=start_date, end_date=end_date)
            if new_window.start > new_window.end:
                raise ValidationError("Window start must not be after its end", field="start_date")
        except ValueError as e:
            raise ValidationError(f"Invalid window date: {e}", field="start_date") from e

        self._draft.config.current_window = new_window
        self._commit(f"window {start_date}..{end_date}")
        return new_window

    def set_view_mode(self, view_mode: ViewMode | str) -> None:
        self._ensure_open()
        self._draft.config.view_mode = ViewMode(view_mode)
        self._commit(f"view mode {self._draft.config.view_mode.value}")

    def navigate_week(self, direction: Direction | str) -> Window:
        """Advance or retreat the current window by one week."""
        self._ensure_open()
        new_window = calendar.navigate_week(self._draft.config.current_window, direction)
        return self._navigate(new_window)

    def navigate_month(self, direction: Direction | str) -> Window:
        """Move the current window to the first workweek of the adjacent month."""
        self._ensure_open()
        new_window = calendar.navigate_month(self._draft.config.current_window, direction)
        return self._navigate(new_window)

    def reset_to_current_week(self, today: date | None = None) -> Window:
        self._ensure_open()
        return self._navigate(calendar.week_window(today or date.today()))

    def _navigate(self, new_window: Window) -> Window:
        self._draft.config.current_window = new_window
        self._commit(f"navigate to {new_window.start_date}..{new_window.end_date}")
        logger.info(f"Current window: {self.window_title()}")
        return new_window

    # ============== Queries ==============

    def current_window_key(self, slot: Slot | str = Slot.DRAFT) -> str:
        config = self._slot(slot).config
        return calendar.window_key(config.current_window, config.view_mode)

    def window_title(self, key: str | None = None, slot: Slot | str = Slot.DRAFT) -> str:
        """Explicit title for a window, else one derived from its dates."""
        config = self._slot(slot).config
        key = key or calendar.window_key(config.current_window, config.view_mode)
        if key in config.titles_by_window:
            return config.titles_by_window[key]
        return calendar.default_window_title(config.current_window, config.view_mode)

    def current_dates(self, slot: Slot | str = Slot.DRAFT) -> list[str]:
        config = self._slot(slot).config
        return calendar.window_dates(config.current_window, config.view_mode)

    def legacy_scope(self, slot: Slot | str = Slot.DRAFT) -> set[str]:
        """Dates that legacy day-of-month keys refer to."""
        window = self._slot(slot).config.current_window
        return set(calendar.window_dates(window, ViewMode.WEEKLY))

    def events_for_date(self, row_id: str, iso_date: str, slot: Slot | str = Slot.DRAFT) -> list[Event]:
        """Merged legacy + ISO events of a row on one date (copies)."""
        row = self._slot(slot).find_row(row_id)
        if row is None:
            return []
        return copy.deepcopy(daykeys.merged_events(row, iso_date, self.legacy_scope(slot)))

    def check_time_conflict(
        self,
        row_id: str,
        day_key: str,
        start_time: str | None,
        end_time: str | None,
        exclude_event_id: str | None = None,
    ) -> ConflictResult:
        """Advisory check of a proposed range against one draft cell."""
        row = self._row(row_id)
        if row is None:
            return ConflictResult(has_conflict=False)
        return find_conflict(
            self._cell_events(row, day_key),
            build_time_range(start_time, end_time),
            exclude_event_id=exclude_event_id,
            policy=self.conflict_policy,
        )

    def filtered_rows(
        self,
        filters: FilterState,
        slot: Slot | str = Slot.PUBLISHED,
        window: Window | None = None,
        view_mode: ViewMode | str | None = None,
    ) -> list[Row]:
        """Rows visible under ``filters`` within a window (copies)."""
        snapshot = self._slot(slot)
        config = snapshot.config
        dates = calendar.window_dates(window or config.current_window, view_mode or config.view_mode)
        rows = filter_rows(snapshot, filters, dates, self.scope_markers, self.legacy_scope(slot))
        return copy.deepcopy(rows)

    def facets(
        self,
        slot: Slot | str = Slot.PUBLISHED,
        window: Window | None = None,
        view_mode: ViewMode | str | None = None,
    ) -> FacetOptions:
        snapshot = self._slot(slot)
        config = snapshot.config
        dates = calendar.window_dates(window or config.current_window, view_mode or config.view_mode)
        return facet_options(snapshot, dates, self.legacy_scope(slot))

    # ============== Maintenance ==============

    def integrity_report(self, slot: Slot | str = Slot.DRAFT) -> list[str]:
        return integrity.verify_snapshot(self._slot(slot))

    def migrate_day_keys(self) -> int:
        """Rewrite legacy day-of-month keys to ISO dates of the current window."""
        self._ensure_open()
        window = self._draft.config.current_window
        moved = sum(daykeys.migrate_row(row, window) for row in self._draft.rows)
        if moved:
            self._commit(f"migrate {moved} events to ISO day keys")
        return moved

    def cleanup_legacy_keys(self, force: bool = False) -> int:
        self._ensure_open()
        removed = sum(daykeys.cleanup_legacy_row(row, force) for row in self._draft.rows)
        if removed:
            self._commit(f"cleanup {removed} legacy events")
        return removed

    def remove_duplicate_events(self) -> int:
        self._ensure_open()
        removed = integrity.remove_duplicate_events(self._draft)
        if removed:
            self._commit(f"remove {removed} duplicates")
        return removed

    def fix_incomplete_events(self) -> int:
        self._ensure_open()
        fixed = integrity.fix_incomplete_events(self._draft)
        if fixed:
            self._commit(f"complete {fixed} events")
        return fixed
