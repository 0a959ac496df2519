"""Tests for the schedule store."""
from datetime import date

import pytest

from cronograma.schedule.errors import ConflictError, NotFoundError, ScheduleError, ValidationError
from cronograma.schedule.models import Event
from cronograma.schedule.store import ScheduleStore
from cronograma.schedule.types import Direction, Slot, ViewMode, Window


def make_event(time=None, title="ESCUELA DE PROMOTORES", **kwargs):
    return Event(
        title=title,
        details=kwargs.pop("details", ["Módulo Formativo"]),
        time=time,
        location=kwargs.pop("location", "Bucaramanga"),
        color=kwargs.pop("color", "#d42639"),
        **kwargs,
    )


def total_events(snapshot):
    return sum(row.event_count() for row in snapshot.rows)


class TestEventOperations:
    """Tests for adding, editing and removing events."""

    def test_add_event_assigns_distinct_ids(self, store):
        added = [
            store.add_event("instructor-1", "2024-06-24", make_event(), check_conflicts=False)
            for _ in range(25)
        ]

        ids = {e.id for e in added}
        assert len(ids) == 25
        assert all(i.startswith("evt-") for i in ids)
        assert store.has_unpublished_changes

    def test_add_event_keeps_unused_caller_id(self, store):
        event = make_event()
        event.id = "evt-custom"
        assert store.add_event("instructor-1", "2024-06-24", event).id == "evt-custom"

        again = store.add_event("instructor-1", "2024-06-24", event)
        assert again.id != "evt-custom"

    def test_add_event_requires_title(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.add_event("instructor-1", "2024-06-24", make_event(title=" "))

        assert exc_info.value.field == "title"
        assert not store.has_unpublished_changes

    def test_add_event_unknown_row(self, store):
        with pytest.raises(ValidationError):
            store.add_event("instructor-404", "2024-06-24", make_event())

    @pytest.mark.parametrize("day_key", ["lunes", "2024-02-30", "32", ""])
    def test_add_event_rejects_invalid_day_key(self, store, day_key):
        with pytest.raises(ValidationError) as exc_info:
            store.add_event("instructor-1", day_key, make_event())

        assert exc_info.value.field == "day_key"
        assert day_key not in store.draft.find_row("instructor-1").events
        assert not store.has_unpublished_changes
        assert store.integrity_report() == []

    def test_update_event_rejects_invalid_day_key(self, store):
        event = store.events_for_date("instructor-1", "2024-06-25")[0]

        with pytest.raises(ValidationError) as exc_info:
            store.update_event("instructor-1", "2024-02-30", event)

        assert exc_info.value.field == "day_key"
        assert not store.has_unpublished_changes

    def test_add_event_conflict_vetoed(self, store):
        store.add_event("instructor-2", "2024-06-24", make_event("8:00 a.m. a 9:00 a.m."))

        with pytest.raises(ConflictError) as exc_info:
            store.add_event("instructor-2", "2024-06-24", make_event("8:30 a.m. a 9:30 a.m."))

        assert exc_info.value.conflicting_event.time == "8:00 a.m. a 9:00 a.m."
        assert len(store.draft.find_row("instructor-2").events["2024-06-24"]) == 1

    def test_add_event_conflicts_with_legacy_twin(self, store):
        # evt-1 is stored under legacy key "25" from 8:00 a.m. to 5:00 p.m.
        with pytest.raises(ConflictError):
            store.add_event("instructor-1", "2024-06-25", make_event("10:00 a.m. a 11:00 a.m."))

    def test_add_event_without_check(self, store):
        store.add_event(
            "instructor-1", "2024-06-25", make_event("10:00 a.m. a 11:00 a.m."), check_conflicts=False
        )
        assert len(store.events_for_date("instructor-1", "2024-06-25")) == 2

    def test_update_event(self, store):
        event = store.events_for_date("instructor-1", "2024-06-25")[0]
        event.title = "ESCUELA DE LÍDERES"

        assert store.update_event("instructor-1", "2024-06-25", event)
        assert store.draft.find_row("instructor-1").events["25"][0].title == "ESCUELA DE LÍDERES"

    def test_update_missing_event(self, store):
        event = make_event()
        assert store.update_event("instructor-1", "2024-06-25", event) is False
        assert not store.has_unpublished_changes

    def test_move_event(self, store):
        before = store.events_for_date("instructor-1", "2024-06-25")[0]

        assert store.move_event("evt-1", "instructor-1", "25", "instructor-2", "2024-06-28")

        source = store.draft.find_row("instructor-1")
        target = store.draft.find_row("instructor-2")
        assert "25" not in source.events
        assert [e.id for e in target.events["2024-06-28"]] == ["evt-1"]
        assert target.events["2024-06-28"][0] == before
        assert total_events(store.draft) == 5

    def test_move_event_by_iso_key(self, store):
        assert store.move_event("evt-2", "instructor-1", "2024-06-26", "instructor-1", "2024-06-28")
        assert "26" not in store.draft.find_row("instructor-1").events

    def test_move_missing_event(self, store):
        assert store.move_event("evt-404", "instructor-1", "25", "instructor-2", "26") is False
        assert total_events(store.draft) == 5
        assert not store.has_unpublished_changes

    def test_move_event_rejects_invalid_target_day(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.move_event("evt-1", "instructor-1", "25", "instructor-2", "lunes")

        assert exc_info.value.field == "day_key"
        assert [e.id for e in store.draft.find_row("instructor-1").events["25"]] == ["evt-1"]
        assert "lunes" not in store.draft.find_row("instructor-2").events
        assert not store.has_unpublished_changes

    def test_copy_event_rejects_invalid_target_day(self, store):
        with pytest.raises(ValidationError):
            store.copy_event("evt-4", "instructor-2", "26", "instructor-1", "2024-02-30")

        assert total_events(store.draft) == 5
        assert not store.has_unpublished_changes

    def test_legacy_twin_ignored_outside_window(self, store):
        # "25" belongs to the June window, not to July 25
        assert store.delete_event("instructor-1", "2024-07-25", "evt-1") is False
        assert [e.id for e in store.draft.find_row("instructor-1").events["25"]] == ["evt-1"]
        assert store.delete_event("instructor-1", "2024-06-25", "evt-1")

    def test_strict_store_raises_on_missing(self, seed):
        strict = ScheduleStore(draft=seed, strict=True)

        with pytest.raises(NotFoundError):
            strict.move_event("evt-404", "instructor-1", "25", "instructor-2", "26")
        with pytest.raises(NotFoundError):
            strict.delete_event("instructor-1", "25", "evt-404")

    def test_copy_event(self, store):
        copied = store.copy_event("evt-4", "instructor-2", "26", "instructor-1", "2024-06-28")

        assert copied.id != "evt-4"
        assert copied.title == "NUEVO PROTOCOLO DE SERVICIO TERPEL"
        assert store.draft.find_row("instructor-2").events["26"][0].id == "evt-4"
        assert total_events(store.draft) == 6

    def test_copy_event_in_same_cell(self, store):
        copied = store.copy_event_in_same_cell("evt-5", "instructor-2", "27")

        cell = store.draft.find_row("instructor-2").events["27"]
        assert [e.id for e in cell] == ["evt-5", copied.id]

    def test_delete_event(self, store):
        assert store.delete_event("instructor-2", "26", "evt-4")
        assert "26" not in store.draft.find_row("instructor-2").events

    def test_clear_all_draft_events(self, store):
        assert store.clear_all_draft_events() == 5
        assert total_events(store.draft) == 0
        assert len(store.draft.rows) == 2
        assert total_events(store.published) == 5


class TestInstructorOperations:
    """Tests for instructor/row pairs."""

    def test_add_instructor_creates_row(self, store):
        instructor = store.add_instructor("ANA GÓMEZ", city="Cali", regional="SUR")

        row = store.draft.find_row(instructor.id)
        assert row is not None
        assert row.instructor == "ANA GÓMEZ"
        assert row.regional == "SUR"
        assert row.events == {}

    def test_add_instructor_requires_name(self, store):
        with pytest.raises(ValidationError):
            store.add_instructor("  ")

    def test_update_instructor_mirrors_row(self, store):
        assert store.update_instructor("instructor-2", regional="ORIENTE")

        assert store.draft.find_instructor("instructor-2").regional == "ORIENTE"
        assert store.draft.find_row("instructor-2").regional == "ORIENTE"
        assert store.draft.find_row("instructor-2").instructor == "ZULAY VERA"

    def test_delete_instructor_removes_row(self, store):
        assert store.delete_instructor("instructor-1")

        assert store.draft.find_instructor("instructor-1") is None
        assert store.draft.find_row("instructor-1") is None
        assert store.delete_instructor("instructor-1") is False


class TestConfigOperations:
    """Tests for titles, windows and navigation."""

    def test_window_title_default_and_override(self, store):
        assert store.window_title() == "Semana del 24 al 28 de junio de 2024"

        key = store.update_window_title("Semana de lanzamiento")
        assert key == "2024-06-24_2024-06-28"
        assert store.window_title() == "Semana de lanzamiento"

        store.update_window_title("")
        assert store.window_title() == "Semana del 24 al 28 de junio de 2024"

    def test_update_title(self, store):
        store.update_title("Cronograma 2025")
        assert store.draft.config.title == "Cronograma 2025"
        assert store.published.config.title == "Cronograma 2024"

    def test_update_window_validates(self, store):
        with pytest.raises(ValidationError):
            store.update_window("2024-06-28", "2024-06-24")
        with pytest.raises(ValidationError):
            store.update_window("2024-13-01", "2024-13-05")

    def test_navigate_week(self, store):
        assert store.navigate_week(Direction.NEXT) == Window("2024-07-01", "2024-07-05")
        assert store.draft.config.current_window == Window("2024-07-01", "2024-07-05")
        assert store.published.config.current_window == Window("2024-06-24", "2024-06-28")

    def test_navigate_month(self, store):
        assert store.navigate_month("prev") == Window("2024-04-29", "2024-05-03")

    def test_reset_to_current_week(self, store):
        store.navigate_week(Direction.NEXT)
        assert store.reset_to_current_week(today=date(2024, 6, 29)) == Window("2024-06-24", "2024-06-28")

    def test_monthly_view_mode(self, store):
        store.set_view_mode(ViewMode.MONTHLY)

        assert store.current_window_key() == "2024-06"
        assert store.window_title() == "Junio 2024"
        assert len(store.current_dates()) == 30


class TestQueriesAndIsolation:
    """Tests for read paths and snapshot isolation."""

    def test_events_for_date_merges_legacy_keys(self, store):
        assert [e.id for e in store.events_for_date("instructor-1", "2024-06-25")] == ["evt-1"]
        assert store.events_for_date("instructor-1", "2024-07-25") == []

    def test_seed_modality_split_from_time(self, store):
        event = store.events_for_date("instructor-1", "2024-06-25")[0]
        assert event.modality == "Presencial"
        assert event.time == "8:00 a.m. a 5:00 p.m."

    def test_check_time_conflict(self, store):
        result = store.check_time_conflict("instructor-1", "2024-06-26", "7:00 a.m.", "8:30 a.m.")
        assert result.has_conflict
        assert result.conflicting_event.id == "evt-2"

        result = store.check_time_conflict(
            "instructor-1", "2024-06-26", "7:00 a.m.", "8:30 a.m.", exclude_event_id="evt-2"
        )
        assert not result.has_conflict

    def test_snapshot_copy_is_isolated(self, store):
        copy = store.snapshot(Slot.DRAFT)
        copy.rows[0].events.clear()

        assert store.draft.rows[0].event_count() == 3

    def test_subscribers_receive_copies(self, store):
        received = []
        unsubscribe = store.subscribe(received.append)

        store.delete_event("instructor-2", "26", "evt-4")
        unsubscribe()
        store.delete_event("instructor-2", "27", "evt-5")

        assert len(received) == 1
        assert received[0] is not store.draft
        assert received[0].find_row("instructor-2").event_count() == 1

    def test_failing_subscriber_does_not_block_mutation(self, store):
        def broken(snapshot):
            raise RuntimeError("boom")

        store.subscribe(broken)
        assert store.delete_event("instructor-2", "26", "evt-4")

    def test_closed_store_rejects_mutations(self, store):
        store.close()
        with pytest.raises(ScheduleError):
            store.add_event("instructor-1", "2024-06-24", make_event())
