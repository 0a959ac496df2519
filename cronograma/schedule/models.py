"""Data models for the schedule snapshot.

Models are plain dataclasses. ``to_dict``/``from_dict`` speak the persisted
slot-document format (camelCase keys), and normalize legacy shapes on read.
"""
import copy
import re
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import uuid4

from .types import ViewMode, Window

EVENT_ID_PREFIX = "evt-"
INSTRUCTOR_ID_PREFIX = "instructor-"

# "Presencial - 8:00 a.m. a 5:00 p.m." -> ("Presencial", "8:00 a.m. a 5:00 p.m.")
_EMBEDDED_MODALITY = re.compile(r"^\s*([^\d\s-][^-]*?)\s*-\s*(\d{1,2}:\d{2}.*)$")


def now_ms() -> int:
    """Get current timestamp in milliseconds."""
    return int(time.time() * 1000)


def new_event_id() -> str:
    return f"{EVENT_ID_PREFIX}{now_ms()}-{uuid4().hex[:9]}"


def new_instructor_id() -> str:
    return f"{INSTRUCTOR_ID_PREFIX}{now_ms()}-{uuid4().hex[:6]}"


def _details_from_value(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value]


@dataclass
class Instructor:
    """A person who can be assigned events."""
    id: str = field(default_factory=new_instructor_id)
    name: str = ""
    city: str = ""
    regional: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "city": self.city,
            "regional": self.regional,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Instructor":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            city=data.get("city", ""),
            regional=data.get("regional", ""),
        )


@dataclass
class Event:
    """A scheduled activity inside one row/day cell."""
    id: str = field(default_factory=new_event_id)
    title: str = ""
    details: list[str] = field(default_factory=list)
    time: str | None = None
    location: str = ""
    color: str = ""
    modality: str | None = None
    confirmed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to the storage shape.

        A single detail line collapses to a scalar string.
        """
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "details": self.details[0] if len(self.details) == 1 else list(self.details),
            "location": self.location,
            "color": self.color,
            "confirmed": self.confirmed,
        }
        if self.time:
            d["time"] = self.time
        if self.modality:
            d["modality"] = self.modality
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        time_value = data.get("time") or None
        modality = data.get("modality") or None

        if time_value and not modality:
            match = _EMBEDDED_MODALITY.match(time_value)
            if match:
                modality, time_value = match.group(1), match.group(2).strip()

        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            details=_details_from_value(data.get("details")),
            time=time_value,
            location=data.get("location", ""),
            color=data.get("color", ""),
            modality=modality,
            confirmed=bool(data.get("confirmed", False)),
        )


@dataclass
class Row:
    """Per-instructor container of events keyed by day."""
    id: str = ""
    instructor: str = ""
    city: str = ""
    regional: str = ""
    events: dict[str, list[Event]] = field(default_factory=dict)

    def event_count(self) -> int:
        return sum(len(events) for events in self.events.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instructor": self.instructor,
            "city": self.city,
            "regional": self.regional,
            "events": {
                day: [e.to_dict() for e in events]
                for day, events in self.events.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Row":
        return cls(
            id=data.get("id", ""),
            instructor=data.get("instructor", ""),
            city=data.get("city", ""),
            regional=data.get("regional", ""),
            events={
                str(day): [Event.from_dict(e) for e in (events or [])]
                for day, events in (data.get("events") or {}).items()
            },
        )

    @classmethod
    def for_instructor(cls, instructor: Instructor) -> "Row":
        return cls(
            id=instructor.id,
            instructor=instructor.name,
            city=instructor.city,
            regional=instructor.regional,
        )


def _default_window() -> Window:
    from .window import week_window
    return week_window(date.today())


@dataclass
class ScheduleConfig:
    """Global schedule configuration."""
    title: str = ""
    titles_by_window: dict[str, str] = field(default_factory=dict)
    current_window: Window = field(default_factory=_default_window)
    view_mode: ViewMode = ViewMode.WEEKLY

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "titlesByWindow": dict(self.titles_by_window),
            "currentWindow": self.current_window.to_dict(),
            "viewMode": self.view_mode.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduleConfig":
        window_data = data.get("currentWindow") or data.get("currentWeek")
        config = cls(
            title=data.get("title", ""),
            titles_by_window=dict(data.get("titlesByWindow") or {}),
            view_mode=ViewMode(data.get("viewMode", "weekly")),
        )
        if window_data:
            config.current_window = Window.from_dict(window_data)
        return config


@dataclass
class Snapshot:
    """A complete schedule value: the unit of persistence and isolation."""
    instructors: list[Instructor] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)
    config: ScheduleConfig = field(default_factory=ScheduleConfig)
    last_updated_ms: int | None = None

    def find_row(self, row_id: str) -> Row | None:
        for row in self.rows:
            if row.id == row_id:
                return row
        return None

    def find_instructor(self, instructor_id: str) -> Instructor | None:
        for instructor in self.instructors:
            if instructor.id == instructor_id:
                return instructor
        return None

    def event_ids(self) -> set[str]:
        return {
            event.id
            for row in self.rows
            for events in row.events.values()
            for event in events
        }

    def copy(self) -> "Snapshot":
        """Deep copy; snapshots never share storage."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted slot document."""
        return {
            "instructors": [i.to_dict() for i in self.instructors],
            "scheduleRows": [r.to_dict() for r in self.rows],
            "globalConfig": self.config.to_dict(),
            "lastUpdated": self.last_updated_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        snapshot = cls(
            instructors=[Instructor.from_dict(i) for i in data.get("instructors") or []],
            rows=[Row.from_dict(r) for r in data.get("scheduleRows") or []],
            last_updated_ms=data.get("lastUpdated"),
        )
        if data.get("globalConfig"):
            snapshot.config = ScheduleConfig.from_dict(data["globalConfig"])
        return snapshot
