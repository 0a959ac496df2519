"""Core type definitions for the schedule system.

This module defines:
- Enums for slots, view modes, navigation and conflict policy
- Small value types shared by the calculator, detector and filter engine
"""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any


# ============== Enums ==============

class Slot(str, Enum):
    """Named persistent location holding one snapshot."""
    DRAFT = "draft"
    PUBLISHED = "published"


class ViewMode(str, Enum):
    """How the current window is displayed and filtered."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Direction(str, Enum):
    """Navigation direction."""
    PREV = "prev"
    NEXT = "next"

    @property
    def step(self) -> int:
        return -1 if self is Direction.PREV else 1


class ConflictPolicy(str, Enum):
    """How two time ranges in the same cell are compared."""
    EXACT = "exact"       # Normalized range strings are equal
    OVERLAP = "overlap"   # Half-open intervals intersect


# ============== Calendar Types ==============

@dataclass(frozen=True)
class Window:
    """An inclusive date span, stored as ISO strings like the slot document."""
    start_date: str
    end_date: str

    @property
    def start(self) -> date:
        return date.fromisoformat(self.start_date)

    @property
    def end(self) -> date:
        return date.fromisoformat(self.end_date)

    def to_dict(self) -> dict[str, Any]:
        return {"startDate": self.start_date, "endDate": self.end_date}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Window":
        return cls(
            start_date=data.get("startDate", ""),
            end_date=data.get("endDate", ""),
        )

    @classmethod
    def from_dates(cls, start: date, end: date) -> "Window":
        return cls(start_date=start.isoformat(), end_date=end.isoformat())


@dataclass(frozen=True)
class MonthDay:
    """One cell of the 6x7 month grid."""
    date: str
    day_number: int
    is_current_month: bool
    is_weekend: bool
    is_today: bool


@dataclass(frozen=True)
class TimeRange:
    """A parsed time range in minutes since midnight.

    ``end`` is None for a single-endpoint range.
    """
    start: int
    end: int | None = None

    def normalized(self) -> str:
        from .window import format_clock
        if self.end is None:
            return format_clock(self.start)
        return f"{format_clock(self.start)} a {format_clock(self.end)}"


# ============== Result Types ==============

@dataclass
class ConflictResult:
    """Result of a time-conflict check."""
    has_conflict: bool
    conflicting_event: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflict": self.has_conflict,
            "conflicting_event": (
                self.conflicting_event.to_dict() if self.conflicting_event else None
            ),
        }


@dataclass
class FilterState:
    """Active facet selection."""
    instructors: list[str] = field(default_factory=list)
    regionals: list[str] = field(default_factory=list)
    modalities: list[str] = field(default_factory=list)
    programs: list[str] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.instructors or self.regionals or self.modalities
            or self.programs or self.modules
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "instructors": list(self.instructors),
            "regionals": list(self.regionals),
            "modalities": list(self.modalities),
            "programs": list(self.programs),
            "modules": list(self.modules),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FilterState":
        return cls(
            instructors=list(data.get("instructors", [])),
            regionals=list(data.get("regionals", [])),
            modalities=list(data.get("modalities", [])),
            programs=list(data.get("programs", [])),
            modules=list(data.get("modules", [])),
        )
