"""Schedule core: models, calendar windows, conflicts, filters and the store."""
from .errors import (
    ConflictError,
    IntegrityError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ScheduleError,
    ValidationError,
)
from .models import Event, Instructor, Row, ScheduleConfig, Snapshot
from .store import ScheduleStore
from .types import ConflictPolicy, Direction, FilterState, Slot, ViewMode, Window

__all__ = [
    "ConflictError",
    "ConflictPolicy",
    "Direction",
    "Event",
    "FilterState",
    "Instructor",
    "IntegrityError",
    "NotFoundError",
    "PermissionDeniedError",
    "PersistenceError",
    "Row",
    "ScheduleConfig",
    "ScheduleError",
    "ScheduleStore",
    "Slot",
    "Snapshot",
    "ValidationError",
    "ViewMode",
    "Window",
]
