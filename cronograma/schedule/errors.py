"""Error taxonomy for the schedule core.

- ValidationError / ConflictError: local, raised synchronously to the caller.
- PersistenceError / IntegrityError: retried inside the gateway, escalated
  only once the retry budget is exhausted.
"""
from typing import Any


class ScheduleError(Exception):
    """Base class for all schedule errors."""


class ValidationError(ScheduleError):
    """A required field is missing or a reference is invalid."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ScheduleError):
    """A time range collides with another event in the same cell."""

    def __init__(self, message: str, conflicting_event: Any = None):
        super().__init__(message)
        self.conflicting_event = conflicting_event


class NotFoundError(ScheduleError):
    """A mutation addressed a missing row, day or event (strict mode only)."""


class PermissionDeniedError(ScheduleError):
    """The permission collaborator refused an elevated operation."""

    def __init__(self, permission: str):
        super().__init__(f"Permission denied: {permission}")
        self.permission = permission


class PersistenceError(ScheduleError):
    """Durable storage failed to read or write a slot."""

    def __init__(self, message: str, slot: str | None = None, attempts: int = 0):
        super().__init__(message)
        self.slot = slot
        self.attempts = attempts


class IntegrityError(PersistenceError):
    """A written snapshot failed read-back verification."""

    def __init__(self, problems: list[str], slot: str | None = None):
        summary = "; ".join(problems[:5])
        if len(problems) > 5:
            summary += f" (+{len(problems) - 5} more)"
        super().__init__(f"Integrity check failed: {summary}", slot=slot)
        self.problems = problems
