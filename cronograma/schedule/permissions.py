"""Permission collaborator interface.

Permission checks are pure predicates supplied by the caller (the auth layer
is external). Elevated operations call ``require_permission`` first.
"""
import hmac
from enum import Enum
from typing import Protocol

from .errors import PermissionDeniedError


class Permission(str, Enum):
    """Named rights checked before elevated operations."""
    PUBLISH = "publish"
    EDIT_CONFIG = "edit_config"
    MANAGE_INSTRUCTORS = "manage_instructors"
    EDIT_EVENTS = "edit_events"


class PermissionChecker(Protocol):
    """Protocol for the permission collaborator."""

    def has_permission(self, name: str) -> bool:
        ...

    def is_super_admin(self) -> bool:
        ...


class AllowAll:
    """Grants everything; for local tooling and tests."""

    def has_permission(self, name: str) -> bool:
        return True

    def is_super_admin(self) -> bool:
        return True


class TokenPermissions:
    """Grants every permission to the holder of the configured admin token."""

    def __init__(self, token: str | None, admin_token: str | None):
        self._granted = bool(
            token and admin_token and hmac.compare_digest(token, admin_token)
        )

    def has_permission(self, name: str) -> bool:
        return self._granted

    def is_super_admin(self) -> bool:
        return self._granted


def require_permission(checker: PermissionChecker, permission: Permission | str) -> None:
    name = permission.value if isinstance(permission, Permission) else permission
    if checker.is_super_admin() or checker.has_permission(name):
        return
    raise PermissionDeniedError(name)
