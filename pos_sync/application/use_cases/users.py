from __future__ import annotations

import logging
from typing import Any, Iterable

from pos_sync.application.use_cases.mutations import MutationExecutor, editable_changes, ensure_version
from pos_sync.application.use_cases.session import require_permission
from pos_sync.core.errors import InvalidStateTransitionError, ValidationError
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import USERS
from pos_sync.domain.models import Permission, Role, User

logger = logging.getLogger(__name__)

_ROLES = frozenset(role.value for role in Role)
_PERMISSIONS = frozenset(permission.value for permission in Permission)


def _validate_user_fields(name: str, role: str, pin: str, permissions: Iterable[str]) -> None:
    if not (name or "").strip():
        raise ValidationError("User name is required")
    if role not in _ROLES:
        raise ValidationError(f"Unknown role {role!r}")
    if not pin or not pin.isdigit() or len(pin) < 4:
        raise ValidationError("PIN must be at least 4 digits")
    unknown = sorted(set(permissions) - _PERMISSIONS)
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(unknown)}")


class UserUseCases:
    def __init__(self, executor: MutationExecutor) -> None:
        self._executor = executor

    def list_users(self) -> list[User]:
        return self._executor.state.all(USERS)

    def add_user(self, *, name: str, role: str, pin: str, permissions: Iterable[str] = ()) -> User:
        require_permission(self._executor.state, Permission.ADMIN)
        permissions = tuple(permissions)
        _validate_user_fields(name, role, pin, permissions)
        with self._executor.mutate("add_user", USERS) as scope:
            self._ensure_pin_free(scope.all(USERS), pin)
            user = scope.stamp(
                User(id=scope.new_id(), name=name.strip(), role=role, pin=pin, permissions=permissions)
            )
            scope.save(USERS, user, ActionType.ADD_USER)
            scope.audit("USER_ADD", f"Added new user: {user.name} ({user.role})")
        return user

    def update_user(self, user_id: str, *, expected_version: int | None = None, **changes: Any) -> User:
        require_permission(self._executor.state, Permission.ADMIN)
        with self._executor.mutate("update_user", USERS) as scope:
            current = scope.require(USERS, user_id)
            ensure_version(current, expected_version)
            changes = editable_changes(current, changes)
            if "permissions" in changes:
                changes["permissions"] = tuple(changes["permissions"])
            updated = scope.stamp(current, **changes)
            _validate_user_fields(updated.name, updated.role, updated.pin, updated.permissions)
            if updated.pin != current.pin:
                self._ensure_pin_free((u for u in scope.all(USERS) if u.id != user_id), updated.pin)
            scope.save(USERS, updated, ActionType.UPDATE_USER)
            scope.audit("USER_UPDATE", f"Updated user details for {updated.name}")
        return updated

    def delete_user(self, user_id: str) -> None:
        actor = require_permission(self._executor.state, Permission.ADMIN)
        if actor.id == user_id:
            raise InvalidStateTransitionError("The signed-in user cannot delete their own account")
        with self._executor.mutate("delete_user", USERS) as scope:
            user = scope.require(USERS, user_id)
            scope.remove(USERS, user_id, ActionType.DELETE_USER)
            scope.audit("USER_DELETE", f"Deleted user: {user.name}")

    @staticmethod
    def _ensure_pin_free(users: Iterable[User], pin: str) -> None:
        if any(user.pin == pin for user in users):
            raise ValidationError("PIN is already assigned to another user")
