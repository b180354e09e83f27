from __future__ import annotations

import logging

from pos_sync.application.app_state import AppState
from pos_sync.core.errors import InvalidPinError, PermissionDeniedError
from pos_sync.domain.collections import USERS
from pos_sync.domain.models import Permission, User

logger = logging.getLogger(__name__)


def require_permission(state: AppState, permission: Permission | str) -> User:
    """Returns the signed-in user when it holds ``permission``; refreshes the session."""
    user = state.require_user()
    if not user.has_permission(permission):
        value = permission.value if isinstance(permission, Permission) else permission
        raise PermissionDeniedError(f"User {user.name} lacks the {value} permission")
    return user


class SessionUseCases:
    def __init__(self, state: AppState) -> None:
        self._state = state

    @property
    def current_user(self) -> User | None:
        return self._state.current_user

    def login(self, pin: str) -> User:
        pin = (pin or "").strip()
        if not pin:
            raise InvalidPinError("PIN is required")
        for user in self._state.all(USERS):
            if user.pin == pin:
                self._state.start_session(user)
                logger.info("User %s signed in", user.id)
                return user
        logger.warning("Sign-in rejected: unknown PIN")
        raise InvalidPinError("Invalid PIN")

    def logout(self) -> None:
        user = self._state.current_user
        self._state.end_session()
        if user is not None:
            logger.info("User %s signed out", user.id)

    def require_permission(self, permission: Permission | str) -> User:
        return require_permission(self._state, permission)
