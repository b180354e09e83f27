from __future__ import annotations

from typing import Any

from pos_sync.application.use_cases.mutations import MutationExecutor, editable_changes
from pos_sync.application.use_cases.session import require_permission
from pos_sync.core.errors import ValidationError
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import BUSINESS_SETTINGS
from pos_sync.domain.models import BusinessSettings, Permission

SETTINGS_ID = "default"


class SettingsUseCases:
    def __init__(self, executor: MutationExecutor) -> None:
        self._executor = executor

    def business_settings(self) -> BusinessSettings:
        return self._executor.state.get(BUSINESS_SETTINGS, SETTINGS_ID) or BusinessSettings()

    def update_business_settings(self, **changes: Any) -> BusinessSettings:
        require_permission(self._executor.state, Permission.ADMIN)
        with self._executor.mutate("update_business_settings", BUSINESS_SETTINGS) as scope:
            current = scope.get(BUSINESS_SETTINGS, SETTINGS_ID) or BusinessSettings(id=SETTINGS_ID)
            updated = scope.stamp(current, **editable_changes(current, changes))
            if not updated.business_name.strip():
                raise ValidationError("Business name is required")
            scope.save(BUSINESS_SETTINGS, updated, ActionType.UPDATE_SETTINGS)
            scope.audit("SETTINGS_UPDATE", f"Updated business settings: {updated.business_name}")
        return updated
