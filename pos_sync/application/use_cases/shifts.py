from __future__ import annotations

import logging
from typing import Iterable

from pos_sync.application.use_cases.mutations import MutationExecutor
from pos_sync.application.use_cases.session import require_permission
from pos_sync.core.errors import InvalidStateTransitionError, ValidationError
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import SALES, SHIFTS
from pos_sync.domain.models import PaymentMethod, Permission, Sale, Shift, ShiftStatus

logger = logging.getLogger(__name__)


def expected_cash(shift: Shift, sales: Iterable[Sale]) -> float:
    """Opening float plus the non-voided cash sales taken during ``shift``.

    Sales without a shift id are attributed by cashier and start time.
    """
    total = shift.opening_cash
    for sale in sales:
        if sale.is_voided or sale.payment_method != PaymentMethod.CASH.value:
            continue
        if sale.shift_id is not None:
            belongs = sale.shift_id == shift.id
        else:
            belongs = sale.cashier_id == shift.cashier_id and sale.timestamp >= shift.start_time
        if belongs:
            total += sale.total_amount
    return total


class ShiftUseCases:
    def __init__(self, executor: MutationExecutor) -> None:
        self._executor = executor

    def current_shift(self) -> Shift | None:
        user = self._executor.state.current_user
        return self._executor.state.open_shift_for(user.id) if user else None

    def open_shift(self, opening_cash: float = 0.0) -> Shift:
        user = require_permission(self._executor.state, Permission.POS)
        if opening_cash < 0:
            raise ValidationError("Opening cash cannot be negative")
        with self._executor.mutate("open_shift", SHIFTS) as scope:
            if any(s.status == ShiftStatus.OPEN.value and s.cashier_id == user.id for s in scope.all(SHIFTS)):
                raise InvalidStateTransitionError(f"{user.name} already has an open shift")
            shift = scope.stamp(
                Shift(
                    id=scope.new_id(),
                    cashier_id=user.id,
                    cashier_name=user.name,
                    start_time=scope.now_ms,
                    opening_cash=opening_cash,
                )
            )
            scope.save(SHIFTS, shift, ActionType.OPEN_SHIFT)
            scope.audit(
                "SHIFT_OPEN",
                f"Shift opened with {opening_cash:.2f}" if opening_cash > 0 else "Shift opened (No Float)",
            )
        return shift

    def close_shift(self, closing_cash: float, comments: str | None = None) -> Shift:
        user = require_permission(self._executor.state, Permission.POS)
        if closing_cash < 0:
            raise ValidationError("Closing cash cannot be negative")
        with self._executor.mutate("close_shift", SHIFTS, SALES) as scope:
            shift = next(
                (s for s in scope.all(SHIFTS) if s.status == ShiftStatus.OPEN.value and s.cashier_id == user.id),
                None,
            )
            if shift is None:
                raise InvalidStateTransitionError(f"{user.name} has no open shift")
            expected = expected_cash(shift, scope.all(SALES))
            closed = scope.stamp(
                shift,
                status=ShiftStatus.CLOSED.value,
                end_time=scope.now_ms,
                closing_cash=closing_cash,
                expected_cash=expected,
                comments=comments,
            )
            scope.save(SHIFTS, closed, ActionType.CLOSE_SHIFT)
            details = f"Shift closed. Counted: {closing_cash:.2f}, Expected: {expected:.2f}"
            if comments:
                details += f". Comments: {comments}"
            scope.audit("SHIFT_CLOSE", details)
        return closed
