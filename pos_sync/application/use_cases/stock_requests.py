from __future__ import annotations

import logging

from pos_sync.application.use_cases.mutations import MutationExecutor
from pos_sync.application.use_cases.products import apply_stock_change
from pos_sync.application.use_cases.session import require_permission
from pos_sync.core.errors import InvalidStateTransitionError, ValidationError
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import PRODUCTS, STOCK_CHANGE_REQUESTS
from pos_sync.domain.models import (
    Permission,
    RequestStatus,
    StockChangeRequest,
    StockChangeType,
)

logger = logging.getLogger(__name__)


class StockRequestUseCases:
    """Maker-checker flow for stock changes: request, then approve or reject.

    Only an approval touches the product.
    """

    def __init__(self, executor: MutationExecutor) -> None:
        self._executor = executor

    def pending_requests(self) -> list[StockChangeRequest]:
        return [
            request
            for request in self._executor.state.all(STOCK_CHANGE_REQUESTS)
            if request.status == RequestStatus.PENDING.value
        ]

    def request_stock_change(
        self,
        product_id: str,
        change_type: StockChangeType | str,
        quantity_change: int,
        reason: str,
        *,
        new_cost_price: float | None = None,
    ) -> StockChangeRequest:
        user = require_permission(self._executor.state, Permission.INVENTORY)
        try:
            kind = StockChangeType(change_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown stock change type {change_type!r}") from exc
        if not (reason or "").strip():
            raise ValidationError("A reason is required for stock change requests")
        if quantity_change == 0 or (kind is StockChangeType.RECEIVE and quantity_change < 0):
            raise ValidationError("Invalid quantity for a stock change request")
        with self._executor.mutate("request_stock_change", PRODUCTS, STOCK_CHANGE_REQUESTS) as scope:
            product = scope.require(PRODUCTS, product_id)
            request = scope.stamp(
                StockChangeRequest(
                    id=scope.new_id(),
                    product_id=product.id,
                    product_name=product.name,
                    change_type=kind.value,
                    quantity_change=quantity_change,
                    reason=reason.strip(),
                    requested_by=user.id,
                    requested_by_name=user.name,
                    requested_at=scope.now_ms,
                    new_cost_price=new_cost_price,
                )
            )
            scope.save(STOCK_CHANGE_REQUESTS, request, ActionType.STOCK_CHANGE_REQUEST)
            scope.audit(
                "STOCK_CHANGE_REQUEST",
                f"Requested {kind.value.lower()} of {quantity_change} for {product.name}. Reason: {request.reason}",
            )
        return request

    def approve_stock_change(self, request_id: str, notes: str | None = None) -> StockChangeRequest:
        user = require_permission(self._executor.state, Permission.ADMIN)
        with self._executor.mutate("approve_stock_change", PRODUCTS, STOCK_CHANGE_REQUESTS) as scope:
            request = scope.require(STOCK_CHANGE_REQUESTS, request_id)
            self._ensure_pending(request)
            product = scope.require(PRODUCTS, request.product_id)
            apply_stock_change(
                scope,
                product,
                request.change_type,
                request.quantity_change,
                user,
                new_cost_price=request.new_cost_price,
            )
            approved = scope.stamp(
                request,
                status=RequestStatus.APPROVED.value,
                reviewed_by=user.id,
                reviewed_by_name=user.name,
                reviewed_at=scope.now_ms,
                review_notes=notes,
            )
            scope.save(STOCK_CHANGE_REQUESTS, approved, ActionType.STOCK_CHANGE_APPROVED)
            scope.audit("STOCK_CHANGE_APPROVED", f"Approved stock change for {request.product_name}")
        return approved

    def reject_stock_change(self, request_id: str, notes: str | None = None) -> StockChangeRequest:
        user = require_permission(self._executor.state, Permission.ADMIN)
        with self._executor.mutate("reject_stock_change", STOCK_CHANGE_REQUESTS) as scope:
            request = scope.require(STOCK_CHANGE_REQUESTS, request_id)
            self._ensure_pending(request)
            rejected = scope.stamp(
                request,
                status=RequestStatus.REJECTED.value,
                reviewed_by=user.id,
                reviewed_by_name=user.name,
                reviewed_at=scope.now_ms,
                review_notes=notes,
            )
            scope.save(STOCK_CHANGE_REQUESTS, rejected, ActionType.STOCK_CHANGE_REJECTED)
            scope.audit("STOCK_CHANGE_REJECTED", f"Rejected stock change for {request.product_name}")
        return rejected

    @staticmethod
    def _ensure_pending(request: StockChangeRequest) -> None:
        if request.status != RequestStatus.PENDING.value:
            raise InvalidStateTransitionError(f"Stock change request {request.id} is already {request.status}")
