from __future__ import annotations

import logging

from pos_sync.application.use_cases.mutations import MutationExecutor
from pos_sync.application.use_cases.session import require_permission
from pos_sync.core.errors import InvalidStateTransitionError, ValidationError
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import PRODUCT_SALE_LOGS, PRODUCTS, SALES, VOID_REQUESTS
from pos_sync.domain.models import Permission, RequestStatus, Sale, VoidRequest

logger = logging.getLogger(__name__)


class VoidUseCases:
    """Two-step sale voids. Approval restores stock, marks the sale voided
    and removes the sale's product logs."""

    def __init__(self, executor: MutationExecutor) -> None:
        self._executor = executor

    def pending_requests(self) -> list[VoidRequest]:
        return [
            request
            for request in self._executor.state.all(VOID_REQUESTS)
            if request.status == RequestStatus.PENDING.value
        ]

    def request_void(self, sale_id: str, reason: str) -> VoidRequest:
        user = require_permission(self._executor.state, Permission.POS)
        if not (reason or "").strip():
            raise ValidationError("A reason is required to void a sale")
        with self._executor.mutate("request_void", SALES, VOID_REQUESTS) as scope:
            sale: Sale = scope.require(SALES, sale_id)
            if sale.is_voided:
                raise InvalidStateTransitionError(f"Sale {sale_id} is already voided")
            if any(
                request.sale_id == sale_id and request.status == RequestStatus.PENDING.value
                for request in scope.all(VOID_REQUESTS)
            ):
                raise InvalidStateTransitionError(f"Sale {sale_id} already has a pending void request")
            request = scope.stamp(
                VoidRequest(
                    id=scope.new_id(),
                    sale_id=sale_id,
                    sale=sale,
                    requested_by=user.id,
                    requested_by_name=user.name,
                    requested_at=scope.now_ms,
                    reason=reason.strip(),
                )
            )
            scope.save(VOID_REQUESTS, request, ActionType.VOID_REQUEST)
            scope.audit("VOID_REQUEST", f"Requested void for Sale #{sale_id}. Reason: {request.reason}")
        return request

    def approve_void(self, request_id: str, notes: str | None = None) -> VoidRequest:
        user = require_permission(self._executor.state, Permission.ADMIN)
        with self._executor.mutate("approve_void", PRODUCTS, SALES, PRODUCT_SALE_LOGS, VOID_REQUESTS) as scope:
            request: VoidRequest = scope.require(VOID_REQUESTS, request_id)
            self._ensure_pending(request)
            sale: Sale = scope.get(SALES, request.sale_id) or request.sale
            if sale.is_voided:
                raise InvalidStateTransitionError(f"Sale {sale.id} is already voided")

            for item in sale.items:
                product = scope.get(PRODUCTS, item.product_id)
                if product is None:
                    logger.info("Product %s no longer exists; stock not restored", item.product_id)
                    continue
                scope.save(
                    PRODUCTS,
                    scope.stamp(
                        product,
                        stock=product.stock + item.quantity,
                        units_sold=max(0, product.units_sold - item.quantity),
                    ),
                    ActionType.UPDATE_PRODUCT,
                )

            voided = scope.stamp(
                sale,
                is_voided=True,
                voided_at=scope.now_ms,
                voided_by=user.name,
                void_reason=request.reason,
            )
            scope.save(SALES, voided, ActionType.UPDATE_SALE)

            for log in scope.all(PRODUCT_SALE_LOGS):
                if log.sale_id == sale.id:
                    scope.remove(PRODUCT_SALE_LOGS, log.id, ActionType.DELETE_PRODUCT_SALE_LOG)

            approved = scope.stamp(
                request,
                sale=voided,
                status=RequestStatus.APPROVED.value,
                reviewed_by=user.id,
                reviewed_by_name=user.name,
                reviewed_at=scope.now_ms,
                review_notes=notes,
            )
            scope.save(VOID_REQUESTS, approved, ActionType.VOID_APPROVED)
            scope.audit(
                "VOID_APPROVED",
                f"Approved void for Sale #{sale.id}" + (f". Notes: {notes}" if notes else ""),
            )
        return approved

    def reject_void(self, request_id: str, notes: str | None = None) -> VoidRequest:
        user = require_permission(self._executor.state, Permission.ADMIN)
        with self._executor.mutate("reject_void", VOID_REQUESTS) as scope:
            request: VoidRequest = scope.require(VOID_REQUESTS, request_id)
            self._ensure_pending(request)
            rejected = scope.stamp(
                request,
                status=RequestStatus.REJECTED.value,
                reviewed_by=user.id,
                reviewed_by_name=user.name,
                reviewed_at=scope.now_ms,
                review_notes=notes,
            )
            scope.save(VOID_REQUESTS, rejected, ActionType.VOID_REJECTED)
            scope.audit(
                "VOID_REJECTED",
                f"Rejected void for Sale #{request.sale_id}" + (f". Notes: {notes}" if notes else ""),
            )
        return rejected

    @staticmethod
    def _ensure_pending(request: VoidRequest) -> None:
        if request.status != RequestStatus.PENDING.value:
            raise InvalidStateTransitionError(f"Void request {request.id} is already {request.status}")
