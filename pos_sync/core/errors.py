from __future__ import annotations


class AppError(Exception):
    pass


class BusinessError(AppError):
    pass


class ValidationError(BusinessError):
    pass


class InsufficientStockError(ValidationError):
    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class MissingCostPriceError(ValidationError):
    def __init__(self, product_id: str, product_name: str | None = None) -> None:
        label = product_name or product_id
        super().__init__(f"Product '{label}' has no cost price recorded; the sale cannot be processed")
        self.product_id = product_id


class InvalidStateTransitionError(ValidationError):
    pass


class PermissionDeniedError(ValidationError):
    pass


class InvalidPinError(ValidationError):
    pass


class StaleVersionError(ValidationError):
    def __init__(self, entity_id: str, expected: int | None, actual: int | None) -> None:
        super().__init__(f"Record {entity_id} changed: expected version {expected}, found {actual}")
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual


class NotFoundError(ValidationError):
    pass


class BusyError(BusinessError):
    pass


class NotAuthenticatedError(BusinessError):
    pass


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    pass


class DatabaseLockedError(PersistenceError):
    """Another process holds the write lock on the till database."""


class ExternalServiceError(InfraError):
    pass


class TransientExternalError(ExternalServiceError):
    pass
