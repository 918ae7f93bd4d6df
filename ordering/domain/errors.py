"""
Error taxonomy for the ordering core.

Every error carries a stable ``code`` the API layer maps to a response.
"""
from __future__ import annotations


class OrderingError(Exception):
    """Base error for the ordering core."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(OrderingError):
    """Bad input, rejected before any state change."""

    code = "VALIDATION_ERROR"


class EmptyCart(ValidationError):
    code = "EMPTY_CART"


class BelowMinimumQuantity(ValidationError):
    code = "BELOW_MINIMUM_QUANTITY"

    def __init__(self, item_name: str, minimum: int, requested: int):
        self.minimum = minimum
        self.requested = requested
        super().__init__(
            f"Minimum quantity for '{item_name}' is {minimum}, requested {requested}"
        )


class NotFoundError(OrderingError):
    code = "NOT_FOUND"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class AddressNotFound(NotFoundError):
    code = "ADDRESS_NOT_FOUND"


class InvoiceNotFound(NotFoundError):
    code = "INVOICE_NOT_FOUND"


class CatalogItemNotFound(NotFoundError):
    code = "CATALOG_ITEM_NOT_FOUND"


class NotificationNotFound(NotFoundError):
    code = "NOTIFICATION_NOT_FOUND"


class PermissionDenied(OrderingError):
    code = "FORBIDDEN"


class ConflictError(OrderingError):
    """Request conflicts with current state; state is left untouched."""

    code = "CONFLICT"


class InvalidStatusTransition(ConflictError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")


class InvoiceAlreadyExists(ConflictError):
    code = "INVOICE_ALREADY_EXISTS"


class DocumentNumberTaken(ConflictError):
    """Another transaction committed the same order or invoice number first."""

    code = "DOCUMENT_NUMBER_TAKEN"


class TransientDeliveryError(OrderingError):
    """A notification send failed; retried automatically."""

    code = "DELIVERY_FAILED"


class ExhaustedRetryError(OrderingError):
    """A notification used up its automatic attempts."""

    code = "RETRIES_EXHAUSTED"

    def __init__(self, task_id, attempts: int, last_error: str = ""):
        self.task_id = task_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Notification {task_id} failed after {attempts} attempts: {last_error}"
        )
