"""Typed errors raised by the order lifecycle engine.

Every error carries a stable machine-readable ``code`` and a ``context``
dictionary with the identifiers needed to diagnose it, so transport layers
can map them to responses without parsing messages.
"""

from typing import Any, Iterable, Optional


class OrderEngineError(Exception):
    """Base exception for order engine errors."""

    default_code = "ORDER_ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class OrderValidationError(OrderEngineError):
    """Raised when request data or a recurrence rule is invalid."""

    default_code = "VALIDATION_ERROR"


class BulkValidationError(OrderValidationError):
    """Raised when a bulk request names unknown or non-recurring orders."""

    default_code = "BULK_VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        missing_ids: Iterable[str] = (),
        non_recurring_ids: Iterable[str] = (),
        **context: Any,
    ):
        self.missing_ids = [str(order_id) for order_id in missing_ids]
        self.non_recurring_ids = [str(order_id) for order_id in non_recurring_ids]
        super().__init__(
            message,
            missing_ids=self.missing_ids,
            non_recurring_ids=self.non_recurring_ids,
            **context,
        )


class ProductNotFoundError(OrderEngineError):
    """Raised when an item references a product the catalog cannot resolve."""

    default_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_ref: str, **context: Any):
        super().__init__(
            f"Product not found: {product_ref}",
            product_ref=product_ref,
            **context,
        )


class OutOfStockError(OrderEngineError):
    """Raised when a product cannot cover the requested quantity."""

    default_code = "OUT_OF_STOCK"

    def __init__(
        self,
        product_id: str,
        requested: int,
        available: Optional[int] = None,
        **context: Any,
    ):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}",
            product_id=product_id,
            requested=requested,
            available=available,
            **context,
        )


class MissingShippingAddressError(OrderEngineError):
    """Raised when neither the request nor the customer supplies an address."""

    default_code = "MISSING_SHIPPING_ADDRESS"


class InvalidOrderStateError(OrderEngineError):
    """Raised when an operation is not allowed in the order's current status."""

    default_code = "INVALID_STATE"


class InvalidScheduleTransitionError(OrderEngineError):
    """Raised when a schedule status change is not permitted."""

    default_code = "INVALID_TRANSITION"

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        target_state: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(
            message,
            current_state=current_state,
            target_state=target_state,
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


class AccessDeniedError(OrderEngineError):
    """Raised when the requester may not read or change the order."""

    default_code = "ACCESS_DENIED"


class OrderNotFoundError(OrderEngineError):
    """Raised when an order does not exist."""

    default_code = "NOT_FOUND"

    def __init__(self, order_id: Any, **context: Any):
        super().__init__(
            f"Order not found: {order_id}",
            order_id=str(order_id),
            **context,
        )


class OrderRepositoryError(OrderEngineError):
    """Raised when order persistence fails."""

    default_code = "REPOSITORY_ERROR"
