"""Order status, payment and schedule enums for the order lifecycle.

This module defines the enums shared by the order model, the lifecycle
service and the schedule state machine. Order statuses carry the guards used
to decide whether an order may still be edited, cancelled or have its stock
returned to the catalog.
"""

from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    """Order fulfillment status.

    Administrators may move an order between any two statuses. Customer
    edits are refused once an order has shipped, been delivered or been
    cancelled, and cancellation is refused once the order has shipped.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def is_editable(self) -> bool:
        """Check if the order content may still be edited."""
        return self not in {
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        }

    def can_cancel(self) -> bool:
        """Check if the order can be cancelled from the current status."""
        return self not in {
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        }

    def holds_stock(self) -> bool:
        """Check if the order's items are still reserved against catalog stock.

        Shipped and delivered orders consumed their stock; cancelled orders
        already returned it.
        """
        return self not in {
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        }


class PaymentStatus(str, Enum):
    """Payment status recorded on the order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Accepted payment methods."""

    CARD = "card"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    DIGITAL_WALLET = "digital_wallet"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "PaymentMethod":
        """Convert a checkout payment method to the stored enum.

        ``cash_on_delivery`` is accepted as an alias of ``cash``; an empty
        value defaults to card payment.

        Raises:
            ValueError: If value is not a supported payment method
        """
        if not value:
            return cls.CARD
        normalized = value.strip().lower()
        if normalized == "cash_on_delivery":
            return cls.CASH
        try:
            return cls(normalized)
        except ValueError:
            valid_values = ", ".join([m.value for m in cls])
            raise ValueError(
                f"Invalid payment method: {value}. "
                f"Valid values are: {valid_values}, cash_on_delivery"
            )


class ScheduleStatus(str, Enum):
    """Recurring schedule status.

    Valid transitions:
    - ACTIVE -> PAUSED, ENDED
    - PAUSED -> ACTIVE, ENDED
    - ENDED -> (terminal state)
    """

    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class BulkAction(str, Enum):
    """Administrative actions applied to a batch of recurring orders."""

    PAUSE = "pause"
    RESUME = "resume"
    END = "end"
    DELETE = "delete"

    @property
    def target_schedule_status(self) -> Optional[ScheduleStatus]:
        """Schedule status the action moves an order into, if any."""
        return {
            BulkAction.PAUSE: ScheduleStatus.PAUSED,
            BulkAction.RESUME: ScheduleStatus.ACTIVE,
            BulkAction.END: ScheduleStatus.ENDED,
        }.get(self)


class AuditAction(str, Enum):
    """Actions written to the audit trail."""

    CREATE = "create"
    UPDATE = "update"
    CANCEL = "cancel"
    STATUS_CHANGE = "status_change"
    SCHEDULE_CHANGE = "schedule_change"
    DELETE = "delete"
    BULK_UPDATE = "bulk_update"
    GENERATE_DELIVERY = "generate_delivery"
