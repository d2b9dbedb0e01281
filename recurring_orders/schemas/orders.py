"""
Order lifecycle Pydantic schemas for request and response validation.

This module defines the request models accepted by the lifecycle service
(checkout, edits, listing filters) and the response models it returns
(orders, paginated listings, analytics and bulk results).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from recurring_orders.services.orders.enums import (
    BulkAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ScheduleStatus,
)
from recurring_orders.services.orders.recurrence import to_calendar_day, to_instant

SortField = Literal["created_at", "next_delivery_at", "updated_at", "order_number"]
SortOrder = Literal["asc", "desc"]

# Edit fields that only administrators may change
ADMIN_ONLY_FIELDS = frozenset(
    {
        "customer_id",
        "payment_status",
        "tax",
        "shipping",
        "discount",
        "tracking_number",
        "schedule_status",
        "next_delivery_at",
    }
)


class AddressRequest(BaseModel):
    """Complete shipping or billing address."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255, description="Recipient name")
    street: str = Field(..., min_length=1, max_length=255, description="Street address")
    city: str = Field(..., min_length=1, max_length=100, description="City")
    state: str = Field(..., min_length=1, max_length=100, description="State or region")
    zip_code: str = Field(..., min_length=1, max_length=20, description="Postal code")
    country: str = Field(..., min_length=1, max_length=100, description="Country")
    phone: Optional[str] = Field(None, max_length=30, description="Contact phone")


class AddressPatch(BaseModel):
    """Partial address; missing or null fields keep their stored value."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, max_length=255)
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)


class LineItemRequest(BaseModel):
    """Requested product and quantity; price is always taken from the catalog."""

    model_config = ConfigDict(str_strip_whitespace=True)

    product_id: str = Field(
        ...,
        min_length=1,
        description="Product id, SKU or slug",
    )
    quantity: int = Field(..., ge=1, le=10000, description="Quantity to order")


class RecurrenceRequest(BaseModel):
    """Recurrence fields as supplied by the caller, all optional."""

    start_date: Optional[datetime] = Field(None, description="First eligible instant")
    end_date: Optional[datetime] = Field(None, description="Last eligible instant")
    days_of_week: Optional[list[int]] = Field(
        None,
        description="Weekly weekdays, 0 = Sunday ... 6 = Saturday",
    )
    include_dates: Optional[list[date]] = Field(None, description="Extra delivery days")
    exclude_dates: Optional[list[date]] = Field(None, description="Skipped days")
    selected_dates: Optional[list[date]] = Field(None, description="Explicit calendar")
    notes: Optional[str] = Field(None, max_length=1000, description="Schedule notes")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_instant(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return to_instant(v)

    @field_validator("include_dates", "exclude_dates", "selected_dates", mode="before")
    @classmethod
    def parse_days(cls, v: Any) -> Any:
        if v is None:
            return None
        if not isinstance(v, (list, tuple, set, frozenset)):
            raise ValueError("Expected a list of dates")
        return [to_calendar_day(item) for item in v]


class CreateOrderRequest(BaseModel):
    """Checkout request."""

    items: list[LineItemRequest] = Field(..., min_length=1, description="Ordered items")
    shipping_address: Optional[AddressRequest] = Field(
        None,
        description="Shipping address, defaults to the customer's registered address",
    )
    billing_address: Optional[AddressRequest] = Field(
        None,
        description="Billing address, defaults to the shipping address",
    )
    payment_method: PaymentMethod = Field(
        PaymentMethod.CARD,
        description="Payment method; cash_on_delivery is accepted as cash",
    )
    discount: Decimal = Field(Decimal("0"), ge=0, decimal_places=2, description="Discount")
    notes: Optional[str] = Field(None, max_length=1000, description="Order notes")
    is_recurring: bool = Field(False, description="Explicit recurring flag")
    recurrence: Optional[RecurrenceRequest] = Field(None, description="Recurrence rule")

    @field_validator("payment_method", mode="before")
    @classmethod
    def parse_payment_method(cls, v: Any) -> PaymentMethod:
        if isinstance(v, PaymentMethod):
            return v
        return PaymentMethod.from_string(v)


class EditOrderRequest(BaseModel):
    """Partial order update; only fields that are explicitly set are applied."""

    items: Optional[list[LineItemRequest]] = Field(None, min_length=1)
    shipping_address: Optional[AddressPatch] = None
    billing_address: Optional[AddressPatch] = None
    notes: Optional[str] = Field(None, max_length=1000)
    is_recurring: Optional[bool] = None
    recurrence: Optional[RecurrenceRequest] = None

    # Administrator fields
    customer_id: Optional[UUID] = None
    payment_status: Optional[PaymentStatus] = None
    tax: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    shipping: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    discount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    tracking_number: Optional[str] = Field(None, max_length=100)
    schedule_status: Optional[ScheduleStatus] = None
    next_delivery_at: Optional[date] = None

    @property
    def admin_fields_set(self) -> set[str]:
        """Administrator-only fields present in the request."""
        return {
            name
            for name in self.model_fields_set & ADMIN_ONLY_FIELDS
            if getattr(self, name) is not None
        }


class RecurringOrderFilters(BaseModel):
    """Filters for the administrative recurring order listing."""

    model_config = ConfigDict(str_strip_whitespace=True)

    schedule_status: Optional[ScheduleStatus] = None
    customer_id: Optional[UUID] = None
    order_status: Optional[OrderStatus] = None
    search: Optional[str] = Field(
        None,
        max_length=200,
        description="Case-insensitive match on order number, recipient, city or notes",
    )
    date_from: Optional[datetime] = Field(None, description="Created at or after")
    date_to: Optional[datetime] = Field(None, description="Created at or before")


class OrderItemResponse(BaseModel):
    """Order line item."""

    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    """Order representation returned by the lifecycle service."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_id: UUID
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    items: list[OrderItemResponse]
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    shipping_address: dict[str, Any]
    billing_address: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    is_recurring: bool
    recurrence: Optional[dict[str, Any]] = None
    schedule_status: Optional[ScheduleStatus] = None
    next_delivery_at: Optional[date] = None
    source_order_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    """Pagination metadata."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class RecurringAnalytics(BaseModel):
    """Aggregate figures over all recurring orders."""

    total_recurring_orders: int = 0
    active_orders: int = 0
    paused_orders: int = 0
    ended_orders: int = 0
    total_value: Decimal = Decimal("0.00")
    average_order_value: Decimal = Decimal("0.00")


class RecurringOrderListResult(BaseModel):
    """Administrative recurring order listing."""

    orders: list[OrderResponse]
    pagination: Pagination
    analytics: RecurringAnalytics


class CustomerOrderListResult(BaseModel):
    """A customer's own orders, newest first."""

    orders: list[OrderResponse]
    pagination: Pagination


class UpcomingDelivery(BaseModel):
    """Next scheduled delivery of an active recurring order."""

    order_id: UUID
    order_number: str
    customer_id: UUID
    next_delivery_at: date
    total: Decimal


class RecurringOrderStats(BaseModel):
    """Recurring order analytics with the next scheduled deliveries."""

    analytics: RecurringAnalytics
    upcoming_deliveries: list[UpcomingDelivery]


class OrderActionError(BaseModel):
    """Failure of a single order inside a batch operation."""

    order_id: str
    code: str
    message: str


class BulkActionResult(BaseModel):
    """Outcome of a bulk schedule action."""

    action: BulkAction
    requested_count: int
    affected_count: int
    errors: list[OrderActionError] = Field(default_factory=list)


class DueDeliveryReport(BaseModel):
    """Outcome of a due-delivery processing run."""

    processed: int = 0
    created: int = 0
    ended: int = 0
    errors: list[OrderActionError] = Field(default_factory=list)
