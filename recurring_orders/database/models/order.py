"""
Order and order item models.

An order owns its line items, its shipping and billing addresses and, when it
is recurring, the recurrence rule and schedule state that drive future
deliveries. Monetary columns are fixed-point decimals; the total is always
derived from subtotal, tax, shipping and discount.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recurring_orders.database.base import (
    AuditedModel,
    BaseModel,
    JSONDocument,
    create_table_args,
)
from recurring_orders.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ScheduleStatus,
)


class Order(AuditedModel):
    """
    Customer order, optionally carrying a recurring delivery schedule.

    Attributes:
        order_number: Human-readable unique order number
        customer_id: Customer who owns the order
        status: Fulfillment status
        payment_status: Payment status
        payment_method: Payment method chosen at checkout
        subtotal: Sum of line totals
        tax: Tax amount
        shipping: Shipping charge
        discount: Discount amount
        total: subtotal + tax + shipping - discount
        shipping_address: Delivery address document
        billing_address: Billing address document
        notes: Free-form order notes
        tracking_number: Carrier tracking number
        is_recurring: Whether the order repeats on a schedule
        recurrence: Serialized recurrence rule
        schedule_status: Recurring schedule state
        next_delivery_at: Next calendar day a delivery is due
        source_order_id: Recurring parent this order was generated from
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", create_constraint=True),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", create_constraint=True),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Current payment status",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method", create_constraint=True),
        nullable=False,
        default=PaymentMethod.CARD,
        comment="Payment method chosen at checkout",
    )

    # Pricing fields
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Sum of line totals",
    )

    tax: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Tax amount",
    )

    shipping: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Shipping charge",
    )

    discount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Applied discount",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Total amount charged",
    )

    # Addresses and notes
    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Shipping address",
    )

    billing_address: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Billing address",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        comment="Order notes",
    )

    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Carrier tracking number",
    )

    # Recurring schedule
    is_recurring: Mapped[bool] = mapped_column(
        nullable=False,
        default=False,
        index=True,
        comment="Whether the order repeats on a schedule",
    )

    recurrence: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Serialized recurrence rule",
    )

    schedule_status: Mapped[Optional[ScheduleStatus]] = mapped_column(
        SQLEnum(ScheduleStatus, name="schedule_status", create_constraint=True),
        nullable=True,
        index=True,
        comment="Recurring schedule state",
    )

    next_delivery_at: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        index=True,
        comment="Next calendar day a delivery is due",
    )

    source_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        comment="Recurring order this order was generated from",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    __table_args__ = create_table_args(
        Index("ix_orders_customer_status", "customer_id", "status"),
        Index("ix_orders_schedule_next", "schedule_status", "next_delivery_at"),
        Index("ix_orders_recurring_created", "is_recurring", "created_at"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("tax >= 0", name="ck_orders_tax_non_negative"),
        CheckConstraint("shipping >= 0", name="ck_orders_shipping_non_negative"),
        CheckConstraint("discount >= 0", name="ck_orders_discount_non_negative"),
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        comment="Customer orders with recurring delivery schedules",
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return (
            f"<Order(id={self.id}, order_number={self.order_number}, "
            f"status={status}, schedule_status={self.schedule_status})>"
        )

    @property
    def is_schedule_open(self) -> bool:
        """Check if the recurring schedule can still produce deliveries."""
        return self.is_recurring and self.schedule_status in (
            ScheduleStatus.ACTIVE,
            ScheduleStatus.PAUSED,
        )

    @property
    def formatted_total(self) -> str:
        return f"${self.total:,.2f}"

    def snapshot(self) -> dict[str, Any]:
        """Serialize the order and its items for the audit trail."""
        data = self.to_dict()
        data["items"] = [
            item.to_dict(exclude={"order_id", "created_at", "updated_at"})
            for item in self.items
        ]
        return data


class OrderItem(BaseModel):
    """
    Line item of an order, priced from the catalog when it was added.

    Attributes:
        order_id: Parent order
        product_id: Catalog product
        sku: Product SKU at the time of ordering
        name: Product name at the time of ordering
        quantity: Ordered quantity
        unit_price: Catalog price at the time of ordering
        line_total: quantity x unit_price
        position: Display position within the order
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Parent order identifier",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("catalog_products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Catalog product identifier",
    )

    sku: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Product SKU",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Ordered quantity",
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Price per unit",
    )

    line_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Quantity multiplied by unit price",
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Display position within the order",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = create_table_args(
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_non_negative"),
        comment="Order line items",
    )

    def __repr__(self) -> str:
        return (
            f"<OrderItem(product_id={self.product_id}, sku={self.sku}, "
            f"quantity={self.quantity}, unit_price={self.unit_price})>"
        )
