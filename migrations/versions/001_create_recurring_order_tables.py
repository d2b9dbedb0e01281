"""
Alembic migration: Create recurring order engine tables.

Creates the customer directory, catalog products with stock counters, orders
with their recurring schedule columns, order items and the audit trail.
Enum columns store member names, matching the ORM's Enum mapping.

Revision ID: 001
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

ORDER_STATUS = sa.Enum(
    "PENDING",
    "CONFIRMED",
    "PROCESSING",
    "SHIPPED",
    "DELIVERED",
    "CANCELLED",
    "REFUNDED",
    name="order_status",
)
PAYMENT_STATUS = sa.Enum("PENDING", "PAID", "FAILED", "REFUNDED", name="payment_status")
PAYMENT_METHOD = sa.Enum(
    "CARD", "CASH", "BANK_TRANSFER", "DIGITAL_WALLET", name="payment_method"
)
SCHEDULE_STATUS = sa.Enum("ACTIVE", "PAUSED", "ENDED", name="schedule_status")


def _id_column() -> sa.Column:
    return sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False)


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create customers, catalog_products, orders, order_items and audit_logs."""
    op.create_table(
        "customers",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("default_address", JSON_DOCUMENT, nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("email", name="uq_customers_email"),
        comment="Customer directory",
    )

    op.create_table(
        "catalog_products",
        _id_column(),
        sa.Column("sku", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("price", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("stock_qty", sa.Integer(), nullable=False, server_default="0"),
        *_timestamp_columns(),
        sa.UniqueConstraint("sku", name="uq_catalog_products_sku"),
        sa.UniqueConstraint("slug", name="uq_catalog_products_slug"),
        sa.CheckConstraint("price >= 0", name="ck_catalog_products_price_non_negative"),
        sa.CheckConstraint("stock_qty >= 0", name="ck_catalog_products_stock_non_negative"),
        comment="Catalog products and stock levels",
    )
    op.create_index("ix_catalog_products_name", "catalog_products", ["name"])

    op.create_table(
        "orders",
        _id_column(),
        sa.Column("order_number", sa.String(length=50), nullable=False),
        sa.Column(
            "customer_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("payment_status", PAYMENT_STATUS, nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False),
        sa.Column("subtotal", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("tax", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("shipping", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("discount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("total", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("shipping_address", JSON_DOCUMENT, nullable=False),
        sa.Column("billing_address", JSON_DOCUMENT, nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recurrence", JSON_DOCUMENT, nullable=True),
        sa.Column("schedule_status", SCHEDULE_STATUS, nullable=True),
        sa.Column("next_delivery_at", sa.Date(), nullable=True),
        sa.Column(
            "source_order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamp_columns(),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sa.CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        sa.CheckConstraint("tax >= 0", name="ck_orders_tax_non_negative"),
        sa.CheckConstraint("shipping >= 0", name="ck_orders_shipping_non_negative"),
        sa.CheckConstraint("discount >= 0", name="ck_orders_discount_non_negative"),
        sa.CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        comment="Customer orders with recurring delivery schedules",
    )
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_is_recurring", "orders", ["is_recurring"])
    op.create_index("ix_orders_schedule_status", "orders", ["schedule_status"])
    op.create_index("ix_orders_next_delivery_at", "orders", ["next_delivery_at"])
    op.create_index("ix_orders_customer_status", "orders", ["customer_id", "status"])
    op.create_index(
        "ix_orders_schedule_next", "orders", ["schedule_status", "next_delivery_at"]
    )
    op.create_index(
        "ix_orders_recurring_created", "orders", ["is_recurring", "created_at"]
    )

    op.create_table(
        "order_items",
        _id_column(),
        sa.Column(
            "order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "product_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("catalog_products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("sku", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("line_total", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        *_timestamp_columns(),
        sa.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        sa.CheckConstraint(
            "unit_price >= 0", name="ck_order_items_unit_price_non_negative"
        ),
        comment="Order line items",
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_product_id", "order_items", ["product_id"])

    op.create_table(
        "audit_logs",
        _id_column(),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("resource_type", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("before", JSON_DOCUMENT, nullable=True),
        sa.Column("after", JSON_DOCUMENT, nullable=True),
        *_timestamp_columns(),
        comment="Append-only audit trail of order mutations",
    )
    op.create_index(
        "ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"]
    )
    op.create_index(
        "ix_audit_logs_actor_created", "audit_logs", ["actor_id", "created_at"]
    )


def downgrade() -> None:
    """Drop every engine table and enum type."""
    op.drop_table("audit_logs")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("catalog_products")
    op.drop_table("customers")

    bind = op.get_bind()
    for enum_type in (SCHEDULE_STATUS, PAYMENT_METHOD, PAYMENT_STATUS, ORDER_STATUS):
        enum_type.drop(bind, checkfirst=True)
