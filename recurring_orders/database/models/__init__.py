"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata for
Alembic migrations and relationship resolution.
"""

from recurring_orders.database.base import (
    AuditedModel,
    AuditMixin,
    Base,
    BaseModel,
    TimestampMixin,
    UUIDMixin,
    create_table_args,
)
from recurring_orders.database.models.audit import AuditLogEntry
from recurring_orders.database.models.catalog import CatalogProduct
from recurring_orders.database.models.customer import Customer
from recurring_orders.database.models.order import Order, OrderItem

__all__ = [
    "Base",
    "BaseModel",
    "AuditedModel",
    "TimestampMixin",
    "UUIDMixin",
    "AuditMixin",
    "create_table_args",
    "AuditLogEntry",
    "CatalogProduct",
    "Customer",
    "Order",
    "OrderItem",
]
