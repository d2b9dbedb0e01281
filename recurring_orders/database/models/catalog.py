"""
Catalog product model.

Products are referenced by order items and resolved at checkout by id, SKU or
slug. Stock is a plain counter that is only ever changed through a single
conditional UPDATE so concurrent checkouts cannot drive it below zero.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from recurring_orders.database.base import BaseModel, create_table_args


class CatalogProduct(BaseModel):
    """
    Purchasable product with price and stock on hand.

    Attributes:
        sku: Stock keeping unit, unique
        slug: URL slug, unique
        name: Display name
        price: Current unit price
        stock_qty: Units available for reservation
    """

    __tablename__ = "catalog_products"

    sku: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Stock keeping unit",
    )

    slug: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="URL slug",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product display name",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Current unit price",
    )

    stock_qty: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units available for reservation",
    )

    __table_args__ = create_table_args(
        Index("ix_catalog_products_name", "name"),
        CheckConstraint("price >= 0", name="ck_catalog_products_price_non_negative"),
        CheckConstraint("stock_qty >= 0", name="ck_catalog_products_stock_non_negative"),
        comment="Catalog products and stock levels",
    )

    def __repr__(self) -> str:
        return (
            f"<CatalogProduct(id={self.id}, sku={self.sku}, "
            f"price={self.price}, stock_qty={self.stock_qty})>"
        )
