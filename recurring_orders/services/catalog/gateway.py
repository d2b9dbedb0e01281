"""
Catalog gateway for product resolution and stock reservation.

The order engine never reads or writes product rows directly. It resolves
product references and moves stock through the CatalogGateway contract,
whose only write is a conditional adjustment: a decrement is applied only
if stock stays non-negative, so two checkouts racing for the last unit
cannot both succeed.

SqlCatalogGateway commits every adjustment in its own short transaction.
Reservations therefore survive independently of the order transaction and
callers release them explicitly when a later step fails.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recurring_orders.core.logging import get_logger
from recurring_orders.database.connection import get_session_factory
from recurring_orders.database.models.catalog import CatalogProduct
from recurring_orders.services.orders.exceptions import OrderEngineError

logger = get_logger(__name__)


class CatalogGatewayError(OrderEngineError):
    """Raised when the catalog cannot be reached or queried."""

    default_code = "CATALOG_UNAVAILABLE"


@dataclass(frozen=True)
class CatalogEntry:
    """Product as seen by the order engine."""

    id: uuid.UUID
    name: str
    sku: str
    price: Decimal
    stock: int


class CatalogGateway(ABC):
    """Contract for product lookup and atomic stock adjustment."""

    @abstractmethod
    async def resolve(self, product_ref: str) -> Optional[CatalogEntry]:
        """Resolve a product by id, SKU or slug; None when unknown."""

    @abstractmethod
    async def atomic_adjust_stock(self, product_id: uuid.UUID, delta: int) -> bool:
        """Add ``delta`` to the product's stock.

        Negative deltas are applied only if the resulting stock is not
        negative. Returns False when the adjustment was refused or the
        product does not exist.
        """


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class SqlCatalogGateway(CatalogGateway):
    """Catalog gateway backed by the catalog_products table."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._session_factory = session_factory or get_session_factory()

    async def resolve(self, product_ref: str) -> Optional[CatalogEntry]:
        conditions: list[Any] = [
            CatalogProduct.sku == product_ref,
            CatalogProduct.slug == product_ref,
        ]
        product_uuid = _parse_uuid(product_ref)
        if product_uuid is not None:
            conditions.append(CatalogProduct.id == product_uuid)

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CatalogProduct).where(or_(*conditions)).limit(1)
                )
                product = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to resolve catalog product",
                product_ref=product_ref,
                error=str(e),
            )
            raise CatalogGatewayError(
                "Failed to resolve catalog product",
                product_ref=product_ref,
                error=str(e),
            ) from e

        if product is None:
            logger.debug("Catalog product not found", product_ref=product_ref)
            return None

        return CatalogEntry(
            id=product.id,
            name=product.name,
            sku=product.sku,
            price=Decimal(product.price),
            stock=product.stock_qty,
        )

    async def atomic_adjust_stock(self, product_id: uuid.UUID, delta: int) -> bool:
        stmt = (
            update(CatalogProduct)
            .where(
                CatalogProduct.id == product_id,
                CatalogProduct.stock_qty + delta >= 0,
            )
            .values(stock_qty=CatalogProduct.stock_qty + delta)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Stock adjustment failed",
                product_id=str(product_id),
                delta=delta,
                error=str(e),
            )
            raise CatalogGatewayError(
                "Stock adjustment failed",
                product_id=str(product_id),
                delta=delta,
                error=str(e),
            ) from e

        applied = result.rowcount == 1
        logger.debug(
            "Stock adjustment processed",
            product_id=str(product_id),
            delta=delta,
            applied=applied,
        )
        return applied
