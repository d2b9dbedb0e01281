"""
Stock reservation for order items.

This module implements StockReservationService, which moves catalog stock on
behalf of orders through the catalog gateway's atomic adjustment. Reserving
a set of products is all-or-nothing: when one product cannot be covered,
the reservations already made for the others are released before the error
is raised. Releasing is best-effort; failures are logged and never block the
cancellation or deletion that triggered them.
"""

import uuid
from typing import Mapping, Optional

from recurring_orders.core.logging import get_logger
from recurring_orders.services.catalog.gateway import CatalogEntry, CatalogGateway
from recurring_orders.services.orders.exceptions import OutOfStockError

logger = get_logger(__name__)


class StockReservationService:
    """
    Service reserving and releasing catalog stock for orders.

    Attributes:
        catalog: Catalog gateway performing the atomic adjustments
    """

    def __init__(self, catalog: CatalogGateway):
        self.catalog = catalog

    async def reserve(
        self,
        quantities: Mapping[uuid.UUID, int],
        entries: Optional[Mapping[uuid.UUID, CatalogEntry]] = None,
        order_ref: Optional[str] = None,
    ) -> None:
        """
        Reserve stock for every product, or for none of them.

        Args:
            quantities: Units to reserve per product
            entries: Catalog entries used to report available stock
            order_ref: Order number or id for log correlation

        Raises:
            OutOfStockError: If any product cannot cover its quantity
        """
        reserved: dict[uuid.UUID, int] = {}

        for product_id, quantity in quantities.items():
            if quantity <= 0:
                continue
            try:
                applied = await self.catalog.atomic_adjust_stock(product_id, -quantity)
            except Exception:
                await self.release(reserved, order_ref=order_ref, reason="reservation_rollback")
                raise
            if not applied:
                entry = (entries or {}).get(product_id)
                logger.warning(
                    "Stock reservation refused",
                    product_id=str(product_id),
                    requested=quantity,
                    order_ref=order_ref,
                )
                await self.release(reserved, order_ref=order_ref, reason="reservation_rollback")
                raise OutOfStockError(
                    str(product_id),
                    requested=quantity,
                    available=entry.stock if entry is not None else None,
                    sku=entry.sku if entry is not None else None,
                )
            reserved[product_id] = quantity

        logger.debug(
            "Stock reserved",
            order_ref=order_ref,
            product_count=len(reserved),
        )

    async def release(
        self,
        quantities: Mapping[uuid.UUID, int],
        order_ref: Optional[str] = None,
        reason: str = "release",
    ) -> list[uuid.UUID]:
        """
        Return stock for every product, continuing past failures.

        Args:
            quantities: Units to return per product
            order_ref: Order number or id for log correlation
            reason: Why the stock is returned, for the log

        Returns:
            Product ids whose stock could not be returned
        """
        failed: list[uuid.UUID] = []

        for product_id, quantity in quantities.items():
            if quantity <= 0:
                continue
            try:
                applied = await self.catalog.atomic_adjust_stock(product_id, quantity)
            except Exception as e:
                logger.error(
                    "Stock release failed",
                    product_id=str(product_id),
                    quantity=quantity,
                    order_ref=order_ref,
                    reason=reason,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                failed.append(product_id)
                continue

            if not applied:
                logger.error(
                    "Stock release not applied",
                    product_id=str(product_id),
                    quantity=quantity,
                    order_ref=order_ref,
                    reason=reason,
                )
                failed.append(product_id)

        return failed

    async def adjust(
        self,
        deltas: Mapping[uuid.UUID, int],
        entries: Optional[Mapping[uuid.UUID, CatalogEntry]] = None,
        order_ref: Optional[str] = None,
    ) -> None:
        """
        Apply per-product reservation changes for an item edit.

        Increases are reserved first as a group; only once they all succeed
        are decreases returned to the catalog.

        Raises:
            OutOfStockError: If an increase cannot be covered; nothing changes
        """
        increases = {pid: delta for pid, delta in deltas.items() if delta > 0}
        decreases = {pid: -delta for pid, delta in deltas.items() if delta < 0}

        await self.reserve(increases, entries=entries, order_ref=order_ref)
        await self.release(decreases, order_ref=order_ref, reason="item_edit")
