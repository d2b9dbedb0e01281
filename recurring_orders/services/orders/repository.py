"""
Order data access repository.

This module implements the OrderRepository class providing async methods for
persisting orders with their items, loading them by id, listing recurring
orders with filters and pagination, and computing schedule analytics.

The repository flushes but never commits: transaction boundaries belong to
the unit-of-work session handed in by the caller. Savepoints let batch
operations isolate the changes made to one order from the others.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from recurring_orders.core.logging import get_logger
from recurring_orders.database.models.order import Order
from recurring_orders.schemas.orders import RecurringOrderFilters
from recurring_orders.services.orders.enums import ScheduleStatus
from recurring_orders.services.orders.exceptions import OrderRepositoryError

logger = get_logger(__name__)

SORT_COLUMNS = {
    "created_at": Order.created_at,
    "next_delivery_at": Order.next_delivery_at,
    "updated_at": Order.updated_at,
    "order_number": Order.order_number,
}


class OrderRepository:
    """
    Repository for order data access operations.

    Provides async methods for order persistence, lookup, filtered listing
    and aggregate statistics. Database errors are logged and re-raised as
    OrderRepositoryError.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    def savepoint(self) -> AsyncSessionTransaction:
        """Begin a nested transaction, usable as ``async with``."""
        return self.session.begin_nested()

    async def add_order(self, order: Order) -> Order:
        """
        Persist a new order together with its items.

        Args:
            order: Transient order with items attached

        Returns:
            The persisted order with server-generated columns loaded

        Raises:
            OrderRepositoryError: If the insert fails
        """
        try:
            self.session.add(order)
            await self.session.flush()
            await self.session.refresh(order)

            logger.info(
                "Order persisted",
                order_id=str(order.id),
                order_number=order.order_number,
                item_count=len(order.items),
            )
            return order

        except SQLAlchemyError as e:
            logger.error(
                "Order creation failed - database error",
                order_number=order.order_number,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Order creation failed due to database error",
                order_number=order.order_number,
                error=str(e),
            ) from e

    async def save(self, order: Order) -> Order:
        """
        Flush pending changes to an order and reload it.

        Raises:
            OrderRepositoryError: If the update fails
        """
        try:
            await self.session.flush()
            await self.session.refresh(order)
            return order

        except SQLAlchemyError as e:
            logger.error(
                "Order update failed - database error",
                order_id=str(order.id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Order update failed due to database error",
                order_id=str(order.id),
                error=str(e),
            ) from e

    async def delete_order(self, order: Order) -> None:
        """
        Remove an order and its items.

        Raises:
            OrderRepositoryError: If the delete fails
        """
        try:
            await self.session.delete(order)
            await self.session.flush()
            logger.info("Order deleted", order_id=str(order.id))

        except SQLAlchemyError as e:
            logger.error(
                "Order deletion failed - database error",
                order_id=str(order.id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Order deletion failed due to database error",
                order_id=str(order.id),
                error=str(e),
            ) from e

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Get order by ID with its items.

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(select(Order).where(Order.id == order_id))
            order = result.scalar_one_or_none()

            logger.debug("Order lookup", order_id=str(order_id), found=order is not None)
            return order

        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def get_orders_by_ids(self, order_ids: Sequence[uuid.UUID]) -> list[Order]:
        """
        Get all orders whose id is in ``order_ids``.

        Raises:
            OrderRepositoryError: If query fails
        """
        if not order_ids:
            return []
        try:
            result = await self.session.execute(
                select(Order).where(Order.id.in_(list(order_ids)))
            )
            return list(result.scalars().all())

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch orders by id",
                order_count=len(order_ids),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch orders",
                order_count=len(order_ids),
                error=str(e),
            ) from e

    def _recurring_conditions(self, filters: RecurringOrderFilters) -> list[Any]:
        conditions: list[Any] = [Order.is_recurring.is_(True)]

        if filters.schedule_status is not None:
            conditions.append(Order.schedule_status == filters.schedule_status)
        if filters.customer_id is not None:
            conditions.append(Order.customer_id == filters.customer_id)
        if filters.order_status is not None:
            conditions.append(Order.status == filters.order_status)
        if filters.date_from is not None:
            conditions.append(Order.created_at >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(Order.created_at <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    Order.order_number.ilike(pattern),
                    Order.shipping_address["name"].as_string().ilike(pattern),
                    Order.shipping_address["city"].as_string().ilike(pattern),
                    Order.notes.ilike(pattern),
                )
            )

        return conditions

    async def list_recurring_orders(
        self,
        filters: RecurringOrderFilters,
        page: int,
        limit: int,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[Order], int]:
        """
        List recurring orders with filters and pagination.

        Args:
            filters: Listing filters
            page: 1-based page number
            limit: Page size
            sort_by: One of created_at, next_delivery_at, updated_at, order_number
            sort_order: asc or desc

        Returns:
            Tuple of (orders on the page, total matching orders)

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            conditions = self._recurring_conditions(filters)
            sort_column = SORT_COLUMNS.get(sort_by, Order.created_at)
            ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()

            count_stmt = select(func.count()).select_from(Order).where(and_(*conditions))
            total = (await self.session.execute(count_stmt)).scalar_one()

            stmt = (
                select(Order)
                .where(and_(*conditions))
                .order_by(ordering, Order.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            result = await self.session.execute(stmt)
            orders = list(result.scalars().all())

            logger.debug(
                "Recurring orders listed",
                page=page,
                limit=limit,
                total=total,
                returned=len(orders),
            )
            return orders, total

        except SQLAlchemyError as e:
            logger.error("Failed to list recurring orders", error=str(e))
            raise OrderRepositoryError(
                "Failed to list recurring orders",
                error=str(e),
            ) from e

    async def list_customer_orders(
        self,
        customer_id: uuid.UUID,
        page: int,
        limit: int,
    ) -> tuple[list[Order], int]:
        """
        List a customer's orders, newest first.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            condition = Order.customer_id == customer_id
            total = (
                await self.session.execute(
                    select(func.count()).select_from(Order).where(condition)
                )
            ).scalar_one()

            result = await self.session.execute(
                select(Order)
                .where(condition)
                .order_by(Order.created_at.desc(), Order.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), total

        except SQLAlchemyError as e:
            logger.error(
                "Failed to list customer orders",
                customer_id=str(customer_id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to list customer orders",
                customer_id=str(customer_id),
                error=str(e),
            ) from e

    async def get_recurring_analytics(self) -> dict[str, Any]:
        """
        Aggregate schedule counts and order value over all recurring orders.

        Returns:
            Dictionary with total_recurring_orders, active_orders,
            paused_orders, ended_orders, total_value and average_order_value

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            recurring = Order.is_recurring.is_(True)

            status_stmt = (
                select(Order.schedule_status, func.count())
                .where(recurring)
                .group_by(Order.schedule_status)
            )
            value_stmt = select(func.count(), func.sum(Order.total)).where(recurring)

            status_result = await self.session.execute(status_stmt)
            breakdown = {status: count for status, count in status_result.all()}

            value_result = await self.session.execute(value_stmt)
            total_count, total_value = value_result.one()
            total_value = Decimal(total_value or 0).quantize(Decimal("0.01"))
            average = (
                (total_value / total_count).quantize(Decimal("0.01"))
                if total_count
                else Decimal("0.00")
            )

            return {
                "total_recurring_orders": total_count,
                "active_orders": breakdown.get(ScheduleStatus.ACTIVE, 0),
                "paused_orders": breakdown.get(ScheduleStatus.PAUSED, 0),
                "ended_orders": breakdown.get(ScheduleStatus.ENDED, 0),
                "total_value": total_value,
                "average_order_value": average,
            }

        except SQLAlchemyError as e:
            logger.error("Failed to compute recurring analytics", error=str(e))
            raise OrderRepositoryError(
                "Failed to compute recurring analytics",
                error=str(e),
            ) from e

    async def get_upcoming_deliveries(self, from_day: date, limit: int) -> list[Order]:
        """
        Active recurring orders with a delivery on or after ``from_day``.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Order)
                .where(
                    Order.is_recurring.is_(True),
                    Order.schedule_status == ScheduleStatus.ACTIVE,
                    Order.next_delivery_at >= from_day,
                )
                .order_by(Order.next_delivery_at.asc(), Order.id)
                .limit(limit)
            )
            return list(result.scalars().all())

        except SQLAlchemyError as e:
            logger.error("Failed to fetch upcoming deliveries", error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch upcoming deliveries",
                error=str(e),
            ) from e

    async def get_due_orders(self, day: date) -> list[Order]:
        """
        Active recurring orders whose next delivery is on or before ``day``.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Order)
                .where(
                    Order.is_recurring.is_(True),
                    Order.schedule_status == ScheduleStatus.ACTIVE,
                    Order.next_delivery_at <= day,
                )
                .order_by(Order.next_delivery_at.asc(), Order.id)
            )
            return list(result.scalars().all())

        except SQLAlchemyError as e:
            logger.error("Failed to fetch due orders", day=day.isoformat(), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch due orders",
                day=day.isoformat(),
                error=str(e),
            ) from e
