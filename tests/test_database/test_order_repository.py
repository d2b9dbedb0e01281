"""
Integration tests for OrderRepository against an SQLite database.

The same models back PostgreSQL in production; SQLite keeps these tests
self-contained while exercising the real queries.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from recurring_orders.database.models import Base, CatalogProduct, Customer, Order, OrderItem
from recurring_orders.schemas.orders import RecurringOrderFilters
from recurring_orders.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ScheduleStatus,
)
from recurring_orders.services.orders.repository import OrderRepository


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory over a fresh SQLite file with the full schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session: AsyncSession):
    """One customer and one catalog product."""
    customer = Customer(id=uuid.uuid4(), name="Ada Lovelace", email="ada@example.com")
    product = CatalogProduct(
        id=uuid.uuid4(),
        sku="COF-001",
        slug="house-blend",
        name="House Blend Coffee",
        price=Decimal("12.50"),
        stock_qty=10,
    )
    session.add_all([customer, product])
    await session.commit()
    return customer, product


def build_order(
    customer: Customer,
    product: CatalogProduct,
    number: str,
    quantity: int = 2,
    recurring: bool = True,
    schedule_status: ScheduleStatus = ScheduleStatus.ACTIVE,
    next_delivery_at: date = date(2024, 1, 3),
    city: str = "London",
    notes: Optional[str] = None,
) -> Order:
    line_total = Decimal("12.50") * quantity
    return Order(
        id=uuid.uuid4(),
        order_number=number,
        customer_id=customer.id,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        payment_method=PaymentMethod.CARD,
        items=[
            OrderItem(
                product_id=product.id,
                sku=product.sku,
                name=product.name,
                quantity=quantity,
                unit_price=Decimal("12.50"),
                line_total=line_total,
                position=0,
            )
        ],
        subtotal=line_total,
        tax=Decimal("0.00"),
        shipping=Decimal("0.00"),
        discount=Decimal("0.00"),
        total=line_total,
        shipping_address={"name": "Ada Lovelace", "city": city},
        notes=notes,
        is_recurring=recurring,
        recurrence={"start_date": "2024-01-01T00:00:00Z", "days_of_week": [1, 3, 5]}
        if recurring
        else None,
        schedule_status=schedule_status if recurring else None,
        next_delivery_at=next_delivery_at if recurring else None,
    )


@pytest_asyncio.fixture
async def orders(session: AsyncSession, seeded):
    """Four recurring orders in different states and one one-off order."""
    customer, product = seeded
    repository = OrderRepository(session)
    created = [
        await repository.add_order(build_order(customer, product, "ORD-A", quantity=1)),
        await repository.add_order(
            build_order(customer, product, "ORD-B", quantity=2, next_delivery_at=date(2024, 1, 1))
        ),
        await repository.add_order(
            build_order(
                customer,
                product,
                "ORD-C",
                quantity=3,
                schedule_status=ScheduleStatus.PAUSED,
                city="Cambridge",
            )
        ),
        await repository.add_order(
            build_order(
                customer,
                product,
                "ORD-D",
                quantity=2,
                schedule_status=ScheduleStatus.ENDED,
                next_delivery_at=None,
                notes="Final box",
            )
        ),
        await repository.add_order(build_order(customer, product, "ORD-E", recurring=False)),
    ]
    await session.commit()
    return created


# ============================================================================
# Persistence Tests
# ============================================================================


class TestPersistence:
    """Test inserts, lookups and deletes."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, session, orders) -> None:
        repository = OrderRepository(session)

        order = await repository.get_order_by_id(orders[0].id)

        assert order.order_number == "ORD-A"
        assert order.created_at is not None
        assert order.items[0].quantity == 1
        assert order.recurrence["days_of_week"] == [1, 3, 5]
        assert order.schedule_status == ScheduleStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_get_missing(self, session, orders) -> None:
        assert await OrderRepository(session).get_order_by_id(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_get_orders_by_ids(self, session, orders) -> None:
        wanted = {orders[0].id, orders[2].id, uuid.uuid4()}

        found = await OrderRepository(session).get_orders_by_ids(list(wanted))

        assert {order.id for order in found} == {orders[0].id, orders[2].id}

    @pytest.mark.asyncio
    async def test_delete_removes_items(self, session, orders) -> None:
        repository = OrderRepository(session)

        await repository.delete_order(orders[4])
        await session.commit()

        assert await repository.get_order_by_id(orders[4].id) is None


# ============================================================================
# Listing Tests
# ============================================================================


class TestListRecurringOrders:
    """Test filtered, paginated listing of recurring orders."""

    @pytest.mark.asyncio
    async def test_only_recurring_orders(self, session, orders) -> None:
        listed, total = await OrderRepository(session).list_recurring_orders(
            RecurringOrderFilters(), page=1, limit=10, sort_by="order_number", sort_order="asc"
        )

        assert total == 4
        assert [order.order_number for order in listed] == ["ORD-A", "ORD-B", "ORD-C", "ORD-D"]

    @pytest.mark.asyncio
    async def test_pagination(self, session, orders) -> None:
        listed, total = await OrderRepository(session).list_recurring_orders(
            RecurringOrderFilters(), page=2, limit=3, sort_by="order_number", sort_order="asc"
        )

        assert total == 4
        assert [order.order_number for order in listed] == ["ORD-D"]

    @pytest.mark.asyncio
    async def test_schedule_status_filter(self, session, orders) -> None:
        listed, total = await OrderRepository(session).list_recurring_orders(
            RecurringOrderFilters(schedule_status=ScheduleStatus.PAUSED), page=1, limit=10
        )

        assert total == 1
        assert listed[0].order_number == "ORD-C"

    @pytest.mark.asyncio
    async def test_search_matches_city(self, session, orders) -> None:
        listed, _ = await OrderRepository(session).list_recurring_orders(
            RecurringOrderFilters(search="cambridge"), page=1, limit=10
        )

        assert [order.order_number for order in listed] == ["ORD-C"]

    @pytest.mark.asyncio
    async def test_search_matches_notes(self, session, orders) -> None:
        listed, _ = await OrderRepository(session).list_recurring_orders(
            RecurringOrderFilters(search="final"), page=1, limit=10
        )

        assert [order.order_number for order in listed] == ["ORD-D"]

    @pytest.mark.asyncio
    async def test_sort_by_next_delivery(self, session, orders) -> None:
        listed, _ = await OrderRepository(session).list_recurring_orders(
            RecurringOrderFilters(schedule_status=ScheduleStatus.ACTIVE),
            page=1,
            limit=10,
            sort_by="next_delivery_at",
            sort_order="asc",
        )

        assert [order.order_number for order in listed] == ["ORD-B", "ORD-A"]

    @pytest.mark.asyncio
    async def test_customer_orders(self, session, orders, seeded) -> None:
        customer, _ = seeded

        listed, total = await OrderRepository(session).list_customer_orders(
            customer.id, page=1, limit=2
        )

        assert total == 5
        assert len(listed) == 2


# ============================================================================
# Analytics and Scheduling Query Tests
# ============================================================================


class TestAnalytics:
    """Test aggregate statistics and schedule queries."""

    @pytest.mark.asyncio
    async def test_recurring_analytics(self, session, orders) -> None:
        analytics = await OrderRepository(session).get_recurring_analytics()

        assert analytics["total_recurring_orders"] == 4
        assert analytics["active_orders"] == 2
        assert analytics["paused_orders"] == 1
        assert analytics["ended_orders"] == 1
        assert analytics["total_value"] == Decimal("100.00")
        assert analytics["average_order_value"] == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_upcoming_deliveries(self, session, orders) -> None:
        upcoming = await OrderRepository(session).get_upcoming_deliveries(date(2024, 1, 2), 10)

        assert [order.order_number for order in upcoming] == ["ORD-A"]

    @pytest.mark.asyncio
    async def test_due_orders(self, session, orders) -> None:
        due = await OrderRepository(session).get_due_orders(date(2024, 1, 3))

        assert [order.order_number for order in due] == ["ORD-B", "ORD-A"]
