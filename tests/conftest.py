"""
Pytest configuration and shared test fixtures.

Provides engine settings for tests, in-memory implementations of the catalog
gateway, customer directory and audit sink, and factories for building
orders without a database.
"""

import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from recurring_orders.core.config import Settings
from recurring_orders.database.models.order import Order
from recurring_orders.services.audit.sink import AuditSink
from recurring_orders.services.catalog.gateway import (
    CatalogEntry,
    CatalogGateway,
    CatalogGatewayError,
)
from recurring_orders.services.customers.directory import (
    CustomerDirectory,
    CustomerProfile,
)
from recurring_orders.services.orders.aggregate import build_order_item, calculate_subtotal
from recurring_orders.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ScheduleStatus,
)
from recurring_orders.services.orders.repository import OrderRepository


# ============================================================================
# Test Doubles
# ============================================================================


class InMemoryCatalog(CatalogGateway):
    """Catalog gateway holding products in a dict with atomic stock semantics."""

    def __init__(self, entries: list[CatalogEntry]):
        self.entries: dict[uuid.UUID, CatalogEntry] = {entry.id: entry for entry in entries}
        self.adjustments: list[tuple[uuid.UUID, int]] = []
        self.failing_products: set[uuid.UUID] = set()

    def stock(self, product_id: uuid.UUID) -> int:
        return self.entries[product_id].stock

    async def resolve(self, product_ref: str) -> Optional[CatalogEntry]:
        for entry in self.entries.values():
            if product_ref in (str(entry.id), entry.sku):
                return entry
        return None

    async def atomic_adjust_stock(self, product_id: uuid.UUID, delta: int) -> bool:
        if product_id in self.failing_products:
            raise CatalogGatewayError("Catalog unavailable", product_id=str(product_id))
        entry = self.entries.get(product_id)
        if entry is None or entry.stock + delta < 0:
            return False
        self.entries[product_id] = replace(entry, stock=entry.stock + delta)
        self.adjustments.append((product_id, delta))
        return True


class InMemoryCustomerDirectory(CustomerDirectory):
    """Customer directory over a dict of profiles."""

    def __init__(self, profiles: Optional[list[CustomerProfile]] = None):
        self.profiles = {profile.id: profile for profile in profiles or []}

    async def resolve(self, customer_id: uuid.UUID) -> Optional[CustomerProfile]:
        return self.profiles.get(customer_id)


class RecordingAuditSink(AuditSink):
    """Audit sink that keeps every record in memory."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []
        self.fail = False

    async def record(
        self,
        actor_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
    ) -> None:
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.records.append(
            {
                "actor_id": actor_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "before": before,
                "after": after,
            }
        )

    def actions(self) -> list[str]:
        return [record["action"] for record in self.records]


@asynccontextmanager
async def _passthrough_savepoint():
    yield


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Deterministic engine settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        tax_rate=Decimal("0"),
        free_shipping_threshold=Decimal("50"),
        flat_shipping_fee=Decimal("5"),
        default_page_size=10,
        max_page_size=100,
    )


@pytest.fixture
def coffee() -> CatalogEntry:
    return CatalogEntry(
        id=uuid.uuid4(),
        name="House Blend Coffee",
        sku="COF-001",
        price=Decimal("12.50"),
        stock=10,
    )


@pytest.fixture
def milk() -> CatalogEntry:
    return CatalogEntry(
        id=uuid.uuid4(),
        name="Oat Milk",
        sku="MLK-002",
        price=Decimal("3.25"),
        stock=5,
    )


@pytest.fixture
def catalog(coffee: CatalogEntry, milk: CatalogEntry) -> InMemoryCatalog:
    return InMemoryCatalog([coffee, milk])


@pytest.fixture
def customer_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def admin_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def address() -> dict[str, Any]:
    return {
        "name": "Ada Lovelace",
        "street": "12 Analytical Way",
        "city": "London",
        "state": "Greater London",
        "zip_code": "N1 9GU",
        "country": "UK",
        "phone": None,
    }


@pytest.fixture
def customers(customer_id: uuid.UUID, address: dict[str, Any]) -> InMemoryCustomerDirectory:
    registered = {key: value for key, value in address.items() if key != "name"}
    return InMemoryCustomerDirectory(
        [CustomerProfile(id=customer_id, name="Ada Lovelace", default_address=registered)]
    )


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def mock_session() -> AsyncMock:
    """Mock async database session."""
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
def mock_repository() -> MagicMock:
    """
    Order repository double.

    Persistence calls return the order they receive; savepoints are
    transparent async context managers.
    """
    repository = MagicMock(spec=OrderRepository)
    repository.add_order = AsyncMock(side_effect=lambda order: order)
    repository.save = AsyncMock(side_effect=lambda order: order)
    repository.delete_order = AsyncMock(return_value=None)
    repository.get_order_by_id = AsyncMock(return_value=None)
    repository.get_orders_by_ids = AsyncMock(return_value=[])
    repository.get_due_orders = AsyncMock(return_value=[])
    repository.savepoint = MagicMock(side_effect=lambda: _passthrough_savepoint())
    return repository


@pytest.fixture
def order_factory(
    customer_id: uuid.UUID,
    address: dict[str, Any],
) -> Callable[..., Order]:
    """
    Build an in-memory order.

    Keyword arguments override order columns; ``lines`` is a list of
    (CatalogEntry, quantity) pairs.
    """

    def _build(
        lines: Optional[list[tuple[CatalogEntry, int]]] = None,
        status: OrderStatus = OrderStatus.PENDING,
        recurrence: Optional[dict[str, Any]] = None,
        schedule_status: Optional[ScheduleStatus] = None,
        next_delivery_at: Optional[date] = None,
        **overrides: Any,
    ) -> Order:
        items = [
            build_order_item(entry, quantity, position)
            for position, (entry, quantity) in enumerate(lines or [])
        ]
        subtotal = calculate_subtotal(items)
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "order_number": f"ORD-20240101000000-{uuid.uuid4().hex[:6].upper()}",
            "customer_id": customer_id,
            "status": status,
            "payment_status": PaymentStatus.PENDING,
            "payment_method": PaymentMethod.CARD,
            "items": items,
            "subtotal": subtotal,
            "tax": Decimal("0.00"),
            "shipping": Decimal("5.00"),
            "discount": Decimal("0.00"),
            "total": subtotal + Decimal("5.00"),
            "shipping_address": dict(address),
            "billing_address": dict(address),
            "notes": None,
            "is_recurring": recurrence is not None,
            "recurrence": recurrence,
            "schedule_status": schedule_status,
            "next_delivery_at": next_delivery_at,
        }
        values.update(overrides)
        return Order(**values)

    return _build


@pytest.fixture
def weekly_recurrence() -> dict[str, Any]:
    """Monday, Wednesday and Friday deliveries starting 2024-01-01."""
    return {
        "start_date": "2024-01-01T00:00:00Z",
        "days_of_week": [1, 3, 5],
    }
