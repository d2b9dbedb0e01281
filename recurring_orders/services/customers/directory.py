"""
Read-only customer directory.

Checkout falls back to the customer's registered address when the request
carries no shipping address; this is the only customer data the engine uses.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recurring_orders.core.logging import get_logger
from recurring_orders.database.models.customer import Customer

logger = get_logger(__name__)


@dataclass(frozen=True)
class CustomerProfile:
    """Customer data needed at checkout."""

    id: uuid.UUID
    name: str
    default_address: Optional[dict[str, Any]] = None


class CustomerDirectory(ABC):
    """Contract for customer lookups."""

    @abstractmethod
    async def resolve(self, customer_id: uuid.UUID) -> Optional[CustomerProfile]:
        """Return the customer profile, or None when the customer is unknown."""


class SqlCustomerDirectory(CustomerDirectory):
    """Customer directory backed by the customers table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, customer_id: uuid.UUID) -> Optional[CustomerProfile]:
        result = await self.session.execute(
            select(Customer).where(Customer.id == customer_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            logger.debug("Customer not found", customer_id=str(customer_id))
            return None
        return CustomerProfile(
            id=customer.id,
            name=customer.name,
            default_address=customer.default_address,
        )
