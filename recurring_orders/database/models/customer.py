"""
Customer directory model.

Customers are read-only from the order engine's point of view; it only needs
the display name and the address captured at registration, which is used when
checkout does not supply a shipping address.
"""

from typing import Any, Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from recurring_orders.database.base import BaseModel, JSONDocument, create_table_args


class Customer(BaseModel):
    """
    Registered customer.

    Attributes:
        name: Full name
        email: Contact email, unique
        default_address: Address captured at registration
    """

    __tablename__ = "customers"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Customer full name",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Contact email",
    )

    default_address: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Address captured at registration",
    )

    __table_args__ = create_table_args(comment="Customer directory")

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, email={self.email})>"
