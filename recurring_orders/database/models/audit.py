"""
Audit log model.

Append-only record of every order mutation, storing the acting user and the
before/after state of the affected resource.
"""

from typing import Any, Optional

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from recurring_orders.database.base import BaseModel, JSONDocument, create_table_args


class AuditLogEntry(BaseModel):
    """
    Single audit trail entry.

    Attributes:
        actor_id: User who performed the action
        action: Action name (create, update, cancel, bulk_update, ...)
        resource_type: Kind of resource affected
        resource_id: Identifier of the affected resource
        before: Resource state before the action
        after: Resource state after the action
    """

    __tablename__ = "audit_logs"

    actor_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="User who performed the action",
    )

    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Action performed",
    )

    resource_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Kind of resource affected",
    )

    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Identifier of the affected resource",
    )

    before: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="State before the action",
    )

    after: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="State after the action",
    )

    __table_args__ = create_table_args(
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        Index("ix_audit_logs_actor_created", "actor_id", "created_at"),
        comment="Append-only audit trail of order mutations",
    )
