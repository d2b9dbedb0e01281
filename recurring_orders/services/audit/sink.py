"""
Audit trail sink.

Every order mutation is recorded with the acting user and the before/after
state of the order. Recording is append-only.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from recurring_orders.core.logging import get_logger
from recurring_orders.database.models.audit import AuditLogEntry

logger = get_logger(__name__)


class AuditSink(ABC):
    """Contract for writing audit records."""

    @abstractmethod
    async def record(
        self,
        actor_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append an audit record."""


class SqlAuditSink(AuditSink):
    """
    Audit sink writing to the audit_logs table.

    Entries are written inside a savepoint of the caller's session so that a
    failed audit insert cannot poison the surrounding order transaction, and
    they commit together with the mutation they describe.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        actor_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
    ) -> None:
        async with self.session.begin_nested():
            self.session.add(
                AuditLogEntry(
                    actor_id=actor_id,
                    action=action,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    before=before,
                    after=after,
                )
            )
        logger.debug(
            "Audit record written",
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
        )
