"""
Bulk schedule actions over recurring orders.

This module implements the BulkScheduleOperator used by administrators to
pause, resume, end or delete many recurring orders at once. A batch is
validated as a whole before anything changes: if any id is unknown or names
an order that is not recurring, the batch is rejected untouched. Once
validated, every order is changed inside its own savepoint, so a failure on
one order is reported and the rest of the batch still applies.
"""

import uuid
from datetime import datetime
from typing import Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from recurring_orders.core.logging import get_logger, log_performance
from recurring_orders.database.models.order import Order
from recurring_orders.schemas.orders import BulkActionResult, OrderActionError
from recurring_orders.services.audit.sink import AuditSink, SqlAuditSink
from recurring_orders.services.catalog.gateway import CatalogGateway, SqlCatalogGateway
from recurring_orders.services.orders.aggregate import quantities_by_product
from recurring_orders.services.orders.enums import AuditAction, BulkAction
from recurring_orders.services.orders.exceptions import (
    AccessDeniedError,
    BulkValidationError,
    OrderEngineError,
    OrderValidationError,
)
from recurring_orders.services.orders.inventory import StockReservationService
from recurring_orders.services.orders.repository import OrderRepository
from recurring_orders.services.orders.service import (
    record_audit,
    refresh_next_delivery,
    utc_now,
)
from recurring_orders.services.orders.state_machine import (
    ScheduleStateMachine,
    get_schedule_state_machine,
)

logger = get_logger(__name__)


def _parse_action(action: Union[BulkAction, str]) -> BulkAction:
    if isinstance(action, BulkAction):
        return action
    try:
        return BulkAction(str(action).lower())
    except ValueError as e:
        raise OrderValidationError(
            f"Invalid bulk action: {action}",
            action=str(action),
            allowed_actions=[a.value for a in BulkAction],
        ) from e


def _parse_ids(order_ids: Sequence[Union[uuid.UUID, str]]) -> tuple[list[uuid.UUID], list[str]]:
    """Split ids into parsed UUIDs (deduplicated, order kept) and malformed ones."""
    parsed: list[uuid.UUID] = []
    malformed: list[str] = []
    seen: set[uuid.UUID] = set()
    for raw in order_ids:
        try:
            order_id = raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
        except ValueError:
            malformed.append(str(raw))
            continue
        if order_id not in seen:
            seen.add(order_id)
            parsed.append(order_id)
    return parsed, malformed


class BulkScheduleOperator:
    """
    Operator applying one schedule action to a batch of recurring orders.

    Attributes:
        repository: Order repository for data access
        stock: Stock reservation helper, used when deleting orders
        audit: Audit sink for the batch record
        state_machine: Recurring schedule state machine
    """

    def __init__(
        self,
        session: AsyncSession,
        catalog: Optional[CatalogGateway] = None,
        audit: Optional[AuditSink] = None,
        state_machine: Optional[ScheduleStateMachine] = None,
    ):
        self.repository = OrderRepository(session)
        self.stock = StockReservationService(catalog or SqlCatalogGateway())
        self.audit = audit or SqlAuditSink(session)
        self.state_machine = state_machine or get_schedule_state_machine()

    async def apply_bulk_action(
        self,
        action: Union[BulkAction, str],
        order_ids: Sequence[Union[uuid.UUID, str]],
        actor_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
        now: Optional[datetime] = None,
    ) -> BulkActionResult:
        """
        Apply ``action`` to every order in ``order_ids``.

        Args:
            action: pause, resume, end or delete
            order_ids: Ids of recurring orders; duplicates are ignored
            actor_id: Administrator performing the action
            requester_is_admin: Whether the actor is an administrator
            now: Reference instant for recomputing resumed schedules

        Returns:
            Result with the number of orders actually changed and the
            per-order failures

        Raises:
            AccessDeniedError: If the actor is not an administrator
            OrderValidationError: If the action is unknown or no ids are given
            BulkValidationError: If any id is unknown or not recurring
        """
        if not requester_is_admin:
            raise AccessDeniedError("Only administrators may apply bulk actions")

        bulk_action = _parse_action(action)
        now = now or utc_now()

        parsed_ids, malformed = _parse_ids(order_ids)
        if not parsed_ids and not malformed:
            raise OrderValidationError("At least one order id is required")

        with log_performance(
            logger,
            "bulk_schedule_action",
            action=bulk_action.value,
            order_count=len(parsed_ids) + len(malformed),
        ):
            orders = await self._validate_batch(parsed_ids, malformed)

            affected = 0
            errors: list[OrderActionError] = []
            for order in orders:
                order_id = str(order.id)
                try:
                    changed = await self._apply(order, bulk_action, now, str(actor_id))
                except OrderEngineError as e:
                    logger.warning(
                        "Bulk action failed for order",
                        order_id=order_id,
                        action=bulk_action.value,
                        code=e.code,
                        error=e.message,
                    )
                    errors.append(
                        OrderActionError(order_id=order_id, code=e.code, message=e.message)
                    )
                    continue
                if changed:
                    affected += 1

        result = BulkActionResult(
            action=bulk_action,
            requested_count=len(orders),
            affected_count=affected,
            errors=errors,
        )

        await record_audit(
            self.audit,
            str(actor_id),
            AuditAction.BULK_UPDATE,
            ",".join(str(order.id) for order in orders),
            after={
                "action": bulk_action.value,
                "order_ids": [str(order.id) for order in orders],
                "affected_count": affected,
                "errors": [error.model_dump() for error in errors],
            },
            resource_type="recurring_order_batch",
        )

        logger.info(
            "Bulk schedule action completed",
            action=bulk_action.value,
            requested_count=result.requested_count,
            affected_count=affected,
            error_count=len(errors),
        )
        return result

    async def _validate_batch(
        self,
        order_ids: list[uuid.UUID],
        malformed: list[str],
    ) -> list[Order]:
        """
        Load every order of the batch or reject the whole batch.

        Raises:
            BulkValidationError: If any id is malformed, unknown or not recurring
        """
        found = {order.id: order for order in await self.repository.get_orders_by_ids(order_ids)}
        missing = malformed + [str(order_id) for order_id in order_ids if order_id not in found]
        non_recurring = [
            str(order_id)
            for order_id in order_ids
            if order_id in found and not found[order_id].is_recurring
        ]

        if missing or non_recurring:
            logger.warning(
                "Bulk batch rejected",
                missing_ids=missing,
                non_recurring_ids=non_recurring,
            )
            raise BulkValidationError(
                "Some orders were not found or are not recurring orders",
                missing_ids=missing,
                non_recurring_ids=non_recurring,
            )

        return [found[order_id] for order_id in order_ids]

    async def _apply(
        self,
        order: Order,
        action: BulkAction,
        now: datetime,
        actor_id: str,
    ) -> bool:
        """Apply the action to one order inside a savepoint; True if it changed."""
        if action == BulkAction.DELETE:
            held = quantities_by_product(order.items) if order.status.holds_stock() else {}
            order_number = order.order_number
            async with self.repository.savepoint():
                await self.repository.delete_order(order)
            if held:
                await self.stock.release(held, order_ref=order_number, reason="bulk_delete")
            return True

        async with self.repository.savepoint():
            transition = self.state_machine.apply_transition(
                order, action.target_schedule_status
            )
            if not transition.changed:
                return False
            if transition.resumed:
                refresh_next_delivery(order, now)
            order.updated_by = actor_id
            await self.repository.save(order)
        return True
