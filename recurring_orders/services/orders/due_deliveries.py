"""
Due delivery processing for recurring orders.

The engine keeps no clock of its own. An external scheduler calls
DueDeliveryProcessor.process_due_deliveries(now) and every active recurring
order whose next delivery day has arrived produces a confirmed delivery
order, with stock reserved for it, and advances to its following delivery
day. Schedules whose end date has passed, by the due day or by the day of the
run, are ended instead.

A parent whose stock cannot be reserved is reported as an error and left due,
so the next run retries it. Each parent is processed in its own savepoint.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from recurring_orders.core.config import Settings, get_settings
from recurring_orders.core.logging import get_logger, log_performance
from recurring_orders.database.models.order import Order, OrderItem
from recurring_orders.schemas.orders import DueDeliveryReport, OrderActionError
from recurring_orders.services.audit.sink import AuditSink, SqlAuditSink
from recurring_orders.services.catalog.gateway import CatalogGateway, SqlCatalogGateway
from recurring_orders.services.orders.aggregate import (
    generate_order_number,
    quantities_by_product,
)
from recurring_orders.services.orders.enums import (
    AuditAction,
    OrderStatus,
    PaymentStatus,
    ScheduleStatus,
)
from recurring_orders.services.orders.exceptions import OrderEngineError
from recurring_orders.services.orders.inventory import StockReservationService
from recurring_orders.services.orders.recurrence import RecurrenceRule, to_calendar_day
from recurring_orders.services.orders.repository import OrderRepository
from recurring_orders.services.orders.resolver import resolve_following_delivery
from recurring_orders.services.orders.service import record_audit, utc_now
from recurring_orders.services.orders.state_machine import (
    ScheduleStateMachine,
    get_schedule_state_machine,
)

logger = get_logger(__name__)

SYSTEM_ACTOR = "system:due-deliveries"


def build_delivery_order(parent: Order, order_number: str, due_day: date) -> Order:
    """Create the delivery order generated from a recurring parent."""
    items = [
        OrderItem(
            product_id=item.product_id,
            sku=item.sku,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            line_total=item.line_total,
            position=item.position,
        )
        for item in parent.items
    ]
    return Order(
        id=uuid.uuid4(),
        order_number=order_number,
        customer_id=parent.customer_id,
        status=OrderStatus.CONFIRMED,
        payment_status=PaymentStatus.PENDING,
        payment_method=parent.payment_method,
        items=items,
        subtotal=parent.subtotal,
        tax=parent.tax,
        shipping=parent.shipping,
        discount=parent.discount,
        total=parent.total,
        shipping_address=dict(parent.shipping_address),
        billing_address=dict(parent.billing_address) if parent.billing_address else None,
        notes=f"Scheduled delivery for {due_day.isoformat()} from {parent.order_number}",
        is_recurring=False,
        source_order_id=parent.id,
        created_by=SYSTEM_ACTOR,
        updated_by=SYSTEM_ACTOR,
    )


class DueDeliveryProcessor:
    """
    Processor turning due recurring schedules into delivery orders.

    Attributes:
        repository: Order repository for data access
        stock: Stock reservation helper for delivery orders
        audit: Audit sink for generated deliveries
        state_machine: Recurring schedule state machine
        settings: Engine settings
    """

    def __init__(
        self,
        session: AsyncSession,
        catalog: Optional[CatalogGateway] = None,
        audit: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
        state_machine: Optional[ScheduleStateMachine] = None,
    ):
        self.repository = OrderRepository(session)
        self.stock = StockReservationService(catalog or SqlCatalogGateway())
        self.audit = audit or SqlAuditSink(session)
        self.settings = settings or get_settings()
        self.state_machine = state_machine or get_schedule_state_machine()

    async def process_due_deliveries(self, now: Optional[datetime] = None) -> DueDeliveryReport:
        """
        Generate delivery orders for every schedule due on or before ``now``.

        Args:
            now: Reference instant; its UTC calendar day is "today"

        Returns:
            Report with processed, created and ended counts and per-order errors
        """
        now = now or utc_now()
        today = to_calendar_day(now)
        report = DueDeliveryReport()

        with log_performance(logger, "process_due_deliveries", day=today.isoformat()):
            due_orders = await self.repository.get_due_orders(today)

            for parent in due_orders:
                report.processed += 1
                parent_id = str(parent.id)
                try:
                    outcome = await self._process(parent, today)
                except OrderEngineError as e:
                    logger.warning(
                        "Due delivery failed",
                        order_id=parent_id,
                        code=e.code,
                        error=e.message,
                    )
                    report.errors.append(
                        OrderActionError(order_id=parent_id, code=e.code, message=e.message)
                    )
                    continue

                if outcome == "created":
                    report.created += 1
                elif outcome == "ended":
                    report.ended += 1
                elif outcome == "created_and_ended":
                    report.created += 1
                    report.ended += 1

        logger.info(
            "Due deliveries processed",
            day=today.isoformat(),
            processed=report.processed,
            created=report.created,
            ended=report.ended,
            error_count=len(report.errors),
        )
        return report

    async def _process(self, parent: Order, today: date) -> str:
        rule = RecurrenceRule.from_document(parent.recurrence)
        due_day = parent.next_delivery_at

        # A run after the end date delivers nothing, even for an earlier due day
        if rule is None or rule.has_lapsed(due_day) or rule.has_lapsed(today):
            async with self.repository.savepoint():
                self.state_machine.apply_transition(parent, ScheduleStatus.ENDED)
                parent.updated_by = SYSTEM_ACTOR
                await self.repository.save(parent)
            logger.info("Recurring schedule lapsed", order_id=str(parent.id))
            return "ended"

        order_number = generate_order_number(self.settings.generated_order_number_prefix)
        delivery = build_delivery_order(parent, order_number, due_day)
        quantities = quantities_by_product(delivery.items)
        await self.stock.reserve(quantities, order_ref=order_number)

        # Missed days are skipped rather than replayed
        following = resolve_following_delivery(rule, max(due_day, today))
        ended = following is None or rule.has_lapsed(following)

        try:
            async with self.repository.savepoint():
                delivery = await self.repository.add_order(delivery)
                if ended:
                    self.state_machine.apply_transition(parent, ScheduleStatus.ENDED)
                else:
                    parent.next_delivery_at = following
                parent.updated_by = SYSTEM_ACTOR
                await self.repository.save(parent)
        except Exception:
            await self.stock.release(quantities, order_ref=order_number, reason="delivery_failed")
            raise

        await record_audit(
            self.audit,
            SYSTEM_ACTOR,
            AuditAction.GENERATE_DELIVERY,
            str(delivery.id),
            after={
                "source_order_id": str(parent.id),
                "order_number": delivery.order_number,
                "delivery_day": due_day.isoformat(),
                "next_delivery_at": following.isoformat() if not ended else None,
            },
        )

        logger.info(
            "Delivery order generated",
            order_id=str(parent.id),
            delivery_order_id=str(delivery.id),
            delivery_day=due_day.isoformat(),
            schedule_ended=ended,
        )
        return "created_and_ended" if ended else "created"
