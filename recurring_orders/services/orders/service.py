"""
Order lifecycle service orchestrating checkout, edits and cancellations.

This module implements the OrderLifecycleService, the single entry point for
operations on one order: checkout, retrieval, edits, cancellation, status
overrides, deletion and schedule changes, plus the administrative recurring
order listing and statistics. It is the only component that talks to the
catalog and the customer directory.

Every mutation follows the same shape: load and authorize, validate and
compute everything that can fail, move stock, apply the changes, persist,
then write an audit record. The caller owns the transaction; the service
only flushes through the repository.
"""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from recurring_orders.core.config import Settings, get_settings
from recurring_orders.core.logging import get_logger
from recurring_orders.database.models.order import Order, OrderItem
from recurring_orders.schemas.orders import (
    AddressRequest,
    CreateOrderRequest,
    CustomerOrderListResult,
    EditOrderRequest,
    LineItemRequest,
    OrderResponse,
    Pagination,
    RecurringAnalytics,
    RecurringOrderFilters,
    RecurringOrderListResult,
    RecurringOrderStats,
    UpcomingDelivery,
)
from recurring_orders.services.audit.sink import AuditSink, SqlAuditSink
from recurring_orders.services.catalog.gateway import (
    CatalogEntry,
    CatalogGateway,
    SqlCatalogGateway,
)
from recurring_orders.services.customers.directory import (
    CustomerDirectory,
    SqlCustomerDirectory,
)
from recurring_orders.services.orders.aggregate import (
    apply_financials,
    build_order_item,
    calculate_checkout_charges,
    calculate_subtotal,
    calculate_total,
    ensure_cancellable,
    ensure_editable,
    generate_order_number,
    merge_address,
    quantities_by_product,
    stock_deltas,
    to_money,
)
from recurring_orders.services.orders.enums import (
    AuditAction,
    OrderStatus,
    PaymentStatus,
    ScheduleStatus,
)
from recurring_orders.services.orders.exceptions import (
    AccessDeniedError,
    MissingShippingAddressError,
    OrderEngineError,
    OrderNotFoundError,
    OrderValidationError,
    OutOfStockError,
    ProductNotFoundError,
)
from recurring_orders.services.orders.inventory import StockReservationService
from recurring_orders.services.orders.recurrence import (
    RecurrenceRule,
    build_recurrence_rule,
    has_recurrence_signal,
    merge_recurrence,
    to_calendar_day,
)
from recurring_orders.services.orders.repository import OrderRepository
from recurring_orders.services.orders.resolver import resolve_next_delivery
from recurring_orders.services.orders.state_machine import (
    ScheduleStateMachine,
    get_schedule_state_machine,
)

logger = get_logger(__name__)

RESOURCE_TYPE = "order"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def refresh_next_delivery(order: Order, now: datetime) -> None:
    """Recompute ``next_delivery_at`` from the order's stored rule."""
    rule = RecurrenceRule.from_document(order.recurrence)
    order.next_delivery_at = resolve_next_delivery(rule, now) if rule else None


async def record_audit(
    audit: AuditSink,
    actor_id: Optional[str],
    action: AuditAction,
    resource_id: str,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
    resource_type: str = RESOURCE_TYPE,
) -> None:
    """Write an audit record; failures are logged and never propagated."""
    try:
        await audit.record(
            actor_id=actor_id,
            action=action.value,
            resource_type=resource_type,
            resource_id=resource_id,
            before=before,
            after=after,
        )
    except Exception as e:
        logger.error(
            "Failed to write audit record",
            action=action.value,
            resource_id=resource_id,
            error=str(e),
            error_type=type(e).__name__,
        )


class OrderLifecycleService:
    """
    Order lifecycle service orchestrating single-order operations.

    Attributes:
        repository: Order repository for data access
        catalog: Catalog gateway for product lookup and stock
        customers: Customer directory for default addresses
        audit: Audit sink for mutation records
        stock: Stock reservation helper over the catalog
        state_machine: Recurring schedule state machine
        settings: Engine settings
    """

    def __init__(
        self,
        session: AsyncSession,
        catalog: Optional[CatalogGateway] = None,
        customers: Optional[CustomerDirectory] = None,
        audit: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
        state_machine: Optional[ScheduleStateMachine] = None,
    ):
        """
        Initialize order lifecycle service.

        Args:
            session: Async database session owned by the caller
            catalog: Optional catalog gateway, defaults to the SQL catalog
            customers: Optional customer directory, defaults to the SQL directory
            audit: Optional audit sink, defaults to the audit_logs table
            settings: Optional settings, defaults to the cached settings
            state_machine: Optional schedule state machine
        """
        self.repository = OrderRepository(session)
        self.catalog = catalog or SqlCatalogGateway()
        self.customers = customers or SqlCustomerDirectory(session)
        self.audit = audit or SqlAuditSink(session)
        self.settings = settings or get_settings()
        self.state_machine = state_machine or get_schedule_state_machine()
        self.stock = StockReservationService(self.catalog)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_order(
        self,
        customer_id: uuid.UUID,
        request: CreateOrderRequest,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Create an order, reserving stock for every item.

        Args:
            customer_id: Customer placing the order
            request: Checkout request
            now: Reference instant for schedule computation

        Returns:
            Persisted order

        Raises:
            MissingShippingAddressError: If no address is given or on file
            OrderValidationError: If the recurrence rule or totals are invalid
            ProductNotFoundError: If an item references an unknown product
            OutOfStockError: If an item exceeds available stock
            OrderRepositoryError: If the order cannot be persisted
        """
        now = now or utc_now()
        logger.info(
            "Creating order",
            customer_id=str(customer_id),
            item_count=len(request.items),
            is_recurring=request.is_recurring,
        )

        shipping_address = await self._resolve_shipping_address(customer_id, request)
        billing_address = (
            request.billing_address.model_dump()
            if request.billing_address is not None
            else dict(shipping_address)
        )

        rule: Optional[RecurrenceRule] = None
        is_recurring = has_recurrence_signal(request.is_recurring, request.recurrence)
        if is_recurring:
            rule = build_recurrence_rule(
                request.recurrence.model_dump() if request.recurrence else {},
                now,
            )

        priced = await self._price_items(request.items)
        items = [
            build_order_item(entry, line.quantity, position)
            for position, (entry, line) in enumerate(priced)
        ]
        subtotal = calculate_subtotal(items)
        tax, shipping = calculate_checkout_charges(subtotal, self.settings)
        discount = to_money(request.discount)
        total = calculate_total(subtotal, tax, shipping, discount)

        order_number = generate_order_number(self.settings.order_number_prefix)
        order = Order(
            id=uuid.uuid4(),
            order_number=order_number,
            customer_id=customer_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=request.payment_method,
            items=items,
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            discount=discount,
            total=total,
            shipping_address=shipping_address,
            billing_address=billing_address,
            notes=request.notes,
            is_recurring=is_recurring,
            recurrence=rule.to_document() if rule else None,
            schedule_status=ScheduleStatus.ACTIVE if rule else None,
            next_delivery_at=resolve_next_delivery(rule, now) if rule else None,
            created_by=str(customer_id),
            updated_by=str(customer_id),
        )

        entries = {entry.id: entry for entry, _ in priced}
        reserved = quantities_by_product(items)
        await self.stock.reserve(reserved, entries=entries, order_ref=order_number)

        try:
            order = await self.repository.add_order(order)
        except Exception:
            await self.stock.release(reserved, order_ref=order_number, reason="create_failed")
            raise

        await record_audit(
            self.audit,
            str(customer_id),
            AuditAction.CREATE,
            str(order.id),
            after=order.snapshot(),
        )

        logger.info(
            "Order created successfully",
            order_id=str(order.id),
            order_number=order.order_number,
            total=str(order.total),
            schedule_status=order.schedule_status.value if order.schedule_status else None,
            next_delivery_at=(
                order.next_delivery_at.isoformat() if order.next_delivery_at else None
            ),
        )
        return order

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def get_order(
        self,
        order_id: uuid.UUID,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
    ) -> Order:
        """
        Get an order visible to the requester.

        Raises:
            OrderNotFoundError: If the order does not exist
            AccessDeniedError: If the requester is neither owner nor admin
        """
        order = await self._load_order(order_id)
        self._authorize(order, requester_id, requester_is_admin)
        return order

    async def list_customer_orders(
        self,
        customer_id: uuid.UUID,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> CustomerOrderListResult:
        """
        List a customer's orders, newest first.

        Raises:
            AccessDeniedError: If the requester is not the customer or an admin
        """
        if not requester_is_admin and str(customer_id) != str(requester_id):
            raise AccessDeniedError(
                "Cannot list another customer's orders",
                customer_id=str(customer_id),
            )

        page, limit = self._page_bounds(page, limit)
        orders, total = await self.repository.list_customer_orders(customer_id, page, limit)
        return CustomerOrderListResult(
            orders=[self.to_response(order) for order in orders],
            pagination=Pagination.build(page, limit, total),
        )

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    async def edit_order(
        self,
        order_id: uuid.UUID,
        request: EditOrderRequest,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Apply a partial update to an order.

        Addresses merge field by field. New items are re-priced from the
        catalog and stock is adjusted by the per-product difference; tax,
        shipping and discount keep their values unless given. A recurrence
        change is merged into the stored rule and the next delivery day is
        recomputed unless the schedule has ended.

        Raises:
            OrderNotFoundError: If the order does not exist
            AccessDeniedError: If the requester may not edit the order or
                sets administrator fields without being an admin
            InvalidOrderStateError: If the order has shipped, been delivered
                or been cancelled
            OrderValidationError: If the merged rule or totals are invalid
            ProductNotFoundError: If a new item references an unknown product
            OutOfStockError: If added quantity exceeds available stock
            InvalidScheduleTransitionError: If schedule_status is not reachable
        """
        now = now or utc_now()
        order = await self._load_order(order_id)
        self._authorize(order, requester_id, requester_is_admin)

        admin_fields = request.admin_fields_set
        if admin_fields and not requester_is_admin:
            raise AccessDeniedError(
                "Only administrators may change these fields",
                order_id=str(order.id),
                fields=sorted(admin_fields),
            )

        ensure_editable(order)
        before = order.snapshot()
        fields_set = request.model_fields_set

        logger.info(
            "Editing order",
            order_id=str(order.id),
            fields=sorted(fields_set),
            requester_is_admin=requester_is_admin,
        )

        # Validate and compute everything that can fail before moving stock
        rule: Optional[RecurrenceRule] = None
        if request.recurrence is not None or request.is_recurring:
            patches_stored_rule = (
                request.recurrence is not None
                and bool(order.recurrence)
                and request.is_recurring is not False
            )
            if patches_stored_rule or has_recurrence_signal(
                request.is_recurring, request.recurrence
            ):
                rule = merge_recurrence(
                    RecurrenceRule.from_document(order.recurrence),
                    request.recurrence,
                    now,
                )

        if request.schedule_status is not None:
            self._check_schedule_request(order, rule, request)

        new_items: Optional[list[OrderItem]] = None
        entries: dict[uuid.UUID, CatalogEntry] = {}
        if request.items is not None:
            priced = await self._price_items(request.items, check_stock=False)
            entries = {entry.id: entry for entry, _ in priced}
            new_items = [
                build_order_item(entry, line.quantity, position)
                for position, (entry, line) in enumerate(priced)
            ]
            calculate_total(
                calculate_subtotal(new_items),
                to_money(request.tax) if request.tax is not None else order.tax,
                to_money(request.shipping) if request.shipping is not None else order.shipping,
                to_money(request.discount) if request.discount is not None else order.discount,
            )

        deltas: dict[uuid.UUID, int] = {}
        if new_items is not None:
            deltas = stock_deltas(
                quantities_by_product(order.items),
                quantities_by_product(new_items),
            )
            await self.stock.adjust(deltas, entries=entries, order_ref=order.order_number)

        try:
            if new_items is not None:
                order.items = new_items
            order = await self._apply_edit(order, request, rule, requester_id, now)
        except Exception:
            await self._revert_stock_adjustment(deltas, order.order_number)
            raise

        await record_audit(
            self.audit,
            str(requester_id),
            AuditAction.UPDATE,
            str(order.id),
            before=before,
            after=order.snapshot(),
        )

        logger.info(
            "Order updated successfully",
            order_id=str(order.id),
            total=str(order.total),
        )
        return order

    async def _apply_edit(
        self,
        order: Order,
        request: EditOrderRequest,
        rule: Optional[RecurrenceRule],
        requester_id: Union[uuid.UUID, str],
        now: datetime,
    ) -> Order:
        fields_set = request.model_fields_set
        admin_fields = request.admin_fields_set

        if request.shipping_address is not None:
            order.shipping_address = merge_address(
                order.shipping_address, request.shipping_address
            )
        if request.billing_address is not None:
            order.billing_address = merge_address(
                order.billing_address or order.shipping_address, request.billing_address
            )
        if "notes" in fields_set:
            order.notes = request.notes
        if request.tracking_number is not None:
            order.tracking_number = request.tracking_number
        if request.customer_id is not None:
            order.customer_id = request.customer_id
        if request.payment_status is not None:
            order.payment_status = request.payment_status

        if request.items is not None or {"tax", "shipping", "discount"} & admin_fields:
            apply_financials(
                order,
                tax=request.tax,
                shipping=request.shipping,
                discount=request.discount,
            )

        if rule is not None:
            order.recurrence = rule.to_document()
            if not order.is_recurring or order.schedule_status is None:
                order.is_recurring = True
                order.schedule_status = ScheduleStatus.ACTIVE
            if order.schedule_status != ScheduleStatus.ENDED:
                order.next_delivery_at = resolve_next_delivery(rule, now)
        elif request.is_recurring is False and order.is_schedule_open:
            self.state_machine.apply_transition(order, ScheduleStatus.ENDED)

        if request.schedule_status is not None:
            transition = self.state_machine.apply_transition(order, request.schedule_status)
            if transition.resumed:
                refresh_next_delivery(order, now)

        if request.next_delivery_at is not None and order.is_schedule_open:
            order.next_delivery_at = request.next_delivery_at

        order.updated_by = str(requester_id)
        return await self.repository.save(order)

    def _check_schedule_request(
        self,
        order: Order,
        rule: Optional[RecurrenceRule],
        request: EditOrderRequest,
    ) -> None:
        """Validate ``request.schedule_status`` against the state the edit leaves behind."""
        schedule_status = order.schedule_status
        is_recurring = order.is_recurring
        recurrence = order.recurrence
        if rule is not None:
            recurrence = rule.to_document()
            if not is_recurring or schedule_status is None:
                is_recurring, schedule_status = True, ScheduleStatus.ACTIVE
        elif request.is_recurring is False and order.is_schedule_open:
            schedule_status = ScheduleStatus.ENDED

        self.state_machine.validate_transition(
            SimpleNamespace(
                id=order.id,
                is_recurring=is_recurring,
                schedule_status=schedule_status,
                recurrence=recurrence,
            ),
            request.schedule_status,
        )

    async def _revert_stock_adjustment(
        self, deltas: dict[uuid.UUID, int], order_ref: str
    ) -> None:
        """Undo an item edit's stock movement after the edit failed."""
        if not deltas:
            return
        await self.stock.release(
            {pid: delta for pid, delta in deltas.items() if delta > 0},
            order_ref=order_ref,
            reason="edit_failed",
        )
        returned = {pid: -delta for pid, delta in deltas.items() if delta < 0}
        try:
            await self.stock.reserve(returned, order_ref=order_ref)
        except OrderEngineError as e:
            logger.error(
                "Stock returned by a failed edit could not be reserved again",
                order_ref=order_ref,
                products=[str(pid) for pid in returned],
                error=str(e),
                error_type=type(e).__name__,
            )

    # ------------------------------------------------------------------
    # Cancellation, status override, deletion
    # ------------------------------------------------------------------

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
    ) -> Order:
        """
        Cancel an order and return its stock.

        Stock is returned best-effort after the cancellation is persisted; a
        failed release is logged and does not undo the cancellation. An open
        recurring schedule is ended.

        Raises:
            OrderNotFoundError: If the order does not exist
            AccessDeniedError: If the requester is neither owner nor admin
            InvalidOrderStateError: If the order has shipped, been delivered
                or is already cancelled
        """
        order = await self._load_order(order_id)
        self._authorize(order, requester_id, requester_is_admin)
        ensure_cancellable(order)

        before = order.snapshot()
        held = quantities_by_product(order.items)

        order.status = OrderStatus.CANCELLED
        if order.is_schedule_open:
            self.state_machine.apply_transition(order, ScheduleStatus.ENDED)
        order.updated_by = str(requester_id)
        order = await self.repository.save(order)

        await self.stock.release(held, order_ref=order.order_number, reason="cancel")
        await record_audit(
            self.audit,
            str(requester_id),
            AuditAction.CANCEL,
            str(order.id),
            before=before,
            after=order.snapshot(),
        )

        logger.info("Order cancelled", order_id=str(order.id))
        return order

    async def set_order_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
    ) -> Order:
        """
        Override an order's status (administrators only).

        Any status may follow any other. Moving a stock-holding order into
        CANCELLED returns its stock exactly like a cancellation. Moving an order
        that holds no stock (cancelled, shipped or delivered) back into a
        stock-holding status reserves its items again.

        Raises:
            AccessDeniedError: If the requester is not an admin
            OrderNotFoundError: If the order does not exist
            OutOfStockError: If stock cannot be reserved again for the items
        """
        if not requester_is_admin:
            raise AccessDeniedError(
                "Only administrators may set order status",
                order_id=str(order_id),
            )

        order = await self._load_order(order_id)
        previous = order.status
        if previous == new_status:
            return order

        before = order.snapshot()
        releases_stock = new_status == OrderStatus.CANCELLED and previous.holds_stock()
        reserves_stock = new_status.holds_stock() and not previous.holds_stock()
        held = quantities_by_product(order.items) if releases_stock else {}
        needed = quantities_by_product(order.items) if reserves_stock else {}

        if needed:
            await self.stock.reserve(needed, order_ref=order.order_number)

        order.status = new_status
        if new_status == OrderStatus.CANCELLED and order.is_schedule_open:
            self.state_machine.apply_transition(order, ScheduleStatus.ENDED)
        order.updated_by = str(requester_id)
        try:
            order = await self.repository.save(order)
        except Exception:
            if needed:
                await self.stock.release(
                    needed, order_ref=order.order_number, reason="status_change_failed"
                )
            raise

        if held:
            await self.stock.release(held, order_ref=order.order_number, reason="status_cancel")

        await record_audit(
            self.audit,
            str(requester_id),
            AuditAction.STATUS_CHANGE,
            str(order.id),
            before=before,
            after=order.snapshot(),
        )

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            transition=f"{previous.value}->{new_status.value}",
        )
        return order

    async def delete_order(
        self,
        order_id: uuid.UUID,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
    ) -> None:
        """
        Delete an order (administrators only), returning held stock.

        Raises:
            AccessDeniedError: If the requester is not an admin
            OrderNotFoundError: If the order does not exist
        """
        if not requester_is_admin:
            raise AccessDeniedError(
                "Only administrators may delete orders",
                order_id=str(order_id),
            )

        order = await self._load_order(order_id)
        before = order.snapshot()
        held = quantities_by_product(order.items) if order.status.holds_stock() else {}
        order_number = order.order_number

        await self.repository.delete_order(order)

        if held:
            await self.stock.release(held, order_ref=order_number, reason="delete")
        await record_audit(
            self.audit,
            str(requester_id),
            AuditAction.DELETE,
            str(order_id),
            before=before,
        )

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    async def change_schedule(
        self,
        order_id: uuid.UUID,
        target: ScheduleStatus,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool = False,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Pause, resume or end an order's recurring schedule.

        Resuming recomputes the next delivery day from ``now``; pausing
        keeps it; ending clears it. Requesting the current state is a no-op.

        Raises:
            OrderNotFoundError: If the order does not exist
            AccessDeniedError: If the requester is neither owner nor admin
            InvalidScheduleTransitionError: If the order is not recurring or
                its schedule has ended
        """
        now = now or utc_now()
        order = await self._load_order(order_id)
        self._authorize(order, requester_id, requester_is_admin)

        before = order.snapshot()
        transition = self.state_machine.apply_transition(order, target)
        if not transition.changed:
            return order

        if transition.resumed:
            refresh_next_delivery(order, now)
        order.updated_by = str(requester_id)
        order = await self.repository.save(order)

        await record_audit(
            self.audit,
            str(requester_id),
            AuditAction.SCHEDULE_CHANGE,
            str(order.id),
            before=before,
            after=order.snapshot(),
        )
        return order

    # ------------------------------------------------------------------
    # Administrative listing
    # ------------------------------------------------------------------

    async def list_recurring_orders(
        self,
        filters: Optional[RecurringOrderFilters] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        requester_is_admin: bool = False,
    ) -> RecurringOrderListResult:
        """
        List recurring orders with pagination and analytics.

        Analytics always cover every recurring order, independent of the
        filters applied to the page.

        Raises:
            AccessDeniedError: If the requester is not an admin
            OrderValidationError: If sort parameters are invalid
        """
        self._require_admin(requester_is_admin, "list recurring orders")
        if sort_by not in ("created_at", "next_delivery_at", "updated_at", "order_number"):
            raise OrderValidationError("Invalid sort field", sort_by=sort_by)
        if sort_order not in ("asc", "desc"):
            raise OrderValidationError("Invalid sort order", sort_order=sort_order)

        filters = filters or RecurringOrderFilters()
        page, limit = self._page_bounds(page, limit)

        orders, total = await self.repository.list_recurring_orders(
            filters, page, limit, sort_by=sort_by, sort_order=sort_order
        )
        analytics = await self.repository.get_recurring_analytics()

        return RecurringOrderListResult(
            orders=[self.to_response(order) for order in orders],
            pagination=Pagination.build(page, limit, total),
            analytics=RecurringAnalytics(**analytics),
        )

    async def get_recurring_stats(
        self,
        now: Optional[datetime] = None,
        requester_is_admin: bool = False,
    ) -> RecurringOrderStats:
        """
        Recurring order analytics with the next scheduled deliveries.

        Raises:
            AccessDeniedError: If the requester is not an admin
        """
        self._require_admin(requester_is_admin, "view recurring order statistics")
        now = now or utc_now()

        analytics = await self.repository.get_recurring_analytics()
        upcoming = await self.repository.get_upcoming_deliveries(
            to_calendar_day(now),
            self.settings.upcoming_deliveries_limit,
        )

        return RecurringOrderStats(
            analytics=RecurringAnalytics(**analytics),
            upcoming_deliveries=[
                UpcomingDelivery(
                    order_id=order.id,
                    order_number=order.order_number,
                    customer_id=order.customer_id,
                    next_delivery_at=order.next_delivery_at,
                    total=order.total,
                )
                for order in upcoming
            ],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def to_response(order: Order) -> OrderResponse:
        """Serialize an order, classifying it with the recurrence predicate."""
        response = OrderResponse.model_validate(order)
        response.is_recurring = has_recurrence_signal(order.is_recurring, order.recurrence)
        return response

    async def _load_order(self, order_id: uuid.UUID) -> Order:
        order = await self.repository.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _authorize(
        order: Order,
        requester_id: Union[uuid.UUID, str],
        requester_is_admin: bool,
    ) -> None:
        if requester_is_admin or str(order.customer_id) == str(requester_id):
            return
        raise AccessDeniedError(
            "Requester does not own this order",
            order_id=str(order.id),
        )

    @staticmethod
    def _require_admin(requester_is_admin: bool, operation: str) -> None:
        if not requester_is_admin:
            raise AccessDeniedError(f"Only administrators may {operation}")

    def _page_bounds(self, page: int, limit: Optional[int]) -> tuple[int, int]:
        page = max(1, page)
        limit = limit or self.settings.default_page_size
        return page, max(1, min(limit, self.settings.max_page_size))

    async def _resolve_shipping_address(
        self,
        customer_id: uuid.UUID,
        request: CreateOrderRequest,
    ) -> dict[str, Any]:
        if request.shipping_address is not None:
            return request.shipping_address.model_dump()

        profile = await self.customers.resolve(customer_id)
        if profile is None or not profile.default_address:
            raise MissingShippingAddressError(
                "No shipping address provided and none on file",
                customer_id=str(customer_id),
            )

        address = {"name": profile.name, **profile.default_address}
        try:
            return AddressRequest.model_validate(address).model_dump()
        except ValueError as e:
            raise MissingShippingAddressError(
                "Registered address is incomplete",
                customer_id=str(customer_id),
            ) from e

    async def _price_items(
        self,
        lines: list[LineItemRequest],
        check_stock: bool = True,
    ) -> list[tuple[CatalogEntry, LineItemRequest]]:
        """
        Resolve every requested product and, for new orders, check it
        against stock. Edits skip the check because the order already
        holds part of the quantity; the reservation delta decides there.

        Raises:
            ProductNotFoundError: If a product reference is unknown
            OutOfStockError: If a line exceeds the product's stock
        """
        priced: list[tuple[CatalogEntry, LineItemRequest]] = []
        for line in lines:
            entry = await self.catalog.resolve(line.product_id)
            if entry is None:
                raise ProductNotFoundError(line.product_id)
            if check_stock and line.quantity > entry.stock:
                raise OutOfStockError(
                    str(entry.id),
                    requested=line.quantity,
                    available=entry.stock,
                    sku=entry.sku,
                )
            priced.append((entry, line))
        return priced
