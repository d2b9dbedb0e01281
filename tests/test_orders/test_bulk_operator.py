"""
Test suite for BulkScheduleOperator.

Covers whole-batch validation, per-order isolation of failures, no-op
counting, stock release on delete and the batch audit record.
"""

import uuid
from datetime import date, datetime, timezone

import pytest

from recurring_orders.services.orders.bulk import BulkScheduleOperator
from recurring_orders.services.orders.enums import BulkAction, OrderStatus, ScheduleStatus
from recurring_orders.services.orders.exceptions import (
    AccessDeniedError,
    BulkValidationError,
    OrderValidationError,
)

NOW = datetime(2024, 1, 9, 10, 0, tzinfo=timezone.utc)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def operator(mock_session, mock_repository, catalog, audit) -> BulkScheduleOperator:
    bulk = BulkScheduleOperator(session=mock_session, catalog=catalog, audit=audit)
    bulk.repository = mock_repository
    return bulk


@pytest.fixture
def recurring_orders(order_factory, mock_repository, coffee, weekly_recurrence):
    """Two active and one paused recurring order, all known to the repository."""
    orders = [
        order_factory(
            [(coffee, 1)],
            recurrence=weekly_recurrence,
            schedule_status=status,
            next_delivery_at=date(2024, 1, 10),
        )
        for status in (ScheduleStatus.ACTIVE, ScheduleStatus.ACTIVE, ScheduleStatus.PAUSED)
    ]
    mock_repository.get_orders_by_ids.return_value = orders
    return orders


def ids(orders) -> list[str]:
    return [str(order.id) for order in orders]


# ============================================================================
# Request Validation Tests
# ============================================================================


class TestRequestValidation:
    """Test rejection of requests before any order is touched."""

    @pytest.mark.asyncio
    async def test_requires_admin(self, operator, recurring_orders, admin_id) -> None:
        with pytest.raises(AccessDeniedError):
            await operator.apply_bulk_action("pause", ids(recurring_orders), admin_id)

    @pytest.mark.asyncio
    async def test_unknown_action(self, operator, recurring_orders, admin_id) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            await operator.apply_bulk_action(
                "archive", ids(recurring_orders), admin_id, requester_is_admin=True
            )

        assert exc_info.value.context["allowed_actions"] == ["pause", "resume", "end", "delete"]

    @pytest.mark.asyncio
    async def test_empty_batch(self, operator, admin_id) -> None:
        with pytest.raises(OrderValidationError):
            await operator.apply_bulk_action("pause", [], admin_id, requester_is_admin=True)

    @pytest.mark.asyncio
    async def test_unknown_id_rejects_whole_batch(
        self, operator, recurring_orders, admin_id, mock_repository, audit
    ) -> None:
        missing = str(uuid.uuid4())

        with pytest.raises(BulkValidationError) as exc_info:
            await operator.apply_bulk_action(
                "pause",
                [*ids(recurring_orders), missing, "not-a-uuid"],
                admin_id,
                requester_is_admin=True,
            )

        assert exc_info.value.code == "BULK_VALIDATION_FAILED"
        assert exc_info.value.missing_ids == ["not-a-uuid", missing]
        assert all(order.schedule_status != ScheduleStatus.PAUSED for order in recurring_orders[:2])
        mock_repository.save.assert_not_awaited()
        assert audit.records == []

    @pytest.mark.asyncio
    async def test_non_recurring_id_rejects_whole_batch(
        self, operator, recurring_orders, order_factory, admin_id, mock_repository
    ) -> None:
        one_off = order_factory()
        mock_repository.get_orders_by_ids.return_value = [*recurring_orders, one_off]

        with pytest.raises(BulkValidationError) as exc_info:
            await operator.apply_bulk_action(
                BulkAction.END,
                [*ids(recurring_orders), str(one_off.id)],
                admin_id,
                requester_is_admin=True,
            )

        assert exc_info.value.non_recurring_ids == [str(one_off.id)]
        assert exc_info.value.missing_ids == []
        mock_repository.save.assert_not_awaited()


# ============================================================================
# Schedule Action Tests
# ============================================================================


class TestScheduleActions:
    """Test pause, resume and end across a batch."""

    @pytest.mark.asyncio
    async def test_pause_counts_only_changed_orders(
        self, operator, recurring_orders, admin_id, audit
    ) -> None:
        result = await operator.apply_bulk_action(
            "pause", ids(recurring_orders), admin_id, requester_is_admin=True, now=NOW
        )

        assert result.action == BulkAction.PAUSE
        assert result.requested_count == 3
        assert result.affected_count == 2
        assert result.errors == []
        assert all(order.schedule_status == ScheduleStatus.PAUSED for order in recurring_orders)

        assert audit.actions() == ["bulk_update"]
        record = audit.records[0]
        assert record["resource_type"] == "recurring_order_batch"
        assert record["actor_id"] == str(admin_id)
        assert record["after"]["affected_count"] == 2

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_applied_once(
        self, operator, recurring_orders, admin_id, mock_repository
    ) -> None:
        first = recurring_orders[0]
        mock_repository.get_orders_by_ids.return_value = [first]

        result = await operator.apply_bulk_action(
            "end", [str(first.id), first.id], admin_id, requester_is_admin=True
        )

        assert result.requested_count == 1
        assert result.affected_count == 1

    @pytest.mark.asyncio
    async def test_resume_recomputes_next_delivery(
        self, operator, recurring_orders, admin_id
    ) -> None:
        paused = recurring_orders[2]
        paused.next_delivery_at = date(2024, 1, 1)

        await operator.apply_bulk_action(
            "resume", ids(recurring_orders), admin_id, requester_is_admin=True, now=NOW
        )

        assert paused.schedule_status == ScheduleStatus.ACTIVE
        assert paused.next_delivery_at == date(2024, 1, 10)

    @pytest.mark.asyncio
    async def test_end_clears_next_delivery(self, operator, recurring_orders, admin_id) -> None:
        result = await operator.apply_bulk_action(
            "END", ids(recurring_orders), admin_id, requester_is_admin=True
        )

        assert result.affected_count == 3
        assert all(order.next_delivery_at is None for order in recurring_orders)

    @pytest.mark.asyncio
    async def test_failed_order_does_not_stop_batch(
        self, operator, recurring_orders, admin_id
    ) -> None:
        ended = recurring_orders[2]
        ended.schedule_status = ScheduleStatus.ENDED

        result = await operator.apply_bulk_action(
            "resume", ids(recurring_orders), admin_id, requester_is_admin=True, now=NOW
        )

        assert result.affected_count == 0
        assert len(result.errors) == 1
        assert result.errors[0].order_id == str(ended.id)
        assert result.errors[0].code == "INVALID_TRANSITION"
        assert ended.schedule_status == ScheduleStatus.ENDED


# ============================================================================
# Delete Action Tests
# ============================================================================


class TestDeleteAction:
    """Test bulk deletion."""

    @pytest.mark.asyncio
    async def test_delete_returns_held_stock(
        self, operator, recurring_orders, admin_id, catalog, coffee, mock_repository
    ) -> None:
        recurring_orders[1].status = OrderStatus.SHIPPED

        result = await operator.apply_bulk_action(
            "delete", ids(recurring_orders), admin_id, requester_is_admin=True
        )

        assert result.affected_count == 3
        assert mock_repository.delete_order.await_count == 3
        assert catalog.stock(coffee.id) == 12
