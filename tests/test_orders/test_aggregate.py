"""
Tests for order pricing, totals, stock deltas and address merging.
"""

import uuid
from decimal import Decimal

import pytest

from recurring_orders.schemas.orders import AddressPatch
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
)
from recurring_orders.services.orders.enums import OrderStatus
from recurring_orders.services.orders.exceptions import (
    InvalidOrderStateError,
    OrderValidationError,
)


# ============================================================================
# Pricing Tests
# ============================================================================


class TestPricing:
    """Test line items, subtotal and checkout charges."""

    def test_line_item_priced_from_catalog(self, coffee) -> None:
        item = build_order_item(coffee, 3, position=1)

        assert item.product_id == coffee.id
        assert item.sku == "COF-001"
        assert item.unit_price == Decimal("12.50")
        assert item.line_total == Decimal("37.50")
        assert item.position == 1

    def test_subtotal(self, coffee, milk) -> None:
        items = [build_order_item(coffee, 2), build_order_item(milk, 3)]
        assert calculate_subtotal(items) == Decimal("34.75")

    def test_flat_shipping_at_threshold(self, settings) -> None:
        tax, shipping = calculate_checkout_charges(Decimal("50.00"), settings)

        assert tax == Decimal("0.00")
        assert shipping == Decimal("5.00")

    def test_free_shipping_above_threshold(self, settings) -> None:
        _, shipping = calculate_checkout_charges(Decimal("50.01"), settings)
        assert shipping == Decimal("0.00")

    def test_tax_rate_applied(self, settings) -> None:
        taxed = settings.model_copy(update={"tax_rate": Decimal("0.08")})
        tax, _ = calculate_checkout_charges(Decimal("25.00"), taxed)
        assert tax == Decimal("2.00")

    def test_total(self) -> None:
        total = calculate_total(
            Decimal("40.00"), Decimal("3.20"), Decimal("5.00"), Decimal("10.00")
        )
        assert total == Decimal("38.20")

    def test_total_cannot_go_negative(self) -> None:
        with pytest.raises(OrderValidationError):
            calculate_total(Decimal("10.00"), Decimal("0"), Decimal("0"), Decimal("10.01"))

    def test_order_number_format(self) -> None:
        number = generate_order_number("ORD")
        prefix, timestamp, suffix = number.split("-")

        assert prefix == "ORD"
        assert len(timestamp) == 14 and timestamp.isdigit()
        assert len(suffix) == 6


class TestApplyFinancials:
    """Test recomputation of stored totals."""

    def test_keeps_existing_charges(self, order_factory, coffee) -> None:
        order = order_factory([(coffee, 2)], tax=Decimal("1.00"), discount=Decimal("2.00"))
        order.items = [build_order_item(coffee, 4)]

        apply_financials(order)

        assert order.subtotal == Decimal("50.00")
        assert order.tax == Decimal("1.00")
        assert order.shipping == Decimal("5.00")
        assert order.total == Decimal("54.00")

    def test_overrides_given_charges(self, order_factory, coffee) -> None:
        order = order_factory([(coffee, 2)])

        apply_financials(order, shipping=Decimal("0"), discount=Decimal("5"))

        assert order.shipping == Decimal("0.00")
        assert order.total == Decimal("20.00")

    def test_negative_total_leaves_order_untouched(self, order_factory, coffee) -> None:
        order = order_factory([(coffee, 1)])
        original_total = order.total

        with pytest.raises(OrderValidationError):
            apply_financials(order, discount=Decimal("100"))

        assert order.total == original_total


# ============================================================================
# Stock Delta Tests
# ============================================================================


class TestStockDeltas:
    """Test per-product reservation changes for item edits."""

    def test_quantities_are_summed_per_product(self, coffee, milk) -> None:
        items = [
            build_order_item(coffee, 2),
            build_order_item(milk, 1),
            build_order_item(coffee, 3),
        ]
        assert quantities_by_product(items) == {coffee.id: 5, milk.id: 1}

    def test_deltas(self) -> None:
        kept, grown, dropped, added = (uuid.uuid4() for _ in range(4))

        deltas = stock_deltas(
            {kept: 2, grown: 1, dropped: 4},
            {kept: 2, grown: 3, added: 1},
        )

        assert deltas == {grown: 2, dropped: -4, added: 1}


# ============================================================================
# Address Tests
# ============================================================================


class TestMergeAddress:
    """Test field-by-field address merging."""

    def test_patch_overlays_non_null_fields(self, address) -> None:
        merged = merge_address(address, AddressPatch(city="Cambridge", zip_code="CB2 1TN"))

        assert merged["city"] == "Cambridge"
        assert merged["zip_code"] == "CB2 1TN"
        assert merged["street"] == address["street"]

    def test_empty_patch_keeps_address(self, address) -> None:
        assert merge_address(address, AddressPatch()) == address

    def test_patch_on_missing_address(self) -> None:
        assert merge_address(None, {"city": "Leeds"}) == {"city": "Leeds"}


# ============================================================================
# Status Guard Tests
# ============================================================================


class TestStatusGuards:
    """Test edit and cancel guards."""

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    )
    def test_closed_orders_are_not_editable(self, order_factory, status) -> None:
        with pytest.raises(InvalidOrderStateError) as exc_info:
            ensure_editable(order_factory(status=status))

        assert exc_info.value.code == "INVALID_STATE"

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING],
    )
    def test_open_orders_can_be_cancelled(self, order_factory, status) -> None:
        ensure_cancellable(order_factory(status=status))

    def test_shipped_order_cannot_be_cancelled(self, order_factory) -> None:
        with pytest.raises(InvalidOrderStateError):
            ensure_cancellable(order_factory(status=OrderStatus.SHIPPED))
