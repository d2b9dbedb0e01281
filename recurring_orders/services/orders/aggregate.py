"""Order aggregate rules.

Pricing, totals and address reconciliation for orders, plus the status
guards that decide whether an order may still be edited or cancelled. These
functions operate on in-memory Order objects and never touch the catalog or
the database.
"""

import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel

from recurring_orders.core.config import Settings
from recurring_orders.database.models.order import Order, OrderItem
from recurring_orders.services.catalog.gateway import CatalogEntry
from recurring_orders.services.orders.exceptions import (
    InvalidOrderStateError,
    OrderValidationError,
)

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Quantize a monetary amount to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def generate_order_number(prefix: str) -> str:
    """Order number of the form PREFIX-YYYYMMDDHHMMSS-XXXXXX."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    random_suffix = uuid.uuid4().hex[:6].upper()
    return f"{prefix}-{timestamp}-{random_suffix}"


def build_order_item(entry: CatalogEntry, quantity: int, position: int = 0) -> OrderItem:
    """Create a line item priced from the catalog."""
    unit_price = to_money(entry.price)
    return OrderItem(
        product_id=entry.id,
        sku=entry.sku,
        name=entry.name,
        quantity=quantity,
        unit_price=unit_price,
        line_total=to_money(unit_price * quantity),
        position=position,
    )


def calculate_subtotal(items: Iterable[OrderItem]) -> Decimal:
    """Sum of quantity x unit price over all items."""
    return to_money(sum((item.unit_price * item.quantity for item in items), Decimal("0")))


def calculate_checkout_charges(
    subtotal: Decimal,
    settings: Settings,
) -> tuple[Decimal, Decimal]:
    """
    Compute tax and shipping for a new order.

    Shipping is free above the configured threshold and a flat fee otherwise.

    Returns:
        Tuple of (tax, shipping)
    """
    tax = to_money(subtotal * settings.tax_rate)
    shipping = (
        Decimal("0.00")
        if subtotal > settings.free_shipping_threshold
        else to_money(settings.flat_shipping_fee)
    )
    return tax, shipping


def calculate_total(
    subtotal: Decimal,
    tax: Decimal,
    shipping: Decimal,
    discount: Decimal,
) -> Decimal:
    """
    Compute subtotal + tax + shipping - discount.

    Raises:
        OrderValidationError: If the discount exceeds the amount due
    """
    total = to_money(subtotal + tax + shipping - discount)
    if total < 0:
        raise OrderValidationError(
            "Discount exceeds the order amount",
            subtotal=str(subtotal),
            tax=str(tax),
            shipping=str(shipping),
            discount=str(discount),
        )
    return total


def apply_financials(
    order: Order,
    tax: Optional[Decimal] = None,
    shipping: Optional[Decimal] = None,
    discount: Optional[Decimal] = None,
) -> None:
    """
    Recompute the order's subtotal and total from its items.

    Tax, shipping and discount keep their current values unless given.

    Raises:
        OrderValidationError: If the resulting total would be negative
    """
    new_tax = to_money(tax) if tax is not None else order.tax
    new_shipping = to_money(shipping) if shipping is not None else order.shipping
    new_discount = to_money(discount) if discount is not None else order.discount
    subtotal = calculate_subtotal(order.items)

    total = calculate_total(subtotal, new_tax, new_shipping, new_discount)

    order.subtotal = subtotal
    order.tax = new_tax
    order.shipping = new_shipping
    order.discount = new_discount
    order.total = total


def quantities_by_product(items: Iterable[Any]) -> dict[UUID, int]:
    """Total quantity per product id."""
    quantities: dict[UUID, int] = {}
    for item in items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
    return quantities


def stock_deltas(
    current: Mapping[UUID, int],
    requested: Mapping[UUID, int],
) -> dict[UUID, int]:
    """
    Per-product change in reserved quantity when replacing an item set.

    Positive values need additional stock; negative values return stock.
    Products whose quantity is unchanged are omitted.
    """
    deltas: dict[UUID, int] = {}
    for product_id in {*current, *requested}:
        delta = requested.get(product_id, 0) - current.get(product_id, 0)
        if delta:
            deltas[product_id] = delta
    return deltas


def _address_values(address: Any) -> dict[str, Any]:
    if address is None:
        return {}
    if isinstance(address, BaseModel):
        address = address.model_dump()
    return {key: value for key, value in address.items() if value is not None}


def merge_address(
    existing: Optional[Mapping[str, Any]],
    patch: Any,
) -> Optional[dict[str, Any]]:
    """
    Overlay the non-null fields of ``patch`` onto ``existing``.

    Returns:
        The merged address, or ``existing`` unchanged when the patch carries
        no values
    """
    updates = _address_values(patch)
    if not updates:
        return dict(existing) if existing is not None else None
    return {**(existing or {}), **updates}


def ensure_editable(order: Order) -> None:
    """
    Raises:
        InvalidOrderStateError: If the order has shipped, been delivered or
            been cancelled
    """
    if not order.status.is_editable():
        raise InvalidOrderStateError(
            f"Order cannot be modified in status {order.status.value}",
            order_id=str(order.id),
            status=order.status.value,
        )


def ensure_cancellable(order: Order) -> None:
    """
    Raises:
        InvalidOrderStateError: If the order has shipped, been delivered or
            is already cancelled
    """
    if not order.status.can_cancel():
        raise InvalidOrderStateError(
            f"Order cannot be cancelled in status {order.status.value}",
            order_id=str(order.id),
            status=order.status.value,
        )
