"""Compute customer price-history updates after an order is placed."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from .models import CustomerPriceRecord, ResolvedOrderLine
from .pricing import discount_percentage

logger = logging.getLogger(__name__)

# Base units per packaging unit for cumulative quantity tracking.
BASE_UNITS_PER = {
    "case": Decimal("30"),
    "pallet": Decimal("100"),
}


@dataclass(frozen=True)
class PriceChange:
    """Audit entry for a negotiated price that changed."""

    customer_id: str
    product_id: str
    old_price: Decimal
    new_price: Decimal
    original_price: Decimal
    price_difference_percentage: float
    change_type: Literal["discount", "increase"]
    changed_at: datetime


@dataclass(frozen=True)
class PriceHistoryUpdate:
    """Record to persist, plus the change entry when the price moved."""

    record: CustomerPriceRecord
    change: Optional[PriceChange]


def quantity_in_base_units(quantity: Decimal, unit: str) -> Decimal:
    return quantity * BASE_UNITS_PER.get(unit.strip().lower(), Decimal("1"))


def apply_order_to_history(
    existing: Optional[CustomerPriceRecord],
    line: ResolvedOrderLine,
    customer_id: str,
    ordered_at: datetime,
) -> Optional[PriceHistoryUpdate]:
    """
    Fold one ordered line into the customer's price record.

    Returns None for unmatched lines. The caller owns persistence; nothing is
    written here.
    """
    if line.product is None:
        return None

    product = line.product
    if existing is not None and (
        existing.customer_id != customer_id or existing.product_id != product.product_id
    ):
        raise ValueError(
            f"Price record ({existing.customer_id}, {existing.product_id}) does not match "
            f"({customer_id}, {product.product_id})"
        )

    original_price = product.price if product.price > 0 else line.unit_price
    discount = discount_percentage(original_price, line.unit_price)
    base_quantity = quantity_in_base_units(line.quantity, line.unit)

    if existing is None:
        record = CustomerPriceRecord(
            customer_id=customer_id,
            product_id=product.product_id,
            last_price=line.unit_price,
            original_price=original_price,
            times_ordered=1,
            total_quantity_ordered=base_quantity,
            last_unit=line.unit,
            last_order_date=ordered_at,
            discount_percentage=discount,
        )
        return PriceHistoryUpdate(record=record, change=None)

    price_changed = existing.last_price != line.unit_price
    unit_changed = existing.last_unit != line.unit

    updates: dict = {
        "times_ordered": existing.times_ordered + 1,
        "total_quantity_ordered": existing.total_quantity_ordered + base_quantity,
        "last_order_date": ordered_at,
    }
    if price_changed or unit_changed:
        updates.update(
            last_price=line.unit_price,
            original_price=original_price,
            last_unit=line.unit,
            discount_percentage=discount,
        )
    record = existing.model_copy(update=updates)

    change = None
    if price_changed:
        change = PriceChange(
            customer_id=customer_id,
            product_id=product.product_id,
            old_price=existing.last_price,
            new_price=line.unit_price,
            original_price=original_price,
            price_difference_percentage=discount,
            change_type="discount" if line.unit_price < existing.last_price else "increase",
            changed_at=ordered_at,
        )
        logger.info(
            "Price for %s/%s changed %s -> %s",
            customer_id,
            product.product_id,
            existing.last_price,
            line.unit_price,
        )

    return PriceHistoryUpdate(record=record, change=change)
