"""Customer-specific unit price resolution."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .config import OrderConfig
from .exceptions import SnapshotError
from .models import CatalogProduct, PriceSource
from .snapshot import PriceHistorySnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceResolution:
    """Computed price for a single matched line."""

    unit_price: Decimal
    line_total: Decimal
    source: PriceSource
    discount_percentage: float
    is_alert: bool
    regular_price: Decimal
    manual_override: bool


def round_money(value: Decimal, quantum: Decimal = Decimal("0.01")) -> Decimal:
    """Round to the currency minor unit, halves away from zero."""
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def clamp_price(value: Optional[Decimal], floor: Decimal) -> Decimal:
    """Replace missing, non-finite or too-small prices with the floor."""
    if value is None or not value.is_finite() or value < floor:
        return floor
    return value


def discount_percentage(regular_price: Decimal, resolved_price: Decimal) -> float:
    """Discount vs. the regular price, clamped to [0, 100]; 0 without a regular price."""
    if regular_price <= 0:
        return 0.0
    pct = (regular_price - resolved_price) / regular_price * 100
    pct = max(Decimal("0"), min(Decimal("100"), pct))
    return float(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class PriceResolver:
    """Pick the unit price for a customer: typed price > negotiated price > catalog price."""

    def __init__(self, config: OrderConfig) -> None:
        self.config = config
        self.floor = config.price_floor_decimal
        self.quantum = config.money_quantum
        self.alert_ratio = Decimal(str(config.price_alert_ratio))

    def resolve(
        self,
        product: CatalogProduct,
        customer_id: Optional[str],
        price_history: PriceHistorySnapshot,
        quantity: Decimal,
        explicit_price: Optional[Decimal] = None,
        *,
        now: Optional[datetime] = None,
    ) -> PriceResolution:
        """
        Resolve the unit price for one matched product.

        Args:
            product: Matched catalog product
            customer_id: Customer the order is for (None for walk-in orders)
            price_history: Snapshot of that customer's negotiated prices
            quantity: Requested quantity
            explicit_price: Price the user typed, which always wins
            now: Reference time for expiry checks (defaults to current UTC time)

        Returns:
            PriceResolution with clamped unit price and rounded line total
        """
        if price_history is None:
            raise SnapshotError("Price history snapshot is required")
        if customer_id != price_history.customer_id and len(price_history):
            raise SnapshotError(
                f"Price history belongs to {price_history.customer_id!r}, "
                f"not {customer_id!r}"
            )

        now = now or datetime.now(timezone.utc)
        regular_price = product.price
        source = PriceSource.REGULAR
        is_alert = False
        manual_override = False

        if explicit_price is not None:
            unit_price = clamp_price(explicit_price, self.floor)
            manual_override = True
        else:
            record = price_history.get(product.product_id)
            if record is not None and record.is_valid(now):
                unit_price = clamp_price(record.last_price, self.floor)
                source = PriceSource.CUSTOMER
                is_alert = self._is_price_alert(record.last_price, regular_price)
                if is_alert:
                    logger.warning(
                        "Customer price %s for %s differs from regular %s by more than %s%%",
                        record.last_price,
                        product.product_id,
                        regular_price,
                        self.alert_ratio * 100,
                    )
            else:
                if record is not None:
                    logger.debug(
                        "Customer price for %s expired at %s; using regular price",
                        product.product_id,
                        record.valid_until,
                    )
                unit_price = clamp_price(regular_price, self.floor)

        return PriceResolution(
            unit_price=unit_price,
            line_total=round_money(quantity * unit_price, self.quantum),
            source=source,
            discount_percentage=discount_percentage(regular_price, unit_price),
            is_alert=is_alert,
            regular_price=regular_price,
            manual_override=manual_override,
        )

    def _is_price_alert(self, customer_price: Decimal, regular_price: Decimal) -> bool:
        if regular_price <= 0:
            return False
        return abs(customer_price - regular_price) / regular_price > self.alert_ratio
