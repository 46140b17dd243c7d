"""Order total aggregation."""

import logging
from decimal import Decimal
from typing import Iterable

from .models import OrderSummary, ResolvedOrderLine, StockStatus
from .pricing import round_money

logger = logging.getLogger(__name__)


def aggregate_order(
    lines: Iterable[ResolvedOrderLine],
    *,
    tax_rate: Decimal,
    quantum: Decimal = Decimal("0.01"),
) -> OrderSummary:
    """
    Sum line totals into subtotal, tax, total and savings.

    Line totals are already rounded to the minor unit, so the exact Decimal
    sums do not depend on line order.
    """
    items = list(lines)
    subtotal = sum((line.total_price for line in items), Decimal("0"))
    savings = sum((line.savings for line in items), Decimal("0"))

    tax = round_money(subtotal * tax_rate, quantum)
    subtotal = round_money(subtotal, quantum)

    summary = OrderSummary(
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        total_savings=round_money(savings, quantum),
        line_count=len(items),
        all_in_stock=bool(items)
        and all(line.stock_status is StockStatus.IN_STOCK for line in items),
    )
    logger.debug("Aggregated %s lines: total=%s", summary.line_count, summary.total)
    return summary
