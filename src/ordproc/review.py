"""Advisory review of resolved orders."""

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from .models import MatchConfidence, OrderIssue, ResolvedOrderLine, StockStatus

if TYPE_CHECKING:
    from .config import OrderConfig

logger = logging.getLogger(__name__)

UNUSUAL_QUANTITY = Decimal("1000")


class OrderReviewer:
    """Flag lines a salesperson should double-check before confirming."""

    def __init__(self, config: "OrderConfig"):
        self.alert_ratio = Decimal(str(config.price_alert_ratio))

    def review(self, lines: list[ResolvedOrderLine]) -> list[OrderIssue]:
        """
        Collect issues for every line.

        Issues are advisory: they never change prices, matches or totals.
        """
        issues: list[OrderIssue] = []
        for index, line in enumerate(lines):
            issues.extend(self._review_line(index, line))

        if issues:
            logger.info(f"Order review found {len(issues)} issues in {len(lines)} lines")
        return issues

    def _review_line(self, index: int, line: ResolvedOrderLine) -> list[OrderIssue]:
        issues: list[OrderIssue] = []
        label = line.product_name

        if line.confidence is MatchConfidence.NO_MATCH:
            hint = f" Did you mean: {', '.join(line.suggestions)}?" if line.suggestions else ""
            issues.append(
                OrderIssue(
                    line_index=index,
                    code="NO_MATCH",
                    message=f"No catalog product found for '{line.original_text}'.{hint}",
                )
            )
            return issues

        if line.confidence is MatchConfidence.LOW:
            issues.append(
                OrderIssue(
                    line_index=index,
                    code="LOW_CONFIDENCE",
                    message=f"'{line.original_text}' was matched to {label} by similarity only",
                )
            )

        if line.stock_status is StockStatus.OUT_OF_STOCK:
            issues.append(
                OrderIssue(line_index=index, code="OUT_OF_STOCK", message=f"{label} is out of stock")
            )
        elif line.stock_status is StockStatus.LOW_STOCK:
            issues.append(
                OrderIssue(
                    line_index=index,
                    code="LOW_STOCK",
                    message=f"Only {line.current_stock} of {line.quantity} {label} available",
                )
            )

        if line.price_alert:
            issues.append(
                OrderIssue(
                    line_index=index,
                    code="PRICE_ALERT",
                    message=(
                        f"Customer price {line.unit_price} for {label} is far from "
                        f"regular price {line.regular_price}"
                    ),
                )
            )

        if line.manual_price and self._far_from_regular(line):
            issues.append(
                OrderIssue(
                    line_index=index,
                    code="MANUAL_PRICE",
                    message=(
                        f"Typed price {line.unit_price} for {label} differs from "
                        f"regular price {line.regular_price}"
                    ),
                )
            )

        if line.quantity > UNUSUAL_QUANTITY:
            issues.append(
                OrderIssue(
                    line_index=index,
                    code="UNUSUAL_QUANTITY",
                    message=f"Quantity {line.quantity} {line.unit} of {label} is unusually high",
                )
            )

        return issues

    def _far_from_regular(self, line: ResolvedOrderLine) -> bool:
        regular = line.regular_price
        if regular is None or regular <= 0:
            return False
        return abs(line.unit_price - regular) / regular > self.alert_ratio
