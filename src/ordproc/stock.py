"""Stock status evaluation."""

from decimal import Decimal
from typing import Optional

from .models import CatalogProduct, StockStatus


def evaluate_stock(product: Optional[CatalogProduct], quantity: Decimal) -> StockStatus:
    """
    Compare requested quantity with on-hand stock.

    Unmatched lines are ``not_found``; an empty shelf is ``out_of_stock`` whatever
    was requested; partial cover is ``low_stock``.
    """
    if product is None:
        return StockStatus.NOT_FOUND
    if product.quantity == 0:
        return StockStatus.OUT_OF_STOCK
    if product.quantity < quantity:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK
