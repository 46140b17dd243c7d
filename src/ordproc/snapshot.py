"""Read-only catalog and price-history snapshots for one resolution pass."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from pydantic import TypeAdapter

from ordproc.exceptions import SnapshotError
from ordproc.models import CatalogProduct, CustomerPriceRecord

logger = logging.getLogger(__name__)

_catalog_adapter = TypeAdapter(list[CatalogProduct])
_history_adapter = TypeAdapter(list[CustomerPriceRecord])


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable catalog in a fixed iteration order."""

    products: tuple[CatalogProduct, ...]

    @classmethod
    def from_products(
        cls, products: Optional[Iterable[CatalogProduct]], *, pin_order: bool = False
    ) -> "CatalogSnapshot":
        """Freeze products; optionally sort by product id for reproducible tie-breaks."""
        if products is None:
            raise SnapshotError("Catalog snapshot is required")

        items = tuple(products)
        if pin_order:
            items = tuple(sorted(items, key=lambda p: p.product_id))
        return cls(products=items)

    def __iter__(self):
        return iter(self.products)

    def __len__(self) -> int:
        return len(self.products)


@dataclass(frozen=True)
class PriceHistorySnapshot:
    """Negotiated prices of a single customer, keyed by product id."""

    customer_id: Optional[str]
    records: dict[str, CustomerPriceRecord] = field(default_factory=dict)

    @classmethod
    def empty(cls, customer_id: Optional[str] = None) -> "PriceHistorySnapshot":
        return cls(customer_id=customer_id, records={})

    @classmethod
    def from_records(
        cls,
        customer_id: Optional[str],
        records: Optional[Iterable[CustomerPriceRecord]],
    ) -> "PriceHistorySnapshot":
        """Index records by product; every record must belong to the customer."""
        if records is None:
            return cls.empty(customer_id)

        indexed: dict[str, CustomerPriceRecord] = {}
        for record in records:
            if customer_id is None or record.customer_id != customer_id:
                raise SnapshotError(
                    f"Price record for customer {record.customer_id!r} "
                    f"does not belong to customer {customer_id!r}"
                )
            if record.product_id in indexed:
                logger.warning(
                    "Duplicate price record for product %s; keeping the last one",
                    record.product_id,
                )
            indexed[record.product_id] = record

        return cls(customer_id=customer_id, records=indexed)

    def get(self, product_id: str) -> Optional[CustomerPriceRecord]:
        return self.records.get(product_id)

    def __len__(self) -> int:
        return len(self.records)


def load_catalog_file(path: Path) -> list[CatalogProduct]:
    """Load a JSON array of catalog products."""
    return _catalog_adapter.validate_python(json.loads(path.read_text()))


def load_price_history_file(path: Path) -> list[CustomerPriceRecord]:
    """Load a JSON array of customer price records."""
    return _history_adapter.validate_python(json.loads(path.read_text()))
