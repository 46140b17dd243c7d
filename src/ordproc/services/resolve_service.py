"""Order resolution orchestration service."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional, Sequence, Union

from ordproc.aggregation import aggregate_order
from ordproc.completion_parser import CompletionOrderParser, parse_order
from ordproc.exceptions import ResolutionCancelledError
from ordproc.matcher import CatalogMatcher, Matched
from ordproc.models import (
    CatalogProduct,
    CustomerPriceRecord,
    MatchConfidence,
    OrderCandidateLine,
    PriceSource,
    ResolvedOrder,
    ResolvedOrderLine,
    StockStatus,
)
from ordproc.pricing import PriceResolver, clamp_price, round_money
from ordproc.review import OrderReviewer
from ordproc.snapshot import CatalogSnapshot, PriceHistorySnapshot
from ordproc.stock import evaluate_stock

if TYPE_CHECKING:
    from ordproc.config import OrderConfig
    from ordproc.embeddings import InMemoryEmbeddingCache, SemanticIndex

logger = logging.getLogger(__name__)

CatalogInput = Union[CatalogSnapshot, Iterable[CatalogProduct]]
HistoryInput = Union[PriceHistorySnapshot, Iterable[CustomerPriceRecord], None]


def build_semantic_index(
    config: "OrderConfig", cache: "InMemoryEmbeddingCache"
) -> Optional["SemanticIndex"]:
    """Create the OpenAI-backed semantic index, or None when it cannot be used."""
    if not config.uses_embeddings:
        return None

    from ordproc.embeddings import OpenAIEmbeddingProvider, SemanticIndex

    cache.configure(
        ttl_sec=config.embedding_cache_ttl_sec,
        max_entries=config.embedding_cache_max_entries,
    )
    return SemanticIndex(
        OpenAIEmbeddingProvider(config), cache, model=config.embedding_model
    )


class OrderResolutionService:
    """parse -> (match -> price -> stock) per line -> aggregate -> review."""

    def __init__(
        self,
        config: "OrderConfig",
        *,
        completion_parser: Optional[CompletionOrderParser] = None,
        semantic_index: Optional["SemanticIndex"] = None,
    ) -> None:
        self.config = config
        self.completion_parser = completion_parser
        self.matcher = CatalogMatcher(config, semantic_index)
        self.price_resolver = PriceResolver(config)
        self.reviewer = OrderReviewer(config)

    @classmethod
    def from_config(
        cls, config: "OrderConfig", embedding_cache: "InMemoryEmbeddingCache"
    ) -> "OrderResolutionService":
        """Wire external services according to config (none in mock mode)."""
        completion_parser = CompletionOrderParser(config) if config.uses_completion else None
        return cls(
            config,
            completion_parser=completion_parser,
            semantic_index=build_semantic_index(config, embedding_cache),
        )

    def parse(self, raw_text: str):
        """Return (candidate lines, parser name)."""
        return parse_order(raw_text, self.config, self.completion_parser)

    def resolve(
        self,
        raw_text: str,
        customer_id: Optional[str],
        catalog: CatalogInput,
        price_history: HistoryInput = None,
        *,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> ResolvedOrder:
        """Resolve free-text order into priced, stock-checked lines and totals."""
        self._check_cancelled(cancel_event)
        candidate_lines, parser = self.parse(raw_text)
        return self.resolve_lines(
            candidate_lines,
            customer_id,
            catalog,
            price_history,
            parser=parser,
            cancel_event=cancel_event,
            now=now,
        )

    def resolve_lines(
        self,
        candidate_lines: Sequence[OrderCandidateLine],
        customer_id: Optional[str],
        catalog: CatalogInput,
        price_history: HistoryInput = None,
        *,
        parser: str = "manual",
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> ResolvedOrder:
        """Resolve already-parsed candidate lines (e.g. manual entry)."""
        catalog_snapshot = self._catalog_snapshot(catalog)
        history_snapshot = self._history_snapshot(customer_id, price_history)
        now = now or datetime.now(timezone.utc)

        def _resolve(line: OrderCandidateLine) -> ResolvedOrderLine:
            return self.resolve_line(
                line,
                customer_id,
                catalog_snapshot,
                history_snapshot,
                now=now,
                cancel_event=cancel_event,
            )

        lines = self._resolve_all(candidate_lines, _resolve)
        self._check_cancelled(cancel_event)

        summary = aggregate_order(
            lines,
            tax_rate=self.config.tax_rate_decimal,
            quantum=self.config.money_quantum,
        )
        issues = self.reviewer.review(lines)

        logger.info(
            "Resolved order for customer=%s: lines=%s total=%s %s (parser=%s)",
            customer_id,
            summary.line_count,
            summary.total,
            self.config.currency,
            parser,
        )
        return ResolvedOrder(
            customer_id=customer_id,
            currency=self.config.currency,
            parser=parser,
            lines=lines,
            summary=summary,
            issues=issues,
        )

    def resolve_batch(
        self,
        raw_orders: Sequence[str],
        customer_id: Optional[str],
        catalog: CatalogInput,
        price_history: HistoryInput = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[ResolvedOrder]:
        """Resolve several independent orders against the same snapshots."""
        catalog_snapshot = self._catalog_snapshot(catalog)
        history_snapshot = self._history_snapshot(customer_id, price_history)
        return [
            self.resolve(
                raw,
                customer_id,
                catalog_snapshot,
                history_snapshot,
                cancel_event=cancel_event,
            )
            for raw in raw_orders
        ]

    def resolve_line(
        self,
        line: OrderCandidateLine,
        customer_id: Optional[str],
        catalog: CatalogSnapshot,
        price_history: PriceHistorySnapshot,
        *,
        now: datetime,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResolvedOrderLine:
        """Match, price and stock-check a single candidate line."""
        self._check_cancelled(cancel_event)
        result = self.matcher.match(
            line.product_name,
            line.variations,
            catalog,
            cancel_event=cancel_event,
        )

        if not isinstance(result, Matched):
            return self._unmatched_line(line, list(result.suggestions))

        product = result.product
        price = self.price_resolver.resolve(
            product,
            customer_id,
            price_history,
            line.quantity,
            line.price,
            now=now,
        )
        stock_status = evaluate_stock(product, line.quantity)
        suggestions = (
            list(result.suggestions) if result.confidence <= MatchConfidence.LOW else []
        )

        return ResolvedOrderLine(
            original_text=line.original_text,
            product=product,
            product_name=product.name,
            quantity=line.quantity,
            unit=line.unit,
            unit_price=price.unit_price,
            total_price=price.line_total,
            regular_price=price.regular_price,
            confidence=result.confidence,
            match_strategy=result.strategy,
            stock_status=stock_status,
            current_stock=product.quantity,
            in_stock=stock_status is StockStatus.IN_STOCK,
            price_source=price.source,
            discount_percentage=price.discount_percentage,
            price_alert=price.is_alert,
            manual_price=price.manual_override,
            suggestions=suggestions,
        )

    def _unmatched_line(
        self, line: OrderCandidateLine, suggestions: list[str]
    ) -> ResolvedOrderLine:
        # Unmatched lines keep the typed price (floored) or carry no price at all.
        if line.price is not None:
            unit_price = clamp_price(line.price, self.config.price_floor_decimal)
        else:
            unit_price = Decimal("0")

        return ResolvedOrderLine(
            original_text=line.original_text,
            product=None,
            product_name=line.product_name,
            quantity=line.quantity,
            unit=line.unit,
            unit_price=unit_price,
            total_price=round_money(line.quantity * unit_price, self.config.money_quantum),
            confidence=MatchConfidence.NO_MATCH,
            stock_status=evaluate_stock(None, line.quantity),
            in_stock=False,
            price_source=PriceSource.REGULAR,
            manual_price=line.price is not None,
            suggestions=suggestions,
        )

    def _resolve_all(self, candidate_lines, resolve_one) -> list[ResolvedOrderLine]:
        if not candidate_lines:
            return []

        workers = min(self.config.max_workers, len(candidate_lines))
        if workers == 1:
            return [resolve_one(line) for line in candidate_lines]

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ordproc")
        try:
            futures = [executor.submit(resolve_one, line) for line in candidate_lines]
            # Collect in submission order so output lines follow input lines.
            return [future.result() for future in futures]
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _catalog_snapshot(self, catalog: CatalogInput) -> CatalogSnapshot:
        if isinstance(catalog, CatalogSnapshot):
            return catalog
        return CatalogSnapshot.from_products(catalog, pin_order=self.config.pin_catalog_order)

    @staticmethod
    def _history_snapshot(
        customer_id: Optional[str], price_history: HistoryInput
    ) -> PriceHistorySnapshot:
        if isinstance(price_history, PriceHistorySnapshot):
            return price_history
        return PriceHistorySnapshot.from_records(customer_id, price_history)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ResolutionCancelledError("Resolution cancelled")
