"""Cascading catalog matching: exact -> variation -> fuzzy -> semantic."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from functools import cached_property
from typing import Callable, Iterable, Optional, Sequence, Union

from .config import OrderConfig
from .embeddings import SemanticIndex
from .exceptions import ResolutionCancelledError, SnapshotError
from .models import CatalogProduct, MatchConfidence
from .text_similarity import contains_either, levenshtein_distance, normalize_text, shared_words

logger = logging.getLogger(__name__)

DOMAIN_KEYWORDS = ("fakher", "adalya", "starbuzz", "coal", "hose", "bowl", "tips")


@dataclass(frozen=True)
class Matched:
    """A fragment resolved to one catalog product."""

    product: CatalogProduct
    confidence: MatchConfidence
    strategy: str
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class Unmatched:
    """No strategy found a product; suggestions guide the user."""

    suggestions: tuple[str, ...] = ()

    @property
    def confidence(self) -> MatchConfidence:
        return MatchConfidence.NO_MATCH


MatchResult = Union[Matched, Unmatched]


@dataclass(frozen=True)
class ScoredProduct:
    product: CatalogProduct
    score: int


def find_exact_match(
    name: str, catalog: Iterable[CatalogProduct]
) -> Optional[CatalogProduct]:
    """
    Case-insensitive lookup by name, SKU or barcode.

    Equality anywhere in the catalog beats substring containment, so an exact
    name is never shadowed by a longer product name listed earlier.
    """
    needle = normalize_text(name)
    if not needle:
        return None

    products = list(catalog)
    for product in products:
        if needle in (
            normalize_text(product.name),
            normalize_text(product.sku or ""),
            normalize_text(product.barcode or ""),
        ):
            return product

    for product in products:
        if contains_either(needle, normalize_text(product.name)):
            return product

    return None


def fuzzy_score(fragment: str, product: CatalogProduct) -> int:
    """Substring, shared-word, edit-distance and keyword score of a product name."""
    needle = normalize_text(fragment)
    name = normalize_text(product.name)

    score = 0
    if contains_either(needle, name):
        score += 10

    score += 3 * len(shared_words(needle, name))

    distance = levenshtein_distance(needle, name)
    if distance < 5:
        score += (5 - distance) * 2

    for keyword in DOMAIN_KEYWORDS:
        if keyword in needle and keyword in name:
            score += 5

    return score


def rank_fuzzy(fragment: str, catalog: Iterable[CatalogProduct]) -> list[ScoredProduct]:
    """Products with a positive score, best first; ties keep catalog order."""
    scored = [ScoredProduct(product, fuzzy_score(fragment, product)) for product in catalog]
    positive = [item for item in scored if item.score > 0]
    # list.sort is stable: equal scores stay in catalog order.
    positive.sort(key=lambda item: item.score, reverse=True)
    return positive


@dataclass
class MatchContext:
    fragment: str
    variations: Sequence[str]
    catalog: Sequence[CatalogProduct]

    @cached_property
    def fuzzy_candidates(self) -> list[ScoredProduct]:
        return rank_fuzzy(self.fragment, self.catalog)


Strategy = Callable[[MatchContext], Optional[Matched]]


class CatalogMatcher:
    """Resolve a product-name fragment through an ordered list of strategies."""

    def __init__(
        self, config: OrderConfig, semantic_index: Optional[SemanticIndex] = None
    ) -> None:
        self.config = config
        self.semantic_index = semantic_index
        self.strategies: list[tuple[str, Strategy]] = [
            ("exact", self.match_exact),
            ("variation", self.match_variation),
            ("fuzzy", self.match_fuzzy),
        ]
        if semantic_index is not None:
            self.strategies.append(("semantic", self.match_semantic))

    def match(
        self,
        fragment: str,
        variations: Optional[Sequence[str]],
        catalog: Optional[Iterable[CatalogProduct]],
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> MatchResult:
        """Run strategies in order and return the first hit."""
        if catalog is None:
            raise SnapshotError("Catalog snapshot is required")

        context = MatchContext(
            fragment=fragment,
            variations=list(variations or []),
            catalog=tuple(catalog),
        )

        for name, strategy in self.strategies:
            if cancel_event is not None and cancel_event.is_set():
                raise ResolutionCancelledError("Resolution cancelled during matching")
            result = strategy(context)
            if result is not None:
                logger.debug(
                    "Matched %r -> %s via %s (%s)",
                    fragment,
                    result.product.product_id,
                    name,
                    result.confidence.value,
                )
                return result

        suggestions = tuple(
            item.product.name
            for item in context.fuzzy_candidates[: self.config.max_suggestions]
        )
        logger.info("No catalog match for %r (%s suggestions)", fragment, len(suggestions))
        return Unmatched(suggestions=suggestions)

    def match_exact(self, context: MatchContext) -> Optional[Matched]:
        product = find_exact_match(context.fragment, context.catalog)
        if product is None:
            return None
        return Matched(product=product, confidence=MatchConfidence.HIGH, strategy="exact")

    def match_variation(self, context: MatchContext) -> Optional[Matched]:
        for variation in context.variations:
            product = find_exact_match(variation, context.catalog)
            if product is not None:
                return Matched(
                    product=product, confidence=MatchConfidence.MEDIUM, strategy="variation"
                )
        return None

    def match_fuzzy(self, context: MatchContext) -> Optional[Matched]:
        candidates = context.fuzzy_candidates
        if not candidates or candidates[0].score < self.config.fuzzy_min_score:
            return None

        limit = self.config.max_suggestions
        return Matched(
            product=candidates[0].product,
            confidence=MatchConfidence.LOW,
            strategy="fuzzy",
            suggestions=tuple(item.product.name for item in candidates[1 : 1 + limit]),
        )

    def match_semantic(self, context: MatchContext) -> Optional[Matched]:
        if self.semantic_index is None:
            return None

        ranked = self.semantic_index.rank(context.fragment, context.catalog)
        if not ranked:
            return None

        product, similarity = ranked[0]
        if similarity <= self.config.semantic_threshold:
            logger.debug(
                "Best semantic candidate for %r scored %.3f (threshold %.2f)",
                context.fragment,
                similarity,
                self.config.semantic_threshold,
            )
            return None
        return Matched(product=product, confidence=MatchConfidence.MEDIUM, strategy="semantic")
