"""Local regex parser turning free-text orders into candidate lines."""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from .models import MAX_LINE_QUANTITY, MAX_UNIT_PRICE, MatchConfidence, OrderCandidateLine

logger = logging.getLogger(__name__)


UNIT_ALIASES = {
    "case": "case",
    "cases": "case",
    "box": "box",
    "boxes": "box",
    "pack": "pack",
    "packs": "pack",
    "piece": "piece",
    "pieces": "piece",
    "pc": "piece",
    "pcs": "piece",
    "unit": "piece",
    "units": "piece",
    "carton": "carton",
    "cartons": "carton",
    "bottle": "bottle",
    "bottles": "bottle",
    "kg": "kg",
    "kgs": "kg",
    "g": "g",
    "l": "l",
    "ml": "ml",
    "lb": "lb",
    "lbs": "lb",
}

DEFAULT_UNIT = "piece"

_UNIT_ALTERNATION = "|".join(sorted(UNIT_ALIASES, key=len, reverse=True))

_SEGMENT_SPLIT_PATTERN = re.compile(r"[,;\n]+")
_QUANTITY_UNIT_PATTERN = re.compile(
    rf"(?<![\w.])([-+]?\d+(?:\.\d+)?)\s*({_UNIT_ALTERNATION})\b",
    re.IGNORECASE,
)
_LEADING_QUANTITY_PATTERN = re.compile(
    r"^([-+]?\d+(?:\.\d+)?)\s*(?:x\s+)?(?:of\s+)?(.+)$",
    re.IGNORECASE,
)
_PRICE_PATTERN = re.compile(
    r"(?:\$\s*|\bat\s+|@\s*)(\d+(?:\.\d{1,2})?)\s*(?:each\b|ea\b|per\s+\w+|/\s*\w+)?",
    re.IGNORECASE,
)
_LEADING_FILLER_PATTERN = re.compile(r"^(?:of|x)\s+", re.IGNORECASE)
_WHITESPACE_PATTERN = re.compile(r"\s+")

# Brand and accessory aliases used to widen matching.
NAME_REPLACEMENTS: dict[str, list[str]] = {
    "fakher": ["al fakher", "alfakher", "al-fakher", "al fakher tobacco"],
    "al": ["al fakher", "al waha", "al-"],
    "adalya": ["adalya tobacco", "adalya shisha"],
    "starbuzz": ["star buzz", "starbuzz tobacco"],
    "coconut": ["coco", "natural", "coconara"],
    "coals": ["coal", "charcoal", "charcoals"],
    "quicklight": ["quick light", "quick-light", "ql"],
    "tips": ["tip", "mouth tips", "mouth pieces", "filters"],
    "hose": ["hoses", "pipe", "tubes"],
    "bowl": ["bowls", "head", "heads"],
}

TOBACCO_BRANDS = ("fakher", "adalya", "starbuzz", "fumari")
FLAVORS = ("watermelon", "mint", "grape", "apple", "blueberry", "mango", "peach", "lemon")


def normalize_unit(token: str) -> str:
    """Map a unit token (any case, singular or plural) to its canonical form."""
    return UNIT_ALIASES.get(token.strip().lower(), DEFAULT_UNIT)


def _to_quantity(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return Decimal("1")
    if not value.is_finite() or value <= 0 or value > MAX_LINE_QUANTITY:
        return Decimal("1")
    return value


def _to_price(raw: str) -> Optional[Decimal]:
    value = Decimal(raw)
    if value > MAX_UNIT_PRICE:
        logger.debug("Ignoring out-of-range price %s", raw)
        return None
    return value


def _clean_name(value: str) -> str:
    cleaned = _WHITESPACE_PATTERN.sub(" ", value).strip(" .-:\t")
    cleaned = _LEADING_FILLER_PATTERN.sub("", cleaned)
    return cleaned.strip()


def generate_variations(product_name: str, limit: int = 10) -> list[str]:
    """
    Build alternative spellings of a product name for alias matching.

    The first entry is always the name itself; the list is capped at ``limit``.
    """
    variations: dict[str, None] = {product_name: None}
    lowered = product_name.lower()
    tokens = lowered.split(" ")

    for index, token in enumerate(tokens):
        for replacement in NAME_REPLACEMENTS.get(token, []):
            replaced = list(tokens)
            replaced[index] = replacement
            variations.setdefault(" ".join(replaced), None)

    if "tobacco" not in lowered and any(
        brand in lowered for brand in ("fakher", "adalya", "starbuzz")
    ):
        variations.setdefault(f"{product_name} tobacco", None)
        variations.setdefault(f"{product_name} shisha", None)

    for flavor in FLAVORS:
        if flavor not in lowered:
            continue
        for brand in TOBACCO_BRANDS:
            if brand in lowered:
                variations.setdefault(f"{brand} {flavor}", None)
                variations.setdefault(f"{flavor} {brand}", None)

    return list(variations)[:limit]


class TextParser:
    """Split order text into candidate lines without any external service."""

    def __init__(self, max_variations: int = 10) -> None:
        self.max_variations = max_variations

    def parse(self, raw_text: Optional[str]) -> list[OrderCandidateLine]:
        """Parse every delimiter-separated segment; unusable segments are dropped."""
        lines: list[OrderCandidateLine] = []
        for segment in _SEGMENT_SPLIT_PATTERN.split(raw_text or ""):
            line = self.parse_segment(segment)
            if line is not None:
                lines.append(line)

        logger.debug("Parsed %s candidate lines locally", len(lines))
        return lines

    def parse_segment(self, segment: str) -> Optional[OrderCandidateLine]:
        trimmed = _WHITESPACE_PATTERN.sub(" ", segment).strip()
        if not trimmed:
            return None

        remainder = trimmed
        price: Optional[Decimal] = None
        price_match = _PRICE_PATTERN.search(remainder)
        if price_match:
            price = _to_price(price_match.group(1))
            remainder = remainder[: price_match.start()] + " " + remainder[price_match.end():]

        quantity = Decimal("1")
        unit = DEFAULT_UNIT
        unit_found = False

        unit_match = _QUANTITY_UNIT_PATTERN.search(remainder)
        if unit_match:
            quantity = _to_quantity(unit_match.group(1))
            unit = normalize_unit(unit_match.group(2))
            unit_found = True
            remainder = remainder[: unit_match.start()] + " " + remainder[unit_match.end():]
        else:
            leading = _LEADING_QUANTITY_PATTERN.match(remainder.strip())
            if leading:
                quantity = _to_quantity(leading.group(1))
                remainder = leading.group(2)

        product_name = _clean_name(remainder)
        if not product_name:
            logger.debug("Dropping segment without product name: %r", trimmed)
            return None

        if unit_found and unit != DEFAULT_UNIT and len(product_name) > 3:
            confidence = MatchConfidence.HIGH
        elif len(product_name) <= 3 or not unit_found:
            confidence = MatchConfidence.LOW
        else:
            confidence = MatchConfidence.MEDIUM

        return OrderCandidateLine(
            original_text=trimmed,
            quantity=quantity,
            unit=unit,
            product_name=product_name,
            price=price,
            parse_confidence=confidence,
            variations=generate_variations(product_name, self.max_variations),
        )
