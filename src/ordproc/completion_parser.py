"""LLM integration for order text parsing, with local fallback."""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, OpenAIError, RateLimitError
from pydantic import ValidationError

from .config import OrderConfig
from .models import MAX_LINE_QUANTITY, MAX_UNIT_PRICE, MatchConfidence, OrderCandidateLine
from .text_parser import TextParser, generate_variations, normalize_unit

logger = logging.getLogger(__name__)

ParserName = Literal["completion", "local"]


class CompletionOutputError(ValueError):
    """Raised when LLM output is structurally unusable for order parsing."""


class CompletionOrderParser:
    """Parse order text into candidate lines using an OpenAI chat model."""

    def __init__(self, config: OrderConfig) -> None:
        self.config = config
        self.client: Optional[OpenAI] = None
        if not config.mock and config.openai_api_key:
            self.client = OpenAI(
                api_key=config.openai_api_key,
                timeout=config.completion_timeout_sec,
                max_retries=1,
            )

    @property
    def available(self) -> bool:
        return self.client is not None

    def parse(self, raw_text: str) -> list[OrderCandidateLine]:
        """
        Send order text to the chat model and validate the returned items.

        Args:
            raw_text: Free-text order as typed by sales staff

        Returns:
            Candidate lines in the order the model listed them
        """
        if not self.client:
            raise ValueError("OpenAI client not initialized (missing API key)")

        try:
            completion = self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": self._get_system_prompt()},
                    {"role": "user", "content": f'Parse this order: "{raw_text}"'},
                ],
                response_format={"type": "json_object"},
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except APITimeoutError:
            logger.warning("Completion request timed out")
            raise
        except APIConnectionError as e:
            logger.error(f"Connection failed: {e.__cause__}")
            raise
        except RateLimitError as e:
            logger.warning(f"Rate limited: {e}")
            raise
        except APIStatusError as e:
            logger.error(f"API error {e.status_code}: {e.response}")
            raise

        if not completion.choices:
            raise CompletionOutputError("API returned no choices")

        content = completion.choices[0].message.content
        if content is None:
            raise CompletionOutputError("API returned no content")

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise CompletionOutputError(f"API returned invalid JSON: {e}") from e

        return self._normalize_items(payload)

    def _normalize_items(self, payload: Any) -> list[OrderCandidateLine]:
        """Normalize the model's JSON payload before strict Pydantic validation."""
        if not isinstance(payload, dict):
            raise CompletionOutputError("LLM payload must be a JSON object")

        items_raw = payload.get("items", [])
        if not isinstance(items_raw, list):
            raise CompletionOutputError("LLM payload 'items' must be a list")

        lines: list[OrderCandidateLine] = []
        dropped = 0

        for item in items_raw:
            if not isinstance(item, dict):
                dropped += 1
                continue

            name_raw = item.get("product_name")
            name = " ".join(name_raw.split()) if isinstance(name_raw, str) else ""
            if not name:
                dropped += 1
                continue

            quantity = self._to_decimal(item.get("quantity"))
            if quantity is None or quantity <= 0 or quantity > MAX_LINE_QUANTITY:
                quantity = Decimal("1")

            price = self._to_decimal(item.get("price"))
            if price is not None and (price < 0 or price > MAX_UNIT_PRICE):
                price = None

            unit_raw = item.get("unit")
            unit = normalize_unit(unit_raw) if isinstance(unit_raw, str) else "piece"

            confidence_raw = str(item.get("confidence", "medium")).strip().lower()
            try:
                confidence = MatchConfidence(confidence_raw)
            except ValueError:
                confidence = MatchConfidence.LOW
            if confidence is MatchConfidence.NO_MATCH:
                confidence = MatchConfidence.LOW

            variations = [name]
            extra = item.get("possible_variations")
            if isinstance(extra, list):
                variations.extend(
                    v.strip() for v in extra if isinstance(v, str) and v.strip()
                )
            variations.extend(generate_variations(name, self.config.max_variations))
            variations = list(dict.fromkeys(variations))[: self.config.max_variations]

            original = item.get("original_text")
            try:
                lines.append(
                    OrderCandidateLine(
                        original_text=original.strip()
                        if isinstance(original, str) and original.strip()
                        else name,
                        quantity=quantity,
                        unit=unit,
                        product_name=name,
                        price=price,
                        parse_confidence=confidence,
                        variations=variations,
                    )
                )
            except ValidationError:
                dropped += 1

        if dropped:
            logger.warning("Dropped %s malformed items from LLM output", dropped)
            if not lines:
                raise CompletionOutputError(f"LLM returned {dropped} malformed items")

        return lines

    @staticmethod
    def _to_decimal(value: Any) -> Optional[Decimal]:
        """Convert model output value to Decimal when possible."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            value = str(value)
        if not isinstance(value, str):
            return None
        cleaned = value.strip().replace("$", "").replace(" ", "").replace(",", ".")
        if not cleaned:
            return None
        try:
            number = Decimal(cleaned)
        except InvalidOperation:
            return None
        return number if number.is_finite() else None

    def _get_system_prompt(self) -> str:
        """System prompt describing the wholesale catalog and the output schema."""
        return """You are an expert order processing assistant for a wholesale company specializing in tobacco products, hookah supplies, and related accessories.

Your task is to parse natural language orders and extract product information with high accuracy.

KEY PRODUCT CATEGORIES:
1. Tobacco: Al Fakher (alfakher, al-fakher), Adalya, Starbuzz (star buzz), Fumari, Tangiers.
   Common flavors: watermelon, mint, grape, double apple, blueberry.
2. Coals: coconut coals, natural coals, quick light coals. Brands: Titanium, CocoNara, CocoUrth.
3. Accessories: hoses, bowls/heads, mouth tips, foil, screens, tongs, wind covers.

UNITS (return the singular form):
case, box, pack, carton, piece, bottle, kg, g, l, ml, lb

RULES:
- One item per product mentioned; keep the user's item order.
- quantity defaults to 1 when not stated.
- price is the unit price only if the user typed one ($25, at 25, @ 25), otherwise null.
- Keep flavor, size and brand in product_name; fix obvious typos only.
- confidence: "high" for clear items, "medium" for probable, "low" for unclear.
- DO NOT invent products, prices or quantities that are not in the text.

OUTPUT FORMAT:
Return a JSON object with this exact structure:
{
  "items": [
    {
      "product_name": "string",
      "quantity": number,
      "unit": "string",
      "price": number or null,
      "confidence": "high|medium|low",
      "original_text": "string - the text segment this item came from",
      "possible_variations": ["alternative names the catalog may use"]
    }
  ]
}
"""


def parse_order(
    raw_text: str,
    config: OrderConfig,
    completion_parser: Optional[CompletionOrderParser] = None,
) -> tuple[list[OrderCandidateLine], ParserName]:
    """
    Parse with the completion service when possible, else locally.

    Any completion failure (timeout, network, malformed output) falls back to
    the local parser; the order is never lost to an external outage.
    """
    local = TextParser(config.max_variations)

    use_completion = (
        completion_parser is not None
        and config.completion_enabled
        and completion_parser.available
    )
    if not use_completion:
        return local.parse(raw_text), "local"

    try:
        lines = completion_parser.parse(raw_text)
    except (OpenAIError, ValueError) as e:
        logger.warning("Completion parsing failed, using local parser: %s", e)
        return local.parse(raw_text), "local"

    if not lines and raw_text.strip():
        logger.info("Completion returned no items; using local parser")
        return local.parse(raw_text), "local"

    logger.info("Parsed %s items with completion model", len(lines))
    return lines, "completion"
