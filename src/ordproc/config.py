"""Configuration management for order resolution."""

import logging
from decimal import Decimal
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

import pycountry

logger = logging.getLogger(__name__)


class OrderConfig(BaseSettings):
    """Configuration for order resolution."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key (env var: OPENAI_API_KEY)",
    )

    mock: bool = Field(
        default=False,
        description="Never call external services (local parsing and matching only)",
    )

    model: str = Field(default="gpt-4o-mini", description="Completion model for order parsing")

    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model for semantic matching",
    )

    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="LLM temperature (low keeps parsing consistent)",
    )

    max_tokens: int = Field(
        default=1000,
        ge=1,
        le=128000,
        description="Maximum tokens for completion responses",
    )

    completion_timeout_sec: float = Field(
        default=20.0,
        ge=1.0,
        le=120.0,
        description="Completion request timeout in seconds",
    )

    embedding_timeout_sec: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="Embedding request timeout in seconds",
    )

    completion_enabled: bool = Field(
        default=True,
        description="Use the completion service for parsing when available",
    )

    semantic_enabled: bool = Field(
        default=True,
        description="Use embedding similarity as the last matching strategy",
    )

    tax_rate: float = Field(default=0.10, ge=0.0, le=1.0, description="Order tax rate")

    currency: str = Field(default="USD", description="ISO 4217 currency of all prices")

    money_decimals: int = Field(
        default=2,
        ge=0,
        le=4,
        description="Digits in the currency's minor unit",
    )

    price_floor: float = Field(
        default=0.01,
        gt=0.0,
        description="Smallest unit price a resolved line may carry",
    )

    price_alert_ratio: float = Field(
        default=0.5,
        gt=0.0,
        description="Relative customer/regular price gap that raises a price alert",
    )

    semantic_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum cosine similarity for a semantic match",
    )

    fuzzy_min_score: int = Field(
        default=1,
        ge=1,
        description="Minimum fuzzy score for an automatic low-confidence match",
    )

    max_variations: int = Field(default=10, ge=1, le=50, description="Name variations per line")

    max_suggestions: int = Field(default=3, ge=0, le=10, description="Alternative matches per line")

    max_workers: int = Field(default=4, ge=1, le=64, description="Worker threads per order")

    embedding_cache_ttl_sec: int = Field(
        default=86400,
        ge=1,
        description="Embedding cache entry lifetime in seconds",
    )

    embedding_cache_max_entries: int = Field(
        default=2048,
        ge=1,
        description="Maximum cached product embeddings",
    )

    pin_catalog_order: bool = Field(
        default=False,
        description="Sort the catalog by product id before matching",
    )

    api_host: str = Field(default="0.0.0.0", description="API host address")

    api_port: int = Field(default=8000, description="API port")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency is an ISO 4217 code."""
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(
                f"Invalid currency code format: '{v}'. "
                f"Must be a 3-letter ISO 4217 code (e.g., USD, EUR)."
            )

        valid_iso_codes = {c.alpha_3 for c in pycountry.currencies}
        if code not in valid_iso_codes:
            raise ValueError(
                f"Invalid ISO 4217 code: {code}. "
                f"See https://en.wikipedia.org/wiki/ISO_4217"
            )

        return code

    @property
    def tax_rate_decimal(self) -> Decimal:
        return Decimal(str(self.tax_rate))

    @property
    def price_floor_decimal(self) -> Decimal:
        return Decimal(str(self.price_floor))

    @property
    def money_quantum(self) -> Decimal:
        """Smallest representable money amount, e.g. Decimal('0.01')."""
        return Decimal(1).scaleb(-self.money_decimals)

    @property
    def uses_completion(self) -> bool:
        return self.completion_enabled and not self.mock and bool(self.openai_api_key)

    @property
    def uses_embeddings(self) -> bool:
        return self.semantic_enabled and not self.mock and bool(self.openai_api_key)

    def validate_config(self) -> None:
        """Validate configuration at startup. Raises ValueError if invalid."""
        errors = []

        # Validate OpenAI API key (if external services are wanted)
        if not self.mock and not self.openai_api_key:
            if self.completion_enabled:
                errors.append("OPENAI_API_KEY required when completion parsing is enabled")
            if self.semantic_enabled:
                errors.append("OPENAI_API_KEY required when semantic matching is enabled")

        if self.price_floor_decimal < self.money_quantum:
            errors.append("PRICE_FLOOR must not be smaller than the currency minor unit")

        # Raise error if any validation failed
        if errors:
            raise ValueError(
                "Configuration validation failed:\n"
                + "\n".join(f"  - {e}" for e in errors)
            )


_config_instance = None


def get_config() -> OrderConfig:
    """Get or create global configuration instance."""
    global _config_instance
    if _config_instance is None:
        _config_instance = OrderConfig()
        _config_instance.validate_config()
        logger.info("Configuration validated successfully")
    return _config_instance


def get_config_unvalidated() -> OrderConfig:
    """Get or create global configuration instance without validation."""
    global _config_instance
    if _config_instance is None:
        _config_instance = OrderConfig()
    return _config_instance


def reload_config() -> OrderConfig:
    """Reload configuration (useful for testing)."""
    global _config_instance
    _config_instance = OrderConfig()
    return _config_instance
