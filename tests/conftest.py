"""Shared test fixtures."""

from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient

from ordproc.api import create_app, limiter
from ordproc.config import OrderConfig
from ordproc.dependencies import get_resolution_service
from ordproc.embeddings import InMemoryEmbeddingCache
from ordproc.models import CatalogProduct, CustomerPriceRecord
from ordproc.services.resolve_service import OrderResolutionService

CUSTOMER_ID = "cust-1"


@pytest.fixture
def order_config() -> OrderConfig:
    """Offline config: no completion or embedding calls."""
    return OrderConfig(_env_file=None, mock=True)


@pytest.fixture
def catalog() -> list[CatalogProduct]:
    """Small hookah-wholesale catalog."""
    return [
        CatalogProduct(
            product_id="p-adalya-wm",
            name="Watermelon Adalya",
            sku="ADA-WM-1KG",
            price=Decimal("22.00"),
            quantity=40,
            unit="case",
            is_tobacco=True,
        ),
        CatalogProduct(
            product_id="p-fakher-mint",
            name="Al Fakher Mint",
            sku="AF-MINT",
            barcode="6291100000017",
            price=Decimal("24.00"),
            quantity=12,
            unit="box",
            is_tobacco=True,
        ),
        CatalogProduct(
            product_id="p-coco-coals",
            name="Coconut Coals 1kg",
            sku="COCO-1",
            price=Decimal("9.50"),
            quantity=0,
        ),
        CatalogProduct(
            product_id="p-hose",
            name="Silicone Hose",
            sku="HOSE-SIL",
            price=Decimal("15.00"),
            quantity=3,
        ),
    ]


@pytest.fixture
def price_records() -> list[CustomerPriceRecord]:
    """Negotiated prices for CUSTOMER_ID."""
    return [
        CustomerPriceRecord(
            customer_id=CUSTOMER_ID,
            product_id="p-fakher-mint",
            last_price=Decimal("18.00"),
            original_price=Decimal("24.00"),
            times_ordered=4,
        ),
    ]


@pytest.fixture
def api_test_config() -> OrderConfig:
    """Provide a test-owned API config instance for dependency overrides."""
    return OrderConfig(
        _env_file=None,
        mock=True,
        embedding_cache_ttl_sec=3600,
        embedding_cache_max_entries=64,
    )


@pytest.fixture
def api_test_embedding_cache(api_test_config: OrderConfig) -> InMemoryEmbeddingCache:
    """Provide a test-owned embedding cache for dependency overrides."""
    return InMemoryEmbeddingCache(
        ttl_sec=api_test_config.embedding_cache_ttl_sec,
        max_entries=api_test_config.embedding_cache_max_entries,
    )


@pytest.fixture
def api_test_service(
    api_test_config: OrderConfig,
    api_test_embedding_cache: InMemoryEmbeddingCache,
) -> OrderResolutionService:
    """Provide a test-owned resolution service for dependency overrides."""
    return OrderResolutionService.from_config(api_test_config, api_test_embedding_cache)


@pytest.fixture
def api_test_app(
    monkeypatch: pytest.MonkeyPatch,
    api_test_service: OrderResolutionService,
) -> Generator[Any, None, None]:
    """Create a fresh FastAPI app with explicit dependency overrides."""
    monkeypatch.setenv("MOCK", "true")
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:5173")
    monkeypatch.setattr("ordproc.config._config_instance", None)
    limiter.reset()
    app = create_app()
    app.dependency_overrides[get_resolution_service] = lambda: api_test_service
    try:
        yield app
    finally:
        app.dependency_overrides.clear()
        limiter.reset()


@pytest.fixture
def api_test_client(api_test_app: Any) -> Generator[TestClient, None, None]:
    """Create a TestClient for the overridden API app."""
    with TestClient(api_test_app) as client:
        yield client
