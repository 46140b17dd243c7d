"""Unit tests for the product embedding cache and semantic index."""

from unittest.mock import Mock, patch

from ordproc.config import OrderConfig
from ordproc.embeddings import (
    InMemoryEmbeddingCache,
    OpenAIEmbeddingProvider,
    SemanticIndex,
    embedding_cache_key,
)
from ordproc.models import CatalogProduct


def test_embedding_cache_hit_and_miss() -> None:
    """Basic set/get behavior returns vector for known keys."""
    cache = InMemoryEmbeddingCache(ttl_sec=60, max_entries=2)

    assert cache.get("k1") is None
    cache.set("k1", [1, 2])
    assert cache.get("k1") == (1.0, 2.0)


def test_embedding_cache_ttl_expiry(monkeypatch) -> None:
    """Expired entries should return miss and be removed."""
    now = [1000.0]

    def fake_time() -> float:
        return now[0]

    monkeypatch.setattr("ordproc.embeddings.time.time", fake_time)

    cache = InMemoryEmbeddingCache(ttl_sec=10, max_entries=5)
    cache.set("k1", [0.5])
    assert cache.get("k1") == (0.5,)

    now[0] = 1011.0
    assert cache.get("k1") is None
    assert len(cache) == 0


def test_embedding_cache_lru_eviction() -> None:
    """Least recently used key should be evicted when capacity exceeded."""
    cache = InMemoryEmbeddingCache(ttl_sec=60, max_entries=2)
    cache.set("k1", [1.0])
    cache.set("k2", [2.0])
    # Touch k1 so k2 becomes LRU.
    assert cache.get("k1") == (1.0,)
    cache.set("k3", [3.0])

    assert cache.get("k2") is None
    assert cache.get("k1") == (1.0,)
    assert cache.get("k3") == (3.0,)


def test_embedding_cache_configure_prunes_over_capacity() -> None:
    """Reducing max_entries via configure should prune oldest entries."""
    cache = InMemoryEmbeddingCache(ttl_sec=60, max_entries=3)
    cache.set("k1", [1.0])
    cache.set("k2", [2.0])
    cache.set("k3", [3.0])

    cache.configure(ttl_sec=60, max_entries=1)

    assert len(cache) == 1
    assert cache.get("k3") == (3.0,)


def test_embedding_cache_reset() -> None:
    cache = InMemoryEmbeddingCache(ttl_sec=60, max_entries=3)
    cache.set("k1", [1.0])
    cache.reset()
    assert len(cache) == 0


def test_cache_key_changes_on_rename_only() -> None:
    product = CatalogProduct(product_id="p1", name="Al Fakher Mint", price=10)
    repriced = product.model_copy(update={"price": 12, "quantity": 5})
    renamed = product.model_copy(update={"name": "Al Fakher Mint 250g"})

    key = embedding_cache_key(product, "text-embedding-3-small")
    assert key.startswith("text-embedding-3-small:p1:")
    assert embedding_cache_key(repriced, "text-embedding-3-small") == key
    assert embedding_cache_key(renamed, "text-embedding-3-small") != key
    assert embedding_cache_key(product, "other-model") != key


def test_semantic_index_reembeds_renamed_product() -> None:
    provider = Mock()
    provider.embed.side_effect = lambda texts: [[1.0, 0.0] for _ in texts]
    index = SemanticIndex(provider, InMemoryEmbeddingCache(ttl_sec=60, max_entries=10))
    product = CatalogProduct(product_id="p1", name="Mint")

    index.rank("mint", [product])
    index.rank("mint", [product.model_copy(update={"name": "Mint 250g"})])

    assert [call.args[0] for call in provider.embed.call_args_list] == [
        ["mint"],
        ["Mint"],
        ["mint"],
        ["Mint 250g"],
    ]


def test_semantic_index_ties_keep_catalog_order() -> None:
    provider = Mock()
    provider.embed.side_effect = lambda texts: [[1.0, 0.0] for _ in texts]
    index = SemanticIndex(provider, InMemoryEmbeddingCache(ttl_sec=60, max_entries=10))
    catalog = [
        CatalogProduct(product_id="b", name="B"),
        CatalogProduct(product_id="a", name="A"),
    ]

    ranked = index.rank("anything", catalog)

    assert [product.product_id for product, _ in ranked] == ["b", "a"]


def test_semantic_index_short_vector_response_is_skipped() -> None:
    provider = Mock()
    provider.embed.side_effect = [[[1.0, 0.0]], []]
    index = SemanticIndex(provider, InMemoryEmbeddingCache(ttl_sec=60, max_entries=10))

    assert index.rank("mint", [CatalogProduct(product_id="p1", name="Mint")]) == []


def test_semantic_index_blank_fragment() -> None:
    provider = Mock()
    index = SemanticIndex(provider, InMemoryEmbeddingCache(ttl_sec=60, max_entries=10))

    assert index.rank("   ", [CatalogProduct(product_id="p1", name="Mint")]) == []
    provider.embed.assert_not_called()


def test_openai_provider_batches_and_orders_by_index() -> None:
    provider = OpenAIEmbeddingProvider(OrderConfig(_env_file=None, openai_api_key="sk-test"))
    response = Mock(
        data=[
            Mock(index=1, embedding=[0.0, 1.0]),
            Mock(index=0, embedding=[1.0, 0.0]),
        ]
    )

    with patch.object(provider, "client") as mock_client:
        mock_client.embeddings.create.return_value = response
        vectors = provider.embed(["a", "b"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    mock_client.embeddings.create.assert_called_once_with(
        model="text-embedding-3-small", input=["a", "b"]
    )
