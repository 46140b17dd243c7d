"""Embedding service client, product embedding cache and semantic ranking."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

from openai import OpenAI, OpenAIError

from ordproc.models import CatalogProduct
from ordproc.text_similarity import cosine_similarities

if TYPE_CHECKING:
    from ordproc.config import OrderConfig

logger = logging.getLogger(__name__)

Vector = tuple[float, ...]


class EmbeddingProvider(Protocol):
    """Anything that turns texts into fixed-length vectors, one per text."""

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class OpenAIEmbeddingProvider:
    """Embed texts with the OpenAI embeddings API in a single batched request."""

    def __init__(self, config: "OrderConfig") -> None:
        self.model = config.embedding_model
        self.client = OpenAI(
            api_key=config.openai_api_key,
            timeout=config.embedding_timeout_sec,
            max_retries=1,
        )

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        response = self.client.embeddings.create(model=self.model, input=list(texts))
        data = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in data]


@dataclass(frozen=True)
class EmbeddingCacheEntry:
    """Cache payload metadata."""

    vector: Vector
    expires_at: float
    hit_count: int


def embedding_cache_key(product: CatalogProduct, model: str) -> str:
    """Key by product identity and name, so a rename invalidates the entry."""
    name_hash = hashlib.sha256(product.name.encode("utf-8")).hexdigest()[:16]
    return f"{model}:{product.product_id}:{name_hash}"


class InMemoryEmbeddingCache:
    """Thread-safe TTL + LRU cache for product embeddings."""

    def __init__(self, *, ttl_sec: int, max_entries: int) -> None:
        self._lock = threading.Lock()
        self._ttl_sec = ttl_sec
        self._max_entries = max_entries
        self._entries: OrderedDict[str, EmbeddingCacheEntry] = OrderedDict()

    def configure(self, *, ttl_sec: int, max_entries: int) -> None:
        """Apply runtime cache limits from config."""
        with self._lock:
            self._ttl_sec = ttl_sec
            self._max_entries = max_entries
            self._prune_expired_locked()
            self._prune_capacity_locked()

    def get(self, key: str) -> Optional[Vector]:
        """Return cached vector if present and not expired."""
        now = time.time()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if entry.expires_at <= now:
                self._entries.pop(key, None)
                return None

            updated = EmbeddingCacheEntry(
                vector=entry.vector,
                expires_at=entry.expires_at,
                hit_count=entry.hit_count + 1,
            )
            self._entries[key] = updated
            self._entries.move_to_end(key)
            return updated.vector

    def set(self, key: str, vector: Sequence[float]) -> None:
        """Insert/update vector and enforce TTL/capacity bounds."""
        now = time.time()
        with self._lock:
            self._prune_expired_locked(now=now)
            self._entries[key] = EmbeddingCacheEntry(
                vector=tuple(float(v) for v in vector),
                expires_at=now + self._ttl_sec,
                hit_count=0,
            )
            self._entries.move_to_end(key)
            self._prune_capacity_locked()

    def reset(self) -> None:
        """Clear cache state (used by tests)."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _prune_expired_locked(self, *, now: Optional[float] = None) -> None:
        if now is None:
            now = time.time()

        expired_keys = [
            key for key, entry in self._entries.items() if entry.expires_at <= now
        ]
        for key in expired_keys:
            self._entries.pop(key, None)

    def _prune_capacity_locked(self) -> None:
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)


class SemanticIndex:
    """Rank catalog products by embedding similarity to a fragment."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: InMemoryEmbeddingCache,
        *,
        model: str = "default",
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.model = model

    def rank(
        self, fragment: str, catalog: Sequence[CatalogProduct]
    ) -> list[tuple[CatalogProduct, float]]:
        """
        Return (product, similarity) pairs, most similar first.

        Ties keep catalog order. Any embedding failure yields an empty list so
        callers simply skip semantic matching.
        """
        if not catalog or not fragment.strip():
            return []

        try:
            query = self.provider.embed([fragment])[0]
            vectors = self._product_vectors(catalog)
        except (OpenAIError, OSError, ValueError, TypeError, IndexError) as e:
            logger.warning("Semantic matching unavailable: %s", e)
            return []

        scores = cosine_similarities(query, vectors)
        order = sorted(range(len(catalog)), key=lambda idx: -float(scores[idx]))
        return [(catalog[idx], float(scores[idx])) for idx in order]

    def _product_vectors(self, catalog: Sequence[CatalogProduct]) -> list[Vector]:
        keys = [embedding_cache_key(product, self.model) for product in catalog]
        vectors: list[Optional[Vector]] = [self.cache.get(key) for key in keys]
        missing = [idx for idx, vector in enumerate(vectors) if vector is None]

        if missing:
            logger.info(
                "embedding cache miss: %s of %s products", len(missing), len(catalog)
            )
            fresh = self.provider.embed([catalog[idx].name for idx in missing])
            if len(fresh) != len(missing):
                raise ValueError(
                    f"Embedding service returned {len(fresh)} vectors for {len(missing)} texts"
                )
            for idx, vector in zip(missing, fresh):
                self.cache.set(keys[idx], vector)
                vectors[idx] = tuple(float(v) for v in vector)

        return [vector for vector in vectors if vector is not None]
