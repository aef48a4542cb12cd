"""Embedding cache that deduplicates embedding computation by content hash."""

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from pydantic import BaseModel

from llmcache.core.errors import CacheConfigError
from llmcache.core.logging import get_logger
from llmcache.services.tiered_cache.coordinator import TierCoordinator
from llmcache.services.tiered_cache.key_generator import CacheKeyGenerator
from llmcache.services.tiered_cache.utils import estimate_token_count

logger = get_logger(__name__)

Embedding = List[float]
ComputeFn = Callable[[str], Union[Sequence[float], Awaitable[Sequence[float]]]]


# Strings worth embedding ahead of the first request
COMMON_CACHE_PATTERNS: Dict[str, List[str]] = {
    "system_prompts": [
        "You are a helpful AI assistant",
        "You are an expert SRE engineer",
        "You are a software developer",
    ],
    "common_queries": [
        "What is the current status?",
        "Show me recent incidents",
        "What are the top errors?",
        "Check system health",
    ],
    "documentation": [
        "API documentation",
        "User guide",
        "Troubleshooting guide",
    ],
}


@dataclass
class EmbeddingCacheConfig:
    """Embedding cache settings."""

    ttl: int = 7 * 24 * 3600  # 7 days
    max_text_length: int = 50000
    normalize: bool = True

    def __post_init__(self) -> None:
        if self.ttl <= 0:
            raise CacheConfigError("ttl must be positive", field="ttl")
        if self.max_text_length <= 0:
            raise CacheConfigError("max_text_length must be positive", field="max_text_length")


class EmbeddingCacheEntry(BaseModel):
    """A cached embedding vector and where it came from."""

    text: str
    embedding: List[float]
    model: str
    content_hash: str
    token_count: int
    created_at: float


class EmbeddingCache:
    """Cache for embedding vectors keyed by normalized content hash and model.

    ``get_or_create`` coalesces concurrent requests for the same key into a
    single computation. Texts longer than ``max_text_length`` are computed
    but never cached.

    Usage:
        cache = EmbeddingCache(coordinator)
        vector = await cache.get_or_create("hello", "text-embedding-3-small", embed)
    """

    def __init__(
        self,
        coordinator: TierCoordinator[EmbeddingCacheEntry],
        config: Optional[EmbeddingCacheConfig] = None
    ):
        self.coordinator = coordinator
        self.config = config or EmbeddingCacheConfig()

        self._inflight: Dict[str, "asyncio.Future[Embedding]"] = {}

        self.hits = 0
        self.misses = 0
        self.rejected = 0
        self.coalesced = 0
        self.computed = 0

    def key_for(self, text: str, model: str = "default") -> str:
        """Cache key for a text under a model."""
        return CacheKeyGenerator.embedding(text, model, normalize=self.config.normalize)

    def is_cacheable(self, text: str) -> bool:
        return len(text) <= self.config.max_text_length

    # =========================================================================
    # Single-key operations
    # =========================================================================

    async def get(self, text: str, model: str = "default") -> Optional[Embedding]:
        """Get a cached embedding.

        Args:
            text: Text that was embedded.
            model: Embedding model name.

        Returns:
            Embedding vector if cached, None otherwise.
        """
        if not self.is_cacheable(text):
            self.misses += 1
            return None

        result = await self.coordinator.get(self.key_for(text, model))
        if result.hit:
            self.hits += 1
            logger.debug(f"Embedding cache hit ({result.tier.value}) for model {model}")
            return list(result.value.embedding)

        self.misses += 1
        return None

    async def set(self, text: str, embedding: Sequence[float], model: str = "default") -> bool:
        """Cache an embedding.

        Returns:
            True if successfully cached.
        """
        if not self.is_cacheable(text):
            self.rejected += 1
            logger.debug(
                f"Skipping embedding cache for text of length {len(text)} "
                f"(max {self.config.max_text_length})"
            )
            return False

        try:
            key = self.key_for(text, model)
            entry = EmbeddingCacheEntry(
                text=text,
                embedding=[float(x) for x in embedding],
                model=model,
                content_hash=key.rsplit(":", 1)[-1],
                token_count=estimate_token_count(text),
                created_at=time.time(),
            )
            return await self.coordinator.set(key, entry, ttl=self.config.ttl)

        except Exception as e:
            logger.warning(f"Failed to cache embedding: {e}")
            return False

    async def has(self, text: str, model: str = "default") -> bool:
        if not self.is_cacheable(text):
            return False
        return await self.coordinator.has(self.key_for(text, model))

    async def delete(self, text: str, model: str = "default") -> bool:
        return await self.coordinator.delete(self.key_for(text, model))

    async def get_or_create(
        self,
        text: str,
        model: str,
        compute_fn: ComputeFn
    ) -> Embedding:
        """Return the cached embedding, computing and caching it on a miss.

        Concurrent callers asking for the same key while a computation is in
        flight wait for that computation instead of starting their own. A
        failing ``compute_fn`` propagates its exception to every waiter.
        """
        if not self.is_cacheable(text):
            self.rejected += 1
            return await self._compute(compute_fn, text)

        key = self.key_for(text, model)

        pending = self._inflight.get(key)
        if pending is None:
            cached = await self.get(text, model)
            if cached is not None:
                return cached
            pending = self._inflight.get(key)

        if pending is not None:
            self.coalesced += 1
            return list(await asyncio.shield(pending))

        future: "asyncio.Future[Embedding]" = asyncio.get_running_loop().create_future()
        self._inflight[key] = future

        try:
            embedding = await self._compute(compute_fn, text)
            await self.set(text, embedding, model)
            future.set_result(embedding)
            return embedding

        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise

        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a waiter-less failure is not reported as unhandled
            future.exception()
            raise

        finally:
            self._inflight.pop(key, None)

    # =========================================================================
    # Batch operations
    # =========================================================================

    async def batch_get(self, texts: List[str], model: str = "default") -> List[Optional[Embedding]]:
        """Get multiple cached embeddings, aligned with ``texts``."""
        return [await self.get(text, model) for text in texts]

    async def batch_set(
        self,
        items: Iterable[Tuple[str, Sequence[float]]],
        model: str = "default"
    ) -> int:
        """Cache multiple (text, embedding) pairs.

        Returns:
            Number of embeddings stored.
        """
        stored = 0
        for text, embedding in items:
            if await self.set(text, embedding, model):
                stored += 1
        return stored

    async def prewarm(
        self,
        model: str,
        compute_fn: ComputeFn,
        patterns: Optional[Dict[str, List[str]]] = None
    ) -> int:
        """Embed and cache common strings that are not cached yet.

        Failures for individual strings are logged and skipped.

        Returns:
            Number of new embeddings cached.
        """
        patterns = COMMON_CACHE_PATTERNS if patterns is None else patterns
        warmed = 0

        for category, texts in patterns.items():
            for text in texts:
                if await self.has(text, model):
                    continue

                try:
                    embedding = await self._compute(compute_fn, text)
                except Exception as e:
                    logger.warning(f"Prewarm failed for {category} entry: {e}")
                    continue

                if await self.set(text, embedding, model):
                    warmed += 1

        logger.info(f"Prewarmed {warmed} embeddings for model {model}")
        return warmed

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0.0,
            "api_calls_saved": self.hits + self.coalesced,
            "computed": self.computed,
            "rejected": self.rejected,
            "coalesced": self.coalesced,
            "in_flight": len(self._inflight),
        }

    def reset_stats(self) -> None:
        self.hits = 0
        self.misses = 0
        self.rejected = 0
        self.coalesced = 0
        self.computed = 0

    async def _compute(self, compute_fn: ComputeFn, text: str) -> Embedding:
        result = compute_fn(text)
        if inspect.isawaitable(result):
            result = await result
        self.computed += 1
        return [float(x) for x in result]
