"""Tiered cache system for LLM responses and embeddings.

Tiers:
- L1: In-process LRU store with per-entry TTL
- L2: Extension hook for a shared tier (same contract as L3)
- L3: Durable SQLite store with an explicit expiry column

Built on the tiers:
- ResponseCache: exact, semantic and fuzzy matching of LLM responses
- EmbeddingCache: content-hash deduplication of embedding vectors
- CacheAnalyticsTracker: snapshots, events, health and reports

Usage:
    from llmcache.services.tiered_cache import (
        DurableCacheStore, MemoryCacheStore, TierCoordinator,
    )

    coordinator = TierCoordinator(l1=MemoryCacheStore(), l3=DurableCacheStore("./cache.db"))
    await coordinator.connect()

    await coordinator.set("k", "v", ttl=60)
    result = await coordinator.get("k")
"""

from llmcache.services.tiered_cache.analytics import (
    AnalyticsRecorder,
    CacheAnalyticsTracker,
    CacheHealth,
    HealthIndicators,
    build_health_snapshot,
    classify_health,
)
from llmcache.services.tiered_cache.base import DurableRecord, ICacheTier
from llmcache.services.tiered_cache.codecs import Codec, JsonCodec, PydanticCodec
from llmcache.services.tiered_cache.coordinator import TierCoordinator
from llmcache.services.tiered_cache.durable_store import DurableCacheStore
from llmcache.services.tiered_cache.embedding_cache import (
    COMMON_CACHE_PATTERNS,
    EmbeddingCache,
    EmbeddingCacheConfig,
    EmbeddingCacheEntry,
)
from llmcache.services.tiered_cache.key_generator import CacheKeyGenerator
from llmcache.services.tiered_cache.memory_store import MemoryCacheConfig, MemoryCacheStore
from llmcache.services.tiered_cache.response_cache import (
    MatchType,
    ResponseCache,
    ResponseCacheEntry,
    ResponseContext,
    ResponseMatch,
    SimilarityConfig,
)
from llmcache.services.tiered_cache.ttl_classifier import (
    KeywordTTLClassifier,
    TTLClassifier,
    TTLRule,
)
from llmcache.services.tiered_cache.types import (
    CacheAnalyticsEvent,
    CacheEntry,
    CacheOperation,
    CachePolicy,
    CacheResult,
    CacheStats,
    CacheTier,
    TierStatsSnapshot,
)

__all__ = [
    "AnalyticsRecorder",
    "CacheAnalyticsEvent",
    "CacheAnalyticsTracker",
    "CacheEntry",
    "CacheHealth",
    "CacheKeyGenerator",
    "CacheOperation",
    "CachePolicy",
    "CacheResult",
    "CacheStats",
    "CacheTier",
    "Codec",
    "COMMON_CACHE_PATTERNS",
    "DurableCacheStore",
    "DurableRecord",
    "EmbeddingCache",
    "EmbeddingCacheConfig",
    "EmbeddingCacheEntry",
    "HealthIndicators",
    "ICacheTier",
    "JsonCodec",
    "KeywordTTLClassifier",
    "MatchType",
    "MemoryCacheConfig",
    "MemoryCacheStore",
    "PydanticCodec",
    "ResponseCache",
    "ResponseCacheEntry",
    "ResponseContext",
    "ResponseMatch",
    "SimilarityConfig",
    "TierCoordinator",
    "TierStatsSnapshot",
    "TTLClassifier",
    "TTLRule",
    "build_health_snapshot",
    "classify_health",
]
