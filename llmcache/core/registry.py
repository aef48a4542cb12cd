"""Cache registry: builds, owns and tears down every cache instance.

Consumers receive the registry (or one of its caches) by reference instead
of reaching for module-level singletons. ``shutdown`` flushes each L1 store
to its durable tier before closing connections.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from llmcache.core.errors import ServiceNotInitializedError
from llmcache.core.logging import get_logger
from llmcache.services.tiered_cache.analytics import (
    AnalyticsRecorder,
    CacheAnalyticsTracker,
    health_snapshot_from_stats,
)
from llmcache.services.tiered_cache.codecs import Codec, JsonCodec, PydanticCodec
from llmcache.services.tiered_cache.coordinator import TierCoordinator
from llmcache.services.tiered_cache.durable_store import DurableCacheStore
from llmcache.services.tiered_cache.embedding_cache import (
    ComputeFn,
    EmbeddingCache,
    EmbeddingCacheConfig,
    EmbeddingCacheEntry,
)
from llmcache.services.tiered_cache.memory_store import MemoryCacheConfig, MemoryCacheStore
from llmcache.services.tiered_cache.response_cache import (
    ResponseCache,
    ResponseCacheEntry,
    SimilarityConfig,
)
from llmcache.services.tiered_cache.ttl_classifier import KeywordTTLClassifier
from llmcache.services.tiered_cache.types import CachePolicy, CacheStats, Clock, TierStatsSnapshot

if TYPE_CHECKING:
    from llmcache.core.config import Settings

logger = get_logger(__name__)


@dataclass
class CacheRegistry:
    """Owner of the generic, embedding and response caches.

    Usage:
        registry = CacheRegistry()
        await registry.initialize(settings)

        vector = await registry.embedding_cache.get_or_create(text, model, embed)

        await registry.shutdown()
    """

    clock: Clock = field(default=time.time, repr=False)

    _settings: Optional[Settings] = field(default=None, repr=False)
    _tracker: Optional[CacheAnalyticsTracker] = field(default=None, repr=False)
    _recorder: Optional[AnalyticsRecorder] = field(default=None, repr=False)
    _coordinators: Dict[str, TierCoordinator] = field(default_factory=dict, repr=False)
    _embedding_cache: Optional[EmbeddingCache] = field(default=None, repr=False)
    _response_cache: Optional[ResponseCache] = field(default=None, repr=False)
    _initialized: bool = field(default=False, repr=True)

    async def initialize(self, settings: Settings, embed_fn: Optional[ComputeFn] = None) -> None:
        """Build every cache and connect the durable tiers.

        Args:
            settings: Cache settings.
            embed_fn: Embedding function used by the response cache's
                semantic stage on an embedding-cache miss.
        """
        if self._initialized:
            logger.warning("Cache registry already initialized, skipping")
            return

        self._settings = settings
        logger.info("Initializing cache registry...")

        try:
            self._tracker = CacheAnalyticsTracker(
                max_snapshots=settings.analytics_max_snapshots,
                max_events=settings.analytics_max_events,
                clock=self.clock,
            )

            self._coordinators["generic"] = self._build_coordinator(
                settings, "generic", "cache_entries", JsonCodec()
            )
            self._coordinators["embedding"] = self._build_coordinator(
                settings, "embedding", "embedding_cache", PydanticCodec(EmbeddingCacheEntry)
            )
            self._coordinators["response"] = self._build_coordinator(
                settings, "response", "response_cache", PydanticCodec(ResponseCacheEntry)
            )

            for coordinator in self._coordinators.values():
                await coordinator.connect()
            logger.info("Cache tiers connected")

            self._embedding_cache = EmbeddingCache(
                self._coordinators["embedding"],
                EmbeddingCacheConfig(
                    ttl=settings.embedding_ttl,
                    max_text_length=settings.embedding_max_text_length,
                    normalize=settings.embedding_normalize,
                ),
            )

            self._response_cache = ResponseCache(
                self._coordinators["response"],
                embedding_cache=self._embedding_cache,
                embed_fn=embed_fn,
                similarity=SimilarityConfig(
                    semantic_threshold=settings.semantic_threshold,
                    fuzzy_threshold=settings.fuzzy_threshold,
                    enable_fuzzy_match=settings.enable_fuzzy_match,
                    max_candidates=settings.max_candidates,
                    candidate_pool_size=settings.candidate_pool_size,
                ),
                ttl_classifier=KeywordTTLClassifier.from_settings(settings),
            )

            if settings.analytics_enabled:
                self._recorder = AnalyticsRecorder(
                    self._tracker,
                    self._total_stats,
                    interval_seconds=settings.analytics_interval_seconds,
                )
                self._recorder.start()

            self._initialized = True
            logger.info("Cache registry initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize cache registry: {e}")
            await self.shutdown()
            raise

    async def shutdown(self) -> None:
        """Stop analytics, flush L1 to L3 and disconnect."""
        logger.info("Shutting down cache registry...")

        if self._recorder is not None:
            await self._recorder.stop()
            self._recorder = None

        for name, coordinator in self._coordinators.items():
            try:
                await coordinator.flush_to_durable()
                await coordinator.disconnect()
            except Exception as e:
                logger.error(f"Error shutting down {name} cache: {e}")

        self._coordinators.clear()
        self._embedding_cache = None
        self._response_cache = None
        self._initialized = False
        logger.info("Cache registry shut down")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            raise ServiceNotInitializedError("settings")
        return self._settings

    @property
    def tracker(self) -> CacheAnalyticsTracker:
        if self._tracker is None:
            raise ServiceNotInitializedError("tracker")
        return self._tracker

    @property
    def recorder(self) -> Optional[AnalyticsRecorder]:
        return self._recorder

    @property
    def generic_cache(self) -> TierCoordinator:
        """Coordinator for arbitrary JSON-serializable values."""
        return self._coordinator("generic")

    @property
    def embedding_cache(self) -> EmbeddingCache:
        if self._embedding_cache is None:
            raise ServiceNotInitializedError("embedding_cache")
        return self._embedding_cache

    @property
    def response_cache(self) -> ResponseCache:
        if self._response_cache is None:
            raise ServiceNotInitializedError("response_cache")
        return self._response_cache

    @property
    def coordinators(self) -> Dict[str, TierCoordinator]:
        if not self._initialized:
            raise ServiceNotInitializedError("coordinators")
        return dict(self._coordinators)

    # =========================================================================
    # Aggregates
    # =========================================================================

    async def aggregate_stats(self) -> TierStatsSnapshot:
        """Merge every coordinator's per-tier statistics."""
        by_tier = {}
        total = CacheStats()

        for coordinator in self.coordinators.values():
            snapshot = await coordinator.get_stats()
            total = total.merge(snapshot.total)
            for tier, stats in snapshot.by_tier.items():
                by_tier[tier] = by_tier[tier].merge(stats) if tier in by_tier else stats

        return TierStatsSnapshot(by_tier=by_tier, total=total)

    async def stats_by_cache(self) -> Dict[str, Any]:
        """Per-coordinator statistics plus embedding/response counters."""
        result: Dict[str, Any] = {}
        for name, coordinator in self.coordinators.items():
            result[name] = (await coordinator.get_stats()).to_dict()

        result["embedding"]["cache"] = self.embedding_cache.get_stats()
        result["response"]["cache"] = self.response_cache.get_stats()
        return result

    @property
    def max_memory_bytes(self) -> int:
        """Combined L1 memory limit across coordinators."""
        return self.settings.l1_max_memory_bytes * len(self.coordinators)

    async def health(self) -> Dict[str, Any]:
        snapshot = await self.aggregate_stats()
        return health_snapshot_from_stats(
            snapshot,
            self.tracker,
            max_memory=self.max_memory_bytes,
            target_hit_rate=self.settings.target_hit_rate,
        )

    async def report(self) -> str:
        snapshot = await self.aggregate_stats()
        return self.tracker.generate_report(
            snapshot.total,
            max_memory=self.max_memory_bytes,
            target_hit_rate=self.settings.target_hit_rate,
        )

    async def evict_expired(self) -> Dict[str, int]:
        """Run expiry (and demotion, when enabled) on every coordinator."""
        return {
            name: await coordinator.evict_expired()
            for name, coordinator in self.coordinators.items()
        }

    # =========================================================================
    # Construction helpers
    # =========================================================================

    def _coordinator(self, name: str) -> TierCoordinator:
        coordinator = self._coordinators.get(name)
        if coordinator is None:
            raise ServiceNotInitializedError(f"{name}_cache")
        return coordinator

    async def _total_stats(self) -> CacheStats:
        return (await self.aggregate_stats()).total

    def _build_coordinator(
        self,
        settings: Settings,
        name: str,
        table: str,
        codec: Codec
    ) -> TierCoordinator:
        listener = self._tracker.record_event if settings.analytics_enabled else None

        l1 = MemoryCacheStore(
            MemoryCacheConfig(
                max_entries=settings.l1_max_entries,
                max_memory_bytes=settings.l1_max_memory_bytes,
                default_ttl=settings.l1_default_ttl,
                max_value_bytes=settings.l1_max_value_bytes,
                enable_analytics=settings.analytics_enabled,
                max_events=settings.analytics_max_events,
            ),
            clock=self.clock,
            event_listener=listener,
        )

        l3 = None
        if settings.durable_enabled:
            l3 = DurableCacheStore(
                settings.durable_db_path,
                table=table,
                codec=codec,
                default_ttl=settings.durable_default_ttl,
                timeout_seconds=settings.durable_timeout_seconds,
                clock=self.clock,
                event_listener=listener,
            )

        return TierCoordinator(
            l1=l1,
            l3=l3,
            policy=CachePolicy(
                promote_on_hit=settings.promote_on_hit,
                promote_threshold=settings.promote_threshold,
                demote_on_expire=settings.demote_on_expire,
                demote_age_ms=settings.demote_age_ms,
            ),
            clock=self.clock,
            name=name,
        )
