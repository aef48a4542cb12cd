"""Tier coordinator: read-through, promotion and write-through across tiers."""

import math
import time
from typing import Generic, List, Optional, Tuple

from llmcache.core.errors import CacheConfigError
from llmcache.core.logging import get_logger
from llmcache.services.tiered_cache.base import DurableRecord, ICacheTier
from llmcache.services.tiered_cache.memory_store import MemoryCacheStore
from llmcache.services.tiered_cache.types import (
    V,
    CachePolicy,
    CacheResult,
    CacheStats,
    CacheTier,
    Clock,
    TierStatsSnapshot,
)

logger = get_logger(__name__)


class TierCoordinator(Generic[V]):
    """Coordinates reads and writes across L1, an optional L2 and L3.

    Reads check L1 first, then each lower tier in order. A lower-tier hit is
    promoted into the faster tiers when the policy allows. Writes go to every
    tier unless the caller restricts them to one. The coordinator only uses
    the tiers' public operations.

    Usage:
        coordinator = TierCoordinator(
            l1=MemoryCacheStore(),
            l3=DurableCacheStore("./cache.db"),
        )
        await coordinator.connect()

        await coordinator.set("k", "v", ttl=60)
        result = await coordinator.get("k")  # CacheResult(value="v", hit=True, tier=L1)
    """

    def __init__(
        self,
        l1: Optional[MemoryCacheStore[V]] = None,
        l3: Optional[ICacheTier[V]] = None,
        l2: Optional[ICacheTier[V]] = None,
        policy: Optional[CachePolicy] = None,
        clock: Clock = time.time,
        name: str = "default"
    ):
        """Initialize the coordinator.

        Args:
            l1: In-process store (None disables L1).
            l3: Durable tier (None runs L1-only).
            l2: Optional intermediate tier with the same contract as L3.
            policy: Promotion/demotion policy.
            clock: Time source in seconds.
            name: Label used in logs and stats.
        """
        if l1 is None and l2 is None and l3 is None:
            raise CacheConfigError("TierCoordinator needs at least one tier", field="tiers")

        self.l1 = l1
        self.l2 = l2
        self.l3 = l3
        self.policy = policy or CachePolicy()
        self.name = name
        self._clock = clock
        self._requests = CacheStats()

    @property
    def lower_tiers(self) -> List[Tuple[CacheTier, ICacheTier[V]]]:
        """Tiers below L1, fastest first."""
        tiers = []
        if self.l2 is not None:
            tiers.append((CacheTier.L2, self.l2))
        if self.l3 is not None:
            tiers.append((CacheTier.L3, self.l3))
        return tiers

    @property
    def has_durable_tier(self) -> bool:
        return self.l3 is not None

    async def connect(self) -> None:
        """Connect every lower tier."""
        for _, tier in self.lower_tiers:
            await tier.connect()

    async def disconnect(self) -> None:
        """Disconnect every lower tier."""
        for _, tier in self.lower_tiers:
            await tier.disconnect()

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, key: str) -> CacheResult[V]:
        """Look a key up across tiers.

        Returns:
            CacheResult with the value, the tier that served it and its age.
            ``age_ms`` is 0 for L1 hits.
        """
        if self.l1 is not None:
            value = self.l1.get(key)
            if value is not None:
                self._requests.record_hit()
                return CacheResult(value=value, hit=True, tier=CacheTier.L1, age_ms=0.0)

        for index, (tier_label, tier) in enumerate(self.lower_tiers):
            record = await tier.get(key)
            if record is None:
                continue

            promoted = False
            if self.policy.promote_on_hit and record.hits >= self.policy.promote_threshold:
                promoted = await self._promote(key, record, faster_than=index)

            self._requests.record_hit()
            return CacheResult(
                value=record.value,
                hit=True,
                tier=tier_label,
                age_ms=record.age_ms(self._clock()),
                promoted=promoted,
            )

        self._requests.record_miss()
        return CacheResult(value=None, hit=False)

    async def has(self, key: str) -> bool:
        """Check if any tier holds a live entry."""
        if self.l1 is not None and self.l1.has(key):
            return True

        for _, tier in self.lower_tiers:
            if await tier.has(key):
                return True
        return False

    async def peek(self, key: str) -> Optional[V]:
        """Live value from the fastest tier holding it.

        Unlike ``get`` this leaves statistics, recency and hit counts alone
        and never promotes.
        """
        if self.l1 is not None:
            entry = self.l1.peek(key)
            if entry is not None:
                return entry.value

        for _, tier in self.lower_tiers:
            value = await tier.peek(key)
            if value is not None:
                return value
        return None

    # =========================================================================
    # Writes
    # =========================================================================

    async def set(
        self,
        key: str,
        value: V,
        ttl: Optional[float] = None,
        target_tier: Optional[CacheTier] = None
    ) -> bool:
        """Write a value through to every tier, or only to ``target_tier``.

        Args:
            key: The cache key.
            value: The value (None is not cacheable).
            ttl: TTL in seconds; each tier applies its own default when None.
            target_tier: Restrict the write to one tier.

        Returns:
            True if at least one tier stored the value.
        """
        if value is None:
            logger.warning(f"[{self.name}] Refusing to cache None for key {key}")
            return False

        stored = False

        if self.l1 is not None and target_tier in (None, CacheTier.L1):
            stored = self.l1.set(key, value, ttl) or stored

        durable_ttl = math.ceil(ttl) if ttl is not None else None
        for tier_label, tier in self.lower_tiers:
            if target_tier in (None, tier_label):
                stored = await tier.set(key, value, durable_ttl) or stored

        if stored:
            self._requests.record_set()
        return stored

    async def delete(self, key: str) -> bool:
        """Delete a key from every tier."""
        deleted = False

        if self.l1 is not None:
            deleted = self.l1.delete(key) or deleted

        for _, tier in self.lower_tiers:
            deleted = await tier.delete(key) or deleted

        return deleted

    async def clear(self) -> None:
        """Clear every tier."""
        if self.l1 is not None:
            self.l1.clear()

        for _, tier in self.lower_tiers:
            await tier.clear()

        logger.info(f"[{self.name}] Cleared all cache tiers")

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def evict_expired(self) -> int:
        """Remove expired entries from every tier.

        Runs the demotion pass first when ``demote_on_expire`` is set.
        """
        evicted = 0

        if self.policy.demote_on_expire:
            await self.demote_aged()

        if self.l1 is not None:
            evicted += self.l1.evict_expired()

        for _, tier in self.lower_tiers:
            evicted += await tier.evict_expired()

        return evicted

    async def demote_aged(self) -> int:
        """Move L1 entries older than ``demote_age_ms`` into L3.

        An entry is only removed from L1 after L3 accepted it and only if it
        was not replaced in the meantime.

        Returns:
            Number of entries demoted.
        """
        if self.l1 is None or self.l3 is None:
            return 0

        demoted = 0
        now = self._clock()

        for entry in self.l1.entries():
            if entry.age_ms(now) < self.policy.demote_age_ms:
                continue

            ttl = math.ceil(entry.remaining_ttl(now))
            if ttl <= 0:
                continue

            if not await self.l3.set(entry.key, entry.value, ttl):
                continue

            if self.l1.peek(entry.key) is entry:
                self.l1.delete(entry.key)
                demoted += 1
                logger.debug(f"[{self.name}] Demoted {entry.key} to L3")

        if demoted:
            logger.info(f"[{self.name}] Demoted {demoted} aged entries to L3")
        return demoted

    async def flush_to_durable(self) -> int:
        """Write every live L1 entry to L3 (used at shutdown).

        Returns:
            Number of entries written.
        """
        if self.l1 is None or self.l3 is None:
            return 0

        flushed = 0
        now = self._clock()

        for entry in self.l1.entries():
            ttl = math.ceil(entry.remaining_ttl(now))
            if ttl > 0 and await self.l3.set(entry.key, entry.value, ttl):
                flushed += 1

        logger.info(f"[{self.name}] Flushed {flushed} L1 entries to L3")
        return flushed

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(self) -> TierStatsSnapshot:
        """Per-tier statistics and their aggregate.

        The aggregate sums the tier gauges and counters, but its hits, misses
        and sets count coordinator calls: an L1 miss served by L3 is one hit
        and a write-through to both tiers is one set.
        """
        by_tier = {}

        if self.l1 is not None:
            by_tier[CacheTier.L1] = self.l1.stats

        for tier_label, tier in self.lower_tiers:
            by_tier[tier_label] = await tier.get_stats()

        total = CacheStats()
        for stats in by_tier.values():
            total = total.merge(stats)

        total.hits = self._requests.hits
        total.misses = self._requests.misses
        total.sets = self._requests.sets

        return TierStatsSnapshot(by_tier=by_tier, total=total)

    def reset_stats(self) -> None:
        self._requests.reset()
        if self.l1 is not None:
            self.l1.reset_stats()
        for _, tier in self.lower_tiers:
            reset = getattr(tier, "reset_stats", None)
            if reset is not None:
                reset()

    async def _promote(self, key: str, record: DurableRecord[V], faster_than: int) -> bool:
        """Copy a lower-tier hit into L1 and any faster lower tiers."""
        ttl = math.ceil(record.remaining_ttl(self._clock()))
        if ttl <= 0:
            return False

        promoted = False
        if self.l1 is not None:
            promoted = self.l1.set(key, record.value, ttl)

        for tier_label, tier in self.lower_tiers[:faster_than]:
            promoted = await tier.set(key, record.value, ttl) or promoted

        if promoted:
            logger.debug(f"[{self.name}] Promoted {key} to faster tiers")
        return promoted
