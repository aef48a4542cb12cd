"""Core types shared by every cache tier."""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from llmcache.core.errors import CacheConfigError

V = TypeVar("V")

Clock = Callable[[], float]


class CacheTier(str, Enum):
    """Storage levels in the cache hierarchy."""
    L1 = "L1"  # In-process
    L2 = "L2"  # Extension hook (shared/remote tier)
    L3 = "L3"  # Durable


class CacheOperation(str, Enum):
    """Operations recorded as analytics events."""
    HIT = "hit"
    MISS = "miss"
    SET = "set"
    DELETE = "delete"
    EVICT = "evict"


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with its expiry and access metadata."""

    key: str
    value: V
    ttl_seconds: int
    created_at: float
    expires_at: float
    hit_count: int = 0
    size_bytes: int = 0

    def is_expired(self, now: Optional[float] = None) -> bool:
        """An entry is live iff now < expires_at."""
        if now is None:
            now = time.time()
        return now >= self.expires_at

    def age_ms(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.time()
        return max(0.0, (now - self.created_at) * 1000)

    def remaining_ttl(self, now: Optional[float] = None) -> float:
        """Seconds until expiry (0 when already expired)."""
        if now is None:
            now = time.time()
        return max(0.0, self.expires_at - now)


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0
    errors: int = 0
    current_size: int = 0
    memory_usage_bytes: int = 0
    tokens_saved: int = 0

    @property
    def total_requests(self) -> int:
        """Total number of cache requests."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def record_hit(self, tokens_saved: int = 0) -> None:
        """Record a cache hit."""
        self.hits += 1
        self.tokens_saved += tokens_saved

    def record_miss(self) -> None:
        """Record a cache miss."""
        self.misses += 1

    def record_set(self) -> None:
        self.sets += 1

    def record_delete(self) -> None:
        self.deletes += 1

    def record_eviction(self) -> None:
        self.evictions += 1

    def record_expiration(self) -> None:
        """Record an entry removed because its TTL ran out."""
        self.expirations += 1

    def record_error(self) -> None:
        """Record a cache error."""
        self.errors += 1

    def reset(self) -> None:
        """Reset all counters (size and memory gauges are kept)."""
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.deletes = 0
        self.evictions = 0
        self.expirations = 0
        self.errors = 0
        self.tokens_saved = 0

    def copy(self) -> "CacheStats":
        return CacheStats(**asdict(self))

    def merge(self, other: "CacheStats") -> "CacheStats":
        """Return a new stats object summing self and other."""
        return CacheStats(
            hits=self.hits + other.hits,
            misses=self.misses + other.misses,
            sets=self.sets + other.sets,
            deletes=self.deletes + other.deletes,
            evictions=self.evictions + other.evictions,
            expirations=self.expirations + other.expirations,
            errors=self.errors + other.errors,
            current_size=self.current_size + other.current_size,
            memory_usage_bytes=self.memory_usage_bytes + other.memory_usage_bytes,
            tokens_saved=self.tokens_saved + other.tokens_saved,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data


@dataclass(frozen=True)
class CacheAnalyticsEvent:
    """Immutable record of a single cache operation."""

    timestamp: float
    tier: CacheTier
    operation: CacheOperation
    key: str
    ttl: Optional[int] = None
    size: Optional[int] = None
    tokens_saved: Optional[int] = None


EventListener = Callable[[CacheAnalyticsEvent], None]


@dataclass
class CacheResult(Generic[V]):
    """Result of a coordinated multi-tier lookup."""

    value: Optional[V] = None
    hit: bool = False
    tier: Optional[CacheTier] = None
    age_ms: Optional[float] = None
    promoted: bool = False


@dataclass
class CachePolicy:
    """Promotion/demotion policy for the tier coordinator."""

    promote_on_hit: bool = True
    promote_threshold: int = 1
    demote_on_expire: bool = False
    demote_age_ms: int = 24 * 3600 * 1000  # 24 hours

    def __post_init__(self) -> None:
        if self.promote_threshold < 1:
            raise CacheConfigError(
                "promote_threshold must be >= 1", field="promote_threshold"
            )
        if self.demote_age_ms <= 0:
            raise CacheConfigError("demote_age_ms must be positive", field="demote_age_ms")


@dataclass
class TierStatsSnapshot:
    """Per-tier statistics plus their aggregate."""

    by_tier: Dict[CacheTier, CacheStats] = field(default_factory=dict)
    total: CacheStats = field(default_factory=CacheStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "by_tier": {tier.value: stats.to_dict() for tier, stats in self.by_tier.items()},
            "total": self.total.to_dict(),
        }
