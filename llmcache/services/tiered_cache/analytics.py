"""Cache analytics: time-series snapshots, events, health and reports."""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from llmcache.core.logging import get_logger
from llmcache.services.tiered_cache.coordinator import TierCoordinator
from llmcache.services.tiered_cache.types import (
    CacheAnalyticsEvent,
    CacheOperation,
    CacheStats,
    CacheTier,
    Clock,
    TierStatsSnapshot,
)
from llmcache.services.tiered_cache.utils import format_bytes, format_percentage

logger = get_logger(__name__)

DEFAULT_MAX_MEMORY = 100 * 1024 * 1024  # 100MB
DEFAULT_TARGET_HIT_RATE = 0.7

MEMORY_PRESSURE_LIMIT = 0.8
EVICTION_RATE_LIMIT = 0.1
TOKENS_SAVED_MILESTONE = 10000


class CacheHealth(str, Enum):
    """Overall cache health derived from the hit rate."""
    EXCELLENT = "excellent"  # >= 90%
    GOOD = "good"  # 70-90%
    FAIR = "fair"  # 50-70%
    POOR = "poor"  # < 50%


def classify_health(hit_rate: float) -> CacheHealth:
    """Map a hit rate to a health class."""
    if hit_rate >= 0.9:
        return CacheHealth.EXCELLENT
    if hit_rate >= 0.7:
        return CacheHealth.GOOD
    if hit_rate >= 0.5:
        return CacheHealth.FAIR
    return CacheHealth.POOR


@dataclass
class HealthIndicators:
    overall: CacheHealth
    hit_rate: float
    memory_usage: int
    memory_pressure: float
    eviction_rate: float
    tokens_saved: int
    recommendations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TimeSeriesPoint:
    timestamp: float
    hit_rate: float
    hits: int
    misses: int
    size: int
    memory_usage: int
    tokens_saved: int


@dataclass
class PeriodStats:
    avg_hit_rate: float = 0.0
    total_hits: int = 0
    total_misses: int = 0
    avg_size: float = 0.0
    avg_memory_usage: float = 0.0
    total_tokens_saved: int = 0


@dataclass
class KeyActivity:
    key: str
    hits: int
    tokens_saved: int


def generate_recommendations(
    stats: CacheStats,
    target_hit_rate: float,
    memory_pressure: float,
    eviction_rate: float
) -> List[str]:
    """Independent threshold checks; any number may fire at once."""
    recommendations = []

    if stats.hit_rate < target_hit_rate:
        recommendations.append(
            f"Hit rate ({format_percentage(stats.hit_rate)}) is below target "
            f"({format_percentage(target_hit_rate)}). Consider increasing TTL or cache size."
        )

    if memory_pressure > MEMORY_PRESSURE_LIMIT:
        recommendations.append(
            f"High memory pressure ({format_percentage(memory_pressure)}). "
            f"Consider increasing max memory or enabling compression."
        )

    if eviction_rate > EVICTION_RATE_LIMIT:
        recommendations.append(
            f"High eviction rate ({format_percentage(eviction_rate)}). "
            f"Consider increasing cache size or adjusting TTL strategy."
        )

    if stats.current_size == 0:
        recommendations.append("Cache is empty. Consider pre-warming with common queries.")

    if stats.tokens_saved > TOKENS_SAVED_MILESTONE:
        recommendations.append(
            f"Cache has saved {stats.tokens_saved:,} tokens! Keep it enabled."
        )

    return recommendations


class CacheAnalyticsTracker:
    """Records snapshots and events in bounded ring buffers.

    The tracker keeps its own copies of what it observes and never mutates
    tier state. ``record_event`` can be passed directly as a tier
    ``event_listener``.
    """

    def __init__(
        self,
        max_snapshots: int = 1000,
        max_events: int = 10000,
        clock: Clock = time.time
    ):
        self._clock = clock
        self._time_series: Deque[TimeSeriesPoint] = deque(maxlen=max_snapshots)
        self._events: Deque[CacheAnalyticsEvent] = deque(maxlen=max_events)

    @property
    def snapshot_count(self) -> int:
        return len(self._time_series)

    @property
    def event_count(self) -> int:
        return len(self._events)

    def record_snapshot(self, stats: CacheStats) -> None:
        """Append a point to the time series (oldest dropped when full)."""
        self._time_series.append(TimeSeriesPoint(
            timestamp=self._clock(),
            hit_rate=stats.hit_rate,
            hits=stats.hits,
            misses=stats.misses,
            size=stats.current_size,
            memory_usage=stats.memory_usage_bytes,
            tokens_saved=stats.tokens_saved,
        ))

    def record_event(self, event: CacheAnalyticsEvent) -> None:
        self._events.append(event)

    # =========================================================================
    # Health
    # =========================================================================

    def get_health_indicators(
        self,
        stats: CacheStats,
        max_memory: int = DEFAULT_MAX_MEMORY,
        target_hit_rate: float = DEFAULT_TARGET_HIT_RATE
    ) -> HealthIndicators:
        """Classify health and derive recommendations from a stats snapshot."""
        memory_pressure = stats.memory_usage_bytes / max_memory if max_memory > 0 else 0.0

        operations = stats.hits + stats.misses + stats.sets
        eviction_rate = stats.evictions / operations if operations > 0 else 0.0

        return HealthIndicators(
            overall=classify_health(stats.hit_rate),
            hit_rate=stats.hit_rate,
            memory_usage=stats.memory_usage_bytes,
            memory_pressure=memory_pressure,
            eviction_rate=eviction_rate,
            tokens_saved=stats.tokens_saved,
            recommendations=generate_recommendations(
                stats, target_hit_rate, memory_pressure, eviction_rate
            ),
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_time_series(
        self,
        start: Optional[float] = None,
        end: Optional[float] = None,
        limit: Optional[int] = None
    ) -> List[TimeSeriesPoint]:
        """Points within [start, end], keeping the most recent ``limit``."""
        points = [
            point for point in self._time_series
            if (start is None or point.timestamp >= start)
            and (end is None or point.timestamp <= end)
        ]
        if limit is not None and len(points) > limit:
            points = points[-limit:]
        return points

    def get_events(
        self,
        tier: Optional[CacheTier] = None,
        operation: Optional[CacheOperation] = None,
        start: Optional[float] = None,
        end: Optional[float] = None,
        limit: Optional[int] = None
    ) -> List[CacheAnalyticsEvent]:
        """Filtered events, oldest first, keeping the most recent ``limit``."""
        events = [
            event for event in self._events
            if (tier is None or event.tier == tier)
            and (operation is None or event.operation == operation)
            and (start is None or event.timestamp >= start)
            and (end is None or event.timestamp <= end)
        ]
        if limit is not None and len(events) > limit:
            events = events[-limit:]
        return events

    def get_period_stats(self, start: float, end: float) -> PeriodStats:
        """Averages and totals over the snapshots in [start, end]."""
        points = self.get_time_series(start=start, end=end)
        if not points:
            return PeriodStats()

        count = len(points)
        return PeriodStats(
            avg_hit_rate=sum(p.hit_rate for p in points) / count,
            total_hits=sum(p.hits for p in points),
            total_misses=sum(p.misses for p in points),
            avg_size=sum(p.size for p in points) / count,
            avg_memory_usage=sum(p.memory_usage for p in points) / count,
            total_tokens_saved=sum(p.tokens_saved for p in points),
        )

    def get_top_keys(self, limit: int = 10) -> List[KeyActivity]:
        """Keys with the most recorded hits."""
        activity: Dict[str, KeyActivity] = {}
        for event in self._events:
            if event.operation != CacheOperation.HIT:
                continue
            current = activity.setdefault(event.key, KeyActivity(event.key, 0, 0))
            current.hits += 1
            current.tokens_saved += event.tokens_saved or 0

        ranked = sorted(activity.values(), key=lambda item: item.hits, reverse=True)
        return ranked[:limit]

    def generate_report(
        self,
        stats: CacheStats,
        max_memory: int = DEFAULT_MAX_MEMORY,
        target_hit_rate: float = DEFAULT_TARGET_HIT_RATE
    ) -> str:
        """Plain-text performance report."""
        health = self.get_health_indicators(stats, max_memory, target_hit_rate)
        top_keys = self.get_top_keys(5)

        lines = [
            "=== Cache Performance Report ===",
            "",
            f"Overall Health: {health.overall.value.upper()}",
            f"Hit Rate: {format_percentage(health.hit_rate)}",
            f"Memory Usage: {format_bytes(health.memory_usage)}",
            f"Memory Pressure: {format_percentage(health.memory_pressure)}",
            f"Eviction Rate: {format_percentage(health.eviction_rate)}",
            f"Tokens Saved: {health.tokens_saved:,}",
            "",
            "--- Statistics ---",
            f"Total Hits: {stats.hits:,}",
            f"Total Misses: {stats.misses:,}",
            f"Total Sets: {stats.sets:,}",
            f"Total Evictions: {stats.evictions:,}",
            f"Total Expirations: {stats.expirations:,}",
            f"Cache Size: {stats.current_size:,} entries",
            "",
        ]

        if top_keys:
            lines.append("--- Top Cache Keys ---")
            for item in top_keys:
                line = f"{item.key}: {item.hits} hits"
                if item.tokens_saved > 0:
                    line += f" (saved {item.tokens_saved} tokens)"
                lines.append(line)
            lines.append("")

        if health.recommendations:
            lines.append("--- Recommendations ---")
            lines.extend(f"• {rec}" for rec in health.recommendations)
            lines.append("")

        return "\n".join(lines) + "\n"

    def clear(self) -> None:
        """Clear all analytics data."""
        self._time_series.clear()
        self._events.clear()


def health_snapshot_from_stats(
    snapshot: TierStatsSnapshot,
    tracker: CacheAnalyticsTracker,
    max_memory: int = DEFAULT_MAX_MEMORY,
    target_hit_rate: float = DEFAULT_TARGET_HIT_RATE
) -> Dict[str, Any]:
    """Read-only health surface for a monitoring endpoint."""
    health = tracker.get_health_indicators(snapshot.total, max_memory, target_hit_rate)
    return {
        "health": health.overall.value,
        "hitRate": health.hit_rate,
        "tokensSaved": health.tokens_saved,
        "memoryUsageBytes": health.memory_usage,
        "memoryPressure": health.memory_pressure,
        "evictionRate": health.eviction_rate,
        "recommendations": health.recommendations,
        "byTier": {tier.value: stats.to_dict() for tier, stats in snapshot.by_tier.items()},
    }


async def build_health_snapshot(
    coordinator: TierCoordinator,
    tracker: CacheAnalyticsTracker,
    max_memory: int = DEFAULT_MAX_MEMORY,
    target_hit_rate: float = DEFAULT_TARGET_HIT_RATE
) -> Dict[str, Any]:
    """Health surface for a single coordinator."""
    snapshot = await coordinator.get_stats()
    return health_snapshot_from_stats(snapshot, tracker, max_memory, target_hit_rate)


StatsProvider = Callable[[], Awaitable[CacheStats]]


class AnalyticsRecorder:
    """Background task recording a stats snapshot every ``interval_seconds``."""

    def __init__(
        self,
        tracker: CacheAnalyticsTracker,
        stats_provider: StatsProvider,
        interval_seconds: float = 60.0
    ):
        self.tracker = tracker
        self.stats_provider = stats_provider
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def record_once(self) -> bool:
        """Record a single snapshot. Returns False if stats were unavailable."""
        try:
            stats = await self.stats_provider()
        except Exception as e:
            logger.warning(f"Analytics snapshot failed: {e}")
            return False

        self.tracker.record_snapshot(stats)
        return True

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Analytics recording started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        task = self._task
        self._task = None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Analytics recording stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.record_once()
