"""L1 in-process cache store with LRU eviction and per-entry TTL."""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Generic, List, Optional

from llmcache.core.errors import CacheConfigError, CapacityError
from llmcache.core.logging import get_logger
from llmcache.services.tiered_cache.types import (
    V,
    CacheAnalyticsEvent,
    CacheEntry,
    CacheOperation,
    CacheStats,
    CacheTier,
    Clock,
    EventListener,
)
from llmcache.services.tiered_cache.utils import estimate_size, estimate_tokens_saved

logger = get_logger(__name__)


@dataclass
class MemoryCacheConfig:
    """Limits and defaults for the in-process store."""

    max_entries: int = 1000
    max_memory_bytes: int = 100 * 1024 * 1024  # 100MB
    default_ttl: int = 3600  # 1 hour
    max_value_bytes: Optional[int] = None  # None = max_memory_bytes
    enable_analytics: bool = True
    max_events: int = 10000

    def __post_init__(self) -> None:
        if self.max_entries <= 0:
            raise CacheConfigError("max_entries must be positive", field="max_entries")
        if self.max_memory_bytes <= 0:
            raise CacheConfigError("max_memory_bytes must be positive", field="max_memory_bytes")
        if self.default_ttl <= 0:
            raise CacheConfigError("default_ttl must be positive", field="default_ttl")
        if self.max_events <= 0:
            raise CacheConfigError("max_events must be positive", field="max_events")
        if self.max_value_bytes is not None and not (
            0 < self.max_value_bytes <= self.max_memory_bytes
        ):
            raise CacheConfigError(
                "max_value_bytes must be positive and <= max_memory_bytes",
                field="max_value_bytes"
            )

    @property
    def value_limit(self) -> int:
        return self.max_value_bytes or self.max_memory_bytes


class _LRUNode:
    """Doubly-linked list node owned by a single MemoryCacheStore."""

    __slots__ = ("entry", "prev", "next")

    def __init__(self, entry: CacheEntry):
        self.entry = entry
        self.prev: Optional["_LRUNode"] = None
        self.next: Optional["_LRUNode"] = None


class MemoryCacheStore(Generic[V]):
    """Size- and count-bounded LRU store.

    The hash index maps key -> list node; the list runs from most recently
    used (head) to least recently used (tail). Every public operation holds a
    single lock for an O(1) critical section (``evict_expired`` and the
    snapshot helpers are O(n)).

    Usage:
        store = MemoryCacheStore(MemoryCacheConfig(max_entries=100))
        store.set("key", {"answer": 42}, ttl=60)
        value = store.get("key")
    """

    def __init__(
        self,
        config: Optional[MemoryCacheConfig] = None,
        size_fn: Optional[Callable[[Any], int]] = None,
        clock: Clock = time.time,
        event_listener: Optional[EventListener] = None
    ):
        """Initialize the store.

        Args:
            config: Limits and default TTL.
            size_fn: Approximate byte size of a value. Defaults to a
                serialized-size estimate.
            clock: Time source in seconds, injectable for tests.
            event_listener: Called with every analytics event.
        """
        self.config = config or MemoryCacheConfig()
        self._size_fn = size_fn or estimate_size
        self._clock = clock
        self._event_listener = event_listener

        self._index: Dict[str, _LRUNode] = {}
        self._head: Optional[_LRUNode] = None  # Most recently used
        self._tail: Optional[_LRUNode] = None  # Least recently used
        self._memory_used = 0
        self._stats = CacheStats()
        self._events: Deque[CacheAnalyticsEvent] = deque(maxlen=self.config.max_events)
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    @property
    def stats(self) -> CacheStats:
        """Snapshot of the store statistics."""
        with self._lock:
            snapshot = self._stats.copy()
            snapshot.current_size = len(self._index)
            snapshot.memory_usage_bytes = self._memory_used
            return snapshot

    @property
    def memory_used(self) -> int:
        return self._memory_used

    def set_event_listener(self, listener: Optional[EventListener]) -> None:
        self._event_listener = listener

    # =========================================================================
    # Public operations
    # =========================================================================

    def get(self, key: str) -> Optional[V]:
        """Get a live value, marking it most recently used."""
        events: List[CacheAnalyticsEvent] = []
        value = None

        with self._lock:
            node = self._index.get(key)
            now = self._clock()

            if node is not None and node.entry.is_expired(now):
                self._remove_node(node)
                self._stats.record_expiration()
                events.append(self._event(CacheOperation.DELETE, key))
                node = None

            if node is None:
                self._stats.record_miss()
                events.append(self._event(CacheOperation.MISS, key))
            else:
                node.entry.hit_count += 1
                self._move_to_front(node)
                value = node.entry.value

                tokens_saved = estimate_tokens_saved(value)
                self._stats.record_hit(tokens_saved)
                events.append(self._event(
                    CacheOperation.HIT, key, tokens_saved=tokens_saved or None
                ))

        self._publish(events)
        return value

    def set(
        self,
        key: str,
        value: V,
        ttl: Optional[float] = None,
        size_bytes: Optional[int] = None
    ) -> bool:
        """Store a value, evicting least recently used entries as needed.

        Args:
            key: The cache key.
            value: The value to cache.
            ttl: Time-to-live in seconds (default from config).
            size_bytes: Caller-supplied size; skips size estimation.

        Returns:
            True if stored, False if rejected (too large or non-positive TTL).
        """
        ttl_seconds = self.config.default_ttl if ttl is None else ttl
        if ttl_seconds <= 0:
            logger.warning(f"Rejected set for key {key}: non-positive TTL {ttl_seconds}")
            return False

        size = size_bytes if size_bytes is not None else self._size_fn(value)
        if size > self.config.value_limit:
            error = CapacityError(key, size, self.config.value_limit)
            logger.warning(f"Value too large to cache: {error.message}")
            return False

        events: List[CacheAnalyticsEvent] = []

        with self._lock:
            existing = self._index.get(key)
            if existing is not None:
                self._remove_node(existing)

            while self._tail is not None and (
                len(self._index) >= self.config.max_entries
                or self._memory_used + size > self.config.max_memory_bytes
            ):
                events.append(self._evict_tail())

            now = self._clock()
            entry = CacheEntry(
                key=key,
                value=value,
                ttl_seconds=ttl_seconds,
                created_at=now,
                expires_at=now + ttl_seconds,
                hit_count=0,
                size_bytes=size,
            )
            node = _LRUNode(entry)
            self._index[key] = node
            self._add_to_front(node)
            self._memory_used += size

            self._stats.record_set()
            events.append(self._event(CacheOperation.SET, key, ttl=int(ttl_seconds), size=size))

        self._publish(events)
        return True

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        with self._lock:
            node = self._index.get(key)
            if node is None:
                return False

            self._remove_node(node)
            self._stats.record_delete()
            event = self._event(CacheOperation.DELETE, key)

        self._publish([event])
        return True

    def has(self, key: str) -> bool:
        """Check if a live entry exists (does not affect recency or stats)."""
        events: List[CacheAnalyticsEvent] = []

        with self._lock:
            node = self._index.get(key)
            if node is None:
                return False

            if node.entry.is_expired(self._clock()):
                self._remove_node(node)
                self._stats.record_expiration()
                events.append(self._event(CacheOperation.DELETE, key))
                found = False
            else:
                found = True

        self._publish(events)
        return found

    def peek(self, key: str) -> Optional[CacheEntry[V]]:
        """Return the live entry without touching recency or statistics."""
        with self._lock:
            node = self._index.get(key)
            if node is None or node.entry.is_expired(self._clock()):
                return None
            return node.entry

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._index.clear()
            self._head = None
            self._tail = None
            self._memory_used = 0

    def evict_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        events: List[CacheAnalyticsEvent] = []

        with self._lock:
            now = self._clock()
            node = self._head
            while node is not None:
                next_node = node.next
                if node.entry.is_expired(now):
                    self._remove_node(node)
                    self._stats.record_expiration()
                    events.append(self._event(CacheOperation.DELETE, node.entry.key))
                node = next_node

        self._publish(events)
        if events:
            logger.debug(f"Evicted {len(events)} expired entries from L1")
        return len(events)

    def keys(self) -> List[str]:
        """Keys ordered from most to least recently used."""
        with self._lock:
            return [entry.key for entry in self._iter_entries()]

    def entries(self) -> List[CacheEntry[V]]:
        """Live entries ordered from most to least recently used."""
        with self._lock:
            now = self._clock()
            return [entry for entry in self._iter_entries() if not entry.is_expired(now)]

    def events(self) -> List[CacheAnalyticsEvent]:
        """Recorded analytics events, oldest first."""
        with self._lock:
            return list(self._events)

    def clear_events(self) -> None:
        with self._lock:
            self._events.clear()

    def reset_stats(self) -> None:
        with self._lock:
            self._stats.reset()

    # =========================================================================
    # LRU list maintenance (caller holds the lock)
    # =========================================================================

    def _iter_entries(self):
        node = self._head
        while node is not None:
            yield node.entry
            node = node.next

    def _add_to_front(self, node: _LRUNode) -> None:
        node.prev = None
        node.next = self._head

        if self._head is not None:
            self._head.prev = node
        self._head = node

        if self._tail is None:
            self._tail = node

    def _unlink(self, node: _LRUNode) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        else:
            self._head = node.next

        if node.next is not None:
            node.next.prev = node.prev
        else:
            self._tail = node.prev

        node.prev = None
        node.next = None

    def _move_to_front(self, node: _LRUNode) -> None:
        if node is self._head:
            return
        self._unlink(node)
        self._add_to_front(node)

    def _remove_node(self, node: _LRUNode) -> None:
        self._unlink(node)
        del self._index[node.entry.key]
        self._memory_used -= node.entry.size_bytes

    def _evict_tail(self) -> CacheAnalyticsEvent:
        node = self._tail
        self._remove_node(node)
        self._stats.record_eviction()
        logger.debug(f"Evicted LRU key {node.entry.key}")
        return self._event(CacheOperation.EVICT, node.entry.key, size=node.entry.size_bytes)

    # =========================================================================
    # Analytics
    # =========================================================================

    def _event(
        self,
        operation: CacheOperation,
        key: str,
        ttl: Optional[int] = None,
        size: Optional[int] = None,
        tokens_saved: Optional[int] = None
    ) -> CacheAnalyticsEvent:
        event = CacheAnalyticsEvent(
            timestamp=self._clock(),
            tier=CacheTier.L1,
            operation=operation,
            key=key,
            ttl=ttl,
            size=size,
            tokens_saved=tokens_saved,
        )
        if self.config.enable_analytics:
            self._events.append(event)
        return event

    def _publish(self, events: List[CacheAnalyticsEvent]) -> None:
        if not events or self._event_listener is None or not self.config.enable_analytics:
            return
        for event in events:
            self._event_listener(event)
