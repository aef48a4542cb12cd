"""Base interface for out-of-process cache tiers."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional

from llmcache.services.tiered_cache.types import V, CacheStats


@dataclass
class DurableRecord(Generic[V]):
    """A decoded row returned by an out-of-process tier."""

    key: str
    value: V
    ttl_seconds: int
    expires_at: float
    hits: int
    created_at: float
    updated_at: float

    def age_ms(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.time()
        return max(0.0, (now - self.created_at) * 1000)

    def remaining_ttl(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.time()
        return max(0.0, self.expires_at - now)


class ICacheTier(ABC, Generic[V]):
    """Abstract base class for tiers consulted after L1.

    Implementations must never raise from their public operations: failures
    are logged and reported as a miss, False or 0.
    """

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Check if the tier is enabled and connected."""
        ...

    @property
    @abstractmethod
    def stats(self) -> CacheStats:
        """Get tier statistics."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backing store."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the backing store."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[DurableRecord[V]]:
        """Get a live record, or None on miss or failure."""
        ...

    @abstractmethod
    async def set(self, key: str, value: V, ttl: Optional[int] = None) -> bool:
        """Upsert a value. Returns True if stored."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if a row was removed."""
        ...

    @abstractmethod
    async def peek(self, key: str) -> Optional[V]:
        """Get a live value without counting a hit or updating the record."""
        ...

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Check if a live record exists."""
        ...

    @abstractmethod
    async def clear(self) -> bool:
        """Remove every record."""
        ...

    @abstractmethod
    async def evict_expired(self) -> int:
        """Range-delete expired records. Returns the number removed."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of live records."""
        ...

    async def get_stats(self) -> CacheStats:
        """Statistics with the live record count filled in."""
        stats = self.stats
        stats.current_size = await self.count()
        return stats
