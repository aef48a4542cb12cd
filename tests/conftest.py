"""Shared test fixtures for cache service tests."""

import pytest

from llmcache.services.tiered_cache.coordinator import TierCoordinator
from llmcache.services.tiered_cache.durable_store import DurableCacheStore
from llmcache.services.tiered_cache.memory_store import MemoryCacheConfig, MemoryCacheStore
from llmcache.services.tiered_cache.types import CachePolicy


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Clock Fixtures
# ============================================================================

@pytest.fixture
def clock():
    """Create a fake clock for TTL tests."""
    return FakeClock()


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def memory_store(clock):
    """Create a fresh L1 store on the fake clock."""
    return MemoryCacheStore(MemoryCacheConfig(max_entries=100), clock=clock)


@pytest.fixture
def durable_path(tmp_path):
    """Path for a throwaway SQLite database."""
    return str(tmp_path / "cache.db")


@pytest.fixture
async def durable_store(durable_path, clock):
    """Create a connected durable store."""
    store = DurableCacheStore(durable_path, clock=clock)
    await store.connect()
    yield store
    await store.disconnect()


@pytest.fixture
async def coordinator(memory_store, durable_store, clock):
    """Create a two-tier coordinator with the default policy."""
    return TierCoordinator(l1=memory_store, l3=durable_store, policy=CachePolicy(), clock=clock)
