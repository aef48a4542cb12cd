"""Tests for the cache monitoring endpoints."""

import httpx
import pytest
from fastapi import FastAPI

from llmcache.api import cache_health
from llmcache.core.app_factory import create_app
from llmcache.core.config import Settings, settings as app_settings
from llmcache.core.lifecycle import lifespan
from llmcache.core.registry import CacheRegistry


def build_app(registry=None) -> FastAPI:
    app = FastAPI()
    app.include_router(cache_health.router, prefix="/api/v1")
    if registry is not None:
        app.state.cache_registry = registry
    return app


@pytest.fixture
async def registry(tmp_path, clock):
    """Create an initialized registry."""
    registry = CacheRegistry(clock=clock)
    await registry.initialize(Settings(
        durable_db_path=str(tmp_path / "api.db"),
        analytics_interval_seconds=3600,
    ))
    yield registry
    await registry.shutdown()


@pytest.fixture
async def client(registry):
    """Create an async client bound to the monitoring router."""
    transport = httpx.ASGITransport(app=build_app(registry))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestCacheEndpoints:
    """Tests for the monitoring surface."""

    @pytest.mark.asyncio
    async def test_health(self, client, registry):
        """Test the health endpoint returns the documented fields."""
        await registry.generic_cache.set("k", "v", ttl=60)
        await registry.generic_cache.get("k")

        response = await client.get("/api/v1/cache/health")

        assert response.status_code == 200
        data = response.json()
        assert data["health"] == "excellent"
        assert data["hitRate"] == 1.0
        assert set(data["byTier"]) == {"L1", "L3"}
        assert isinstance(data["recommendations"], list)

    @pytest.mark.asyncio
    async def test_stats(self, client):
        """Test stats are grouped per cache with a total."""
        response = await client.get("/api/v1/cache/stats")

        assert response.status_code == 200
        data = response.json()
        assert set(data["caches"]) == {"generic", "embedding", "response"}
        assert "total" in data["total"]

    @pytest.mark.asyncio
    async def test_report(self, client):
        """Test the report is served as plain text."""
        response = await client.get("/api/v1/cache/report")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "=== Cache Performance Report ===" in response.text

    @pytest.mark.asyncio
    async def test_evict_expired(self, client, registry, clock):
        """Test expired entries are removed on request."""
        await registry.generic_cache.set("short", "v", ttl=1)
        clock.advance(5)

        response = await client.post("/api/v1/cache/evict-expired")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["evicted"]["generic"] == 2
        assert data["total_evicted"] == 2


class TestUninitializedRegistry:
    """Tests for requests before the registry exists."""

    @pytest.mark.asyncio
    async def test_missing_registry_returns_503(self):
        """Test every endpoint reports the service as unavailable."""
        transport = httpx.ASGITransport(app=build_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            health = await client.get("/api/v1/cache/health")
            evict = await client.post("/api/v1/cache/evict-expired")

        assert health.status_code == 503
        assert evict.status_code == 503

    @pytest.mark.asyncio
    async def test_uninitialized_registry_returns_503(self):
        """Test a registry that was never initialized is rejected."""
        transport = httpx.ASGITransport(app=build_app(CacheRegistry()))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/v1/cache/stats")

        assert response.status_code == 503


class TestAppFactory:
    """Tests for the assembled application."""

    @pytest.mark.asyncio
    async def test_root_and_routes(self):
        """Test the factory mounts the monitoring router under the API prefix."""
        app = create_app()
        paths = {route.path for route in app.routes}
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "LLM Cache Service"
        assert "/api/v1/cache/health" in paths

    @pytest.mark.asyncio
    async def test_lifespan_manages_registry(self, tmp_path, monkeypatch):
        """Test the lifespan initializes the registry and shuts it down."""
        monkeypatch.setattr(app_settings, "durable_db_path", str(tmp_path / "lifespan.db"))
        monkeypatch.setattr(app_settings, "analytics_interval_seconds", 3600)
        app = FastAPI()

        async with lifespan(app):
            registry = app.state.cache_registry
            assert registry.is_initialized is True

        assert registry.is_initialized is False
