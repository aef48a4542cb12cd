"""Read-only cache monitoring endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from llmcache.core.errors import ServiceNotInitializedError
from llmcache.core.logging import get_logger
from llmcache.core.registry import CacheRegistry

logger = get_logger(__name__)
router = APIRouter(tags=["cache"])


def get_registry(request: Request) -> CacheRegistry:
    """Get the cache registry from app state."""
    registry = getattr(request.app.state, "cache_registry", None)
    if registry is None or not registry.is_initialized:
        raise HTTPException(status_code=503, detail="Cache registry is not initialized")
    return registry


@router.get("/cache/health")
async def cache_health(registry: CacheRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Health classification, memory pressure and recommendations."""
    try:
        return await registry.health()
    except ServiceNotInitializedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/cache/stats")
async def cache_stats(registry: CacheRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Per-cache, per-tier statistics."""
    try:
        return {
            "caches": await registry.stats_by_cache(),
            "total": (await registry.aggregate_stats()).to_dict(),
        }
    except ServiceNotInitializedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/cache/report", response_class=PlainTextResponse)
async def cache_report(registry: CacheRegistry = Depends(get_registry)) -> str:
    """Plain-text performance report."""
    try:
        return await registry.report()
    except ServiceNotInitializedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/cache/evict-expired")
async def evict_expired(registry: CacheRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Remove expired entries from every tier."""
    try:
        evicted = await registry.evict_expired()
    except ServiceNotInitializedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(f"Evicted expired cache entries: {evicted}")
    return {
        "status": "success",
        "evicted": evicted,
        "total_evicted": sum(evicted.values()),
    }
