"""Lifecycle management for applications that host the cache registry."""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from llmcache.core.config import settings
from llmcache.core.logging import get_logger, setup_logging
from llmcache.core.registry import CacheRegistry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the cache registry on startup and flush it on shutdown."""
    setup_logging(settings.log_level)
    logger.info("Starting cache service...")

    registry = CacheRegistry()

    try:
        await registry.initialize(settings)

        # Store registry in app state for route access
        app.state.cache_registry = registry

        logger.info("Cache service started successfully")

    except Exception as e:
        logger.error(f"Failed to initialize cache registry: {e}")
        raise

    yield

    logger.info("Shutting down cache service...")
    await registry.shutdown()
    logger.info("Cache service shut down")
