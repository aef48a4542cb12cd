"""Application factory."""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from typing import Dict, Any

from llmcache.core.config import settings
from llmcache.core.logging import setup_logging, get_logger
from llmcache.core.lifecycle import lifespan
from llmcache.api import cache_health

# Set up logging (should be done early)
setup_logging(settings.log_level)
logger = get_logger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "message": "An unexpected error occurred"},
        )

    app.include_router(cache_health.router, prefix=settings.api_prefix, tags=["cache"])

    @app.get("/")
    async def root() -> Dict[str, Any]:
        """Root endpoint."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
        }

    return app
