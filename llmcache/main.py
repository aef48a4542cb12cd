"""Main FastAPI application for the cache service."""

from llmcache.core.config import settings
from llmcache.core.app_factory import create_app

app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "llmcache.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
