"""Configuration settings for the cache service."""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Cache service settings.

    Every numeric limit is validated on load so that a bad threshold or TTL
    fails at startup rather than on the request path.
    """

    app_name: str = "LLM Cache Service"
    app_version: str = "0.1.0"
    api_prefix: str = "/api/v1"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # L1: in-process LRU store
    l1_max_entries: int = Field(default=1000, gt=0)
    l1_max_memory_bytes: int = Field(default=100 * 1024 * 1024, gt=0)  # 100MB
    l1_default_ttl: int = Field(default=3600, gt=0)  # 1 hour
    l1_max_value_bytes: Optional[int] = Field(default=None, gt=0)  # None = max memory
    analytics_max_events: int = Field(default=10000, gt=0)

    # L3: durable store
    durable_enabled: bool = True
    durable_db_path: str = "./cache_data/cache.db"
    durable_default_ttl: int = Field(default=86400, gt=0)  # 24 hours
    durable_timeout_seconds: float = Field(default=2.0, gt=0)

    # Tier policy
    promote_on_hit: bool = True
    promote_threshold: int = Field(default=1, ge=1)  # 1 = promote on first L3 hit
    demote_on_expire: bool = False
    demote_age_ms: int = Field(default=24 * 3600 * 1000, gt=0)

    # Response similarity matching
    semantic_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    fuzzy_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    enable_fuzzy_match: bool = True
    max_candidates: int = Field(default=10, gt=0)
    candidate_pool_size: int = Field(default=1000, gt=0)

    # Response TTL classes
    response_ttl_time_sensitive: int = Field(default=6 * 3600, gt=0)  # 6 hours
    response_ttl_technical: int = Field(default=3 * 24 * 3600, gt=0)  # 3 days
    response_ttl_factual: int = Field(default=7 * 24 * 3600, gt=0)  # 7 days
    response_ttl_default: int = Field(default=24 * 3600, gt=0)  # 24 hours

    # Embedding cache
    embedding_ttl: int = Field(default=7 * 24 * 3600, gt=0)  # 7 days
    embedding_max_text_length: int = Field(default=50000, gt=0)
    embedding_normalize: bool = True

    # Analytics
    analytics_enabled: bool = True
    analytics_max_snapshots: int = Field(default=1000, gt=0)
    analytics_interval_seconds: float = Field(default=60.0, gt=0)
    target_hit_rate: float = Field(default=0.7, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_limits(self) -> "Settings":
        if (
            self.l1_max_value_bytes is not None
            and self.l1_max_value_bytes > self.l1_max_memory_bytes
        ):
            raise ValueError("l1_max_value_bytes cannot exceed l1_max_memory_bytes")
        return self

    class Config:
        env_file = ".env"
        env_prefix = "LLMCACHE_"
        case_sensitive = False
        extra = "ignore"


# Create settings instance
settings = Settings()
