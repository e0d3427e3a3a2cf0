import logging
import os
from dataclasses import dataclass
from functools import lru_cache

import redis
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    # Redis (durable cache tier)
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    redis_password: str | None = os.getenv("REDIS_PASSWORD")

    # Supabase (remote data store)
    supabase_url: str = os.getenv("SUPABASE_URL", "http://localhost:54321")
    supabase_anon_key: str = os.getenv("SUPABASE_ANON_KEY", "")
    supabase_timeout: float = float(os.getenv("SUPABASE_TIMEOUT", "10"))

    # Google Books (search proxy upstream)
    google_books_api_url: str = os.getenv(
        "GOOGLE_BOOKS_API_URL", "https://www.googleapis.com/books/v1/volumes"
    )
    google_books_api_key: str | None = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))
    google_books_max_results: int = int(os.getenv("GOOGLE_BOOKS_MAX_RESULTS", "40"))

    # Tiered cache
    cache_version: str = os.getenv("CACHE_VERSION", "1.0.0")
    cache_prefix: str = os.getenv("CACHE_PREFIX", "librovision_")
    cache_max_age: float = float(os.getenv("CACHE_MAX_AGE", "300"))  # 5 minutes
    session_cache_max_bytes: int = int(os.getenv("SESSION_CACHE_MAX_BYTES", "5242880"))

    # Query layer
    query_stale_time: float = float(os.getenv("QUERY_STALE_TIME", "300"))
    query_gc_time: float = float(os.getenv("QUERY_GC_TIME", "600"))
    query_retries: int = int(os.getenv("QUERY_RETRIES", "3"))
    query_retry_base_delay: float = float(os.getenv("QUERY_RETRY_BASE_DELAY", "1.0"))
    query_retry_max_delay: float = float(os.getenv("QUERY_RETRY_MAX_DELAY", "30.0"))
    mutation_retries: int = int(os.getenv("MUTATION_RETRIES", "1"))

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_reload: bool = os.getenv("API_RELOAD", "true").lower() == "true"

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if not 1 <= self.google_books_max_results <= 40:
            raise ValueError("GOOGLE_BOOKS_MAX_RESULTS must be between 1 and 40")

        if self.query_stale_time > self.query_gc_time:
            raise ValueError("QUERY_STALE_TIME must not exceed QUERY_GC_TIME")

        if self.query_retries < 0 or self.mutation_retries < 0:
            raise ValueError("Retry counts must be non-negative")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


def get_redis_client() -> redis.Redis:
    """Create a Redis client instance."""
    return redis.from_url(
        settings.redis_url,
        password=settings.redis_password,
        decode_responses=True,
        socket_connect_timeout=1,
        socket_timeout=1,
    )


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the service."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
