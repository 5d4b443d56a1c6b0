"""Application configuration pulled from environment variables via pydantic."""
import os
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the parcel-insight service."""
    model_config = SettingsConfigDict(env_prefix="PARCEL_", extra="ignore")

    # POI source
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    overpass_timeout_seconds: float = 30.0
    overpass_query_timeout: int = 25
    overpass_attempts: int = 3
    user_agent: str = "parcel-insight/0.1 (property analysis)"

    # Cache
    cache_backend: str = "memory"  # options: memory, redis
    cache_redis_url: str | None = None
    cache_key_prefix: str = "parcel:"
    cache_default_ttl_seconds: int = 300
    cache_sweep_interval_seconds: float = 600.0
    amenities_ttl_seconds: int = 600
    infrastructure_ttl_seconds: int = 1800
    market_prices_ttl_seconds: int = 3600

    # Listing sources
    listing_timeout_seconds: float = 10.0
    listing_attempts: int = 2
    listing_sources: list[str] = Field(default_factory=lambda: ["batdongsan", "chotot"])

    # Prefetch scheduler
    prefetch_enabled: bool = True
    prefetch_process_interval_seconds: float = 30.0
    prefetch_cleanup_interval_seconds: float = 300.0
    prefetch_max_queue: int = 50
    prefetch_batch_size: int = 5
    prefetch_max_task_age_seconds: float = 600.0

    # Pipeline
    pipeline_workers: int = 4

    # Text generation
    narration_enabled: bool = False
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "phi4-mini"
    ollama_timeout_seconds: float = 60.0
    ollama_options: dict = Field(
        default_factory=lambda: {
            "temperature": float(os.getenv("PARCEL_OLLAMA_TEMPERATURE", 0.3)),
            "top_p": float(os.getenv("PARCEL_OLLAMA_TOP_P", 0.9)),
        }
    )

    @field_validator("ollama_base_url", "overpass_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("cache_backend", mode="after")
    @classmethod
    def normalize_backend(cls, v: str) -> str:
        """Lower-case the backend name so env values are case-insensitive."""
        return str(v).strip().lower()


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
