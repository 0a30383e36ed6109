"""Application configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the windline service and worker."""
    model_config = SettingsConfigDict(env_prefix="WINDLINE_", extra="ignore")

    # weather provider
    weather_provider: str = "open_meteo"  # options: open_meteo
    open_meteo_url: str = "https://api.open-meteo.com/v1/forecast"
    http_timeout_seconds: float = 10.0
    http_cache_seconds: int = 3600
    http_cache_name: str = ".cache"
    max_forecast_days: int = 16
    forecast_cache_ttl_seconds: int = 3600

    # persistence
    storage_backend: str = "memory"  # options: memory, sql
    database_url: str = "sqlite:///./windline.db"

    # job queue
    queue_backend: str = "memory"  # options: memory, rq
    redis_url: str | None = None
    queue_name: str = "windline"
    queue_eager: bool = True
    weather_fetch_attempts: int = 3
    weather_fetch_backoff_ms: int = 2000
    image_render_attempts: int = 2
    image_render_backoff_ms: int = 1000
    job_timeout_seconds: int = 120

    # route processing
    storage_sampling_distance_m: float = 2000
    storage_precision: int = 5
    render_tolerance_m: float = 7.0
    render_max_points: int = 300
    weather_sampling_distance_m: float = 10_000

    # collaborators and surface
    map_renderer: str | None = None  # dotted path "package.module:factory"
    api_key: str | None = None
    log_level: str = "INFO"

    @field_validator("open_meteo_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("weather_provider", "storage_backend", "queue_backend", mode="after")
    @classmethod
    def normalize_backend_name(cls, v: str) -> str:
        """Backend names are matched case-insensitively; dashes equal underscores."""
        return str(v).strip().lower().replace("-", "_")

    @field_validator("map_renderer", "redis_url", "api_key", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
