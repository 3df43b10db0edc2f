"""
Configuration for the for-you API.

Values come from the process environment and an optional `.env` file at the
repository root. Everything tunable about ranking depth, retrieval fan-out and
profile storage lives on `Settings`; callers read it through get_settings().
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


ENV_FILE = Path(__file__).resolve().parents[2] / ".env"

PROFILE_BACKENDS = ("auto", "memory", "redis")


class Settings(BaseSettings):
    """
    Runtime settings for the feed and reel services.

    Commonly set:
        - ENVIRONMENT: development | staging | production
        - PROFILE_BACKEND: auto | memory | redis
        - REDIS_ENABLED / REDIS_URL: let the auto backend reach Redis
        - CATALOG_PATH: JSON catalog for the in-memory candidate source
        - DEBUG: ranking breakdowns in responses and logs
        - CORS_ORIGINS: comma-separated storefront origins
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Runtime
    # ==========================================================================
    environment: str = Field(default="development", description="Deployment stage")
    debug: bool = Field(default=False, description="Attach ranking breakdowns to pages and logs")

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() in {"dev", "development", "local"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}

    log_level: str = Field(default="INFO", description="Minimum log level")
    json_logs: bool = Field(default=False, description="JSON log lines instead of colored console")

    # ==========================================================================
    # HTTP
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Bind address for uvicorn")
    port: int = Field(default=8080, description="Bind port for uvicorn")

    # Storefront origins allowed to call the API from the browser
    cors_origins: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:9292"],
        description="Comma-separated in the environment",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    # ==========================================================================
    # Profile Storage
    # ==========================================================================
    profile_backend: str = Field(default="auto", description="Profile store: auto, memory or redis")
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")
    redis_enabled: bool = Field(default=False, description="Allow the auto backend to use Redis")
    profile_ttl_seconds: Optional[int] = Field(
        default=None,
        description="Expire stored profiles after this many seconds (None = never)"
    )
    profile_max_bytes: int = Field(default=48 * 1024, description="Serialized profile byte budget")
    half_life_days: float = Field(default=21.0, description="Signal decay half-life in days")

    @field_validator("profile_backend", mode="before")
    @classmethod
    def parse_profile_backend(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in PROFILE_BACKENDS:
                raise ValueError(f"profile_backend must be one of: {', '.join(PROFILE_BACKENDS)}")
        return v

    # ==========================================================================
    # Feed / Reel
    # ==========================================================================
    feed_page_size: int = Field(default=40, description="Default feed page size")
    feed_pool_size: int = Field(default=200, description="Candidate pool size for the feed walk")
    reel_page_size: int = Field(default=14, description="Default reel page size (clamped 8-24)")

    feed_top_window: int = Field(default=12, description="Feed positions under the per-vendor cap")
    feed_top_vendor_cap: int = Field(default=3, description="Max items per vendor in the top window")
    reel_early_window: int = Field(default=10, description="Reel positions under the category guard")

    # ==========================================================================
    # Candidate Sources
    # ==========================================================================
    source_timeout_seconds: float = Field(
        default=8.0,
        description="Per-source timeout during retrieval fan-out (seconds)"
    )
    fanout_max_workers: int = Field(default=4, description="Thread pool size for retrieval fan-out")
    catalog_path: Optional[str] = Field(
        default=None,
        description="JSON catalog file backing the in-memory candidate source"
    )

    @property
    def effective_profile_backend(self) -> str:
        """'auto' only reaches Redis when it is enabled and a URL is set."""
        if self.profile_backend == "auto" and not (self.redis_enabled and self.redis_url):
            return "memory"
        return self.profile_backend


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once. A missing `.env` is not an error."""
    return Settings()


def get_settings_for_testing(**overrides) -> Settings:
    """
    Uncached settings for tests: no `.env`, memory profile store, debug on.

    Keyword arguments override any field.
    """
    values = {"environment": "testing", "debug": True, "profile_backend": "memory", **overrides}
    return Settings(_env_file=None, **values)
