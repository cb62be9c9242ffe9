"""
Centralized settings management using pydantic-settings.

All environment variables and configuration values are defined here.
Use get_settings() to access the singleton settings instance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Optional environment variables:
        - STORE_BACKEND: "memory" (default) or "supabase"
        - SUPABASE_URL / SUPABASE_SERVICE_KEY: required when STORE_BACKEND=supabase
        - HOST / PORT: Server binding (default: 0.0.0.0:8080)
        - ENVIRONMENT: Environment name (development, staging, production)
        - RECONCILE_INTERVAL_SECONDS: Period of the batch count reconciler (0 = off)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=1, description="Number of uvicorn workers")

    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ==========================================================================
    # Document Store
    # ==========================================================================
    store_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        description="Backing document store (memory for dev/tests, supabase for production)"
    )
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service role key")
    supabase_schema: str = Field(default="public", description="Postgres schema watched by Realtime")
    supabase_batch_rpc: str = Field(
        default="apply_document_batch",
        description="Postgres function applying a write batch in one transaction"
    )

    products_collection: str = Field(default="products", description="Catalog items collection")
    categories_collection: str = Field(default="categories", description="Categories collection")

    @model_validator(mode="after")
    def validate_store_backend(self):
        if self.store_backend == "supabase" and not (self.supabase_url and self.supabase_service_key):
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required when STORE_BACKEND=supabase")
        return self

    # ==========================================================================
    # Search
    # ==========================================================================
    search_default_limit: Literal[10, 20, 50] = Field(default=20, description="Default page size")
    search_debounce_ms: int = Field(
        default=300, ge=0,
        description="Delay between a search-state change and the debounced search"
    )
    facet_scan_limit: int = Field(
        default=1000, ge=1,
        description="Maximum documents scanned when computing facet counts"
    )
    suggestion_scan_limit: int = Field(
        default=200, ge=1,
        description="Maximum documents scanned when building search suggestions"
    )

    # ==========================================================================
    # Category Counts
    # ==========================================================================
    realtime_count_sync_enabled: bool = Field(
        default=True,
        description="Keep category counts updated from the live product subscription"
    )
    reconcile_interval_seconds: int = Field(
        default=0, ge=0,
        description="Run the batch category count reconciler every N seconds (0 = on demand only)"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure only one instance is created.
    Settings are loaded from environment variables and .env file.

    Raises:
        ValidationError: If the environment holds an invalid configuration
    """
    env_file = Path(__file__).parent.parent.parent / ".env"
    if env_file.exists():
        os.environ.setdefault("ENV_FILE", str(env_file))

    return Settings(_env_file=env_file if env_file.exists() else None)


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a settings instance for testing with optional overrides.

    This bypasses the cache to allow different settings in tests.
    """
    test_defaults = {
        "environment": "testing",
        "debug": True,
        "store_backend": "memory",
        "realtime_count_sync_enabled": False,
        "search_debounce_ms": 0,
    }
    test_defaults.update(overrides)

    return Settings(**test_defaults)
