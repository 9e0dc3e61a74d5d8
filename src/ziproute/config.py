from __future__ import annotations

from pathlib import Path
from functools import lru_cache

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


ROOT_DIR = Path(__file__).resolve().parent.parent.parent

# In Docker, the package is installed to site-packages but config lives at /app/config.
# Fall back to the source-tree-relative path for local development.
_docker_config = Path("/app/config")
CONFIG_DIR = _docker_config if _docker_config.exists() else ROOT_DIR / "config"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Cache
    redis_url: str = ""
    cache_ttl_seconds: int = 86400
    memory_cache_max_entries: int = 10000
    single_flight: bool = True

    # Routing
    route_batch_size: int = 10
    route_batch_pause_s: float = 0.1
    fast_route_ms: float = 100.0
    warm_up_on_startup: bool = True

    # Bulk operations
    bulk_batch_size: int = 25
    bulk_batch_pause_s: float = 1.0
    max_bulk_postal_codes: int = 500
    max_bulk_cities: int = 50
    operation_timeout_s: float = 600.0

    # Coverage
    coverage_improve_threshold: float = 90.0
    coverage_complete_threshold: float = 95.0
    coverage_cooldown_s: float = 3600.0
    improve_pause_every: int = 10
    improve_pause_s: float = 0.5

    # Operation queue
    queue_capacity: int = 50
    queue_sub_batch: int = 10
    queue_pause_s: float = 0.1

    # Monitoring
    health_check_interval_s: float = 900.0
    trend_interval_s: float = 300.0
    trend_retention_hours: int = 168

    # Content
    min_content_count: int = 5
    default_content_count: int = 15

    # Integrations
    slack_webhook_url: str = ""
    analytics_url: str = ""

    # Database
    database_url: str = "sqlite+aiosqlite:///data/ziproute.db"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    def load_yaml_config(self) -> dict:
        settings_path = CONFIG_DIR / "settings.yaml"
        if settings_path.exists():
            with open(settings_path) as f:
                return yaml.safe_load(f) or {}
        return {}


@lru_cache
def get_settings() -> Settings:
    return Settings()
