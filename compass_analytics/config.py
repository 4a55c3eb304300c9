"""Application configuration loaded from environment variables.

These are process settings.  Analysis tunables (thresholds, windows, cache
TTL at runtime) live in AnalysisConfiguration behind a ConfigurationHandle;
``cache_ttl_seconds`` and ``cache_max_size`` only seed its initial values.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "compass-analytics"
    log_level: str = "INFO"

    # Initial cache section of the analysis configuration
    cache_ttl_seconds: float = 600.0
    cache_max_size: int = 500
    config_preset: str = "balanced"

    # Background computation
    background_enabled: bool = True
    worker_max_workers: int = 1
    dispatch_timeout_seconds: float = 30.0

    # Progressive charts
    stage_delay_seconds: float = 0.05
    progress_max_retained: int = 256

    model_config = {"env_prefix": "COMPASS_"}


settings = Settings()
