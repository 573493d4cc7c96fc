from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "repoweaver"
    environment: str = "dev"
    log_level: str = "INFO"
    api_key_header: str = "X-API-Key"
    api_key: SecretStr | None = None
    webhook_secret: SecretStr | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    job_max_attempts: int = 3
    job_retry_base_seconds: int = 30
    job_retry_max_seconds: int = 3600
    debounce_delay_seconds: int = 300
    debounce_window_seconds: int = 300
    github_api_url: str = "https://api.github.com"
    github_token: SecretStr | None = None
    github_timeout_seconds: float = 30.0
    github_max_retries: int = 3
    github_retry_base_seconds: float = 1.0
    template_fetch_mode: str = "api"
    worker_concurrency: int = 2
    worker_poll_interval_seconds: float = 5.0
    worker_max_backoff_seconds: float = 60.0
    worker_housekeeping_interval_seconds: float = 3600.0
    worker_stale_running_after_seconds: int = 3600
    otel_enabled: bool = True
    otel_service_name: str = "repoweaver"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="RW_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
