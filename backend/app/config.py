"""Application configuration using pydantic-settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase (optional - request/result persistence)
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # PageSpeed Insights (audit provider)
    pagespeed_api_key: Optional[str] = None
    pagespeed_strategy: str = "mobile"
    pagespeed_max_calls: int = 100
    pagespeed_window_seconds: float = 60.0

    # Politeness towards audited sites during discovery
    site_rate_limit_per_second: float = 2.0
    user_agent: str = "Mozilla/5.0 (compatible; SiteAuditBot/1.0)"

    # Batching / scheduling
    audit_batch_size: int = 25
    audit_max_concurrency: int = 10
    max_concurrent_requests: int = 2
    audit_max_pages: int = 50

    # Timeouts (seconds)
    page_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 1800.0
    discovery_strategy_timeout_seconds: float = 20.0

    # Retries for transient page failures
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0

    # Memory hygiene
    memory_limit_mb: float = 512.0
    memory_cleanup_interval: int = 5  # batches

    # Retention / caching (seconds)
    result_retention_seconds: float = 3600.0
    discovery_cache_ttl_seconds: float = 3600.0

    # CRAWL4AI fallback discovery
    crawler_max_pages: int = 20
    crawler_max_depth: int = 2

    # CORS
    cors_origins: str = "http://localhost:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @property
    def pagespeed_min_delay_seconds(self) -> float:
        """Keyless PSI calls get a small spacing on top of the window."""
        return 0.0 if self.pagespeed_api_key else 0.1

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings for testing."""
    global _settings
    _settings = None
