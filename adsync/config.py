"""ADSYNC — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"

    # ── Google Ads API ──
    google_ads_api_version: str = "v17"
    google_ads_base_url: str = "https://googleads.googleapis.com"
    google_ads_developer_token: str = ""
    google_ads_login_customer_id: str = ""

    http_timeout_seconds: float = 30.0

    # ── Database ──
    database_url: str = ""

    # ── Cache ──
    cache_freshness_hours: float = 3.0
    stale_while_revalidate: bool = True
    summary_retention_months: int = 12
    summary_purge_enabled: bool = False

    # ── Platform fetch ──
    platform_fetch_timeout_seconds: float = 60.0
    retry_rate_limit_attempts: int = 3
    retry_transient_attempts: int = 2  # first try + one retry
    retry_base_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 30.0

    # ── Tenants ──
    # JSON list of tenant credential objects, owned by the credential manager
    tenant_credentials_json: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    refresh_interval_hours: int = 3
    recollection_hour: int = 2  # Daily re-collection at 2 AM UTC

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adsync.db"
        return "sqlite:///./adsync.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
