"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
All tunables and secrets are accessed exclusively through this module —
never call ``os.getenv`` directly elsewhere in the codebase.

Usage::

    from snapscrape.config.settings import get_settings

    settings = get_settings()
    redis_url = settings.redis_url
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service-wide configuration backed by environment variables and an optional .env file.

    Every field has a default so that the service starts with no environment
    at all (local development, tests).  Secrets (API keys, bypass tokens)
    should never be committed to version control.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Application behaviour
    # ------------------------------------------------------------------

    app_name: str = "SnapScrape"
    """Human-readable service name shown in the OpenAPI docs and help page."""

    debug: bool = False
    """Enable FastAPI debug mode and verbose error responses.  Never True in production."""

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    allowed_origins: list[str] = ["*"]
    """Origins permitted by the CORS middleware."""

    metrics_enabled: bool = True
    """Expose Prometheus metrics at ``GET /metrics``."""

    # ------------------------------------------------------------------
    # Durable key-value storage
    # ------------------------------------------------------------------

    storage_backend: Literal["redis", "memory"] = "redis"
    """Backend for rate windows and the identity health ledger.

    ``memory`` keeps state in-process only and is meant for local runs with
    no Redis available; state is lost on restart.
    """

    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL used when ``storage_backend`` is ``redis``."""

    storage_namespace: str = "snapscrape"
    """Prefix applied to every key written to the store."""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    inbound_rate_limit_requests: int = 5
    """Inbound requests admitted per client within one fixed window."""

    inbound_rate_limit_window_ms: int = 10_000
    """Length of the inbound fixed window in milliseconds."""

    crawl_rate_limit_requests: int = 10
    """Page fetches admitted per client within one crawl pacing window."""

    crawl_rate_limit_window_ms: int = 10_000
    """Length of the crawl pacing window in milliseconds."""

    client_ip_header: str = "cf-connecting-ip"
    """Request header carrying the originating client address.

    Falls back to the socket peer address when the header is absent.
    """

    backend_security_token: Optional[str] = None
    """Bearer token that bypasses inbound rate limiting.  ``None`` disables the bypass."""

    # ------------------------------------------------------------------
    # Crawling
    # ------------------------------------------------------------------

    crawl_max_pages: int = 5
    """Default page cap for ``crawlSubpages`` requests."""

    crawl_max_depth: int = 3
    """Default link depth cap for ``crawlSubpages`` requests."""

    crawl_delay_min_ms: int = 1000
    """Lower bound of the randomized pre-fetch delay."""

    crawl_delay_max_ms: int = 5000
    """Upper bound of the randomized pre-fetch delay."""

    # ------------------------------------------------------------------
    # Headless browser
    # ------------------------------------------------------------------

    browser_ws_endpoint: Optional[str] = None
    """CDP websocket endpoint of a remote browser service.

    When ``None`` a local headless Chromium is launched through Playwright.
    """

    browser_launch_attempts: int = 3
    """Attempts made to acquire a browser before giving up with HTTP 500."""

    navigation_timeout_seconds: int = 30
    """Navigation timeout handed to Playwright for every page load."""

    # ------------------------------------------------------------------
    # LLM content filter
    # ------------------------------------------------------------------

    llm_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    """OpenAI-compatible chat completions endpoint."""

    llm_api_key: Optional[str] = None
    """Bearer key for ``llm_api_url``.  When ``None`` the filter is a pass-through."""

    llm_model: str = "meta-llama/llama-3.1-8b-instruct"
    """Model identifier sent with every filter request."""

    llm_timeout_seconds: float = 60.0
    """HTTP timeout for a single filter request."""

    # ------------------------------------------------------------------
    # Twitter / X
    # ------------------------------------------------------------------

    tweet_api_url: str = "https://cdn.syndication.twimg.com/tweet-result"
    """Public syndication endpoint used for tweet lookups."""

    tweet_api_token: str = "4c2mmul6mnh"
    """Static token parameter expected by the syndication endpoint."""

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.crawl_delay_min_ms > self.crawl_delay_max_ms:
            raise ValueError("crawl_delay_min_ms must not exceed crawl_delay_max_ms")
        if self.browser_launch_attempts < 1:
            raise ValueError("browser_launch_attempts must be at least 1")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    Uses ``functools.lru_cache`` so that Pydantic Settings reads the environment
    and .env file exactly once per process lifetime.  In tests, call
    ``get_settings.cache_clear()`` after patching environment variables.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
