"""FastAPI dependency injection providers.

The scraping collaborators are long-lived: one key-value store, one shared
``httpx.AsyncClient``, one browser, one rotation manager.  They are built
once per application by :func:`build_services` (normally at startup),
stored on ``app.state.services`` and handed to routes through the
providers below.

Dependency hierarchy::

    get_services           — lazily builds the ScrapeServices bundle
    ├── get_inbound_limiter
    ├── get_page_fetcher
    └── get_crawl_engine
    get_client_key         — rate-limit key for the caller
    has_bypass_token       — True for trusted backend callers

Tests replace the leaf providers with ``app.dependency_overrides``.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass
from typing import Annotated

import httpx
from fastapi import Depends, FastAPI, Request

from snapscrape.config.settings import Settings, get_settings
from snapscrape.core.storage import KeyValueStore, get_key_value_store
from snapscrape.scraper.crawler import CrawlEngine
from snapscrape.scraper.llm_filter import LLMFilter
from snapscrape.scraper.playwright_fetcher import PlaywrightPageFetcher
from snapscrape.scraper.rate_limiter import FixedWindowRateLimiter
from snapscrape.scraper.rotation import RotationManager
from snapscrape.scraper.tweet_fetcher import TweetFetcher

_build_lock = asyncio.Lock()


@dataclass
class ScrapeServices:
    """Long-lived collaborators shared by all requests."""

    store: KeyValueStore
    http_client: httpx.AsyncClient
    fetcher: PlaywrightPageFetcher
    inbound_limiter: FixedWindowRateLimiter
    crawl_limiter: FixedWindowRateLimiter
    rotation: RotationManager
    engine: CrawlEngine

    async def aclose(self) -> None:
        await self.fetcher.aclose()
        await self.http_client.aclose()
        await self.store.aclose()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


async def build_services(settings: Settings) -> ScrapeServices:
    """Wire the scraping collaborators from ``settings``.

    The identity ledger is loaded here; a storage outage leaves it empty
    instead of failing start-up.
    """
    store = get_key_value_store(settings)
    ratelimit_store = store.scoped("ratelimit")
    http_client = httpx.AsyncClient(follow_redirects=True, timeout=30.0)

    fetcher = PlaywrightPageFetcher(
        ws_endpoint=settings.browser_ws_endpoint,
        launch_attempts=settings.browser_launch_attempts,
        navigation_timeout_seconds=settings.navigation_timeout_seconds,
    )
    inbound_limiter = FixedWindowRateLimiter(
        ratelimit_store,
        settings.inbound_rate_limit_requests,
        settings.inbound_rate_limit_window_ms,
        prefix="inbound",
    )
    crawl_limiter = FixedWindowRateLimiter(
        ratelimit_store,
        settings.crawl_rate_limit_requests,
        settings.crawl_rate_limit_window_ms,
        prefix="crawl",
    )
    rotation = await RotationManager.create(store.scoped("identity"))
    engine = CrawlEngine(
        fetcher,
        crawl_limiter,
        rotation,
        tweet_fetcher=TweetFetcher(
            http_client,
            api_url=settings.tweet_api_url,
            token=settings.tweet_api_token,
        ),
        llm_filter=LLMFilter(
            http_client,
            api_url=settings.llm_api_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
        ),
        delay_range_ms=(settings.crawl_delay_min_ms, settings.crawl_delay_max_ms),
    )
    return ScrapeServices(
        store=store,
        http_client=http_client,
        fetcher=fetcher,
        inbound_limiter=inbound_limiter,
        crawl_limiter=crawl_limiter,
        rotation=rotation,
        engine=engine,
    )


async def init_services(app: FastAPI) -> ScrapeServices:
    """Return ``app.state.services``, building it on first use."""
    services: ScrapeServices | None = getattr(app.state, "services", None)
    if services is not None:
        return services
    async with _build_lock:
        services = getattr(app.state, "services", None)
        if services is None:
            services = await build_services(get_settings())
            app.state.services = services
    return services


async def close_services(app: FastAPI) -> None:
    services: ScrapeServices | None = getattr(app.state, "services", None)
    if services is not None:
        await services.aclose()
        app.state.services = None


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


async def get_services(request: Request) -> ScrapeServices:
    return await init_services(request.app)


async def get_inbound_limiter(
    services: Annotated[ScrapeServices, Depends(get_services)],
) -> FixedWindowRateLimiter:
    return services.inbound_limiter


async def get_page_fetcher(
    services: Annotated[ScrapeServices, Depends(get_services)],
) -> PlaywrightPageFetcher:
    return services.fetcher


async def get_crawl_engine(
    services: Annotated[ScrapeServices, Depends(get_services)],
) -> CrawlEngine:
    return services.engine


def get_client_key(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """Return the caller's rate-limit key.

    The configured client IP header (set by the edge proxy) wins; otherwise
    the socket peer address is used.
    """
    forwarded = request.headers.get(settings.client_ip_header)
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def has_bypass_token(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> bool:
    """Return ``True`` when the request carries the backend bearer token."""
    expected = settings.backend_security_token
    if not expected:
        return False
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return False
    return secrets.compare_digest(token.strip(), expected)
