"""Route tests for ``GET /`` and the operational endpoints.

The app runs in-process through ``httpx.ASGITransport``, which does not
fire startup events, so the scraping collaborators are replaced with
``app.dependency_overrides``: a real FixedWindowRateLimiter on an
in-memory store, a mocked browser, and a mocked CrawlEngine.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from snapscrape.api.dependencies import (
    ScrapeServices,
    get_crawl_engine,
    get_inbound_limiter,
    get_page_fetcher,
    get_services,
)
from snapscrape.api.main import app
from snapscrape.core.exceptions import (
    RenderError,
    RenderRetriesExhaustedError,
    ResourceUnavailableError,
)
from snapscrape.core.storage import MemoryKeyValueStore
from snapscrape.scraper.crawler import CrawlEngine, CrawlResult, CrawledPage, ScrapeOptions
from snapscrape.scraper.rate_limiter import FixedWindowRateLimiter

TARGET = "https://example.com/article"
BACKEND_TOKEN = "test-backend-token"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def browser() -> MagicMock:
    fetcher = MagicMock()
    fetcher.ensure_browser = AsyncMock(return_value=None)
    fetcher.is_connected = False
    return fetcher


@pytest.fixture
def engine() -> MagicMock:
    mock = MagicMock(spec=CrawlEngine)
    mock.extract_single_page = AsyncMock(return_value="# Article\n\nBody text.")
    mock.crawl_and_extract = AsyncMock(
        return_value=CrawlResult(
            pages=[
                CrawledPage(url="https://example.com/", content="# Home"),
                CrawledPage(url="https://example.com/a", content="# A"),
            ]
        )
    )
    return mock


@pytest.fixture
def inbound_limiter(memory_store, clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(memory_store, 5, 10_000, prefix="inbound", clock=clock)


@pytest_asyncio.fixture
async def client(
    browser: MagicMock,
    engine: MagicMock,
    inbound_limiter: FixedWindowRateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    services = MagicMock(spec=ScrapeServices)
    services.store = MemoryKeyValueStore()
    services.fetcher = browser

    app.dependency_overrides[get_inbound_limiter] = lambda: inbound_limiter
    app.dependency_overrides[get_page_fetcher] = lambda: browser
    app.dependency_overrides[get_crawl_engine] = lambda: engine
    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------


class TestInput:
    async def test_missing_url_returns_help_page(self, client: AsyncClient, engine) -> None:
        response = await client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "SnapScrape" in response.text
        assert "crawlSubpages" in response.text
        engine.extract_single_page.assert_not_awaited()

    @pytest.mark.parametrize("url", ["example.com", "ftp://example.com/x", "https://a b.com"])
    async def test_invalid_url_returns_400(self, client: AsyncClient, url: str) -> None:
        response = await client.get("/", params={"url": url})

        assert response.status_code == 400
        assert response.text.startswith("Invalid URL provided")

    async def test_max_pages_out_of_range_is_rejected(self, client: AsyncClient) -> None:
        response = await client.get(
            "/", params={"url": TARGET, "crawlSubpages": "true", "maxPages": "0"}
        )

        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Inbound rate limiting
# ---------------------------------------------------------------------------


class TestInboundRateLimit:
    async def test_sixth_rapid_request_gets_429(self, client: AsyncClient) -> None:
        statuses = [
            (await client.get("/", params={"url": TARGET})).status_code for _ in range(6)
        ]

        assert statuses == [200, 200, 200, 200, 200, 429]

    async def test_429_body_is_plain_text(self, client: AsyncClient) -> None:
        for _ in range(5):
            await client.get("/", params={"url": TARGET})

        response = await client.get("/", params={"url": TARGET})

        assert response.status_code == 429
        assert response.text == "Rate limit exceeded"

    async def test_client_ip_header_keys_the_limit(self, client: AsyncClient, memory_store) -> None:
        for _ in range(5):
            await client.get("/", params={"url": TARGET}, headers={"cf-connecting-ip": "192.0.2.1"})

        other = await client.get("/", params={"url": TARGET}, headers={"cf-connecting-ip": "192.0.2.2"})

        assert other.status_code == 200
        assert memory_store.data["inbound:192.0.2.1:count"] == "5"

    async def test_backend_token_bypasses_limit(self, client: AsyncClient) -> None:
        headers = {"Authorization": f"Bearer {BACKEND_TOKEN}"}

        statuses = [
            (await client.get("/", params={"url": TARGET}, headers=headers)).status_code
            for _ in range(8)
        ]

        assert statuses == [200] * 8

    async def test_wrong_token_is_limited(self, client: AsyncClient) -> None:
        headers = {"Authorization": "Bearer not-the-token"}

        statuses = [
            (await client.get("/", params={"url": TARGET}, headers=headers)).status_code
            for _ in range(6)
        ]

        assert statuses[-1] == 429

    async def test_invalid_url_does_not_consume_quota(self, client: AsyncClient, memory_store) -> None:
        await client.get("/", params={"url": "nope"})

        assert not any(key.startswith("inbound:") for key in memory_store.data)


# ---------------------------------------------------------------------------
# Dispatch and content negotiation
# ---------------------------------------------------------------------------


class TestSinglePage:
    async def test_plain_text_by_default(self, client: AsyncClient, engine, browser) -> None:
        response = await client.get("/", params={"url": TARGET})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "# Article\n\nBody text."
        browser.ensure_browser.assert_awaited_once()
        engine.extract_single_page.assert_awaited_once_with(TARGET, ScrapeOptions())

    async def test_json_when_accepted(self, client: AsyncClient) -> None:
        response = await client.get(
            "/", params={"url": TARGET}, headers={"Accept": "application/json"}
        )

        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == "# Article\n\nBody text."

    async def test_flags_are_forwarded(self, client: AsyncClient, engine) -> None:
        await client.get(
            "/",
            params={"url": TARGET, "enableDetailedResponse": "true", "applyLLM": "TRUE"},
        )

        engine.extract_single_page.assert_awaited_once_with(
            TARGET, ScrapeOptions(detailed=True, apply_llm=True)
        )

    async def test_non_true_flags_are_false(self, client: AsyncClient, engine) -> None:
        await client.get("/", params={"url": TARGET, "enableDetailedResponse": "yes"})

        engine.extract_single_page.assert_awaited_once_with(TARGET, ScrapeOptions())

    async def test_twitter_url_skips_browser(self, client: AsyncClient, engine, browser) -> None:
        engine.extract_single_page.return_value = "Tweet from @jack"

        response = await client.get("/", params={"url": "https://x.com/jack/status/20"})

        assert response.text == "Tweet from @jack"
        browser.ensure_browser.assert_not_awaited()

    async def test_browser_unavailable_returns_500(self, client: AsyncClient, browser) -> None:
        browser.ensure_browser.side_effect = ResourceUnavailableError(
            "Could not start a browser after 3 attempts", attempts=3
        )

        response = await client.get("/", params={"url": TARGET})

        assert response.status_code == 500
        assert "Could not start a browser" in response.text

    async def test_render_failure_returns_502(self, client: AsyncClient, engine) -> None:
        engine.extract_single_page.side_effect = RenderRetriesExhaustedError(TARGET, 3)

        response = await client.get("/", params={"url": TARGET})

        assert response.status_code == 502

    async def test_browser_failure_returns_502_with_request_id(
        self, client: AsyncClient, engine
    ) -> None:
        engine.extract_single_page.side_effect = RenderError(
            "Failed to render https://nowhere.invalid/: net::ERR_NAME_NOT_RESOLVED"
        )

        response = await client.get("/", params={"url": "https://nowhere.invalid/"})

        assert response.status_code == 502
        assert "ERR_NAME_NOT_RESOLVED" in response.text
        assert response.headers.get("X-Request-ID")

    async def test_request_id_header(self, client: AsyncClient) -> None:
        response = await client.get("/", params={"url": TARGET})

        assert response.headers.get("X-Request-ID")


class TestCrawl:
    async def test_crawl_uses_settings_defaults(self, client: AsyncClient, engine) -> None:
        await client.get(
            "/",
            params={"url": TARGET, "crawlSubpages": "true"},
            headers={"cf-connecting-ip": "192.0.2.9"},
        )

        engine.crawl_and_extract.assert_awaited_once_with(
            TARGET, ScrapeOptions(), request_key="192.0.2.9", max_pages=5, max_depth=3
        )

    async def test_crawl_limits_from_query(self, client: AsyncClient, engine) -> None:
        await client.get(
            "/", params={"url": TARGET, "crawlSubpages": "true", "maxPages": "2", "maxDepth": "0"}
        )

        kwargs = engine.crawl_and_extract.await_args.kwargs
        assert kwargs["max_pages"] == 2
        assert kwargs["max_depth"] == 0

    async def test_tweet_crawl_skips_browser(self, client: AsyncClient, engine, browser) -> None:
        await client.get(
            "/", params={"url": "https://x.com/jack/status/20", "crawlSubpages": "true"}
        )

        engine.crawl_and_extract.assert_awaited_once()
        browser.ensure_browser.assert_not_awaited()

    async def test_crawl_json_list(self, client: AsyncClient) -> None:
        response = await client.get(
            "/",
            params={"url": TARGET, "crawlSubpages": "true"},
            headers={"Accept": "application/json"},
        )

        assert response.json() == [
            {"url": "https://example.com/", "content": "# Home"},
            {"url": "https://example.com/a", "content": "# A"},
        ]

    async def test_crawl_plain_text_is_json_encoded(self, client: AsyncClient) -> None:
        response = await client.get("/", params={"url": TARGET, "crawlSubpages": "true"})

        assert response.headers["content-type"].startswith("text/plain")
        assert response.text.startswith('[{"url": "https://example.com/"')


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


class TestOperationalEndpoints:
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.json() == {"status": "ok"}

    async def test_dependency_health(self, client: AsyncClient) -> None:
        response = await client.get("/api/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["storage"] == "ok"
        assert body["browser"] == "not_started"

    async def test_metrics_exposed(self, client: AsyncClient) -> None:
        await client.get("/", params={"url": TARGET})

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "scrape_requests_total" in response.text
        assert "rate_limit_decisions_total" in response.text
