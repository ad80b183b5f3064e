"""Unit tests for CrawlEngine.

The browser is replaced by ``FakeFetcher``, which serves a fixed page graph;
rate limiting and rotation use the real classes on an in-memory store;
the pacing sleep is an AsyncMock.

Tests cover:
- Breadth-first order, the page cap, and the depth cap
- Off-host and subdomain links are never followed
- A normalized URL is fetched at most once per crawl
- Crawl-limiter denials are recorded as skipped and not retried
- Errors abort the loop with partial results
- Post-crawl rotation receives the aggregate outcome
- Scheduled rotation and pacing run inside each admitted fetch
- Twitter/X URLs bypass the browser in both modes
- The LLM filter is applied on request and failures keep raw content
"""

from __future__ import annotations

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from snapscrape.core.exceptions import LLMFilterError, RenderRetriesExhaustedError
from snapscrape.scraper.crawler import CrawlEngine, CrawlResult, CrawledPage, ScrapeOptions
from snapscrape.scraper.identity import Identity
from snapscrape.scraper.llm_filter import LLMFilter
from snapscrape.scraper.playwright_fetcher import RenderedPage
from snapscrape.scraper.rate_limiter import FixedWindowRateLimiter
from snapscrape.scraper.rotation import RotationManager
from snapscrape.scraper.tweet_fetcher import TweetFetcher

BASE = "https://example.com/"


class FakeFetcher:
    """PageFetcher serving a static link graph."""

    def __init__(
        self,
        graph: dict[str, list[str]],
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.graph = graph
        self.failures = failures or {}
        self.rendered: list[str] = []
        self.render_identities: list[Identity] = []
        self.render_detailed: list[bool] = []
        self.link_requests: list[str] = []

    async def ensure_browser(self) -> None:
        return None

    async def render(self, url: str, identity: Identity, *, detailed: bool = False) -> RenderedPage:
        self.rendered.append(url)
        self.render_identities.append(identity)
        self.render_detailed.append(detailed)
        if url in self.failures:
            raise self.failures[url]
        return RenderedPage(url=url, markdown=f"# {url}", links=self.graph.get(url, []))

    async def extract_links(self, url: str, identity: Identity) -> list[str]:
        self.link_requests.append(url)
        return list(self.graph.get(url, []))


@pytest.fixture
def rotation(memory_store, clock) -> RotationManager:
    rng = random.Random(3)
    return RotationManager(memory_store.scoped("identity"), rng=rng, clock=clock)


@pytest.fixture
def limiter(memory_store, clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        memory_store.scoped("ratelimit"), 100, 10_000, prefix="crawl", clock=clock
    )


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


def _engine(fetcher, limiter, rotation, sleep, **kwargs) -> CrawlEngine:
    return CrawlEngine(
        fetcher, limiter, rotation, sleep=sleep, rng=random.Random(11), **kwargs
    )


# ---------------------------------------------------------------------------
# Frontier behaviour
# ---------------------------------------------------------------------------


class TestCrawlFrontier:
    async def test_example_scenario_breadth_first_capped(
        self, limiter, rotation, sleep
    ) -> None:
        fetcher = FakeFetcher(
            {
                BASE: [
                    "https://example.com/a",
                    "https://example.com/b",
                    "https://example.com/c",
                    "https://other.com/x",
                ],
            }
        )
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE, request_key="client", max_pages=3, max_depth=1)

        assert [p.url for p in result.pages] == [
            "https://example.com/",
            "https://example.com/a",
            "https://example.com/b",
        ]
        assert result.succeeded
        assert "https://other.com/x" not in fetcher.rendered

    async def test_depth_cap(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher(
            {
                BASE: ["https://example.com/1"],
                "https://example.com/1": ["https://example.com/2"],
                "https://example.com/2": ["https://example.com/3"],
            }
        )
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE, max_pages=10, max_depth=1)

        assert [p.url for p in result.pages] == [BASE, "https://example.com/1"]
        # Links of the deepest level are not even requested.
        assert fetcher.link_requests == [BASE]

    async def test_depth_zero_fetches_only_base(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({BASE: ["https://example.com/a"]})
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE, max_pages=5, max_depth=0)

        assert [p.url for p in result.pages] == [BASE]

    async def test_subdomains_are_out_of_scope(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher(
            {BASE: ["https://blog.example.com/post", "https://example.com/about"]}
        )
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE, max_pages=5, max_depth=2)

        assert [p.url for p in result.pages] == [BASE, "https://example.com/about"]

    async def test_never_fetches_a_normalized_url_twice(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher(
            {
                BASE: [
                    "https://example.com/a?utm=1",
                    "https://example.com/a#top",
                    "https://example.com/?page=2",
                    "https://example.com/b",
                ],
                "https://example.com/a": [BASE, "https://example.com/b#x"],
                "https://example.com/b": ["https://example.com/a", BASE],
            }
        )
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE, max_pages=10, max_depth=3)

        urls = [p.url for p in result.pages]
        assert urls == [BASE, "https://example.com/a", "https://example.com/b"]
        assert len(fetcher.rendered) == len(set(fetcher.rendered))

    async def test_base_url_is_normalized(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({})
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract("https://Example.com?ref=x#top", max_pages=2)

        assert [p.url for p in result.pages] == [BASE]

    async def test_result_list_shape(self, limiter, rotation, sleep) -> None:
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE)

        assert result.to_list() == [{"url": BASE, "content": f"# {BASE}"}]


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestCrawlRateLimiting:
    async def test_denied_pages_are_skipped_not_retried(
        self, memory_store, clock, rotation, sleep
    ) -> None:
        limiter = FixedWindowRateLimiter(memory_store, 2, 10_000, prefix="crawl", clock=clock)
        fetcher = FakeFetcher(
            {BASE: ["https://example.com/a", "https://example.com/b", "https://example.com/c"]}
        )
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE, request_key="client", max_pages=5, max_depth=1)

        assert [p.url for p in result.pages] == [BASE, "https://example.com/a"]
        assert result.skipped == ["https://example.com/b", "https://example.com/c"]
        assert fetcher.rendered == [BASE, "https://example.com/a"]
        assert result.succeeded

    async def test_limiter_keyed_by_request_key(self, memory_store, clock, rotation, sleep) -> None:
        limiter = FixedWindowRateLimiter(memory_store, 5, 10_000, prefix="crawl", clock=clock)
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep)

        await engine.crawl_and_extract(BASE, request_key="198.51.100.7")

        assert memory_store.data["crawl:198.51.100.7:count"] == "1"


# ---------------------------------------------------------------------------
# Errors and rotation
# ---------------------------------------------------------------------------


class TestCrawlErrorsAndRotation:
    async def test_error_aborts_with_partial_results(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher(
            {BASE: ["https://example.com/a", "https://example.com/b", "https://example.com/c"]},
            failures={"https://example.com/b": RenderRetriesExhaustedError("https://example.com/b", 3)},
        )
        engine = _engine(fetcher, limiter, rotation, sleep)

        result = await engine.crawl_and_extract(BASE, max_pages=5, max_depth=1)

        assert [p.url for p in result.pages] == [BASE, "https://example.com/a"]
        assert result.aborted is True
        assert result.succeeded is False
        assert "https://example.com/b" in (result.error or "")
        assert "https://example.com/c" not in fetcher.rendered

    async def test_failed_crawl_blocks_outgoing_identity(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({}, failures={BASE: RuntimeError("boom")})
        engine = _engine(fetcher, limiter, rotation, sleep)
        outgoing = rotation.current_identity

        result = await engine.crawl_and_extract(BASE)

        assert result.pages == []
        assert rotation.ledger.blocked == {outgoing.key}
        assert rotation.current_identity.key != outgoing.key

    async def test_successful_crawl_rates_identity_once(self, limiter, rotation, sleep) -> None:
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep)
        outgoing = rotation.current_identity

        await engine.crawl_and_extract(BASE)

        assert rotation.ledger.successful == {outgoing.key: 1}
        assert rotation.ledger.blocked == set()

    async def test_scheduled_rotation_runs_before_fetch(self, limiter, rotation, sleep) -> None:
        rotation.rotation_interval = 1
        initial = rotation.current_identity
        fetcher = FakeFetcher({BASE: ["https://example.com/a", "https://example.com/b"]})
        engine = _engine(fetcher, limiter, rotation, sleep)

        await engine.crawl_and_extract(BASE, max_pages=3, max_depth=1)

        assert len(fetcher.render_identities) == 3
        assert fetcher.render_identities[0] is not initial
        assert initial.key in rotation.ledger.successful
        # The schedule was re-drawn, so later fetches keep the new identity.
        assert fetcher.render_identities[1] is fetcher.render_identities[0]

    async def test_pacing_delay_before_every_fetch(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({BASE: ["https://example.com/a"]})
        engine = _engine(fetcher, limiter, rotation, sleep)

        await engine.crawl_and_extract(BASE, max_pages=5, max_depth=1)

        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert 1.0 <= call.args[0] <= 5.0


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


def _tweet_fetcher(text: str = "Tweet from @jack") -> MagicMock:
    tweets = MagicMock(spec=TweetFetcher)
    tweets.fetch = AsyncMock(return_value=text)
    return tweets


def _llm(side_effect=None, return_value: str = "clean") -> MagicMock:
    llm = MagicMock(spec=LLMFilter)
    llm.filter = AsyncMock(return_value=return_value, side_effect=side_effect)
    return llm


class TestSinglePage:
    async def test_renders_with_current_identity(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({})
        engine = _engine(fetcher, limiter, rotation, sleep)

        content = await engine.extract_single_page(BASE, ScrapeOptions(detailed=True))

        assert content == f"# {BASE}"
        assert fetcher.render_identities == [rotation.current_identity]
        assert fetcher.render_detailed == [True]
        sleep.assert_not_awaited()

    async def test_twitter_bypasses_browser(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({})
        tweets = _tweet_fetcher()
        engine = _engine(fetcher, limiter, rotation, sleep, tweet_fetcher=tweets)

        content = await engine.extract_single_page("https://x.com/jack/status/20")

        assert content == "Tweet from @jack"
        assert fetcher.rendered == []
        assert rotation.request_counter == 0

    async def test_twitter_sentinel_returned_as_content(self, limiter, rotation, sleep) -> None:
        tweets = _tweet_fetcher("Failed to fetch tweet")
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep, tweet_fetcher=tweets)

        assert await engine.extract_single_page("https://twitter.com/a/status/1") == (
            "Failed to fetch tweet"
        )

    async def test_errors_propagate(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({}, failures={BASE: RenderRetriesExhaustedError(BASE, 3)})
        engine = _engine(fetcher, limiter, rotation, sleep)

        with pytest.raises(RenderRetriesExhaustedError):
            await engine.extract_single_page(BASE)

    async def test_scheduled_rotation_counts_requests(self, limiter, rotation, sleep) -> None:
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep)

        await engine.extract_single_page(BASE)

        assert rotation.request_counter == 1


class TestCrawlCollaborators:
    async def test_twitter_page_in_crawl_uses_tweet_fetcher(self, limiter, rotation, sleep) -> None:
        fetcher = FakeFetcher({})
        tweets = _tweet_fetcher()
        engine = _engine(fetcher, limiter, rotation, sleep, tweet_fetcher=tweets)

        result = await engine.crawl_and_extract("https://x.com/jack/status/20")

        assert result.to_list() == [
            {"url": "https://x.com/jack/status/20", "content": "Tweet from @jack"}
        ]
        assert fetcher.rendered == []
        assert fetcher.link_requests == []
        assert rotation.request_counter == 0
        sleep.assert_not_awaited()

    async def test_llm_filter_applied_when_requested(self, limiter, rotation, sleep) -> None:
        llm = _llm()
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep, llm_filter=llm)

        result = await engine.crawl_and_extract(BASE, ScrapeOptions(apply_llm=True))

        assert result.pages == [CrawledPage(url=BASE, content="clean")]
        llm.filter.assert_awaited_once_with(f"# {BASE}")

    async def test_llm_filter_not_applied_by_default(self, limiter, rotation, sleep) -> None:
        llm = _llm()
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep, llm_filter=llm)

        await engine.extract_single_page(BASE)

        llm.filter.assert_not_awaited()

    async def test_llm_failure_keeps_raw_content(self, limiter, rotation, sleep) -> None:
        llm = _llm(side_effect=LLMFilterError("llm filter: HTTP 503", status_code=503))
        engine = _engine(FakeFetcher({}), limiter, rotation, sleep, llm_filter=llm)

        content = await engine.extract_single_page(BASE, ScrapeOptions(apply_llm=True))

        assert content == f"# {BASE}"


class TestCrawlResult:
    def test_defaults(self) -> None:
        result = CrawlResult()
        assert result.pages == []
        assert result.skipped == []
        assert result.succeeded
