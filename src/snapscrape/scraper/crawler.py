"""Single-page extraction and bounded breadth-first crawling.

:class:`CrawlEngine` ties the collaborators together.  For every outbound
page fetch it decides whether the fetch may run (crawl rate limiter), which
identity it presents (rotation manager), and when it runs (randomized
pacing delay).

Crawl algorithm
---------------
1. The frontier starts as ``[(base_url, 0)]``; visited set and results are
   empty.
2. While the frontier is non-empty and fewer than ``max_pages`` pages were
   collected, pop the front entry and normalize its URL.  Entries already
   visited or deeper than ``max_depth`` are discarded without consuming
   quota; otherwise the URL is marked visited.
3. The fetch is gated through the crawl limiter.  A denied URL is recorded
   in ``skipped`` and is not retried.
4. Inside the admitted work the scheduled rotation check runs, then a
   random 1-5 s delay, then the fetch.  Twitter/X URLs skip the rotation
   check and the delay.  The page is appended to the results.
5. While quota remains, same-hostname links not yet visited are appended to
   the frontier at ``depth + 1`` (never beyond ``max_depth``).
6. Any error aborts the loop.  Pages collected so far are returned.

After the loop the outgoing identity is rated with the crawl's aggregate
outcome through :meth:`RotationManager.rotate`.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from snapscrape.api.metrics import crawl_pages_total
from snapscrape.core.exceptions import IdentityExhaustedError, LLMFilterError
from snapscrape.scraper.llm_filter import LLMFilter
from snapscrape.scraper.playwright_fetcher import PageFetcher
from snapscrape.scraper.rate_limiter import FixedWindowRateLimiter
from snapscrape.scraper.rotation import RotationManager
from snapscrape.scraper.tweet_fetcher import TweetFetcher
from snapscrape.scraper.urls import get_domain, is_twitter_url, normalize_url

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class ScrapeOptions:
    """Per-request extraction options.

    Attributes:
        detailed: Convert the full DOM instead of the readable article.
        apply_llm: Pass the markdown through the LLM filter.
    """

    detailed: bool = False
    apply_llm: bool = False


@dataclass
class CrawledPage:
    url: str
    content: str


@dataclass
class CrawlResult:
    """Outcome of one :meth:`CrawlEngine.crawl_and_extract` call.

    Attributes:
        pages: Collected pages in crawl order, at most ``max_pages``.
        aborted: ``True`` when an error stopped the loop early.
        error: Message of the aborting error.
        skipped: Normalized URLs denied by the crawl rate limiter.
    """

    pages: list[CrawledPage] = field(default_factory=list)
    aborted: bool = False
    error: str | None = None
    skipped: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.aborted

    def to_list(self) -> list[dict[str, str]]:
        return [{"url": page.url, "content": page.content} for page in self.pages]


@dataclass
class _CrawlState:
    base_domain: str
    max_pages: int
    max_depth: int
    options: ScrapeOptions
    frontier: deque[tuple[str, int]] = field(default_factory=deque)
    visited: set[str] = field(default_factory=set)
    result: CrawlResult = field(default_factory=CrawlResult)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class CrawlEngine:
    """Coordinates fetching, rate limiting, identity rotation and pacing.

    Args:
        fetcher: Browser capability used to render pages and list links.
        limiter: Crawl rate limiter gating every page fetch.
        rotation: Identity rotation manager.
        tweet_fetcher: Handles Twitter/X URLs instead of the browser.
        llm_filter: Optional markdown clean-up applied when requested.
        delay_range_ms: Bounds of the uniform pacing delay before each crawl
            fetch.
        sleep: Awaitable sleep taking seconds.
        rng: Randomness for the pacing delay.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        limiter: FixedWindowRateLimiter,
        rotation: RotationManager,
        *,
        tweet_fetcher: TweetFetcher | None = None,
        llm_filter: LLMFilter | None = None,
        delay_range_ms: tuple[int, int] = (1000, 5000),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._limiter = limiter
        self._rotation = rotation
        self._tweets = tweet_fetcher
        self._llm = llm_filter
        self._delay_range_ms = delay_range_ms
        self._sleep = sleep
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Single page
    # ------------------------------------------------------------------

    async def extract_single_page(self, url: str, options: ScrapeOptions | None = None) -> str:
        """Return the content of ``url``.

        Twitter/X URLs are answered by the tweet fetcher without touching the
        browser or the rotation schedule.  Errors propagate to the caller.
        """
        options = options or ScrapeOptions()
        if self._tweets is not None and is_twitter_url(url):
            return await self._tweets.fetch(url)

        await self._scheduled_rotation()
        return await self._content(url, options)

    async def _content(self, url: str, options: ScrapeOptions) -> str:
        if self._tweets is not None and is_twitter_url(url):
            return await self._tweets.fetch(url)
        page = await self._fetcher.render(
            url, self._rotation.current_identity, detailed=options.detailed
        )
        return await self._filtered(page.markdown, url, options)

    async def _filtered(self, markdown: str, url: str, options: ScrapeOptions) -> str:
        if not options.apply_llm or self._llm is None or not markdown:
            return markdown
        try:
            return await self._llm.filter(markdown)
        except LLMFilterError as exc:
            logger.warning("scraper: LLM filter failed for %s, keeping raw content: %s", url, exc)
            return markdown

    async def _scheduled_rotation(self) -> None:
        if self._rotation.should_rotate():
            await self._rotation.rotate(True)

    async def _pace(self) -> None:
        low, high = self._delay_range_ms
        await self._sleep(self._rng.uniform(low, high) / 1000)

    # ------------------------------------------------------------------
    # Crawl
    # ------------------------------------------------------------------

    async def crawl_and_extract(
        self,
        base_url: str,
        options: ScrapeOptions | None = None,
        request_key: str = "",
        max_pages: int = 5,
        max_depth: int = 3,
    ) -> CrawlResult:
        """Crawl ``base_url`` and same-hostname subpages breadth-first.

        Args:
            base_url: Crawl root.
            options: Extraction options applied to every page.
            request_key: Crawl rate-limiter key, normally the client key.
            max_pages: Maximum number of pages returned.
            max_depth: Maximum link distance from ``base_url``.

        Returns:
            A :class:`CrawlResult`; never raises for errors inside the loop.
        """
        state = _CrawlState(
            base_domain=get_domain(base_url),
            max_pages=max_pages,
            max_depth=max_depth,
            options=options or ScrapeOptions(),
        )
        state.frontier.append((base_url, 0))
        result = state.result

        try:
            while state.frontier and len(result.pages) < max_pages:
                url, depth = state.frontier.popleft()
                normalized = normalize_url(url)
                if normalized in state.visited:
                    crawl_pages_total.labels(outcome="skipped_visited").inc()
                    continue
                if depth > max_depth:
                    crawl_pages_total.labels(outcome="skipped_depth").inc()
                    continue
                state.visited.add(normalized)

                work = functools.partial(self._visit, state, normalized, depth)
                if not await self._limiter.admit_and_run(request_key, work):
                    result.skipped.append(normalized)
                    crawl_pages_total.labels(outcome="denied").inc()
                    logger.info("scraper: crawl fetch denied for %s", normalized)
        except Exception as exc:
            result.aborted = True
            result.error = str(exc)
            crawl_pages_total.labels(outcome="failed").inc()
            logger.warning(
                "scraper: crawl of %s aborted after %d pages: %s",
                base_url,
                len(result.pages),
                exc,
                exc_info=True,
            )

        try:
            await self._rotation.rotate(result.succeeded)
        except IdentityExhaustedError:
            logger.exception("scraper: post-crawl rotation failed, keeping current identity")

        logger.info(
            "scraper: crawl finished",
            extra={
                "base_url": base_url,
                "pages": len(result.pages),
                "skipped": len(result.skipped),
                "aborted": result.aborted,
            },
        )
        return result

    async def _visit(self, state: _CrawlState, url: str, depth: int) -> None:
        is_tweet = self._tweets is not None and is_twitter_url(url)
        if not is_tweet:
            await self._scheduled_rotation()
            await self._pace()

        content = await self._content(url, state.options)
        state.result.pages.append(CrawledPage(url=url, content=content))
        crawl_pages_total.labels(outcome="fetched").inc()

        if len(state.result.pages) >= state.max_pages or depth + 1 > state.max_depth:
            return
        if is_tweet:
            return

        links = await self._fetcher.extract_links(url, self._rotation.current_identity)
        for link in links:
            child = normalize_url(link)
            if get_domain(child) != state.base_domain or child in state.visited:
                continue
            state.frontier.append((child, depth + 1))
