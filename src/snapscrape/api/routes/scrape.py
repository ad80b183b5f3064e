"""The scrape endpoint: ``GET /``.

Query parameters:

- ``url`` — target page.  Without it the HTML help page is returned.
- ``enableDetailedResponse`` — convert the full DOM instead of the article.
- ``crawlSubpages`` — crawl same-host subpages breadth-first.
- ``applyLLM`` — pass the markdown through the LLM filter.
- ``maxPages`` / ``maxDepth`` — crawl limits (defaults from settings).

Flags are true only for the literal value ``true`` (case-insensitive) or
``1``; anything else is false.

``Accept: application/json`` selects a JSON body: a string for single
pages, a list of ``{"url", "content"}`` objects for crawls.  Otherwise the
response is ``text/plain`` with crawl results JSON-encoded.

Errors are raised as :mod:`snapscrape.core.exceptions` types and turned
into plain-text responses by the handler registered in ``main.py``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional, Union

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates

from snapscrape.api.dependencies import (
    get_client_key,
    get_crawl_engine,
    get_inbound_limiter,
    get_page_fetcher,
    has_bypass_token,
)
from snapscrape.api.metrics import scrape_requests_total
from snapscrape.config.settings import Settings, get_settings
from snapscrape.core.exceptions import AdmissionDeniedError, InvalidInputError
from snapscrape.scraper.crawler import CrawlEngine, ScrapeOptions
from snapscrape.scraper.playwright_fetcher import PageFetcher
from snapscrape.scraper.rate_limiter import FixedWindowRateLimiter
from snapscrape.scraper.urls import is_twitter_url, is_valid_url

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["scrape"])

_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
templates = Jinja2Templates(directory=_TEMPLATES_DIR)

INVALID_URL_MESSAGE = (
    "Invalid URL provided, should be a full URL starting with http:// or https://"
)


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("true", "1")


def _wants_json(accept: Optional[str]) -> bool:
    if not accept:
        return False
    media_types = (part.split(";")[0].strip().lower() for part in accept.split(","))
    return "application/json" in media_types


def _help_page(request: Request, settings: Settings) -> Response:
    return templates.TemplateResponse(
        request,
        "help.html",
        {
            "app_name": settings.app_name,
            "base_url": str(request.base_url),
            "max_pages": settings.crawl_max_pages,
            "max_depth": settings.crawl_max_depth,
            "rate_limit_requests": settings.inbound_rate_limit_requests,
            "rate_limit_window_seconds": settings.inbound_rate_limit_window_ms // 1000,
        },
    )


@router.get("/", response_model=None)
async def scrape(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    client_key: Annotated[str, Depends(get_client_key)],
    bypass: Annotated[bool, Depends(has_bypass_token)],
    limiter: Annotated[FixedWindowRateLimiter, Depends(get_inbound_limiter)],
    fetcher: Annotated[PageFetcher, Depends(get_page_fetcher)],
    engine: Annotated[CrawlEngine, Depends(get_crawl_engine)],
    url: Optional[str] = None,
    enable_detailed_response: Annotated[
        Optional[str], Query(alias="enableDetailedResponse")
    ] = None,
    crawl_subpages: Annotated[Optional[str], Query(alias="crawlSubpages")] = None,
    apply_llm: Annotated[Optional[str], Query(alias="applyLLM")] = None,
    max_pages: Annotated[Optional[int], Query(alias="maxPages", ge=1, le=50)] = None,
    max_depth: Annotated[Optional[int], Query(alias="maxDepth", ge=0, le=10)] = None,
) -> Response:
    """Scrape ``url`` (and optionally its subpages) into markdown.

    Raises:
        InvalidInputError: ``url`` is not an absolute http(s) URL (400).
        AdmissionDeniedError: The client exceeded the inbound rate limit (429).
        ResourceUnavailableError: No browser could be started (500).
        RenderError: The page could not be rendered (502).
    """
    if not url:
        return _help_page(request, settings)

    if not is_valid_url(url):
        raise InvalidInputError(INVALID_URL_MESSAGE)

    if bypass:
        logger.debug("rate_limit_bypassed", client=client_key)
    elif not await limiter.limit(client_key):
        raise AdmissionDeniedError(client_key)

    crawl = _flag(crawl_subpages)
    options = ScrapeOptions(
        detailed=_flag(enable_detailed_response),
        apply_llm=_flag(apply_llm),
    )
    if crawl:
        mode = "crawl"
    elif is_twitter_url(url):
        mode = "tweet"
    else:
        mode = "single"

    result: Union[str, list[dict[str, str]]]
    try:
        # Tweets are looked up over HTTP; a tweet crawl never expands links.
        if not is_twitter_url(url):
            await fetcher.ensure_browser()

        if crawl:
            crawl_result = await engine.crawl_and_extract(
                url,
                options,
                request_key=client_key,
                max_pages=max_pages or settings.crawl_max_pages,
                max_depth=max_depth if max_depth is not None else settings.crawl_max_depth,
            )
            result = crawl_result.to_list()
            logger.info(
                "crawl_complete",
                url=url,
                pages=len(crawl_result.pages),
                skipped=len(crawl_result.skipped),
                aborted=crawl_result.aborted,
            )
        else:
            result = await engine.extract_single_page(url, options)
    except Exception:
        scrape_requests_total.labels(mode=mode, status="error").inc()
        raise
    scrape_requests_total.labels(mode=mode, status="ok").inc()

    if _wants_json(request.headers.get("accept")):
        return JSONResponse(result)
    body = result if isinstance(result, str) else json.dumps(result)
    return PlainTextResponse(body)
