"""Playwright-based headless browser fetcher.

:class:`PlaywrightPageFetcher` implements the :class:`PageFetcher` protocol
the crawl engine depends on.  One Chromium instance is shared by all
requests, either launched locally or attached over CDP when
``browser_ws_endpoint`` is configured.  Every render opens a fresh browser
context carrying the caller's :class:`~snapscrape.scraper.identity.Identity`:

- ``user_agent``, viewport, device scale factor, locale and timezone are
  set on the context.
- The remaining fingerprint signals (navigator, screen, WebGL, canvas and
  audio) are overridden by an init script that runs before any page script.

Retry policy
------------
Only a destroyed JavaScript execution context is retried: Playwright errors
carrying that signature are classified once into
:class:`~snapscrape.core.exceptions.ExecutionContextDestroyedError`, the page
is reloaded after one second, and extraction is attempted again, up to three
times in total.  Any other Playwright error (navigation timeout, DNS or TLS
failure, closed target) is raised at once as
:class:`~snapscrape.core.exceptions.RenderError`.

Install the browser binary before first use::

    playwright install chromium
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from snapscrape.core.exceptions import (
    ExecutionContextDestroyedError,
    RenderError,
    RenderRetriesExhaustedError,
    ResourceUnavailableError,
)
from snapscrape.scraper.config import (
    CONTEXT_DESTROYED_RETRY_DELAY_MS,
    CONTEXT_DESTROYED_SIGNATURE,
    LINK_CACHE_SIZE,
    MAX_RENDER_ATTEMPTS,
)
from snapscrape.scraper.content_extractor import html_to_markdown
from snapscrape.scraper.identity import FingerprintProfile, Identity
from snapscrape.scraper.urls import normalize_url

logger = logging.getLogger(__name__)

_LINKS_JS = "els => els.map(e => e.href).filter(h => h.startsWith('http'))"


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@dataclass
class RenderedPage:
    """Result of rendering one page.

    Attributes:
        url: URL that was requested.
        markdown: Extracted markdown content.
        links: Absolute ``a[href]`` targets found on the page.
        title: Page title, if detected.
    """

    url: str
    markdown: str
    links: list[str] = field(default_factory=list)
    title: str | None = None


class PageFetcher(Protocol):
    """Browser capability used by the crawl engine."""

    async def ensure_browser(self) -> Any:
        ...

    async def render(
        self, url: str, identity: Identity, *, detailed: bool = False
    ) -> RenderedPage:
        ...

    async def extract_links(self, url: str, identity: Identity) -> list[str]:
        ...


# ---------------------------------------------------------------------------
# Fingerprint injection
# ---------------------------------------------------------------------------

_FINGERPRINT_SCRIPT_TEMPLATE = """
(() => {
  const fp = __FINGERPRINT__;
  const define = (obj, prop, value) => {
    try { Object.defineProperty(obj, prop, { get: () => value, configurable: true }); } catch (e) {}
  };

  define(Navigator.prototype, 'platform', fp.platform);
  define(Navigator.prototype, 'hardwareConcurrency', fp.hardware_concurrency);
  define(Navigator.prototype, 'deviceMemory', fp.device_memory);
  define(Navigator.prototype, 'maxTouchPoints', fp.max_touch_points);
  define(Navigator.prototype, 'languages', Object.freeze(fp.languages.slice()));
  define(Navigator.prototype, 'language', fp.languages[0]);
  define(Navigator.prototype, 'doNotTrack', fp.do_not_track);
  define(Navigator.prototype, 'webdriver', false);

  define(Screen.prototype, 'width', fp.screen_width);
  define(Screen.prototype, 'height', fp.screen_height);
  define(Screen.prototype, 'availWidth', fp.avail_width);
  define(Screen.prototype, 'availHeight', fp.avail_height);
  define(Screen.prototype, 'colorDepth', fp.color_depth);
  define(Screen.prototype, 'pixelDepth', fp.color_depth);

  Date.prototype.getTimezoneOffset = function () { return fp.timezone_offset; };

  const patchWebGL = (proto) => {
    if (!proto) return;
    const getParameter = proto.getParameter;
    proto.getParameter = function (param) {
      if (param === 37445) return fp.webgl_vendor;
      if (param === 37446) return fp.webgl_renderer;
      return getParameter.call(this, param);
    };
  };
  patchWebGL(window.WebGLRenderingContext && WebGLRenderingContext.prototype);
  patchWebGL(window.WebGL2RenderingContext && WebGL2RenderingContext.prototype);

  const seed = (hex) => parseInt(hex.slice(0, 8), 16) || 1;
  const canvasSeed = seed(fp.canvas_noise);
  const toDataURL = HTMLCanvasElement.prototype.toDataURL;
  HTMLCanvasElement.prototype.toDataURL = function (...args) {
    const ctx = this.getContext('2d');
    if (ctx && this.width && this.height) {
      const x = canvasSeed % this.width;
      const y = (canvasSeed >>> 8) % this.height;
      const pixel = ctx.getImageData(x, y, 1, 1);
      pixel.data[0] = pixel.data[0] ^ (canvasSeed & 1);
      ctx.putImageData(pixel, x, y);
    }
    return toDataURL.apply(this, args);
  };

  const audioSeed = seed(fp.audio_noise);
  if (window.AudioBuffer) {
    const getChannelData = AudioBuffer.prototype.getChannelData;
    AudioBuffer.prototype.getChannelData = function (...args) {
      const data = getChannelData.apply(this, args);
      if (data.length) {
        const i = audioSeed % data.length;
        data[i] = data[i] + 1e-7;
      }
      return data;
    };
  }
})();
"""


def build_fingerprint_script(fingerprint: FingerprintProfile) -> str:
    """Return the init script that presents ``fingerprint`` to page scripts."""
    return _FINGERPRINT_SCRIPT_TEMPLATE.replace(
        "__FINGERPRINT__", json.dumps(fingerprint.to_dict())
    )


def context_options(identity: Identity) -> dict[str, Any]:
    """Browser context keyword arguments derived from ``identity``."""
    fp = identity.fingerprint
    options: dict[str, Any] = {
        "user_agent": identity.user_agent,
        "viewport": {"width": fp.avail_width, "height": fp.avail_height},
        "screen": {"width": fp.screen_width, "height": fp.screen_height},
        "device_scale_factor": fp.pixel_ratio,
        "timezone_id": fp.timezone,
    }
    if fp.languages:
        options["locale"] = fp.languages[0]
    return options


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class PlaywrightPageFetcher:
    """Render pages in a shared headless Chromium instance.

    Args:
        ws_endpoint: CDP websocket URL of a remote browser.  When ``None`` a
            local Chromium is launched.
        launch_attempts: Attempts made by :meth:`ensure_browser`.
        navigation_timeout_seconds: Timeout for ``goto`` and ``reload``.
        playwright_factory: Returns an object with an async ``start()``;
            defaults to :func:`playwright.async_api.async_playwright`.
        sleep: Awaitable sleep used for the retry delay.
    """

    def __init__(
        self,
        *,
        ws_endpoint: str | None = None,
        launch_attempts: int = 3,
        navigation_timeout_seconds: int = 30,
        playwright_factory: Callable[[], Any] = async_playwright,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._ws_endpoint = ws_endpoint
        self._launch_attempts = launch_attempts
        self._timeout_ms = navigation_timeout_seconds * 1000
        self._playwright_factory = playwright_factory
        self._sleep = sleep

        self._playwright: Any = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()
        self._links: OrderedDict[str, list[str]] = OrderedDict()

    # ------------------------------------------------------------------
    # Browser lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def ensure_browser(self) -> Browser:
        """Return a connected browser, launching or attaching one if needed.

        Between failed attempts any stale browser and driver are closed.

        Raises:
            ResourceUnavailableError: If every attempt failed.
        """
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            last_error: Exception | None = None
            for attempt in range(1, self._launch_attempts + 1):
                try:
                    if self._playwright is None:
                        self._playwright = await self._playwright_factory().start()
                    if self._ws_endpoint:
                        browser = await self._playwright.chromium.connect_over_cdp(
                            self._ws_endpoint
                        )
                    else:
                        browser = await self._playwright.chromium.launch(headless=True)
                except Exception as exc:
                    last_error = exc
                    logger.warning(
                        "scraper: browser start attempt %d/%d failed: %s",
                        attempt,
                        self._launch_attempts,
                        exc,
                    )
                    await self._close_stale()
                    continue

                self._browser = browser
                logger.info(
                    "scraper: browser ready",
                    extra={"attempt": attempt, "remote": bool(self._ws_endpoint)},
                )
                return browser

            raise ResourceUnavailableError(
                f"Could not start a browser after {self._launch_attempts} attempts: {last_error}",
                attempts=self._launch_attempts,
            )

    async def _close_stale(self) -> None:
        browser, self._browser = self._browser, None
        driver, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("scraper: closing stale browser failed: %s", exc)
        if driver is not None:
            try:
                await driver.stop()
            except Exception as exc:  # noqa: BLE001
                logger.debug("scraper: stopping stale playwright driver failed: %s", exc)

    async def aclose(self) -> None:
        """Release the browser and the Playwright driver."""
        async with self._lock:
            await self._close_stale()
        self._links.clear()

    async def _new_context(self, identity: Identity) -> BrowserContext:
        browser = await self.ensure_browser()
        context = await browser.new_context(**context_options(identity))
        await context.add_init_script(build_fingerprint_script(identity.fingerprint))
        return context

    # ------------------------------------------------------------------
    # Page operations
    # ------------------------------------------------------------------

    async def _snapshot(self, page: Page) -> tuple[str, list[str]]:
        try:
            html = await page.content()
            links = await page.eval_on_selector_all("a[href]", _LINKS_JS)
        except PlaywrightError as exc:
            if CONTEXT_DESTROYED_SIGNATURE in str(exc):
                raise ExecutionContextDestroyedError(str(exc)) from exc
            raise
        return html, list(links)

    async def _snapshot_with_retry(self, page: Page, url: str) -> tuple[str, list[str]]:
        for attempt in range(1, MAX_RENDER_ATTEMPTS + 1):
            try:
                return await self._snapshot(page)
            except ExecutionContextDestroyedError:
                logger.warning(
                    "scraper: execution context destroyed on %s (attempt %d/%d)",
                    url,
                    attempt,
                    MAX_RENDER_ATTEMPTS,
                )
                if attempt == MAX_RENDER_ATTEMPTS:
                    break
                await self._sleep(CONTEXT_DESTROYED_RETRY_DELAY_MS / 1000)
                await page.reload(wait_until="networkidle", timeout=self._timeout_ms)
        raise RenderRetriesExhaustedError(url, MAX_RENDER_ATTEMPTS)

    def _remember_links(self, url: str, links: list[str]) -> None:
        key = normalize_url(url)
        self._links[key] = links
        self._links.move_to_end(key)
        while len(self._links) > LINK_CACHE_SIZE:
            self._links.popitem(last=False)

    async def _load(self, url: str, identity: Identity) -> tuple[str, list[str], str]:
        """Open ``url`` in a fresh context and return ``(html, links, final_url)``.

        Playwright errors other than a destroyed execution context (timeouts,
        DNS and TLS failures, closed targets) are not retried and surface as
        :class:`~snapscrape.core.exceptions.RenderError`.
        """
        try:
            context = await self._new_context(identity)
        except PlaywrightError as exc:
            raise RenderError(f"Could not open a browser context for {url}: {exc}") from exc
        try:
            page = await context.new_page()
            await page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)
            html, links = await self._snapshot_with_retry(page, url)
            return html, links, page.url or url
        except PlaywrightError as exc:
            logger.warning("scraper: rendering %s failed: %s", url, exc)
            raise RenderError(f"Failed to render {url}: {exc}") from exc
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                logger.debug("scraper: closing context for %s failed: %s", url, exc)

    async def render(
        self, url: str, identity: Identity, *, detailed: bool = False
    ) -> RenderedPage:
        """Navigate to ``url`` as ``identity`` and convert the page to markdown.

        Raises:
            ResourceUnavailableError: If no browser could be acquired.
            RenderRetriesExhaustedError: If the execution context kept being
                destroyed.
            RenderError: On any other browser failure.
        """
        html, links, final_url = await self._load(url, identity)

        self._remember_links(url, links)
        content = html_to_markdown(html, final_url, detailed=detailed)
        logger.debug(
            "scraper: rendered %s (%d chars, %d links)", url, len(content.markdown), len(links)
        )
        return RenderedPage(url=url, markdown=content.markdown, links=links, title=content.title)

    async def extract_links(self, url: str, identity: Identity) -> list[str]:
        """Return absolute link targets of ``url``.

        Links captured by the latest :meth:`render` of the same URL are
        returned without navigating again.
        """
        cached = self._links.pop(normalize_url(url), None)
        if cached is not None:
            return cached

        _, links, _ = await self._load(url, identity)
        return links
