"""HTML to markdown conversion for rendered pages.

Two modes:

- **Article** (default): ``trafilatura`` picks out the readable main content
  and emits markdown.  When it finds nothing, the whole document is
  converted instead.
- **Detailed**: the full DOM, minus ``<script>``, ``<style>``, ``<iframe>``
  and ``<noscript>`` elements, is converted with ``html2text``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import html2text
import trafilatura

from snapscrape.scraper.config import MAX_CONTENT_BYTES, STRIPPED_TAGS

logger = logging.getLogger(__name__)

_STRIP_RE = re.compile(
    r"<(" + "|".join(STRIPPED_TAGS) + r")\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_SELF_CLOSED_RE = re.compile(
    r"<(" + "|".join(STRIPPED_TAGS) + r")\b[^>]*/>",
    re.IGNORECASE,
)


@dataclass
class ExtractedContent:
    """Markdown produced from one page.

    Attributes:
        markdown: Converted page content; empty when nothing was found.
        title: Page title, or ``None`` if not detected.
    """

    markdown: str
    title: str | None


def strip_non_content(html: str) -> str:
    """Remove script, style, iframe and noscript elements from ``html``."""
    html = _STRIP_RE.sub("", html)
    return _SELF_CLOSED_RE.sub("", html)


def _full_dom_markdown(html: str, url: str) -> str:
    converter = html2text.HTML2Text(baseurl=url)
    converter.body_width = 0
    converter.ignore_images = False
    converter.ignore_links = False
    return converter.handle(strip_non_content(html)).strip()


def _article_markdown(html: str, url: str) -> str | None:
    try:
        return trafilatura.extract(
            html,
            url=url,
            output_format="markdown",
            include_comments=False,
            include_tables=True,
            include_links=True,
            favor_recall=True,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("scraper: trafilatura extraction failed for %s: %s", url, exc)
        return None


def _title(html: str, url: str) -> str | None:
    try:
        meta = trafilatura.extract_metadata(html, default_url=url)
    except Exception:  # noqa: BLE001
        return None
    if meta is None:
        return None
    return getattr(meta, "title", None) or None


def _cap(markdown: str, url: str) -> str:
    markdown = markdown.replace("\x00", "")
    encoded = markdown.encode("utf-8")
    if len(encoded) > MAX_CONTENT_BYTES:
        logger.debug("scraper: truncated markdown to %d bytes for %s", MAX_CONTENT_BYTES, url)
        return encoded[:MAX_CONTENT_BYTES].decode("utf-8", errors="ignore")
    return markdown


def html_to_markdown(html: str, url: str, *, detailed: bool = False) -> ExtractedContent:
    """Convert rendered HTML to markdown.

    Args:
        html: Page source as returned by the browser.
        url: URL of the page, used to resolve relative links.
        detailed: Convert the full DOM instead of the readable article.

    Returns:
        An :class:`ExtractedContent`.  ``markdown`` is ``""`` for an empty page.
    """
    if not html.strip():
        return ExtractedContent(markdown="", title=None)

    if detailed:
        markdown = _full_dom_markdown(html, url)
    else:
        markdown = _article_markdown(html, url) or _full_dom_markdown(html, url)

    return ExtractedContent(markdown=_cap(markdown, url), title=_title(html, url))
