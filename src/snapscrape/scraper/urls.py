"""URL helpers used by the crawler and the request handler."""

from __future__ import annotations

import logging
import urllib.parse

from snapscrape.scraper.config import TWITTER_HOSTS, VALID_URL_PATTERN

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Strip the fragment and query string from ``url``.

    Scheme and host are lower-cased and an empty path on an http(s) URL
    becomes ``/``, so ``https://A.com?x=1#y`` and ``https://a.com/`` compare
    equal.  The function is idempotent.  Unparseable input is returned
    unchanged.

    Args:
        url: Absolute URL.

    Returns:
        The normalized URL string.
    """
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError as exc:
        logger.error("Error normalizing URL %r: %s", url, exc)
        return url

    scheme = parts.scheme.lower()
    path = parts.path
    if not path and scheme in ("http", "https"):
        path = "/"
    return urllib.parse.urlunsplit((scheme, parts.netloc.lower(), path, "", ""))


def get_domain(url: str) -> str:
    """Return the lower-cased hostname of ``url``, or ``""`` if it has none."""
    try:
        return urllib.parse.urlsplit(url).hostname or ""
    except ValueError as exc:
        logger.error("Error extracting domain from URL %r: %s", url, exc)
        return ""


def is_valid_url(url: str) -> bool:
    """Return ``True`` if ``url`` is an absolute http(s) URL without spaces or quotes."""
    return bool(VALID_URL_PATTERN.match(url))


def is_twitter_url(url: str) -> bool:
    """Return ``True`` for URLs on twitter.com / x.com or one of their subdomains."""
    host = get_domain(url)
    return any(host == root or host.endswith("." + root) for root in TWITTER_HOSTS)
