"""Constants and tuning parameters for the scraping core."""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

#: Accepted shape of a target URL.
VALID_URL_PATTERN: re.Pattern[str] = re.compile(r'^(http|https)://[^ "]+$')

#: Hostnames served by the tweet fetcher instead of the browser.
TWITTER_HOSTS: frozenset[str] = frozenset({"twitter.com", "x.com"})

# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

#: Render attempts when the execution context is destroyed mid-extraction.
MAX_RENDER_ATTEMPTS: int = 3

#: Wait before reloading a page whose execution context was destroyed.
CONTEXT_DESTROYED_RETRY_DELAY_MS: int = 1000

#: Substring Playwright puts in the error raised for a destroyed context.
CONTEXT_DESTROYED_SIGNATURE: str = "Execution context was destroyed"

#: Elements removed before converting the full DOM to markdown.
STRIPPED_TAGS: tuple[str, ...] = ("script", "style", "iframe", "noscript")

#: Maximum markdown size returned for one page (bytes).
MAX_CONTENT_BYTES: int = 900 * 1024

#: Links remembered per fetcher between ``render`` and ``extract_links``.
LINK_CACHE_SIZE: int = 64

# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------

#: Probability of reusing a previously successful identity on rotation.
REUSE_PROBABILITY: float = 0.7

#: Bounds (inclusive) for the randomized rotation request interval.
ROTATION_INTERVAL_RANGE: tuple[int, int] = (8, 12)

#: Bounds for the randomized rotation time window (milliseconds).
ROTATION_WINDOW_MS_RANGE: tuple[int, int] = (9000, 11000)

#: Request interval and time window used before the first rotation.
INITIAL_ROTATION_INTERVAL: int = 10
INITIAL_ROTATION_WINDOW_MS: int = 10_000

#: Fresh identities generated before giving up on finding an unblocked one.
MAX_IDENTITY_GENERATION_ATTEMPTS: int = 100

# ---------------------------------------------------------------------------
# Storage keys
# ---------------------------------------------------------------------------

SUCCESSFUL_IDENTITIES_KEY: str = "successful_identities"
BLOCKED_IDENTITIES_KEY: str = "blocked_identities"
