"""Tweet lookups through the public syndication endpoint.

Twitter/X status pages are not rendered in the browser.  The tweet ID is
taken from the URL path and looked up on the syndication API; the reply is
formatted as a short text summary followed by the raw JSON.

Failures never raise.  They are reported through sentinel strings:

- :data:`INVALID_TWEET_URL` — no tweet ID in the URL
- :data:`TWEET_FETCH_FAILED` — network error or non-2xx status
- :data:`TWEET_NOT_FOUND` — the reply carries no tweet text
"""

from __future__ import annotations

import json
import logging
import urllib.parse
from typing import Any

import httpx

logger = logging.getLogger(__name__)

INVALID_TWEET_URL = "Invalid Twitter URL"
TWEET_FETCH_FAILED = "Failed to fetch tweet"
TWEET_NOT_FOUND = "Tweet not found"

_FEATURES: str = ";".join(
    [
        "tfw_timeline_list:",
        "tfw_follower_count_sunset:true",
        "tfw_tweet_edit_backend:on",
        "tfw_refsrc_session:on",
        "tfw_fosnr_soft_interventions_enabled:on",
        "tfw_show_birdwatch_pivots_enabled:on",
        "tfw_show_business_verified_badge:on",
        "tfw_duplicate_scribes_to_settings:on",
        "tfw_use_profile_image_shape_enabled:on",
        "tfw_show_blue_verified_badge:on",
        "tfw_legacy_timeline_sunset:true",
        "tfw_show_gov_verified_badge:on",
        "tfw_show_business_affiliate_badge:on",
        "tfw_tweet_edit_frontend:on",
    ]
)

_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.3"
    ),
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "max-age=0",
}


def tweet_id_from_url(url: str) -> str | None:
    """Return the last non-empty path segment of ``url`` if it is numeric."""
    segments = [s for s in urllib.parse.urlsplit(url).path.split("/") if s]
    if not segments or not segments[-1].isdigit():
        return None
    return segments[-1]


def format_tweet(tweet: dict[str, Any]) -> str:
    """Render a syndication API tweet object as a plain-text summary."""
    user = tweet.get("user") or {}
    author = user.get("name") or user.get("screen_name") or "Unknown"
    photos = tweet.get("photos") or []
    images = ", ".join(p.get("url", "") for p in photos) if photos else "none"
    return "\n".join(
        [
            f"Tweet from @{author}",
            "",
            tweet["text"],
            f"Images: {images}",
            (
                f"Time: {tweet.get('created_at')}, "
                f"Likes: {tweet.get('favorite_count')}, "
                f"Retweets: {tweet.get('conversation_count')}"
            ),
            "",
            f"raw: {json.dumps(tweet, indent=2)}",
        ]
    )


class TweetFetcher:
    """Fetch and format single tweets.

    Args:
        client: Shared :class:`httpx.AsyncClient`.
        api_url: Syndication ``tweet-result`` endpoint.
        token: Static token parameter expected by the endpoint.
    """

    def __init__(self, client: httpx.AsyncClient, *, api_url: str, token: str) -> None:
        self._client = client
        self._api_url = api_url
        self._token = token

    async def fetch(self, url: str) -> str:
        """Return a formatted summary of the tweet at ``url`` or a sentinel string."""
        tweet_id = tweet_id_from_url(url)
        if tweet_id is None:
            return INVALID_TWEET_URL

        params = {
            "id": tweet_id,
            "lang": "en",
            "features": _FEATURES,
            "token": self._token,
        }
        try:
            response = await self._client.get(self._api_url, params=params, headers=_HEADERS)
        except httpx.RequestError as exc:
            logger.warning("tweet fetch failed for %s: %s", url, exc)
            return TWEET_FETCH_FAILED

        if not response.is_success:
            logger.warning(
                "tweet fetch returned HTTP %d for %s", response.status_code, url
            )
            return TWEET_FETCH_FAILED

        try:
            tweet = response.json()
        except ValueError:
            return TWEET_NOT_FOUND
        if not isinstance(tweet, dict) or not tweet.get("text"):
            return TWEET_NOT_FOUND

        return format_tweet(tweet)
