"""Prometheus metrics for SnapScrape.

All metrics are module-level singletons registered on the default
``REGISTRY`` and are safe to import from any module.

Metrics defined here:

  http_requests_total{method, path, status}
      Counter — HTTP requests handled by the FastAPI application.

  http_request_duration_seconds{method, path}
      Histogram — HTTP request latency in seconds.

  scrape_requests_total{mode, status}
      Counter — scrape requests by mode (single, crawl, tweet) and outcome
      (ok, error).

  rate_limit_decisions_total{limiter, outcome}
      Counter — admission decisions per limiter prefix (inbound, crawl) and
      outcome (admitted, denied, error).

  identity_rotations_total{outcome, selection}
      Counter — identity rotations by recorded outcome of the outgoing
      identity (success, blocked) and how the next one was chosen
      (reuse, generated).

  crawl_pages_total{outcome}
      Counter — frontier entries by fate (fetched, skipped_visited,
      skipped_depth, denied, failed).

Usage::

    from snapscrape.api.metrics import crawl_pages_total
    crawl_pages_total.labels(outcome="fetched").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by middleware in main.py)
# ---------------------------------------------------------------------------

http_requests_total: Counter = Counter(
    "http_requests_total",
    "HTTP requests handled by the FastAPI application.",
    labelnames=["method", "path", "status"],
)

http_request_duration_seconds: Histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# ---------------------------------------------------------------------------
# Scraping metrics
# ---------------------------------------------------------------------------

scrape_requests_total: Counter = Counter(
    "scrape_requests_total",
    "Scrape requests by mode and outcome.",
    labelnames=["mode", "status"],
)

rate_limit_decisions_total: Counter = Counter(
    "rate_limit_decisions_total",
    "Fixed-window admission decisions by limiter and outcome.",
    labelnames=["limiter", "outcome"],
)

identity_rotations_total: Counter = Counter(
    "identity_rotations_total",
    "Browser identity rotations by recorded outcome and selection branch.",
    labelnames=["outcome", "selection"],
)

crawl_pages_total: Counter = Counter(
    "crawl_pages_total",
    "Crawl frontier entries by outcome.",
    labelnames=["outcome"],
)


# ---------------------------------------------------------------------------
# Response helper
# ---------------------------------------------------------------------------


def get_metrics_response() -> tuple[bytes, str]:
    """Generate a Prometheus text-format metrics response.

    Returns:
        A tuple of (body_bytes, content_type_string) suitable for constructing
        a FastAPI ``Response`` object.
    """
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest  # noqa: PLC0415

    return generate_latest(), CONTENT_TYPE_LATEST
