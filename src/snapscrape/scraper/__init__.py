"""Scraping core: rendering, extraction, rate limiting and identity rotation.

Sub-modules:
- ``config``             — constants and tuning parameters
- ``urls``               — URL normalization, hostname and validity checks
- ``identity``           — synthetic user-agent and fingerprint generation
- ``rate_limiter``       — fixed-window per-key admission control
- ``rotation``           — identity rotation and the identity health ledger
- ``content_extractor``  — trafilatura / html2text markdown conversion
- ``playwright_fetcher`` — headless Chromium page fetcher
- ``llm_filter``         — LLM markdown clean-up
- ``tweet_fetcher``      — Twitter/X syndication lookups
- ``crawler``            — single-page extraction and breadth-first crawling
"""
