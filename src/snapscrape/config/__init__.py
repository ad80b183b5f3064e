"""Configuration package for SnapScrape.

Re-exports the settings symbols so that callers can write::

    from snapscrape.config import get_settings
"""

from __future__ import annotations

from snapscrape.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
