"""Health check route handlers.

``GET /api/health``
    Dependency check: pings the key-value store and reports whether the
    shared browser is connected.  Always returns HTTP 200; the ``status``
    field distinguishes ``"ok"`` from ``"degraded"``.

The process-level liveness check ``GET /health`` lives in ``main.py``.
These endpoints are diagnostic — they must never raise HTTP 5xx errors.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from snapscrape import __version__
from snapscrape.api.dependencies import ScrapeServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


async def _check_storage(services: ScrapeServices) -> str:
    """Ping the key-value store.

    Returns:
        ``"ok"`` if the store responds, ``"error"`` otherwise.
    """
    ping = getattr(services.store, "ping", None)
    if ping is None:
        return "ok"
    try:
        return "ok" if await ping() else "error"
    except Exception:
        logger.exception("Health check: storage unreachable")
        return "error"


def _check_browser(services: ScrapeServices) -> str:
    # The browser is started lazily, so "not_started" is not a failure.
    if services.fetcher.is_connected:
        return "ok"
    return "not_started"


@router.get("/api/health", include_in_schema=True)
async def system_health(
    services: Annotated[ScrapeServices, Depends(get_services)],
) -> JSONResponse:
    """Return service health including storage and browser state.

    Returns:
        JSON with keys: ``status``, ``version``, ``storage``, ``browser``,
        ``timestamp``.
    """
    storage_status = await _check_storage(services)
    browser_status = _check_browser(services)

    payload = {
        "status": "ok" if storage_status == "ok" else "degraded",
        "version": __version__,
        "storage": storage_status,
        "browser": browser_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    logger.info("system_health_check", extra={"health": payload})
    return JSONResponse(payload)
