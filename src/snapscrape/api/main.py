"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and exception
handlers, and mounts the scrape and health routers.

Usage::

    # Development server (from project root)
    uvicorn snapscrape.api.main:app --reload

    # Production
    gunicorn snapscrape.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from snapscrape import __version__
from snapscrape.config.settings import get_settings
from snapscrape.core.exceptions import SnapScrapeError
from snapscrape.core.logging_config import configure_logging, request_id_var

# ---------------------------------------------------------------------------
# Logging configuration — applied once at module import time so that log
# records emitted during app construction are captured correctly.
# The log level is re-applied inside create_app() after settings are loaded.
# ---------------------------------------------------------------------------

configure_logging("INFO")

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment before the
    singleton is created.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()

    # Re-apply logging configuration with the correct level from settings.
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Render web pages in a headless browser and return their content "
            "as markdown, optionally crawling same-host subpages."
        ),
        version=__version__,
        debug=settings.debug,
        redirect_slashes=False,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # ---- Request logging middleware ----------------------------------------

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every incoming request and its response status + duration.

        Attaches a unique ``request_id`` to the structlog context so that all
        log lines emitted during a request can be correlated, and records the
        HTTP request metrics.
        """
        from snapscrape.api.metrics import (  # noqa: PLC0415
            http_request_duration_seconds,
            http_requests_total,
        )

        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response: Response | None = None
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed = time.perf_counter() - start
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000, 2),
            )
            http_requests_total.labels(
                method=request.method, path=request.url.path, status=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method, path=request.url.path
            ).observe(elapsed)

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Exception handlers -------------------------------------------------

    @application.exception_handler(SnapScrapeError)
    async def snapscrape_error_handler(
        request: Request, exc: SnapScrapeError
    ) -> PlainTextResponse:
        """Render application errors as plain text with their HTTP status."""
        log_fn = logger.warning if exc.http_status < 500 else logger.error
        log_fn(
            "request_failed",
            error_type=type(exc).__name__,
            status_code=exc.http_status,
            detail=str(exc),
        )
        return PlainTextResponse(str(exc), status_code=exc.http_status)

    # ---- Routers ------------------------------------------------------------

    from snapscrape.api.routes import health as health_routes  # noqa: PLC0415
    from snapscrape.api.routes import scrape as scrape_routes  # noqa: PLC0415

    application.include_router(health_routes.router)
    application.include_router(scrape_routes.router)

    # ---- Lifecycle events -------------------------------------------------

    @application.on_event("startup")
    async def on_startup() -> None:
        """Build the shared scraping collaborators and log start-up."""
        from snapscrape.api.dependencies import init_services  # noqa: PLC0415

        await init_services(application)
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            debug=settings.debug,
            log_level=settings.log_level,
            storage_backend=settings.storage_backend,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        """Close the browser and HTTP client."""
        from snapscrape.api.dependencies import close_services  # noqa: PLC0415

        await close_services(application)
        logger.info("application_shutdown")

    # ---- Health & metrics endpoints -----------------------------------------

    @application.get("/health", tags=["system"], include_in_schema=True)
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status.

        Used by container health checks and load balancers that need a fast
        ``200 OK`` without performing any I/O.  Dependency checks are at
        ``/api/health``.

        Returns:
            JSON response with ``{"status": "ok"}``.
        """
        return JSONResponse({"status": "ok"})

    if settings.metrics_enabled:

        @application.get("/metrics", tags=["system"], include_in_schema=False)
        async def metrics() -> Response:
            """Expose Prometheus metrics in the text exposition format."""
            from snapscrape.api.metrics import get_metrics_response  # noqa: PLC0415

            body, content_type = get_metrics_response()
            return Response(content=body, media_type=content_type)

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
