"""Structured JSON logging for SnapScrape, built on structlog.

``configure_logging()`` is called once when the API module is imported and
again from ``create_app()`` with the configured level.  Both logging APIs
end up in the same JSON stream:

    import logging
    logger = logging.getLogger(__name__)
    logger.warning("crawl aborted at %s", url)

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("identity_rotated", selection="reuse")

The HTTP middleware in ``api/main.py`` sets ``request_id_var`` so every
record emitted while serving a request carries the same ``request_id``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID set by the HTTP middleware and read by :func:`_inject_request_id`."""


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "api_key",
    "authorization",
    "bearer",
    "password",
    "secret",
    "security_token",
    "token",
})
"""Lower-cased substrings marking event-dict keys whose values are redacted."""

_REDACTED = "[REDACTED]"


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys, top level and one dict deep."""
    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in _SECRET_SUBSTRINGS):
            event_dict[key] = _REDACTED
            continue
        value = event_dict[key]
        if isinstance(value, dict):
            for nested_key in list(value.keys()):
                if any(secret in str(nested_key).lower() for secret in _SECRET_SUBSTRINGS):
                    value[nested_key] = _REDACTED
    return event_dict


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Add the current request ID when one is set and not already bound."""
    rid = request_id_var.get()
    if rid is not None and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog and stdlib logging to share one renderer.

    Non-DEBUG levels emit newline-delimited JSON; ``DEBUG`` switches to
    structlog's coloured ``ConsoleRenderer`` for local work.  Every record
    carries ``timestamp``, ``level``, ``logger`` and ``event``, plus
    ``request_id`` inside a request.

    Safe to call repeatedly: the root handler list is replaced each time.

    Args:
        log_level: Logging verbosity string, case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_development:
        final_renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(
            colors=True,
        )
    else:
        final_renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if not is_development:
        for noisy_logger in ("uvicorn.access", "httpx", "httpcore", "trafilatura"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
