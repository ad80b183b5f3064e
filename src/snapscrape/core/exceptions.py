"""Application-wide exception hierarchy for SnapScrape.

All custom exceptions subclass ``SnapScrapeError``, enabling consistent
error handling and structured logging across the service.  Each class
carries the HTTP status the API layer responds with when the error escapes
a request handler.

Hierarchy::

    SnapScrapeError                      (500)
    ├── InvalidInputError                (400)
    ├── AdmissionDeniedError             (429, key)
    ├── ResourceUnavailableError         (500, attempts)
    ├── RenderError                      (502)
    │   ├── ExecutionContextDestroyedError
    │   └── RenderRetriesExhaustedError  (url, attempts)
    ├── CollaboratorError                (502)
    │   ├── StorageError
    │   └── LLMFilterError
    └── IdentityExhaustedError           (500)
"""

from __future__ import annotations


class SnapScrapeError(Exception):
    """Base class for all SnapScrape exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """

    http_status: int = 500


# ---------------------------------------------------------------------------
# Request-level errors
# ---------------------------------------------------------------------------


class InvalidInputError(SnapScrapeError):
    """Raised when the target URL is missing or malformed."""

    http_status = 400


class AdmissionDeniedError(SnapScrapeError):
    """Raised when a fixed-window rate limiter denies a request.

    Args:
        key: The rate-limit key that was denied (e.g. a client IP).
    """

    http_status = 429

    def __init__(self, key: str) -> None:
        super().__init__("Rate limit exceeded")
        self.key = key


class ResourceUnavailableError(SnapScrapeError):
    """Raised when no headless browser could be acquired.

    Args:
        message: Human-readable description of the failure.
        attempts: Number of launch/connect attempts made.
    """

    http_status = 500

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Rendering errors
# ---------------------------------------------------------------------------


class RenderError(SnapScrapeError):
    """Base class for failures while rendering or extracting a page."""

    http_status = 502


class ExecutionContextDestroyedError(RenderError):
    """The page's JavaScript execution context was destroyed mid-extraction.

    Typically caused by in-page navigation racing the extraction.  This is
    the only render failure that is retried (after a reload).
    """


class RenderRetriesExhaustedError(RenderError):
    """Raised when every render attempt hit a destroyed execution context.

    Args:
        url: The page that could not be rendered.
        attempts: Number of attempts made.
    """

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"Failed to render {url} after {attempts} attempts")
        self.url = url
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Collaborator errors
# ---------------------------------------------------------------------------


class CollaboratorError(SnapScrapeError):
    """Base class for failures of an external collaborator service."""

    http_status = 502


class StorageError(CollaboratorError):
    """Raised when the durable key-value store cannot be read or written."""


class LLMFilterError(CollaboratorError):
    """Raised when the LLM content filter request fails.

    Args:
        message: Description of the failure.
        status_code: Upstream HTTP status code, if a response was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Identity errors
# ---------------------------------------------------------------------------


class IdentityExhaustedError(SnapScrapeError):
    """Raised when no unblocked identity could be generated.

    Args:
        attempts: Number of candidate identities generated and rejected.
    """

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"No unblocked browser identity found after {attempts} candidates"
        )
        self.attempts = attempts
