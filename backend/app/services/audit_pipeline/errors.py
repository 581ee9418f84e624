"""Error taxonomy for discovery and page audits.

Request-fatal errors (``DiscoveryExhausted``, ``ResourceExhausted``) end a
batch request.  ``PageAuditError`` subclasses are per-job: transient ones are
retried, permanent ones are recorded as a page failure.
"""

import asyncio
from typing import Optional

import httpx

from app.models.audit import AuditErrorKind


class AuditPipelineError(Exception):
    """Base class for all pipeline errors."""


class DiscoveryExhausted(AuditPipelineError):
    """No discovery strategy produced a usable URL."""


class ResourceExhausted(AuditPipelineError):
    """A configured ceiling (memory, wall-clock) was hit."""


class PageAuditError(AuditPipelineError):
    """A single page audit failed."""

    error_kind: AuditErrorKind = AuditErrorKind.INVALID

    def __init__(self, url: str, message: str = "") -> None:
        self.url = url
        self.message = message or self.error_kind.value
        super().__init__(f"{url}: {self.message}")


class TransientPageError(PageAuditError):
    """Worth retrying."""


class PageTimeout(TransientPageError):
    error_kind = AuditErrorKind.TIMEOUT


class PageNetworkError(TransientPageError):
    error_kind = AuditErrorKind.NETWORK


class PageRateLimited(TransientPageError):
    error_kind = AuditErrorKind.RATE_LIMITED


class PageInvalid(PageAuditError):
    """4xx, unparseable response or invalid URL. Never retried."""

    error_kind = AuditErrorKind.INVALID


class PageParseError(PageInvalid):
    error_kind = AuditErrorKind.PARSE


_ERRORS_BY_KIND: dict[AuditErrorKind, type[PageAuditError]] = {
    AuditErrorKind.TIMEOUT: PageTimeout,
    AuditErrorKind.NETWORK: PageNetworkError,
    AuditErrorKind.RATE_LIMITED: PageRateLimited,
    AuditErrorKind.PARSE: PageParseError,
    AuditErrorKind.INVALID: PageInvalid,
}


def error_for_kind(
    kind: AuditErrorKind, url: str, message: Optional[str] = None
) -> PageAuditError:
    """Build the exception matching a typed provider failure."""
    return _ERRORS_BY_KIND.get(kind, PageInvalid)(url, message or "")


def classify_status(status_code: int, url: str) -> Optional[PageAuditError]:
    """Map an HTTP status to an audit error, or ``None`` for success."""
    if status_code < 400:
        return None
    if status_code == 429:
        return PageRateLimited(url, "HTTP 429")
    if status_code >= 500:
        return PageNetworkError(url, f"HTTP {status_code}")
    return PageInvalid(url, f"HTTP {status_code}")


def classify_exception(exc: BaseException, url: str) -> PageAuditError:
    """Map an arbitrary exception raised during an audit to the taxonomy."""
    if isinstance(exc, PageAuditError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return PageTimeout(url, str(exc) or "timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        classified = classify_status(exc.response.status_code, url)
        if classified is not None:
            return classified
    if isinstance(exc, httpx.TransportError):
        return PageNetworkError(url, str(exc) or exc.__class__.__name__)
    if isinstance(exc, ValueError):
        return PageParseError(url, str(exc))
    return PageInvalid(url, f"{exc.__class__.__name__}: {exc}")
