"""Audit provider boundary.

``AuditExecutor`` is the narrow contract the batch manager depends on.
``PageSpeedAuditProvider`` implements it on top of the PageSpeed Insights
API and reports failures as typed outcomes instead of raising.  Pacing
against the PSI quota is done by the caller through a ``RateLimiter``.
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from app.models.audit import AuditErrorKind, PageAuditOutcome
from app.services.audit_pipeline.constants import (
    PAGE_TIMEOUT_SECONDS,
    PAGESPEED_CATEGORIES,
    PAGESPEED_ENDPOINT,
)
from app.services.audit_pipeline.errors import classify_exception, classify_status

logger = logging.getLogger(__name__)


class AuditExecutor(Protocol):
    """Audits one URL and returns scores or a typed failure."""

    async def audit_page(self, url: str) -> PageAuditOutcome:
        ...


class PageSpeedAuditProvider:
    """Runs Lighthouse through PageSpeed Insights and keeps category scores."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        strategy: str = "mobile",
        timeout: float = PAGE_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.strategy = strategy
        self.timeout = timeout
        self._client = client

    async def audit_page(self, url: str) -> PageAuditOutcome:
        params: list[tuple[str, str]] = [("url", url), ("strategy", self.strategy)]
        params.extend(("category", category) for category in PAGESPEED_CATEGORIES)
        if self.api_key:
            params.append(("key", self.api_key))

        try:
            payload = await self._get(params)
        except Exception as e:
            error = classify_exception(e, url)
            logger.warning(f"PageSpeed audit failed for {url}: {error.message}")
            return PageAuditOutcome(
                success=False, error_kind=error.error_kind, message=error.message
            )

        try:
            scores = parse_category_scores(payload)
        except ValueError as e:
            return PageAuditOutcome(
                success=False, error_kind=AuditErrorKind.PARSE, message=str(e)
            )

        lighthouse = payload.get("lighthouseResult", {})
        return PageAuditOutcome(
            success=True,
            scores=scores,
            details={
                "final_url": lighthouse.get("finalUrl") or lighthouse.get("finalDisplayedUrl"),
                "fetch_time": lighthouse.get("fetchTime"),
            },
        )

    async def _get(self, params: list[tuple[str, str]]) -> dict[str, Any]:
        if self._client is not None:
            resp = await self._client.get(PAGESPEED_ENDPOINT, params=params)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(PAGESPEED_ENDPOINT, params=params)

        error = classify_status(resp.status_code, str(params[0][1]))
        if error is not None:
            raise error
        return resp.json()


def parse_category_scores(payload: dict[str, Any]) -> dict[str, int]:
    """Turn Lighthouse category scores (0..1) into 0..100 integers."""
    categories = (payload.get("lighthouseResult") or {}).get("categories")
    if not isinstance(categories, dict) or not categories:
        raise ValueError("PageSpeed response has no Lighthouse categories")

    scores: dict[str, int] = {}
    for key, category in categories.items():
        score = category.get("score") if isinstance(category, dict) else None
        if score is None:
            continue
        scores[key.replace("-", "_")] = round(float(score) * 100)
    if not scores:
        raise ValueError("PageSpeed response has no scored categories")
    return scores
