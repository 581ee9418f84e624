"""CRAWL4AI-based crawler used as the last discovery strategy.

Breadth-first traversal bounded by depth and page count.  Fetches run through
a ``ConcurrencyLimiter`` and a ``RateLimiter`` so the audited site is not
hammered.  Only URLs of pages that actually loaded are reported.
"""

import asyncio
import logging
from typing import Optional

from crawl4ai import AsyncWebCrawler, BrowserConfig, CrawlerRunConfig

from app.services.audit_pipeline.concurrency import ConcurrencyLimiter
from app.services.audit_pipeline.constants import (
    FETCH_TIMEOUT_SECONDS,
    SITE_RATE_LIMIT_PER_SECOND,
)
from app.services.audit_pipeline.rate_limiter import RateLimiter
from app.services.audit_pipeline.url_utils import (
    is_auditable_url,
    normalize_url,
    resolve_link,
)

logger = logging.getLogger(__name__)

CRAWL_CONCURRENCY = 3


class CrawlCoordinator:
    """Coordinates bounded crawling using CRAWL4AI with concurrency."""

    def __init__(
        self,
        *,
        concurrency: int = CRAWL_CONCURRENCY,
        rate_limiter: Optional[RateLimiter] = None,
        page_timeout: float = FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self._concurrency = concurrency
        self._rate_limiter = rate_limiter or RateLimiter.per_second(
            SITE_RATE_LIMIT_PER_SECOND, name="crawler"
        )
        self._page_timeout = page_timeout

    async def crawl(self, site_url: str, max_pages: int, max_depth: int) -> list[str]:
        """Crawl *site_url* level by level and return the pages that loaded."""
        found: list[str] = []
        visited: set[str] = {normalize_url(site_url)}
        frontier: list[str] = [site_url]
        limiter = ConcurrencyLimiter(self._concurrency)

        browser_config = BrowserConfig(headless=True, verbose=False)
        crawler_config = CrawlerRunConfig(exclude_external_links=True)

        async def _fetch_one(crawler: AsyncWebCrawler, url: str) -> list[str]:
            """Fetch a single URL and return its same-site links."""
            await self._rate_limiter.throttle()
            try:
                result = await asyncio.wait_for(
                    crawler.arun(url, config=crawler_config),
                    timeout=self._page_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Timeout crawling {url}")
                return []
            except Exception as e:
                logger.warning(f"Error crawling {url}: {e}")
                return []

            if not result.success:
                return []
            if len(found) < max_pages:
                found.append(url)

            links = (result.links or {}).get("internal", [])
            return [
                href
                for href in (resolve_link(link.get("href"), url) for link in links)
                if href and is_auditable_url(href, site_url)
            ]

        async with AsyncWebCrawler(config=browser_config) as crawler:
            depth = 0
            while frontier and depth <= max_depth and len(found) < max_pages:
                futures = [
                    limiter.add(lambda url=url: _fetch_one(crawler, url))
                    for url in frontier
                ]
                next_frontier: list[str] = []
                for links in await asyncio.gather(*futures):
                    for link in links:
                        key = normalize_url(link)
                        if key not in visited:
                            visited.add(key)
                            next_frontier.append(link)

                logger.info(
                    f"Crawled depth {depth} of {site_url}: "
                    f"{len(found)} pages, {len(next_frontier)} new links"
                )
                frontier = next_frontier[: max(0, max_pages - len(found))]
                depth += 1

        return found
