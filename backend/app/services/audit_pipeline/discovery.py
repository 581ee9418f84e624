"""Multi-strategy URL discovery with graceful fallback.

Strategies are tried in order (sitemap, homepage links, crawler), each under
its own timeout.  The first one yielding more than one distinct, valid URL
wins.  When none does, the result says so (``is_real=False``): no URL list is
ever invented from path patterns.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Protocol

import httpx
from bs4 import BeautifulSoup

from app.models.audit import DiscoveryOptions, DiscoveryResult, DiscoveryStrategyName
from app.services.audit_pipeline.constants import (
    DEFAULT_USER_AGENT,
    DISCOVERY_CACHE_TTL_SECONDS,
    DISCOVERY_PROGRESS_SHARE,
    FETCH_TIMEOUT_SECONDS,
    MIN_ACCEPTED_URLS,
    STRATEGY_TIMEOUT_SECONDS,
)
from app.services.audit_pipeline.rate_limiter import RateLimiter
from app.services.audit_pipeline.site_intelligence import (
    SitemapParseError,
    fetch_robots_data,
    fetch_sitemap_urls,
    sitemap_candidates,
)
from app.services.audit_pipeline.url_utils import (
    dedupe_urls,
    is_site_root,
    normalize_url,
    resolve_link,
    same_host,
    site_root,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str, Optional[str]], None]


class SiteCrawler(Protocol):
    """Crawler collaborator: returns URLs of pages it actually loaded."""

    async def crawl(self, site_url: str, max_pages: int, max_depth: int) -> list[str]:
        ...


@dataclass
class DiscoveryContext:
    """Everything a strategy needs for one attempt.

    ``site_url`` follows a same-site homepage redirect, so later validation
    uses the root the site actually serves.  ``homepage_reached`` is set once
    a strategy has loaded that root.
    """

    site_url: str
    options: DiscoveryOptions
    client: httpx.AsyncClient
    homepage_reached: bool = False


# =====================================================================
# Strategies
# =====================================================================


class DiscoveryStrategy(ABC):
    """One way of finding a site's real pages.

    ``attempt`` returns raw candidate URLs in source order; validation and
    deduplication are applied uniformly by the engine.
    """

    name: DiscoveryStrategyName

    @abstractmethod
    async def attempt(self, ctx: DiscoveryContext) -> list[str]:
        """Return candidate URLs, or raise on failure."""


class SitemapStrategy(DiscoveryStrategy):
    """Pages listed in robots.txt-declared or conventional sitemaps."""

    name = DiscoveryStrategyName.SITEMAP

    async def attempt(self, ctx: DiscoveryContext) -> list[str]:
        robots = await fetch_robots_data(ctx.client, ctx.site_url)
        max_urls = max(ctx.options.max_pages * 2, 100)

        last_error: Optional[SitemapParseError] = None
        for sitemap_url in sitemap_candidates(ctx.site_url, robots):
            try:
                urls = await fetch_sitemap_urls(ctx.client, sitemap_url, max_urls=max_urls)
            except SitemapParseError as e:
                logger.warning(f"Malformed sitemap {sitemap_url}: {e}")
                last_error = e
                continue
            if urls:
                logger.info(f"Sitemap {sitemap_url} listed {len(urls)} URLs")
                return urls

        if last_error is not None:
            raise last_error
        return []


class HtmlLinkStrategy(DiscoveryStrategy):
    """Anchors on the homepage, in DOM order."""

    name = DiscoveryStrategyName.HTML_LINKS

    async def attempt(self, ctx: DiscoveryContext) -> list[str]:
        resp = await ctx.client.get(ctx.site_url)
        resp.raise_for_status()

        base_url = str(resp.url)
        served_root = site_root(base_url)
        if not same_host(served_root, ctx.site_url):
            logger.warning(f"Homepage {ctx.site_url} redirected off-site to {served_root}")
            return []
        if served_root != ctx.site_url:
            logger.info(f"Homepage {ctx.site_url} redirected to {served_root}")
            ctx.site_url = served_root
        ctx.homepage_reached = True

        soup = BeautifulSoup(resp.text, "html.parser")
        links: list[str] = []
        for anchor in soup.find_all("a", href=True):
            url = resolve_link(anchor.get("href"), base_url)
            if url:
                links.append(url)
        return links


class CrawlerStrategy(DiscoveryStrategy):
    """Bounded traversal through the crawler collaborator."""

    name = DiscoveryStrategyName.CRAWLER

    def __init__(self, crawler: SiteCrawler) -> None:
        self.crawler = crawler

    async def attempt(self, ctx: DiscoveryContext) -> list[str]:
        urls = await self.crawler.crawl(
            ctx.site_url,
            ctx.options.crawler_max_pages,
            ctx.options.crawler_max_depth,
        )
        if any(is_site_root(url, ctx.site_url) for url in urls):
            ctx.homepage_reached = True
        return urls


def default_strategies(crawler: Optional[SiteCrawler] = None) -> list[DiscoveryStrategy]:
    strategies: list[DiscoveryStrategy] = [SitemapStrategy(), HtmlLinkStrategy()]
    if crawler is not None:
        strategies.append(CrawlerStrategy(crawler))
    return strategies


# =====================================================================
# Engine
# =====================================================================


class DiscoveryEngine:
    """Runs discovery strategies in order and caches real results."""

    def __init__(
        self,
        strategies: Optional[list[DiscoveryStrategy]] = None,
        *,
        crawler: Optional[SiteCrawler] = None,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        strategy_timeout: float = STRATEGY_TIMEOUT_SECONDS,
        cache_ttl: float = DISCOVERY_CACHE_TTL_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.strategies = strategies if strategies is not None else default_strategies(crawler)
        self._client = client
        self._rate_limiter = rate_limiter
        self._strategy_timeout = strategy_timeout
        self._cache_ttl = cache_ttl
        self._user_agent = user_agent
        self._clock = clock
        self._cache: dict[tuple, tuple[float, DiscoveryResult]] = {}

        if client is not None and rate_limiter is not None:
            hooks = client.event_hooks
            hooks.setdefault("request", []).append(self._throttle_hook)
            client.event_hooks = hooks

    async def discover(
        self,
        site_url: str,
        options: Optional[DiscoveryOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DiscoveryResult:
        """Resolve the real pages of *site_url*.

        Never raises for strategy failures: they are logged, recorded in
        ``errors`` and the next strategy is tried.
        """
        site_url = site_root(site_url)
        options = options or DiscoveryOptions()
        cache_key = self._cache_key(site_url, options)

        if options.enable_caching:
            cached = self._cache_get(cache_key)
            if cached is not None:
                logger.info(f"Discovery cache hit for {site_url}")
                _notify(on_progress, DISCOVERY_PROGRESS_SHARE, "Using cached discovery", site_url)
                return cached

        result = DiscoveryResult(site_url=site_url)

        async with self._client_scope() as client:
            ctx = DiscoveryContext(site_url=site_url, options=options, client=client)
            total = len(self.strategies)

            for index, strategy in enumerate(self.strategies):
                _notify(
                    on_progress,
                    DISCOVERY_PROGRESS_SHARE * index / max(total, 1),
                    f"Trying {strategy.name.value} discovery",
                    site_url,
                )
                result.strategies_attempted.append(strategy.name)

                try:
                    candidates = await asyncio.wait_for(
                        strategy.attempt(ctx), timeout=self._strategy_timeout
                    )
                except asyncio.TimeoutError:
                    message = f"{strategy.name.value}: timed out after {self._strategy_timeout}s"
                    logger.warning(f"Discovery strategy {message} for {site_url}")
                    result.errors.append(message)
                    continue
                except Exception as e:
                    message = f"{strategy.name.value}: {e}"
                    logger.warning(f"Discovery strategy {message} for {site_url}")
                    result.errors.append(message)
                    continue

                urls = dedupe_urls(
                    candidates, ctx.site_url, include_external=options.include_external
                )
                if len(urls) >= MIN_ACCEPTED_URLS:
                    result.urls = urls[: options.max_pages]
                    result.strategy_used = strategy.name
                    result.is_real = True
                    logger.info(
                        f"Discovered {len(result.urls)} URLs for {site_url} "
                        f"via {strategy.name.value}"
                    )
                    break

                logger.info(
                    f"Strategy {strategy.name.value} yielded {len(urls)} URL(s) "
                    f"for {site_url}, falling back"
                )

        if not result.is_real:
            result.urls = [normalize_url(ctx.site_url)] if ctx.homepage_reached else []
            logger.warning(
                f"Discovery found no real page list for {site_url} "
                f"(attempted: {[s.value for s in result.strategies_attempted]})"
            )
        elif options.enable_caching:
            self._cache[cache_key] = (self._clock(), result.model_copy(deep=True))

        _notify(
            on_progress,
            DISCOVERY_PROGRESS_SHARE,
            f"Discovery finished: {len(result.urls)} URLs via {result.strategy_used.value}",
            site_url,
        )
        return result

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cache_get(self, key: tuple) -> Optional[DiscoveryResult]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if self._clock() - stored_at > self._cache_ttl:
            del self._cache[key]
            return None
        return result.model_copy(deep=True)

    @staticmethod
    def _cache_key(site_url: str, options: DiscoveryOptions) -> tuple:
        return (
            site_url,
            options.include_external,
            options.max_pages,
            options.crawler_max_pages,
            options.crawler_max_depth,
        )

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return

        hooks = {"request": [self._throttle_hook]} if self._rate_limiter else {}
        async with httpx.AsyncClient(
            timeout=FETCH_TIMEOUT_SECONDS,
            follow_redirects=True,
            headers={"User-Agent": self._user_agent},
            event_hooks=hooks,
        ) as client:
            yield client

    async def _throttle_hook(self, request: httpx.Request) -> None:
        await self._rate_limiter.throttle()


def _notify(
    callback: Optional[ProgressCallback],
    percent: float,
    message: str,
    current_url: Optional[str] = None,
) -> None:
    if callback is None:
        return
    try:
        callback(percent, message, current_url)
    except Exception as e:
        logger.warning(f"Progress callback raised: {e}")
