"""Tests for app.services.audit_pipeline.discovery."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.models.audit import DiscoveryOptions, DiscoveryStrategyName
from app.services.audit_pipeline.discovery import (
    CrawlerStrategy,
    DiscoveryContext,
    DiscoveryEngine,
    DiscoveryStrategy,
    HtmlLinkStrategy,
    SitemapStrategy,
    default_strategies,
)

SITE = "https://example.com/"


def _urlset(*urls: str) -> str:
    entries = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'


def _homepage(*hrefs: str) -> str:
    anchors = "".join(f'<a href="{h}">link</a>' for h in hrefs)
    return f"<html><body><nav>{anchors}</nav></body></html>"


class FakeSite:
    """MockTransport handler serving a fixed route table and counting hits."""

    def __init__(
        self,
        routes: dict[str, tuple[int, str]],
        redirects: dict[str, str] | None = None,
    ) -> None:
        self.routes = routes
        self.redirects = redirects or {}
        self.hits: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.hits[url] = self.hits.get(url, 0) + 1
        if url in self.redirects:
            return httpx.Response(301, headers={"Location": self.redirects[url]})
        status, body = self.routes.get(url, (404, "not found"))
        return httpx.Response(status, text=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), follow_redirects=True)


class StaticStrategy(DiscoveryStrategy):
    """Strategy returning a fixed list, optionally slow or failing."""

    def __init__(self, name, urls=None, error=None, delay=0.0):
        self.name = name
        self.urls = urls or []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def attempt(self, ctx: DiscoveryContext) -> list[str]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.urls)


def _pages(count: int) -> list[str]:
    return [f"https://example.com/page-{n}" for n in range(count)]


def test_default_strategies_without_crawler():
    strategies = default_strategies()
    assert [type(s) for s in strategies] == [SitemapStrategy, HtmlLinkStrategy]


def test_default_strategies_with_crawler():
    strategies = default_strategies(crawler=MagicMock())
    assert isinstance(strategies[-1], CrawlerStrategy)


@pytest.mark.asyncio
class TestDiscoveryEngineHttp:
    async def test_sitemap_wins_without_fallthrough(self):
        site = FakeSite({"https://example.com/sitemap.xml": (200, _urlset(*_pages(12)))})

        async with site.client() as client:
            engine = DiscoveryEngine(client=client)
            result = await engine.discover("example.com")

        assert result.strategy_used == DiscoveryStrategyName.SITEMAP
        assert result.is_real is True
        assert result.urls == _pages(12)
        assert result.strategies_attempted == [DiscoveryStrategyName.SITEMAP]
        assert SITE not in site.hits

    async def test_robots_declared_sitemap_used_first(self):
        site = FakeSite(
            {
                "https://example.com/robots.txt": (200, "Sitemap: https://example.com/custom.xml"),
                "https://example.com/custom.xml": (200, _urlset(*_pages(3))),
            }
        )

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover(SITE)

        assert result.urls == _pages(3)
        assert "https://example.com/sitemap.xml" not in site.hits

    async def test_falls_back_to_homepage_links(self):
        site = FakeSite(
            {
                SITE: (
                    200,
                    _homepage("/", "/services", "/team/", "mailto:hi@example.com", "/contact", "/blog"),
                )
            }
        )

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover(SITE)

        assert result.strategy_used == DiscoveryStrategyName.HTML_LINKS
        assert result.is_real is True
        assert result.urls == [
            "https://example.com/",
            "https://example.com/services",
            "https://example.com/team",
            "https://example.com/contact",
            "https://example.com/blog",
        ]
        assert result.strategies_attempted == [
            DiscoveryStrategyName.SITEMAP,
            DiscoveryStrategyName.HTML_LINKS,
        ]

    async def test_malformed_sitemap_recorded_then_links_used(self):
        site = FakeSite(
            {
                "https://example.com/sitemap.xml": (200, "<html>oops</html>"),
                SITE: (200, _homepage("/a", "/b")),
            }
        )

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover(SITE)

        assert result.strategy_used == DiscoveryStrategyName.HTML_LINKS
        assert any(e.startswith("sitemap:") for e in result.errors)

    async def test_nothing_real_is_reported_honestly(self):
        site = FakeSite({SITE: (200, _homepage("/", "https://other.com/about"))})
        crawler = MagicMock()
        crawler.crawl = AsyncMock(return_value=[SITE])

        async with site.client() as client:
            engine = DiscoveryEngine(crawler=crawler, client=client)
            result = await engine.discover(SITE)

        assert result.is_real is False
        assert result.strategy_used == DiscoveryStrategyName.NONE
        assert result.urls == [SITE]
        assert result.strategies_attempted == [
            DiscoveryStrategyName.SITEMAP,
            DiscoveryStrategyName.HTML_LINKS,
            DiscoveryStrategyName.CRAWLER,
        ]

    async def test_homepage_error_recorded(self):
        site = FakeSite({SITE: (500, "down")})

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover(SITE)

        assert result.is_real is False
        assert result.urls == []
        assert any(e.startswith("htmlLinks:") for e in result.errors)

    async def test_apex_redirect_to_www_keeps_homepage_links(self):
        site = FakeSite(
            {"https://www.example.com/": (200, _homepage(*(f"/p{n}" for n in range(5))))},
            redirects={"https://example.com/": "https://www.example.com/"},
        )

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover("example.com")

        assert result.is_real is True
        assert result.strategy_used == DiscoveryStrategyName.HTML_LINKS
        assert result.urls == [f"https://www.example.com/p{n}" for n in range(5)]
        assert result.site_url == SITE

    async def test_www_sitemap_entries_accepted_for_bare_domain(self):
        www_pages = [f"https://www.example.com/page-{n}" for n in range(3)]
        site = FakeSite({"https://example.com/sitemap.xml": (200, _urlset(*www_pages))})

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover(SITE)

        assert result.strategy_used == DiscoveryStrategyName.SITEMAP
        assert result.urls == www_pages

    async def test_off_site_redirect_is_ignored(self):
        site = FakeSite(
            {"https://parked.example.net/": (200, _homepage("/a", "/b", "/c"))},
            redirects={"https://example.com/": "https://parked.example.net/"},
        )

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover(SITE)

        assert result.is_real is False
        assert result.urls == []

    async def test_unreached_homepage_is_never_the_fallback(self):
        site = FakeSite(
            {"https://example.com/sitemap.xml": (200, _urlset("https://example.com/blog/post"))}
        )

        async with site.client() as client:
            result = await DiscoveryEngine(client=client).discover(SITE)

        assert site.hits[SITE] == 1
        assert result.is_real is False
        assert result.urls == []

    async def test_crawler_reaching_root_allows_homepage_fallback(self):
        site = FakeSite({SITE: (500, "down")})
        crawler = MagicMock()
        crawler.crawl = AsyncMock(return_value=["https://www.example.com/"])

        async with site.client() as client:
            result = await DiscoveryEngine(crawler=crawler, client=client).discover(SITE)

        assert result.is_real is False
        assert result.urls == [SITE]

    async def test_crawler_single_inner_page_is_not_the_fallback(self):
        site = FakeSite({SITE: (500, "down")})
        crawler = MagicMock()
        crawler.crawl = AsyncMock(return_value=["https://example.com/about"])

        async with site.client() as client:
            result = await DiscoveryEngine(crawler=crawler, client=client).discover(SITE)

        assert result.urls == []

    async def test_rate_limiter_paces_every_request(self):
        site = FakeSite({"https://example.com/sitemap.xml": (200, _urlset(*_pages(4)))})
        limiter = MagicMock()
        limiter.throttle = AsyncMock()

        async with site.client() as client:
            await DiscoveryEngine(client=client, rate_limiter=limiter).discover(SITE)

        assert limiter.throttle.await_count == sum(site.hits.values())


@pytest.mark.asyncio
class TestDiscoveryEngineStrategies:
    async def test_single_url_is_not_accepted(self):
        first = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=[SITE])
        second = StaticStrategy(DiscoveryStrategyName.HTML_LINKS, urls=_pages(3))

        result = await DiscoveryEngine([first, second]).discover(SITE)

        assert result.strategy_used == DiscoveryStrategyName.HTML_LINKS
        assert first.calls == 1 and second.calls == 1

    async def test_duplicates_do_not_count_towards_acceptance(self):
        strategy = StaticStrategy(
            DiscoveryStrategyName.SITEMAP,
            urls=["https://example.com/a", "https://example.com/a/", "https://example.com/a#x"],
        )

        result = await DiscoveryEngine([strategy]).discover(SITE)

        assert result.is_real is False
        assert result.urls == []

    async def test_strategy_timeout_moves_on(self):
        slow = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=_pages(5), delay=5)
        fast = StaticStrategy(DiscoveryStrategyName.HTML_LINKS, urls=_pages(2))

        result = await DiscoveryEngine([slow, fast], strategy_timeout=0.01).discover(SITE)

        assert result.strategy_used == DiscoveryStrategyName.HTML_LINKS
        assert any("timed out" in e for e in result.errors)

    async def test_strategy_exception_moves_on(self):
        broken = StaticStrategy(DiscoveryStrategyName.SITEMAP, error=RuntimeError("boom"))
        working = StaticStrategy(DiscoveryStrategyName.HTML_LINKS, urls=_pages(2))

        result = await DiscoveryEngine([broken, working]).discover(SITE)

        assert result.is_real is True
        assert result.errors == ["sitemap: boom"]

    async def test_max_pages_truncates(self):
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=_pages(30))

        result = await DiscoveryEngine([strategy]).discover(SITE, DiscoveryOptions(max_pages=10))

        assert result.urls == _pages(10)

    async def test_external_urls_only_when_enabled(self):
        urls = ["https://other.com/x", "https://other.com/y", "https://example.com/z"]
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=urls)
        engine = DiscoveryEngine([strategy])

        internal = await engine.discover(SITE, DiscoveryOptions(enable_caching=False))
        external = await engine.discover(
            SITE, DiscoveryOptions(include_external=True, enable_caching=False)
        )

        assert internal.is_real is False
        assert external.urls == urls

    async def test_progress_reported_and_callback_errors_ignored(self):
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=_pages(2))
        seen = []

        def on_progress(percent, message, url):
            seen.append(percent)
            raise RuntimeError("listener broke")

        result = await DiscoveryEngine([strategy]).discover(SITE, on_progress=on_progress)

        assert result.is_real is True
        assert seen[-1] == 10.0


@pytest.mark.asyncio
class TestDiscoveryCache:
    async def test_repeat_discovery_served_from_cache(self):
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=_pages(4))
        engine = DiscoveryEngine([strategy])

        first = await engine.discover("example.com")
        first.urls.append("https://example.com/mutated")
        second = await engine.discover("https://example.com")

        assert strategy.calls == 1
        assert second.urls == _pages(4)
        assert second.strategy_used == DiscoveryStrategyName.SITEMAP

    async def test_cache_expires(self):
        clock = MagicMock(return_value=0.0)
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=_pages(4))
        engine = DiscoveryEngine([strategy], cache_ttl=60, clock=clock)

        await engine.discover(SITE)
        clock.return_value = 61.0
        await engine.discover(SITE)

        assert strategy.calls == 2

    async def test_caching_disabled(self):
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=_pages(4))
        engine = DiscoveryEngine([strategy])
        options = DiscoveryOptions(enable_caching=False)

        await engine.discover(SITE, options)
        await engine.discover(SITE, options)

        assert strategy.calls == 2

    async def test_unreal_results_are_not_cached(self):
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=[SITE])
        engine = DiscoveryEngine([strategy])

        await engine.discover(SITE)
        await engine.discover(SITE)

        assert strategy.calls == 2

    async def test_clear_cache(self):
        strategy = StaticStrategy(DiscoveryStrategyName.SITEMAP, urls=_pages(4))
        engine = DiscoveryEngine([strategy])

        await engine.discover(SITE)
        engine.clear_cache()
        await engine.discover(SITE)

        assert strategy.calls == 2
