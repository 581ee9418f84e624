"""Site intelligence: robots.txt and sitemap.xml parsing.

Pre-audit analysis that finds a site's declared pages.
No crawling and no scoring: pure HTTP + parsing.
"""

import html
import logging
import re
from typing import Optional
from urllib.parse import urljoin

import httpx

from app.models.audit import RobotsData
from app.services.audit_pipeline.constants import MAX_CHILD_SITEMAPS, SITEMAP_PATHS

logger = logging.getLogger(__name__)

_SITEMAP_BLOCK = re.compile(r"<(?:\w+:)?sitemap\b[^>]*>(.*?)</(?:\w+:)?sitemap>", re.S | re.I)
_URL_BLOCK = re.compile(r"<(?:\w+:)?url\b[^>]*>(.*?)</(?:\w+:)?url>", re.S | re.I)
_LOC = re.compile(r"<(?:\w+:)?loc>\s*(?:<!\[CDATA\[)?\s*(.*?)\s*(?:\]\]>)?\s*</(?:\w+:)?loc>", re.S | re.I)


class SitemapParseError(ValueError):
    """Content is not a sitemap or sitemap index."""


async def fetch_robots_data(
    client: httpx.AsyncClient, site_url: str
) -> Optional[RobotsData]:
    """Fetch and parse robots.txt for *site_url*.

    Returns ``None`` if robots.txt is inaccessible.
    """
    robots_url = urljoin(site_url, "/robots.txt")

    try:
        resp = await client.get(robots_url)
        if resp.status_code != 200:
            return None
        return parse_robots_txt(resp.text)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch robots.txt for {site_url}: {e}")
        return None


def parse_robots_txt(text: str) -> RobotsData:
    """Collect the ``Sitemap:`` declarations from robots.txt content.

    Other directives are ignored; discovery does not enforce crawl rules.
    """
    sitemaps: list[str] = []

    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if line.lower().startswith("sitemap:"):
            url = line.split(":", 1)[1].strip()
            if url:
                sitemaps.append(url)

    return RobotsData(sitemaps=sitemaps)


def parse_sitemap(content: str) -> tuple[list[str], list[str]]:
    """Split sitemap XML into ``(page_urls, child_sitemap_urls)``.

    Document order is preserved.  Raises ``SitemapParseError`` when the
    content holds neither ``<url>`` nor ``<sitemap>`` entries.
    """
    children = [
        html.unescape(loc)
        for block in _SITEMAP_BLOCK.findall(content)
        for loc in _LOC.findall(block)[:1]
    ]
    pages = [
        html.unescape(loc)
        for block in _URL_BLOCK.findall(content)
        for loc in _LOC.findall(block)[:1]
    ]
    if not children and not pages:
        if "<urlset" in content or "<sitemapindex" in content:
            return [], []
        raise SitemapParseError("no <urlset> or <sitemapindex> found")
    return pages, children


async def fetch_sitemap_urls(
    client: httpx.AsyncClient,
    sitemap_url: str,
    *,
    max_urls: int = 100,
    _depth: int = 0,
) -> list[str]:
    """Fetch a sitemap and extract up to *max_urls* page URLs.

    Handles both XML sitemaps and sitemap index files.  Index recursion is a
    single level deep and follows at most ``MAX_CHILD_SITEMAPS`` children.
    Network errors and non-200 responses yield an empty list; malformed
    content raises ``SitemapParseError``.
    """
    try:
        resp = await client.get(sitemap_url)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch sitemap {sitemap_url}: {e}")
        return []
    if resp.status_code != 200:
        logger.debug(f"Sitemap {sitemap_url} returned HTTP {resp.status_code}")
        return []

    pages, children = parse_sitemap(resp.text)
    urls = pages[:max_urls]

    if children and _depth == 0:
        for child_url in children[:MAX_CHILD_SITEMAPS]:
            if len(urls) >= max_urls:
                break
            try:
                urls.extend(
                    await fetch_sitemap_urls(
                        client,
                        child_url,
                        max_urls=max_urls - len(urls),
                        _depth=_depth + 1,
                    )
                )
            except SitemapParseError as e:
                logger.warning(f"Skipping malformed child sitemap {child_url}: {e}")

    return urls[:max_urls]


def sitemap_candidates(site_url: str, robots: Optional[RobotsData]) -> list[str]:
    """Sitemaps declared in robots.txt first, then the conventional paths."""
    candidates: list[str] = []
    if robots:
        candidates.extend(robots.sitemaps)
    for path in SITEMAP_PATHS:
        url = urljoin(site_url, path)
        if url not in candidates:
            candidates.append(url)
    return candidates
