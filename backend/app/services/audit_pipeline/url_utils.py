"""URL normalization and validation for discovered pages."""

from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse

from app.services.audit_pipeline.constants import (
    IGNORED_LINK_PREFIXES,
    SKIP_PATH_PATTERNS,
)


def site_root(domain: str) -> str:
    """Turn ``example.com`` or ``https://example.com/x`` into ``https://example.com/``."""
    domain = domain.strip()
    base = domain if domain.startswith(("http://", "https://")) else f"https://{domain}"
    parsed = urlparse(base)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}/"


def normalize_url(url: str) -> str:
    """Canonical form used for deduplication.

    Lower-cases scheme and host, drops the fragment and any trailing slash on
    non-root paths.  The query string is kept.
    """
    parsed = urlparse(url.strip())
    path = parsed.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, "", parsed.query, "")
    )


def resolve_link(href: Optional[str], base_url: str) -> Optional[str]:
    """Resolve an anchor target against the page it was found on."""
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(IGNORED_LINK_PREFIXES):
        return None
    try:
        return urljoin(base_url, href)
    except ValueError:
        return None


def bare_host(url: str) -> str:
    """Lower-cased host of *url* without a leading ``www.``."""
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def same_host(url: str, site_url: str) -> bool:
    """``example.com`` and ``www.example.com`` count as the same site."""
    return bare_host(url) == bare_host(site_url)


def is_site_root(url: str, site_url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return same_host(url, site_url) and parsed.path in ("", "/") and not parsed.query


def is_auditable_url(
    url: str, site_url: str, *, include_external: bool = False
) -> bool:
    """Absolute, same scheme, same host (unless external allowed), content page."""
    try:
        parsed = urlparse(url)
        site = urlparse(site_url)
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    if not include_external:
        if parsed.scheme != site.scheme:
            return False
        if not same_host(url, site_url):
            return False

    path = parsed.path.lower()
    return not any(pattern in path for pattern in SKIP_PATH_PATTERNS)


def dedupe_urls(
    candidates: list[str], site_url: str, *, include_external: bool = False
) -> list[str]:
    """Validate and deduplicate, keeping first-seen order.

    A page listed under both the bare and the ``www.`` host is kept once,
    in the form it was first seen.
    """
    seen: set[tuple[str, str, str, str]] = set()
    urls: list[str] = []
    for candidate in candidates:
        if not candidate or not is_auditable_url(
            candidate, site_url, include_external=include_external
        ):
            continue
        normalized = normalize_url(candidate)
        parsed = urlparse(normalized)
        key = (parsed.scheme, bare_host(normalized), parsed.path, parsed.query)
        if key in seen:
            continue
        seen.add(key)
        urls.append(normalized)
    return urls
