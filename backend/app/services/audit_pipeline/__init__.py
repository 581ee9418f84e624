"""Site discovery and batch audit pipeline.

Usage:
    from app.services.audit_pipeline import get_batch_audit_manager

    manager = await get_batch_audit_manager()
    await manager.start()
    request_id = await manager.submit("example.com", Priority.HIGH)
    report = await manager.wait_for(request_id)
"""

import logging

from app.config import get_settings
from app.db.supabase import get_async_supabase_client
from app.services.audit_pipeline.audit_executor import AuditExecutor, PageSpeedAuditProvider
from app.services.audit_pipeline.batch_manager import BatchAuditManager, BatchLimits
from app.services.audit_pipeline.concurrency import ConcurrencyLimiter
from app.services.audit_pipeline.crawl_coordinator import CrawlCoordinator
from app.services.audit_pipeline.discovery import DiscoveryEngine
from app.services.audit_pipeline.rate_limiter import RateLimiter
from app.services.audit_pipeline.storage import AuditStorage

logger = logging.getLogger(__name__)

__all__ = [
    "AuditExecutor",
    "BatchAuditManager",
    "BatchLimits",
    "ConcurrencyLimiter",
    "DiscoveryEngine",
    "PageSpeedAuditProvider",
    "RateLimiter",
    "get_batch_audit_manager",
    "reset_batch_audit_manager",
]

_manager: BatchAuditManager | None = None


async def get_batch_audit_manager() -> BatchAuditManager:
    """Get singleton manager, wired from settings."""
    global _manager
    if _manager is None:
        settings = get_settings()

        # One limiter per external dependency
        pagespeed_limiter = RateLimiter(
            settings.pagespeed_max_calls,
            settings.pagespeed_window_seconds,
            settings.pagespeed_min_delay_seconds,
            name="pagespeed",
        )
        site_limiter = RateLimiter.per_second(settings.site_rate_limit_per_second, name="site")

        discovery_engine = DiscoveryEngine(
            crawler=CrawlCoordinator(rate_limiter=site_limiter),
            rate_limiter=site_limiter,
            strategy_timeout=settings.discovery_strategy_timeout_seconds,
            cache_ttl=settings.discovery_cache_ttl_seconds,
            user_agent=settings.user_agent,
        )
        provider = PageSpeedAuditProvider(
            api_key=settings.pagespeed_api_key,
            strategy=settings.pagespeed_strategy,
            timeout=settings.page_timeout_seconds,
        )

        storage = None
        try:
            supabase = await get_async_supabase_client()
            if supabase is not None:
                storage = AuditStorage(supabase)
        except Exception as e:
            logger.warning(f"Supabase unavailable, audit results kept in memory only: {e}")

        _manager = BatchAuditManager(
            discovery_engine=discovery_engine,
            audit_executor=provider,
            rate_limiter=pagespeed_limiter,
            storage=storage,
            limits=BatchLimits.from_settings(settings),
        )
    return _manager


def reset_batch_audit_manager() -> None:
    """Reset manager for testing."""
    global _manager
    _manager = None
