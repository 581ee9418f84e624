"""Named constants for the audit pipeline package.

Centralizes all magic numbers so they can be tuned from one place.
Durations are in seconds.
"""

# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------
DEFAULT_MAX_PAGES = 50  # Cap on URLs accepted from discovery
MIN_ACCEPTED_URLS = 2  # A strategy must yield more than one distinct URL
STRATEGY_TIMEOUT_SECONDS = 20.0  # Hard timeout per discovery strategy
FETCH_TIMEOUT_SECONDS = 10.0  # robots/sitemap/homepage fetches
MAX_CHILD_SITEMAPS = 3  # Sitemap index fan-out (one extra level only)
CRAWLER_MAX_PAGES = 20
CRAWLER_MAX_DEPTH = 2
DISCOVERY_CACHE_TTL_SECONDS = 3600.0
SITE_RATE_LIMIT_PER_SECOND = 2.0  # Politeness towards the audited site
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SiteAuditBot/1.0)"

SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/sitemaps.xml")

# Paths that never hold auditable content
SKIP_PATH_PATTERNS = (
    "/wp-admin/",
    "/admin/",
    "/api/",
    "/feed/",
    "/rss/",
    ".xml",
    ".json",
    ".pdf",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".svg",
    ".webp",
    "/wp-content/",
    "/wp-includes/",
    "/node_modules/",
    "/assets/",
    "/static/",
    "/media/",
    "/images/",
    "/css/",
    "/js/",
    "/fonts/",
)
IGNORED_LINK_PREFIXES = ("#", "mailto:", "tel:", "javascript:", "data:")

# ---------------------------------------------------------------------------
# Batching / scheduling
# ---------------------------------------------------------------------------
DEFAULT_BATCH_SIZE = 25
DEFAULT_MAX_CONCURRENCY = 10  # Jobs in flight within one batch
MAX_CONCURRENT_REQUESTS = 2  # Batch requests processed at once
REQUEST_TIMEOUT_SECONDS = 1800.0  # Wall-clock budget per request
RESULT_RETENTION_SECONDS = 3600.0  # Terminal requests kept for delivery
SCHEDULER_IDLE_SECONDS = 30.0  # Scheduler wakes at least this often to evict

# ---------------------------------------------------------------------------
# Per-job retries
# ---------------------------------------------------------------------------
PAGE_TIMEOUT_SECONDS = 60.0  # Per attempt, includes waiting for quota
MAX_RETRIES = 2  # Transient failures only
RETRY_BACKOFF_SECONDS = 1.0  # Linear: 1s, 2s, ...

# ---------------------------------------------------------------------------
# Memory estimate
# ---------------------------------------------------------------------------
MEMORY_LIMIT_MB = 512.0
MEMORY_CLEANUP_INTERVAL = 5  # Batches between hygiene passes
RESULT_SIZE_ESTIMATE_KB = 8.0  # One retained page result
JOB_SIZE_ESTIMATE_KB = 2.0  # One in-flight job record
BASELINE_MEMORY_MB = 16.0  # Request bookkeeping independent of page count

# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------
DISCOVERY_PROGRESS_SHARE = 10.0  # Percent of the bar reserved for discovery
INITIAL_SECONDS_PER_PAGE = 2.0  # ETA before any job has finished

# ---------------------------------------------------------------------------
# PageSpeed Insights
# ---------------------------------------------------------------------------
PAGESPEED_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
PAGESPEED_CATEGORIES = ("performance", "accessibility", "best-practices", "seo")
PAGESPEED_MAX_CALLS = 100  # Google's documented default quota per minute
PAGESPEED_WINDOW_SECONDS = 60.0
PAGESPEED_MIN_DELAY_NO_KEY = 0.1

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
RESULTS_INSERT_CHUNK = 200
