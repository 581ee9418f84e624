"""Batch audit data models: discovery, jobs, requests, progress and reports."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    """Batch request priority tiers."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}


class RequestStatus(str, Enum):
    """Lifecycle of a batch audit request."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RequestStatus.COMPLETED,
            RequestStatus.FAILED,
            RequestStatus.CANCELLED,
        )


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProgressPhase(str, Enum):
    DISCOVERING = "discovering"
    AUDITING = "auditing"
    COMPLETED = "completed"


class DiscoveryStrategyName(str, Enum):
    """Which discovery method produced the URL list."""

    SITEMAP = "sitemap"
    HTML_LINKS = "htmlLinks"
    CRAWLER = "crawler"
    NONE = "none"


class AuditErrorKind(str, Enum):
    """Typed page audit failures."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    PARSE = "parse"
    RATE_LIMITED = "rate_limited"
    INVALID = "invalid"


# =============================================================================
# Discovery
# =============================================================================


class DiscoveryOptions(BaseModel):
    """Knobs for one discovery run."""

    max_pages: int = Field(default=50, ge=1, le=1000)
    include_external: bool = Field(
        default=False, description="Accept URLs on other hosts"
    )
    enable_caching: bool = Field(default=True)
    crawler_max_pages: int = Field(default=20, ge=1)
    crawler_max_depth: int = Field(default=2, ge=0)


class DiscoveryResult(BaseModel):
    """
    Outcome of URL discovery for one site.

    ``is_real`` is ``False`` only when no strategy found more than one page;
    in that case ``urls`` holds only the site root, and only if it was loaded.
    """

    site_url: str
    urls: list[str] = Field(default_factory=list)
    strategy_used: DiscoveryStrategyName = DiscoveryStrategyName.NONE
    is_real: bool = False
    strategies_attempted: list[DiscoveryStrategyName] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# =============================================================================
# Jobs and page results
# =============================================================================


class AuditJob(BaseModel):
    """One URL scheduled inside a batch."""

    id: str
    url: str
    batch_index: int
    attempts: int = 0
    status: JobStatus = JobStatus.QUEUED


class PageAuditOutcome(BaseModel):
    """What an audit provider returns for a single URL."""

    success: bool
    scores: dict[str, int] = Field(default_factory=dict)
    error_kind: Optional[AuditErrorKind] = None
    message: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class PageAuditResult(BaseModel):
    """A page that was actually reached and scored."""

    url: str
    scores: dict[str, int] = Field(default_factory=dict)
    attempts: int = Field(default=1, description="Attempts used, retries included")
    batch_index: int
    audited_at: datetime = Field(default_factory=_utcnow)
    details: dict[str, Any] = Field(default_factory=dict)


class PageFailure(BaseModel):
    """A page that could not be audited after all allowed attempts."""

    url: str
    error_kind: AuditErrorKind
    message: str
    attempts: int
    batch_index: int


# =============================================================================
# Requests
# =============================================================================


class AuditConfig(BaseModel):
    """Per-request overrides. ``None`` falls back to the service settings."""

    max_pages: Optional[int] = Field(default=None, ge=1, le=1000)
    batch_size: Optional[int] = Field(default=None, ge=1, le=500)
    max_concurrency: Optional[int] = Field(default=None, ge=1, le=100)
    enable_caching: bool = True
    include_external: bool = False
    enable_streaming: bool = Field(
        default=True, description="Retain results for paginated retrieval"
    )
    notify_on_complete: bool = False


class BatchAuditRequest(BaseModel):
    """A submitted site audit, owned by the batch manager."""

    id: str
    domain: str
    priority: Priority = Priority.MEDIUM
    status: RequestStatus = RequestStatus.QUEUED
    config: AuditConfig = Field(default_factory=AuditConfig)
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class BatchSubmission(BaseModel):
    """Body of ``POST /audit/batch``."""

    domain: str = Field(..., min_length=1, description="Site to audit (e.g. example.com)")
    priority: Priority = Priority.MEDIUM
    config: AuditConfig = Field(default_factory=AuditConfig)


class BatchSubmitResponse(BaseModel):
    request_id: str
    status: RequestStatus


class CancelResponse(BaseModel):
    request_id: str
    cancelled: bool


# =============================================================================
# Progress and reporting
# =============================================================================


class AuditProgress(BaseModel):
    """Read-only progress snapshot of one request."""

    request_id: str
    domain: str
    status: RequestStatus
    phase: ProgressPhase = ProgressPhase.DISCOVERING
    percent: float = 0.0
    total_pages: int = 0
    completed_pages: int = Field(
        default=0, description="Jobs resolved (success or exhausted failure)"
    )
    failed_pages: int = 0
    current_batch: int = 0
    total_batches: int = 0
    estimated_time_remaining: float = Field(default=0.0, description="Seconds")
    average_time_per_page: float = Field(default=0.0, description="Seconds")
    memory_usage_estimate: float = Field(default=0.0, description="Megabytes")
    discovery_strategy: Optional[DiscoveryStrategyName] = None
    message: str = ""
    current_url: Optional[str] = None


class AuditReport(BaseModel):
    """Final outcome: real pages audited, failures, discovery method."""

    request_id: str
    domain: str
    status: RequestStatus
    discovery_strategy: DiscoveryStrategyName = DiscoveryStrategyName.NONE
    discovery_is_real: bool = False
    pages_discovered: int = 0
    pages_audited: int = 0
    pages_failed: int = 0
    pages_skipped: int = Field(
        default=0, description="Discovered pages never started (cancelled or out of time)"
    )
    batches_completed: int = 0
    peak_concurrency: int = Field(default=0, description="Most page audits in flight at once")
    failures: list[PageFailure] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BatchResultsPage(BaseModel):
    results: list[PageAuditResult] = Field(default_factory=list)
    total_results: int = 0
    current_page: int = 1
    total_pages: int = 0
    has_more: bool = False


class QueueStats(BaseModel):
    total_requests: int = 0
    queued_requests: int = 0
    processing_requests: int = 0
    completed_requests: int = 0
    failed_requests: int = 0
    cancelled_requests: int = 0


class RobotsData(BaseModel):
    """Parsed robots.txt directives relevant to discovery."""

    sitemaps: list[str] = Field(default_factory=list)
