"""Progress bookkeeping for one batch request.

Recomputed after every job so the ETA stays responsive.  The memory figure is
an estimate from retained results and in-flight jobs, not a heap measurement.
"""

import time
from typing import Callable, Optional

from app.models.audit import (
    AuditProgress,
    DiscoveryStrategyName,
    ProgressPhase,
    RequestStatus,
)
from app.services.audit_pipeline.constants import (
    BASELINE_MEMORY_MB,
    DISCOVERY_PROGRESS_SHARE,
    INITIAL_SECONDS_PER_PAGE,
    JOB_SIZE_ESTIMATE_KB,
    RESULT_SIZE_ESTIMATE_KB,
)


def estimate_memory_mb(retained_results: int, in_flight_jobs: int) -> float:
    """Estimated retained state in megabytes."""
    return (
        BASELINE_MEMORY_MB
        + retained_results * RESULT_SIZE_ESTIMATE_KB / 1024
        + in_flight_jobs * JOB_SIZE_ESTIMATE_KB / 1024
    )


class ProgressTracker:
    """Mutable counters behind the read-only ``AuditProgress`` snapshots."""

    def __init__(
        self,
        request_id: str,
        domain: str,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.request_id = request_id
        self.domain = domain
        self._clock = clock
        self.phase = ProgressPhase.DISCOVERING
        self.total_pages = 0
        self.completed_pages = 0
        self.failed_pages = 0
        self.current_batch = 0
        self.total_batches = 0
        self.retained_results = 0
        self.in_flight = 0
        self.discovery_strategy: Optional[DiscoveryStrategyName] = None
        self.discovery_percent = 0.0
        self.message = "Queued"
        self.current_url: Optional[str] = None
        self._audit_started: Optional[float] = None

    def discovery_update(self, percent: float, message: str, url: Optional[str]) -> None:
        self.discovery_percent = min(percent, DISCOVERY_PROGRESS_SHARE)
        self.message = message
        self.current_url = url

    def start_auditing(
        self, total_pages: int, total_batches: int, strategy: DiscoveryStrategyName
    ) -> None:
        self.phase = ProgressPhase.AUDITING
        self.total_pages = total_pages
        self.total_batches = total_batches
        self.discovery_strategy = strategy
        self.discovery_percent = DISCOVERY_PROGRESS_SHARE
        self.message = f"Auditing {total_pages} pages in {total_batches} batches"
        self._audit_started = self._clock()

    def start_batch(self, batch_index: int, size: int) -> None:
        self.current_batch = batch_index
        self.message = f"Batch {batch_index}/{self.total_batches} started ({size} pages)"

    def job_started(self, url: str) -> None:
        self.in_flight += 1
        self.current_url = url

    def job_finished(self, url: str, succeeded: bool) -> None:
        self.in_flight = max(0, self.in_flight - 1)
        self.completed_pages += 1
        if not succeeded:
            self.failed_pages += 1
        self.current_url = url
        verb = "Audited" if succeeded else "Failed"
        self.message = f"{verb} {url}"

    def finish(self, message: str) -> None:
        self.phase = ProgressPhase.COMPLETED
        self.in_flight = 0
        self.current_url = None
        self.message = message

    @property
    def average_time_per_page(self) -> float:
        if self._audit_started is None or self.completed_pages == 0:
            return INITIAL_SECONDS_PER_PAGE if self.total_pages else 0.0
        return (self._clock() - self._audit_started) / self.completed_pages

    @property
    def estimated_time_remaining(self) -> float:
        if self.phase is ProgressPhase.COMPLETED:
            return 0.0
        remaining = max(0, self.total_pages - self.completed_pages)
        return remaining * self.average_time_per_page

    @property
    def memory_usage_estimate(self) -> float:
        return estimate_memory_mb(self.retained_results, self.in_flight)

    @property
    def percent(self) -> float:
        if self.phase is ProgressPhase.COMPLETED:
            return 100.0
        if self.phase is ProgressPhase.DISCOVERING or not self.total_pages:
            return round(self.discovery_percent, 1)
        audited_share = (100.0 - DISCOVERY_PROGRESS_SHARE) * (
            self.completed_pages / self.total_pages
        )
        return round(DISCOVERY_PROGRESS_SHARE + audited_share, 1)

    def snapshot(self, status: RequestStatus) -> AuditProgress:
        return AuditProgress(
            request_id=self.request_id,
            domain=self.domain,
            status=status,
            phase=self.phase,
            percent=self.percent,
            total_pages=self.total_pages,
            completed_pages=self.completed_pages,
            failed_pages=self.failed_pages,
            current_batch=self.current_batch,
            total_batches=self.total_batches,
            estimated_time_remaining=round(self.estimated_time_remaining, 2),
            average_time_per_page=round(self.average_time_per_page, 3),
            memory_usage_estimate=round(self.memory_usage_estimate, 2),
            discovery_strategy=self.discovery_strategy,
            message=self.message,
            current_url=self.current_url,
        )
