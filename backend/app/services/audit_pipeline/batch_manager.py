"""Batch Audit Manager - priority-queued site audits.

Pure Python coordination, no scoring logic:
1. Accepts submissions into a priority queue (urgent > high > medium > low,
   FIFO within a tier)
2. Runs discovery for the request's site
3. Slices the real URLs into fixed-size batches
4. Audits each batch through a ``ConcurrencyLimiter``, every provider call
   paced by a ``RateLimiter``, transient failures retried with tenacity
5. Streams each completed batch to the caller and keeps progress current
6. Reports an honest final outcome: real pages audited, failures, discovery
   method.  Cancellation is cooperative and checked between jobs.
"""

import asyncio
import gc
import inspect
import logging
import math
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from app.models.audit import (
    AuditConfig,
    AuditErrorKind,
    AuditJob,
    AuditProgress,
    AuditReport,
    BatchAuditRequest,
    BatchResultsPage,
    DiscoveryOptions,
    DiscoveryResult,
    DiscoveryStrategyName,
    JobStatus,
    PageAuditOutcome,
    PageAuditResult,
    PageFailure,
    Priority,
    QueueStats,
    RequestStatus,
)
from app.services.audit_pipeline.audit_executor import AuditExecutor
from app.services.audit_pipeline.cancellation import CancellationToken
from app.services.audit_pipeline.concurrency import ConcurrencyLimiter
from app.services.audit_pipeline.constants import (
    CRAWLER_MAX_DEPTH,
    CRAWLER_MAX_PAGES,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_PAGES,
    MAX_CONCURRENT_REQUESTS,
    MAX_RETRIES,
    MEMORY_CLEANUP_INTERVAL,
    MEMORY_LIMIT_MB,
    PAGE_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    RESULT_RETENTION_SECONDS,
    RETRY_BACKOFF_SECONDS,
    SCHEDULER_IDLE_SECONDS,
)
from app.services.audit_pipeline.discovery import DiscoveryEngine
from app.services.audit_pipeline.errors import (
    DiscoveryExhausted,
    PageAuditError,
    PageTimeout,
    ResourceExhausted,
    TransientPageError,
    classify_exception,
    error_for_kind,
)
from app.services.audit_pipeline.progress import ProgressTracker
from app.services.audit_pipeline.rate_limiter import RateLimiter
from app.services.audit_pipeline.storage import AuditStorage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str, Optional[str]], None]
BatchCallback = Callable[[list[PageAuditResult], int], Union[None, Awaitable[None]]]
JobOutcome = Union[PageAuditResult, PageFailure, None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BatchLimits:
    """Scheduling and retry limits. Per-request ``AuditConfig`` may override
    ``batch_size``, ``max_concurrency`` and ``max_pages``."""

    max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_pages: int = DEFAULT_MAX_PAGES
    page_timeout: float = PAGE_TIMEOUT_SECONDS
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    max_retries: int = MAX_RETRIES
    retry_backoff: float = RETRY_BACKOFF_SECONDS
    memory_limit_mb: float = MEMORY_LIMIT_MB
    memory_cleanup_interval: int = MEMORY_CLEANUP_INTERVAL
    result_retention: float = RESULT_RETENTION_SECONDS
    crawler_max_pages: int = CRAWLER_MAX_PAGES
    crawler_max_depth: int = CRAWLER_MAX_DEPTH

    @classmethod
    def from_settings(cls, settings: Any) -> "BatchLimits":
        return cls(
            max_concurrent_requests=settings.max_concurrent_requests,
            batch_size=settings.audit_batch_size,
            max_concurrency=settings.audit_max_concurrency,
            max_pages=settings.audit_max_pages,
            page_timeout=settings.page_timeout_seconds,
            request_timeout=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff_seconds,
            memory_limit_mb=settings.memory_limit_mb,
            memory_cleanup_interval=settings.memory_cleanup_interval,
            result_retention=settings.result_retention_seconds,
            crawler_max_pages=settings.crawler_max_pages,
            crawler_max_depth=settings.crawler_max_depth,
        )


@dataclass
class _RequestState:
    """Everything the manager tracks for one request. Never leaves the manager."""

    request: BatchAuditRequest
    token: CancellationToken
    tracker: ProgressTracker
    on_progress: Optional[ProgressCallback] = None
    on_batch_complete: Optional[BatchCallback] = None
    discovery: Optional[DiscoveryResult] = None
    results: list[PageAuditResult] = field(default_factory=list)
    failures: list[PageFailure] = field(default_factory=list)
    pages_audited: int = 0
    batches_completed: int = 0
    peak_concurrency: int = 0
    report: Optional[AuditReport] = None
    done: asyncio.Event = field(default_factory=asyncio.Event)
    subscribers: list[asyncio.Queue] = field(default_factory=list)
    finished_at: Optional[float] = None


class BatchAuditManager:
    """Queues, schedules and reports batch site audits."""

    def __init__(
        self,
        *,
        discovery_engine: DiscoveryEngine,
        audit_executor: AuditExecutor,
        rate_limiter: RateLimiter,
        storage: Optional[AuditStorage] = None,
        limits: Optional[BatchLimits] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.discovery_engine = discovery_engine
        self.audit_executor = audit_executor
        self.rate_limiter = rate_limiter
        self.storage = storage
        self.limits = limits or BatchLimits()
        self._clock = clock
        self._sleep = sleep

        self._requests: dict[str, _RequestState] = {}
        self._queue: list[_RequestState] = []
        self._active: dict[str, asyncio.Task] = {}
        self._wakeup = asyncio.Event()
        self._scheduler: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduling loop (idempotent)."""
        if self._scheduler is None or self._scheduler.done():
            self._scheduler = asyncio.create_task(self._run_scheduler())
            logger.info(
                f"Batch audit manager started "
                f"(max_concurrent_requests={self.limits.max_concurrent_requests})"
            )

    async def stop(self, grace_seconds: float = 5.0) -> None:
        """Stop scheduling, let in-flight jobs finish for ``grace_seconds``.

        Requests still waiting in the queue are finalized as cancelled so
        ``wait_for`` and ``subscribe`` callers are released.
        """
        if self._scheduler is not None:
            self._scheduler.cancel()
            with suppress(asyncio.CancelledError):
                await self._scheduler
            self._scheduler = None

        queued, self._queue = self._queue, []
        for state in queued:
            state.token.cancel("service shutting down")
            await self._finalize(state, RequestStatus.CANCELLED, "service shutting down")
        if queued:
            logger.info(f"Cancelled {len(queued)} queued batch audit(s) on shutdown")

        for request_id in list(self._active):
            state = self._requests.get(request_id)
            if state is not None:
                state.token.cancel("service shutting down")

        tasks = list(self._active.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Batch audit manager stopped")

    # ------------------------------------------------------------------
    # Submission API
    # ------------------------------------------------------------------

    async def submit(
        self,
        domain: str,
        priority: Union[Priority, str] = Priority.MEDIUM,
        config: Optional[AuditConfig] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_batch_complete: Optional[BatchCallback] = None,
    ) -> str:
        """Queue an audit of *domain* and return its request id.

        ``on_progress(percent, message, current_url)`` is called synchronously
        at each state change.  ``on_batch_complete(results, batch_index)`` may
        be a plain function or a coroutine function; it receives only the
        successful results of that batch.
        """
        request = BatchAuditRequest(
            id=f"batch_{uuid.uuid4().hex[:16]}",
            domain=domain.strip(),
            priority=Priority(priority),
            config=config or AuditConfig(),
        )
        state = _RequestState(
            request=request,
            token=CancellationToken(),
            tracker=ProgressTracker(request.id, request.domain, clock=self._clock),
            on_progress=on_progress,
            on_batch_complete=on_batch_complete,
        )
        self._requests[request.id] = state
        self._insert_into_queue(state)
        self._wakeup.set()

        logger.info(
            f"Queued batch audit {request.id} for {request.domain} "
            f"(priority: {request.priority.value})"
        )
        await self._persist("save_request", request)
        return request.id

    async def submit_many(
        self,
        domains: list[str],
        priority: Union[Priority, str] = Priority.MEDIUM,
        config: Optional[AuditConfig] = None,
    ) -> list[str]:
        """Queue one request per distinct domain, in the given order."""
        ids: list[str] = []
        seen: set[str] = set()
        for domain in domains:
            key = domain.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            ids.append(await self.submit(domain, priority, config))
        return ids

    async def cancel(self, request_id: str) -> bool:
        """Cancel a queued or processing request.

        A processing request finishes the jobs already running, starts nothing
        new and keeps the batches it already delivered.
        """
        state = self._requests.get(request_id)
        if state is None or state.request.status.is_terminal:
            return False

        if state.request.status is RequestStatus.QUEUED:
            with suppress(ValueError):
                self._queue.remove(state)
            state.token.cancel()
            await self._finalize(state, RequestStatus.CANCELLED, None)
        else:
            state.token.cancel()
            state.tracker.message = "Cancellation requested"
            self._emit(state)

        logger.info(f"Cancellation requested for {request_id}")
        return True

    def get_request(self, request_id: str) -> Optional[BatchAuditRequest]:
        state = self._lookup(request_id)
        return state.request.model_copy() if state else None

    def get_progress(self, request_id: str) -> Optional[AuditProgress]:
        state = self._lookup(request_id)
        if state is None:
            return None
        return state.tracker.snapshot(state.request.status)

    def get_report(self, request_id: str) -> Optional[AuditReport]:
        """Final report, or an interim one while the request is running."""
        state = self._lookup(request_id)
        if state is None:
            return None
        return state.report or self._build_report(state)

    def get_results(
        self, request_id: str, page: int = 1, limit: int = 50
    ) -> Optional[BatchResultsPage]:
        """Paginated successful results retained for a request."""
        state = self._lookup(request_id)
        if state is None:
            return None

        page = max(1, page)
        limit = max(1, limit)
        total = len(state.results)
        total_pages = math.ceil(total / limit)
        start = (page - 1) * limit
        return BatchResultsPage(
            results=state.results[start : start + limit],
            total_results=total,
            current_page=page,
            total_pages=total_pages,
            has_more=page < total_pages,
        )

    def get_queue_stats(self) -> QueueStats:
        self._evict_expired()
        statuses = [s.request.status for s in self._requests.values()]
        return QueueStats(
            total_requests=len(statuses),
            queued_requests=statuses.count(RequestStatus.QUEUED),
            processing_requests=statuses.count(RequestStatus.PROCESSING),
            completed_requests=statuses.count(RequestStatus.COMPLETED),
            failed_requests=statuses.count(RequestStatus.FAILED),
            cancelled_requests=statuses.count(RequestStatus.CANCELLED),
        )

    async def wait_for(
        self, request_id: str, timeout: Optional[float] = None
    ) -> AuditReport:
        """Wait until the request is terminal and return its report."""
        state = self._requests.get(request_id)
        if state is None:
            raise KeyError(request_id)
        await asyncio.wait_for(state.done.wait(), timeout=timeout)
        return state.report

    async def subscribe(self, request_id: str) -> AsyncIterator[AuditProgress]:
        """Yield progress snapshots until the request reaches a terminal state."""
        state = self._requests.get(request_id)
        if state is None:
            raise KeyError(request_id)

        current = state.tracker.snapshot(state.request.status)
        yield current
        if current.status.is_terminal:
            return

        queue: asyncio.Queue = asyncio.Queue()
        state.subscribers.append(queue)
        try:
            while True:
                snapshot = await queue.get()
                yield snapshot
                if snapshot.status.is_terminal:
                    return
        finally:
            with suppress(ValueError):
                state.subscribers.remove(queue)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _insert_into_queue(self, state: _RequestState) -> None:
        """Place before the first request of a lower tier (FIFO within a tier)."""
        rank = state.request.priority.rank
        index = len(self._queue)
        for i, queued in enumerate(self._queue):
            if rank > queued.request.priority.rank:
                index = i
                break
        self._queue.insert(index, state)

    async def _run_scheduler(self) -> None:
        while True:
            self._evict_expired()
            while self._queue and len(self._active) < self.limits.max_concurrent_requests:
                state = self._queue.pop(0)
                request_id = state.request.id
                state.request.status = RequestStatus.PROCESSING
                task = asyncio.create_task(self._process(state))
                self._active[request_id] = task
                task.add_done_callback(partial(self._on_request_done, request_id))

            self._wakeup.clear()
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=SCHEDULER_IDLE_SECONDS)

    def _on_request_done(self, request_id: str, task: asyncio.Task) -> None:
        self._active.pop(request_id, None)
        self._wakeup.set()

    def _evict_expired(self) -> None:
        now = self._clock()
        for request_id, state in list(self._requests.items()):
            if (
                state.finished_at is not None
                and now - state.finished_at > self.limits.result_retention
            ):
                del self._requests[request_id]
                logger.debug(f"Evicted batch audit {request_id}")

    def _lookup(self, request_id: str) -> Optional[_RequestState]:
        self._evict_expired()
        return self._requests.get(request_id)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def _process(self, state: _RequestState) -> None:
        request = state.request
        request.started_at = _utcnow()
        state.tracker.message = "Discovering pages"
        self._emit(state)
        logger.info(f"Processing batch audit {request.id} for {request.domain}")
        await self._persist("update_request", request)

        deadline = self._clock() + self.limits.request_timeout
        error: Optional[str] = None
        try:
            finished = await self._execute(state, deadline)
        except (DiscoveryExhausted, ResourceExhausted) as e:
            logger.error(f"Batch audit {request.id} failed: {e}")
            status, error = RequestStatus.FAILED, str(e)
        except asyncio.CancelledError:
            await self._finalize(state, RequestStatus.CANCELLED, "service shutting down")
            raise
        except Exception as e:
            logger.error(f"Batch audit {request.id} failed unexpectedly: {e}")
            status, error = RequestStatus.FAILED, f"Unexpected error: {e!s}"
        else:
            status = RequestStatus.COMPLETED if finished else RequestStatus.CANCELLED

        await self._finalize(state, status, error)

    async def _execute(self, state: _RequestState, deadline: float) -> bool:
        """Discover and audit. Returns ``False`` if stopped by cancellation."""
        request = state.request
        config = request.config
        tracker = state.tracker

        def _discovery_progress(percent: float, message: str, url: Optional[str]) -> None:
            tracker.discovery_update(percent, message, url)
            self._emit(state)

        options = DiscoveryOptions(
            max_pages=config.max_pages or self.limits.max_pages,
            include_external=config.include_external,
            enable_caching=config.enable_caching,
            crawler_max_pages=self.limits.crawler_max_pages,
            crawler_max_depth=self.limits.crawler_max_depth,
        )
        discovery = await self.discovery_engine.discover(
            request.domain, options, on_progress=_discovery_progress
        )
        state.discovery = discovery

        if state.token.cancelled:
            return False
        if not discovery.urls:
            attempted = ", ".join(s.value for s in discovery.strategies_attempted)
            raise DiscoveryExhausted(
                f"No real pages discovered for {request.domain} "
                f"(strategies attempted: {attempted or 'none'})"
            )

        batch_size = config.batch_size or self.limits.batch_size
        urls = discovery.urls
        batches = [urls[i : i + batch_size] for i in range(0, len(urls), batch_size)]
        tracker.start_auditing(len(urls), len(batches), discovery.strategy_used)
        self._emit(state)

        limiter = ConcurrencyLimiter(config.max_concurrency or self.limits.max_concurrency)
        for batch_index, batch_urls in enumerate(batches, start=1):
            if state.token.cancelled:
                logger.info(
                    f"Batch audit {request.id} cancelled before batch "
                    f"{batch_index}/{len(batches)} ({state.token.reason})"
                )
                return False
            if self._clock() > deadline:
                raise ResourceExhausted(
                    f"Wall-clock budget of {self.limits.request_timeout}s exceeded "
                    f"after {state.batches_completed} batches"
                )

            await self._run_batch(state, limiter, batch_index, batch_urls, deadline)
            self._check_memory(state, batch_index)

        if state.pages_audited + len(state.failures) == len(urls):
            return True
        if state.token.cancelled:
            return False
        raise ResourceExhausted(
            f"Wall-clock budget of {self.limits.request_timeout}s exceeded "
            f"during batch {state.batches_completed}"
        )

    async def _run_batch(
        self,
        state: _RequestState,
        limiter: ConcurrencyLimiter,
        batch_index: int,
        urls: list[str],
        deadline: float,
    ) -> None:
        request = state.request
        tracker = state.tracker
        tracker.start_batch(batch_index, len(urls))
        self._emit(state)

        jobs = [
            AuditJob(id=f"{request.id}-{batch_index}-{n}", url=url, batch_index=batch_index)
            for n, url in enumerate(urls)
        ]
        futures = [limiter.add(partial(self._run_job, state, job, deadline)) for job in jobs]
        outcomes: list[JobOutcome] = await asyncio.gather(*futures)

        successes = [o for o in outcomes if isinstance(o, PageAuditResult)]
        failed = sum(1 for o in outcomes if isinstance(o, PageFailure))
        state.pages_audited += len(successes)
        state.batches_completed += 1
        state.peak_concurrency = limiter.peak
        if request.config.enable_streaming:
            state.results.extend(successes)
        tracker.retained_results = len(state.results)
        tracker.message = (
            f"Batch {batch_index}/{tracker.total_batches} completed: "
            f"{len(successes)} audited, {failed} failed"
        )
        logger.info(f"{request.id}: {tracker.message}")

        await self._deliver_batch(state, successes, batch_index)
        self._emit(state)
        if successes:
            await self._persist("save_results", request.id, successes)

    async def _run_job(
        self, state: _RequestState, job: AuditJob, deadline: float
    ) -> JobOutcome:
        if state.token.cancelled or self._clock() > deadline:
            return None

        job.status = JobStatus.RUNNING
        state.tracker.job_started(job.url)
        try:
            outcome = await self._audit_with_retry(job)
        except PageAuditError as e:
            job.status = JobStatus.FAILED
            result: JobOutcome = PageFailure(
                url=job.url,
                error_kind=e.error_kind,
                message=e.message,
                attempts=job.attempts,
                batch_index=job.batch_index,
            )
            state.failures.append(result)
            logger.warning(
                f"Page audit failed for {job.url} after {job.attempts} attempt(s): "
                f"{e.error_kind.value} ({e.message})"
            )
        else:
            job.status = JobStatus.SUCCEEDED
            result = PageAuditResult(
                url=job.url,
                scores=outcome.scores,
                attempts=job.attempts,
                batch_index=job.batch_index,
                details=outcome.details,
            )
            if job.attempts > 1:
                logger.info(f"Audited {job.url} after {job.attempts} attempts")

        state.tracker.job_finished(job.url, job.status is JobStatus.SUCCEEDED)
        self._emit(state)
        return result

    async def _audit_with_retry(self, job: AuditJob) -> PageAuditOutcome:
        """Audit one URL, retrying transient failures with linear backoff."""
        backoff = self.limits.retry_backoff
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientPageError),
            stop=stop_after_attempt(self.limits.max_retries + 1),
            wait=wait_incrementing(start=backoff, increment=backoff),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                job.attempts = attempt.retry_state.attempt_number
                outcome = await self._attempt(job.url)
        return outcome

    async def _attempt(self, url: str) -> PageAuditOutcome:
        """One paced provider call under the per-page deadline.

        Time spent waiting for rate-limit quota counts towards the deadline,
        so an exhausted quota surfaces as ``PageTimeout``.
        """

        async def _call() -> PageAuditOutcome:
            await self.rate_limiter.throttle()
            return await self.audit_executor.audit_page(url)

        try:
            outcome = await asyncio.wait_for(_call(), timeout=self.limits.page_timeout)
        except asyncio.TimeoutError:
            raise PageTimeout(url, f"no result within {self.limits.page_timeout}s")
        except PageAuditError:
            raise
        except Exception as e:
            raise classify_exception(e, url) from e

        if not outcome.success:
            raise error_for_kind(outcome.error_kind or AuditErrorKind.INVALID, url, outcome.message)
        return outcome

    def _check_memory(self, state: _RequestState, batch_index: int) -> None:
        """Periodic hygiene plus the memory ceiling check."""
        interval = max(1, self.limits.memory_cleanup_interval)
        if batch_index % interval == 0:
            self._evict_expired()
            gc.collect()

        estimate = state.tracker.memory_usage_estimate
        if estimate > self.limits.memory_limit_mb:
            raise ResourceExhausted(
                f"Estimated memory {estimate:.1f}MB exceeds limit "
                f"{self.limits.memory_limit_mb:.0f}MB"
            )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def _finalize(
        self, state: _RequestState, status: RequestStatus, error: Optional[str]
    ) -> None:
        request = state.request
        request.status = status
        request.error = error
        request.completed_at = _utcnow()
        state.tracker.finish(error or f"Audit {status.value}")
        state.report = self._build_report(state)
        state.finished_at = self._clock()
        state.done.set()
        self._emit(state)

        report = state.report
        logger.info(
            f"Batch audit {request.id} {status.value}: {report.pages_audited} real pages "
            f"audited, {report.pages_failed} failed, discovery via "
            f"{report.discovery_strategy.value}"
        )
        if request.config.notify_on_complete:
            logger.info(
                f"Notify: audit of {request.domain} finished ({status.value}), "
                f"{report.pages_audited}/{report.pages_discovered} pages audited"
            )
        await self._persist("update_request", request, report)

    def _build_report(self, state: _RequestState) -> AuditReport:
        request = state.request
        discovery = state.discovery
        discovered = len(discovery.urls) if discovery else 0
        return AuditReport(
            request_id=request.id,
            domain=request.domain,
            status=request.status,
            discovery_strategy=discovery.strategy_used if discovery else DiscoveryStrategyName.NONE,
            discovery_is_real=discovery.is_real if discovery else False,
            pages_discovered=discovered,
            pages_audited=state.pages_audited,
            pages_failed=len(state.failures),
            pages_skipped=max(0, discovered - state.pages_audited - len(state.failures)),
            batches_completed=state.batches_completed,
            peak_concurrency=state.peak_concurrency,
            failures=list(state.failures),
            error=request.error,
            created_at=request.created_at,
            started_at=request.started_at,
            completed_at=request.completed_at,
        )

    def _emit(self, state: _RequestState) -> None:
        snapshot = state.tracker.snapshot(state.request.status)
        for queue in state.subscribers:
            queue.put_nowait(snapshot)

        if state.on_progress is not None:
            try:
                state.on_progress(snapshot.percent, snapshot.message, snapshot.current_url)
            except Exception as e:
                logger.warning(f"Progress callback for {state.request.id} raised: {e}")

    async def _deliver_batch(
        self, state: _RequestState, results: list[PageAuditResult], batch_index: int
    ) -> None:
        if state.on_batch_complete is None:
            return
        try:
            delivered = state.on_batch_complete(list(results), batch_index)
            if inspect.isawaitable(delivered):
                await delivered
        except Exception as e:
            logger.warning(
                f"Batch callback for {state.request.id} batch {batch_index} raised: {e}"
            )

    async def _persist(self, operation: str, *args: Any) -> None:
        """Best-effort storage call. Failures never affect the audit."""
        if self.storage is None:
            return
        try:
            await getattr(self.storage, operation)(*args)
        except Exception as e:
            logger.warning(f"Audit storage {operation} failed (non-critical): {e}")
