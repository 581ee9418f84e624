"""Batch audit router."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from app.models.audit import (
    AuditProgress,
    AuditReport,
    BatchResultsPage,
    BatchSubmission,
    BatchSubmitResponse,
    CancelResponse,
    QueueStats,
    RequestStatus,
)
from app.services.audit_pipeline import BatchAuditManager, get_batch_audit_manager

router = APIRouter(prefix="/audit", tags=["audit"])


def _not_found(request_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Batch audit {request_id} not found")


@router.post("/batch", response_model=BatchSubmitResponse, status_code=202)
async def submit_batch_audit(
    submission: BatchSubmission,
    manager: BatchAuditManager = Depends(get_batch_audit_manager),
) -> BatchSubmitResponse:
    """Queue a site for discovery and batch auditing."""
    request_id = await manager.submit(
        submission.domain, submission.priority, submission.config
    )
    return BatchSubmitResponse(request_id=request_id, status=RequestStatus.QUEUED)


@router.get("/batch/{request_id}", response_model=AuditProgress)
async def get_batch_progress(
    request_id: str,
    manager: BatchAuditManager = Depends(get_batch_audit_manager),
) -> AuditProgress:
    progress = manager.get_progress(request_id)
    if progress is None:
        raise _not_found(request_id)
    return progress


@router.get("/batch/{request_id}/report", response_model=AuditReport)
async def get_batch_report(
    request_id: str,
    manager: BatchAuditManager = Depends(get_batch_audit_manager),
) -> AuditReport:
    """Final outcome, or an interim one while the audit is still running."""
    report = manager.get_report(request_id)
    if report is None:
        raise _not_found(request_id)
    return report


@router.get("/batch/{request_id}/results", response_model=BatchResultsPage)
async def get_batch_results(
    request_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    manager: BatchAuditManager = Depends(get_batch_audit_manager),
) -> BatchResultsPage:
    results = manager.get_results(request_id, page=page, limit=limit)
    if results is None:
        raise _not_found(request_id)
    return results


@router.get("/batch/{request_id}/events")
async def stream_batch_progress(
    request_id: str,
    manager: BatchAuditManager = Depends(get_batch_audit_manager),
) -> StreamingResponse:
    """Newline-delimited JSON progress snapshots until the audit is terminal."""
    if manager.get_progress(request_id) is None:
        raise _not_found(request_id)

    async def _events():
        async for snapshot in manager.subscribe(request_id):
            yield snapshot.model_dump_json() + "\n"

    return StreamingResponse(_events(), media_type="application/x-ndjson")


@router.post("/batch/{request_id}/cancel", response_model=CancelResponse)
async def cancel_batch_audit(
    request_id: str,
    manager: BatchAuditManager = Depends(get_batch_audit_manager),
) -> CancelResponse:
    if manager.get_progress(request_id) is None:
        raise _not_found(request_id)
    cancelled = await manager.cancel(request_id)
    return CancelResponse(request_id=request_id, cancelled=cancelled)


@router.get("/queue", response_model=QueueStats)
async def get_queue_stats(
    manager: BatchAuditManager = Depends(get_batch_audit_manager),
) -> QueueStats:
    return manager.get_queue_stats()
