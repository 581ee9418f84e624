"""Persistence of batch requests and page results (Supabase).

Kept apart from ``BatchAuditManager`` so storage can be tested and replaced
independently.  Callers treat every failure here as non-critical.
"""

import logging
from typing import Optional

from supabase import AsyncClient

from app.models.audit import AuditReport, BatchAuditRequest, PageAuditResult
from app.services.audit_pipeline.constants import RESULTS_INSERT_CHUNK

logger = logging.getLogger(__name__)

REQUESTS_TABLE = "batch_audit_requests"
RESULTS_TABLE = "batch_audit_results"


class AuditStorage:
    """Handles persistence of batch audit state to Supabase."""

    def __init__(self, supabase: AsyncClient) -> None:
        self.supabase = supabase

    async def save_request(self, request: BatchAuditRequest) -> None:
        """Insert the request row when it is queued."""
        await self.supabase.table(REQUESTS_TABLE).insert(
            request.model_dump(mode="json")
        ).execute()

    async def update_request(
        self, request: BatchAuditRequest, report: Optional[AuditReport] = None
    ) -> None:
        """Update status/timestamps, plus final counts once a report exists."""
        data: dict = {
            "status": request.status.value,
            "started_at": request.started_at.isoformat() if request.started_at else None,
            "completed_at": request.completed_at.isoformat()
            if request.completed_at
            else None,
            "error": request.error,
        }
        if report is not None:
            data.update(
                {
                    "discovery_strategy": report.discovery_strategy.value,
                    "discovery_is_real": report.discovery_is_real,
                    "pages_discovered": report.pages_discovered,
                    "pages_audited": report.pages_audited,
                    "pages_failed": report.pages_failed,
                    "failures": [f.model_dump(mode="json") for f in report.failures],
                }
            )

        await self.supabase.table(REQUESTS_TABLE).update(data).eq(
            "id", request.id
        ).execute()

    async def save_results(
        self, request_id: str, results: list[PageAuditResult]
    ) -> int:
        """Insert results in chunks to avoid large payloads. Returns rows sent."""
        rows = [
            {"request_id": request_id, **result.model_dump(mode="json")}
            for result in results
        ]
        for start in range(0, len(rows), RESULTS_INSERT_CHUNK):
            chunk = rows[start : start + RESULTS_INSERT_CHUNK]
            await self.supabase.table(RESULTS_TABLE).insert(chunk).execute()
        logger.debug(f"Stored {len(rows)} results for {request_id}")
        return len(rows)
