from app.services.audit_pipeline import (
    BatchAuditManager,
    get_batch_audit_manager,
    reset_batch_audit_manager,
)

__all__ = [
    # Batch audit pipeline
    "BatchAuditManager",
    "get_batch_audit_manager",
    "reset_batch_audit_manager",
]
