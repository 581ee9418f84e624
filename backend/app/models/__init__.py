from app.models.audit import (
    AuditConfig,
    AuditErrorKind,
    AuditProgress,
    AuditReport,
    BatchAuditRequest,
    DiscoveryOptions,
    DiscoveryResult,
    DiscoveryStrategyName,
    PageAuditResult,
    PageFailure,
    Priority,
    RequestStatus,
)

__all__ = [
    "AuditConfig",
    "AuditErrorKind",
    "AuditProgress",
    "AuditReport",
    "BatchAuditRequest",
    "DiscoveryOptions",
    "DiscoveryResult",
    "DiscoveryStrategyName",
    "PageAuditResult",
    "PageFailure",
    "Priority",
    "RequestStatus",
]
