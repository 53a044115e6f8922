"""Kernel services: the approval engine and the audit trail."""

from approval_kernel.services.approval_engine import ApprovalEngine
from approval_kernel.services.audit_trail import (
    AuditSink,
    AuditTraceEntry,
    AuditTrailEmitter,
    InMemoryAuditSink,
    SqlAuditSink,
)

__all__ = [
    "ApprovalEngine",
    "AuditSink",
    "AuditTraceEntry",
    "AuditTrailEmitter",
    "InMemoryAuditSink",
    "SqlAuditSink",
]
