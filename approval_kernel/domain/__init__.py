"""
Pure domain layer.

This module contains value objects and policy with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.confidentiality import (
    ConfidentialityPolicy,
    filter_visible,
    is_confidential,
    may_act_on_confidential,
)
from approval_kernel.domain.events import (
    Audience,
    AudienceRole,
    AuditAction,
    TransitionRecord,
)
from approval_kernel.domain.oracle import PermissionOracle, StaticPermissionOracle
from approval_kernel.domain.positions import Position
from approval_kernel.domain.request import (
    STATUS_TRANSITIONS,
    TERMINAL_STATUSES,
    ApprovalRequest,
    Decision,
    DecisionAction,
    RequestKind,
    RequestStatus,
    SubmitResult,
)
from approval_kernel.domain.workflow import WorkflowConfig, WorkflowRegistry

__all__ = [
    "ApprovalRequest",
    "Audience",
    "AudienceRole",
    "AuditAction",
    "Clock",
    "ConfidentialityPolicy",
    "Decision",
    "DecisionAction",
    "DeterministicClock",
    "PermissionOracle",
    "Position",
    "RequestKind",
    "RequestStatus",
    "STATUS_TRANSITIONS",
    "StaticPermissionOracle",
    "SubmitResult",
    "SystemClock",
    "TERMINAL_STATUSES",
    "TransitionRecord",
    "WorkflowConfig",
    "WorkflowRegistry",
    "filter_visible",
    "is_confidential",
    "may_act_on_confidential",
]
