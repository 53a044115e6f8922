"""ORM models.  Importing this package registers every table on Base.metadata."""

from approval_kernel.models.approval_request import ApprovalRequestModel
from approval_kernel.models.audit_event import ApprovalAuditEventModel
from approval_kernel.models.sequence import SequenceCounter

__all__ = [
    "ApprovalAuditEventModel",
    "ApprovalRequestModel",
    "SequenceCounter",
]
