"""
Audit trail records (``approval_kernel.domain.events``).

Every engine command produces one ``TransitionRecord`` per state change
(an auto-approved submission produces two: submitted, then auto_approved).
Records are frozen and carry the notification audiences a dispatcher should reach,
so delivery stays outside the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from approval_kernel.domain.request import (
    ApprovalRequest,
    RequestKind,
    RequestStatus,
)


class AuditAction(str, Enum):
    """Types of auditable engine transitions."""

    SUBMITTED = "submitted"
    AUTO_APPROVED = "auto_approved"
    LEVEL_APPROVED = "level_approved"
    LEVEL_REJECTED = "level_rejected"
    DELETED = "deleted"
    AMENDED = "amended"
    WITHDRAWN = "withdrawn"


class AudienceRole(str, Enum):
    """Who a notification-worthy record is addressed to."""

    APPROVERS = "approvers"
    REQUESTER = "requester"


@dataclass(frozen=True)
class Audience:
    """A notification target: the approvers of a level, or the requester."""

    role: AudienceRole
    level: int | None = None

    @classmethod
    def approvers(cls, level: int) -> Audience:
        return cls(AudienceRole.APPROVERS, level)

    @classmethod
    def requester(cls) -> Audience:
        return cls(AudienceRole.REQUESTER)


@dataclass(frozen=True)
class TransitionRecord:
    """Immutable record of one engine mutation."""

    request_id: UUID
    kind: RequestKind
    action: AuditAction
    actor_id: str
    to_status: RequestStatus
    occurred_at: datetime
    from_status: RequestStatus | None = None
    level: int | None = None
    comment: str | None = None
    audiences: tuple[Audience, ...] = ()
    event_id: UUID = field(default_factory=uuid4)

    @property
    def is_notification_worthy(self) -> bool:
        return bool(self.audiences)

    def to_payload(self) -> dict[str, Any]:
        """Serializable form used by persistent sinks."""
        return {
            "event_id": str(self.event_id),
            "request_id": str(self.request_id),
            "kind": self.kind.value,
            "action": self.action.value,
            "actor_id": self.actor_id,
            "level": self.level,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "occurred_at": self.occurred_at.isoformat(),
            "comment": self.comment,
            "audiences": [
                {"role": a.role.value, "level": a.level} for a in self.audiences
            ],
        }


def audiences_for(
    before: ApprovalRequest | None,
    after: ApprovalRequest,
    levels: int,
) -> tuple[Audience, ...]:
    """Notification audiences for a transition from ``before`` to ``after``.

    - New pending request: approvers of level 1.
    - Level 1 approved on a two-level kind: approvers of level 2.
    - Any transition into a terminal status: the requester.
    """
    previous = before.status if before is not None else None
    if previous == after.status:
        return ()
    if after.status == RequestStatus.PENDING:
        return (Audience.approvers(1),)
    if after.status == RequestStatus.LEVEL1_APPROVED and levels >= 2:
        return (Audience.approvers(2),)
    if after.is_final:
        return (Audience.requester(),)
    return ()
