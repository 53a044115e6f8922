"""
Module: approval_kernel.models.approval_request
Responsibility: ORM persistence for approval requests and their per-level
    decisions.

Architecture position: Kernel > Models.  May import from db/ and domain/
    value types only.

Invariants enforced:
    - Valid status values (DB check constraint).
    - Optimistic concurrency: ``version`` is the mapper's version column, so
      every UPDATE is ``... WHERE id = :id AND version = :observed`` and a
      lost race surfaces as ``StaleDataError`` at flush.
    - One decision per level: once ``levelN_actor_id`` is set, no column of
      that level may change (ORM listener).

Failure modes:
    - StaleDataError on a compare-and-swap miss (mapped by the engine).
    - ImmutabilityViolationError on overwriting a recorded decision.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Index,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime, as_utc
from approval_kernel.domain.positions import Position
from approval_kernel.domain.request import (
    ApprovalRequest,
    Decision,
    DecisionAction,
    RequestKind,
    RequestStatus,
)
from approval_kernel.exceptions import ImmutabilityViolationError

_DECISION_COLUMNS = ("actor_id", "action", "comment", "decided_at")


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Status transitions are validated by the engine before flush.
        Decision columns of a level are write-once.

    Guarantees:
        - ``requester_position`` and ``confidential`` are written at
          submission and never changed by the engine.
        - Soft deletion only sets ``deleted_at``/``deleted_by``.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'level1_approved', 'approved', 'rejected')",
            name="ck_approval_requests_valid_status",
        ),
        Index("ix_approval_requests_kind_status", "kind", "status", "created_at"),
        Index("ix_approval_requests_requester", "requester_id", "created_at"),
    )

    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(100), nullable=False)
    requester_position: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    confidential: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    level1_actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    level1_action: Mapped[str | None] = mapped_column(String(20), nullable=True)
    level1_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    level1_decided_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    level2_actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    level2_action: Mapped[str | None] = mapped_column(String(20), nullable=True)
    level2_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    level2_decided_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    deleted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} {self.kind} "
            f"status={self.status} v{self.version}>"
        )

    @property
    def request_id(self) -> UUID:
        return self.id

    def set_decision(self, decision: Decision) -> None:
        """Write the decision columns of ``decision.level``."""
        prefix = f"level{decision.level}_"
        setattr(self, prefix + "actor_id", decision.approver_id)
        setattr(self, prefix + "action", decision.action.value)
        setattr(self, prefix + "comment", decision.comment)
        setattr(self, prefix + "decided_at", decision.decided_at)

    def _decision(self, level: int) -> Decision | None:
        prefix = f"level{level}_"
        actor_id = getattr(self, prefix + "actor_id")
        if actor_id is None:
            return None
        return Decision(
            level=level,
            approver_id=actor_id,
            action=DecisionAction(getattr(self, prefix + "action")),
            decided_at=as_utc(getattr(self, prefix + "decided_at")),
            comment=getattr(self, prefix + "comment"),
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalRequest(
            request_id=self.id,
            kind=RequestKind(self.kind),
            requester_id=self.requester_id,
            requester_position=Position(self.requester_position),
            status=RequestStatus(self.status),
            confidential=bool(self.confidential),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            payload=dict(self.payload or {}),
            level1=self._decision(1),
            level2=self._decision(2),
            deleted_at=as_utc(self.deleted_at),
            deleted_by=self.deleted_by,
            version=self.version,
        )


# =============================================================================
# ORM-Level Immutability for Recorded Decisions
# =============================================================================


@event.listens_for(ApprovalRequestModel, "before_update")
def prevent_decision_overwrite(mapper, connection, target):
    """Reject changes to a level whose decision is already recorded."""
    state = inspect(target)
    for level in (1, 2):
        for column in _DECISION_COLUMNS:
            history = state.attrs[f"level{level}_{column}"].history
            if not history.has_changes():
                continue
            previous = [v for v in history.deleted if v is not None]
            if previous:
                raise ImmutabilityViolationError(
                    entity_type="ApprovalDecision",
                    entity_id=f"{target.id}/level{level}",
                    reason="Level decisions are written once -- cannot modify",
                )


@event.listens_for(ApprovalRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Requests are soft-deleted only."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalRequest",
        entity_id=str(target.id),
        reason="Approval requests are never physically removed -- use soft delete",
    )
