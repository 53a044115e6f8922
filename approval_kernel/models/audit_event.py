"""
Module: approval_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident approval audit chain.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Audit rows are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain: hash = H(request_id | action | seq | payload_hash | prev_hash).
      Validated by SqlAuditSink.validate_chain().
    - seq is strictly increasing, allocated from a locked counter row.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, SmallInteger, String, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError


class ApprovalAuditEventModel(Base):
    """
    One persisted transition record, chained to its predecessor.

    Guarantees:
        - seq is unique and strictly increasing.
        - prev_hash is None only for the genesis row.
    """

    __tablename__ = "approval_audit_events"

    __table_args__ = (
        Index("ix_approval_audit_request", "request_id", "seq"),
        Index("ix_approval_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # TransitionRecord.event_id; lets sinks deduplicate redelivery
    event_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)

    request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalAuditEvent #{self.seq} {self.action} on {self.request_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None


@event.listens_for(ApprovalAuditEventModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalAuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot modify",
    )


@event.listens_for(ApprovalAuditEventModel, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalAuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot delete",
    )
