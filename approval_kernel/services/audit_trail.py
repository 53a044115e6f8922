"""
AuditTrail -- fan-out of transition records to audit and notification sinks.

Responsibility:
    Delivers every ``TransitionRecord`` produced by the approval engine to
    the registered sinks, and ships two sinks: an in-memory list and a
    hash-chained SQL table.

Architecture position:
    Kernel > Services -- called by ApprovalEngine after its transaction
    commits.

Invariants enforced:
    - Delivery is best-effort.  A failing sink is logged and skipped; it
      never fails or rolls back the committed state change, and never
      prevents delivery to the remaining sinks.
    - SqlAuditSink rows are append-only and hash-chained:
      ``hash = H(request_id | action | seq | payload_hash | prev_hash)``.
    - seq comes from a locked counter row, never max(seq) + 1.

Failure modes:
    - AuditChainBrokenError from ``SqlAuditSink.validate_chain`` when a
      stored hash or predecessor link does not verify.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.base import as_utc
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.events import TransitionRecord
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import ApprovalAuditEventModel
from approval_kernel.models.sequence import SequenceCounter
from approval_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.audit_trail")

AUDIT_SEQUENCE = "approval_audit_event"


class AuditSink(Protocol):
    """Anything that accepts transition records."""

    def record(self, event: TransitionRecord) -> None:
        ...


class AuditTrailEmitter:
    """Best-effort fan-out of transition records to sinks."""

    def __init__(self, sinks: Iterable[AuditSink] = ()):
        self._sinks: list[AuditSink] = list(sinks)

    @property
    def sinks(self) -> tuple[AuditSink, ...]:
        return tuple(self._sinks)

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def emit(self, event: TransitionRecord) -> int:
        """Deliver ``event`` to every sink.

        Returns:
            Number of sinks that accepted the record.
        """
        delivered = 0
        for sink in self._sinks:
            try:
                sink.record(event)
            except Exception:
                logger.warning(
                    "audit_sink_failed",
                    extra={
                        "sink": type(sink).__name__,
                        "event_id": str(event.event_id),
                        "action": event.action.value,
                    },
                    exc_info=True,
                )
                continue
            delivered += 1
        logger.debug(
            "audit_event_emitted",
            extra={
                "event_id": str(event.event_id),
                "action": event.action.value,
                "delivered": delivered,
                "sinks": len(self._sinks),
            },
        )
        return delivered


class InMemoryAuditSink:
    """Thread-safe list of received records, in arrival order."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: list[TransitionRecord] = []

    def record(self, event: TransitionRecord) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> tuple[TransitionRecord, ...]:
        with self._lock:
            return tuple(self._events)

    def for_request(self, request_id: UUID) -> list[TransitionRecord]:
        return [e for e in self.events if e.request_id == request_id]

    def notifications(self) -> list[TransitionRecord]:
        """Records a notification dispatcher would act on."""
        return [e for e in self.events if e.is_notification_worthy]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single persisted audit row."""

    seq: int
    event_id: UUID
    action: str
    actor_id: str
    level: int | None
    from_status: str | None
    to_status: str
    occurred_at: datetime
    payload: dict[str, Any]
    hash: str


class SqlAuditSink:
    """Hash-chained audit log in ``approval_audit_events``.

    Each record is written in its own transaction, after the engine's
    transaction has committed.  Redelivery of an already stored
    ``event_id`` is ignored.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        # Chain appends are serialized in-process; the counter row lock
        # serializes them across processes.
        self._lock = threading.Lock()

    def record(self, event: TransitionRecord) -> None:
        with self._lock, session_scope(self._session_factory) as session:
            existing = session.execute(
                select(ApprovalAuditEventModel.id).where(
                    ApprovalAuditEventModel.event_id == event.event_id
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.debug(
                    "audit_event_duplicate_ignored",
                    extra={"event_id": str(event.event_id)},
                )
                return

            seq = self._next_seq(session)
            prev_hash = session.execute(
                select(ApprovalAuditEventModel.hash)
                .order_by(ApprovalAuditEventModel.seq.desc())
                .limit(1)
            ).scalar_one_or_none()

            payload = event.to_payload()
            payload_hash = hash_payload(payload)
            row = ApprovalAuditEventModel(
                seq=seq,
                event_id=event.event_id,
                request_id=event.request_id,
                kind=event.kind.value,
                action=event.action.value,
                actor_id=event.actor_id,
                level=event.level,
                from_status=event.from_status.value if event.from_status else None,
                to_status=event.to_status.value,
                occurred_at=event.occurred_at,
                payload=payload,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
                hash=hash_audit_event(
                    entity_id=str(event.request_id),
                    action=event.action.value,
                    seq=seq,
                    payload_hash=payload_hash,
                    prev_hash=prev_hash,
                ),
            )
            session.add(row)

        logger.info(
            "audit_event_recorded",
            extra={
                "seq": seq,
                "event_id": str(event.event_id),
                "action": event.action.value,
            },
        )

    def _next_seq(self, session: Session) -> int:
        counter = session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == AUDIT_SEQUENCE)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if counter is None:
            counter = SequenceCounter(name=AUDIT_SEQUENCE, current_value=0)
            session.add(counter)
        counter.current_value += 1
        session.flush()
        return counter.current_value

    def trace(self, request_id: UUID) -> list[AuditTraceEntry]:
        """Persisted audit rows for one request, in chain order."""
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(ApprovalAuditEventModel)
                .where(ApprovalAuditEventModel.request_id == request_id)
                .order_by(ApprovalAuditEventModel.seq)
            ).scalars().all()
            return [
                AuditTraceEntry(
                    seq=row.seq,
                    event_id=row.event_id,
                    action=row.action,
                    actor_id=row.actor_id,
                    level=row.level,
                    from_status=row.from_status,
                    to_status=row.to_status,
                    occurred_at=as_utc(row.occurred_at),
                    payload=dict(row.payload),
                    hash=row.hash,
                )
                for row in rows
            ]

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Returns:
            True if every stored hash matches its recomputed value and every
            ``prev_hash`` matches its predecessor's hash.

        Raises:
            AuditChainBrokenError: at the first row that does not verify.
        """
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(ApprovalAuditEventModel).order_by(ApprovalAuditEventModel.seq)
            ).scalars().all()

            previous: str | None = None
            for row in rows:
                if row.prev_hash != previous:
                    logger.critical(
                        "audit_chain_broken",
                        extra={"seq": row.seq, "check": "prev_hash"},
                    )
                    raise AuditChainBrokenError(str(row.id), str(previous), str(row.prev_hash))

                payload_hash = hash_payload(row.payload)
                expected = hash_audit_event(
                    entity_id=str(row.request_id),
                    action=row.action,
                    seq=row.seq,
                    payload_hash=payload_hash,
                    prev_hash=row.prev_hash,
                )
                if payload_hash != row.payload_hash or expected != row.hash:
                    logger.critical(
                        "audit_chain_broken",
                        extra={"seq": row.seq, "check": "hash"},
                    )
                    raise AuditChainBrokenError(str(row.id), expected, row.hash)
                previous = row.hash

        logger.info("audit_chain_validated", extra={"events": len(rows)})
        return True
