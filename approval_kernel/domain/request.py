"""
Approval request domain types (``approval_kernel.domain.request``).

Responsibility
--------------
Pure value objects for the approval engine: request kinds, the status
state machine, per-level decision records and the immutable request
snapshot returned by every engine operation.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Status only moves forward: pending -> level1_approved -> approved, or
  -> rejected from pending / level1_approved.  ``STATUS_TRANSITIONS`` is
  the only source of valid edges; terminal states have none.
* A rejection at any level is terminal.
* One decision per level, ever.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from approval_kernel.domain.positions import Position
from approval_kernel.exceptions import InvalidInputError
from approval_kernel.utils.hashing import to_json_compatible


# =========================================================================
# Kinds
# =========================================================================


class RequestKind(str, Enum):
    """Financial request flows handled by the engine."""

    CASH_ADVANCE = "cash_advance"
    OVERTIME = "overtime"
    LIQUIDATION = "liquidation"


# =========================================================================
# Status lifecycle
# =========================================================================


class RequestStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    LEVEL1_APPROVED = "level1_approved"
    APPROVED = "approved"
    REJECTED = "rejected"


STATUS_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.LEVEL1_APPROVED,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.LEVEL1_APPROVED: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
})

# Forward order used by monotonicity checks; rejected sits outside the chain.
STATUS_RANK: dict[RequestStatus, int] = {
    RequestStatus.PENDING: 0,
    RequestStatus.LEVEL1_APPROVED: 1,
    RequestStatus.APPROVED: 2,
    RequestStatus.REJECTED: 2,
}

# Status a request must be in for a decision at the given level.
REQUIRED_STATUS_FOR_LEVEL: dict[int, RequestStatus] = {
    1: RequestStatus.PENDING,
    2: RequestStatus.LEVEL1_APPROVED,
}

VALID_LEVELS: frozenset[int] = frozenset({1, 2})


class DecisionAction(str, Enum):
    """What an approver can do at a level."""

    APPROVE = "approve"
    REJECT = "reject"


def is_valid_transition(current: RequestStatus, new: RequestStatus) -> bool:
    """Return True if ``current -> new`` is an edge of the state machine."""
    return new in STATUS_TRANSITIONS.get(current, frozenset())


def resolve_status(action: DecisionAction, level: int, levels: int) -> RequestStatus:
    """Map a decision at ``level`` of a ``levels``-level workflow to a status."""
    if action == DecisionAction.REJECT:
        return RequestStatus.REJECTED
    if level >= levels:
        return RequestStatus.APPROVED
    return RequestStatus.LEVEL1_APPROVED


# =========================================================================
# Input parsing
# =========================================================================


def parse_kind(value: RequestKind | str) -> RequestKind:
    """Parse a request kind, raising ``InvalidInputError`` when unknown."""
    if isinstance(value, RequestKind):
        return value
    try:
        return RequestKind(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError("kind", value, "unknown request kind") from None


def parse_action(value: DecisionAction | str) -> DecisionAction:
    """Parse a decision action, raising ``InvalidInputError`` when unknown."""
    if isinstance(value, DecisionAction):
        return value
    try:
        return DecisionAction(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError("action", value, "must be approve or reject") from None


def parse_level(value: Any) -> int:
    """Parse a decision level; only 1 and 2 exist."""
    if isinstance(value, bool) or not isinstance(value, int) or value not in VALID_LEVELS:
        raise InvalidInputError("level", value, "must be 1 or 2")
    return value


def validate_payload(payload: Any) -> dict[str, Any]:
    """
    Payloads are opaque to the engine but must be a JSON-storable mapping.

    Decimals, dates and UUIDs are converted to the strings the JSON column
    will hold, so the snapshot returned by a command equals the stored one.
    """
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise InvalidInputError("payload", type(payload).__name__, "must be a mapping")
    try:
        return to_json_compatible(dict(payload))
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("payload", type(payload).__name__, str(exc)) from None


# =========================================================================
# Records
# =========================================================================


AUTO_APPROVED_COMMENT = "auto-approved"


@dataclass(frozen=True)
class Decision:
    """A single level decision. Written once, never overwritten."""

    level: int
    approver_id: str
    action: DecisionAction
    decided_at: datetime
    comment: str | None = None

    @property
    def is_approval(self) -> bool:
        return self.action == DecisionAction.APPROVE


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request.

    ``requester_position`` and ``confidential`` are captured at submission
    and never recomputed, so a later promotion of the requester does not
    change who may act on an existing request.
    """

    request_id: UUID
    kind: RequestKind
    requester_id: str
    requester_position: Position
    status: RequestStatus
    confidential: bool
    created_at: datetime
    updated_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    level1: Decision | None = None
    level2: Decision | None = None
    deleted_at: datetime | None = None
    deleted_by: str | None = None
    version: int = 1

    @property
    def is_final(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def decisions(self) -> tuple[Decision, ...]:
        return tuple(d for d in (self.level1, self.level2) if d is not None)

    def decision_for(self, level: int) -> Decision | None:
        """Return the decision recorded at ``level``, if any."""
        if level == 1:
            return self.level1
        if level == 2:
            return self.level2
        return None

    @property
    def awaiting_level(self) -> int | None:
        """The level whose decision is due next, or None when final."""
        if self.status == RequestStatus.PENDING:
            return 1
        if self.status == RequestStatus.LEVEL1_APPROVED:
            return 2
        return None


@dataclass(frozen=True)
class SubmitResult:
    """Result of ``ApprovalEngine.submit``."""

    request: ApprovalRequest
    auto_approved: bool
