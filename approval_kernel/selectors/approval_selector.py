"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read paths over approval requests (``Get`` and
    ``List{filter}``).
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/ value types.  Never mutates.

Invariants enforced:
    - Read-only: the selector never adds, flushes or commits.
    - DTO return convention: frozen ``ApprovalRequest`` snapshots, never ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.

Reads are not filtered by confidentiality.  Callers that must hide
confidential requests pass the result through
``confidentiality.filter_visible``.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.request import (
    REQUIRED_STATUS_FOR_LEVEL,
    ApprovalRequest,
    RequestKind,
    RequestStatus,
    parse_kind,
    parse_level,
)
from approval_kernel.exceptions import InvalidInputError, RequestNotFoundError
from approval_kernel.models.approval_request import ApprovalRequestModel

MAX_LIMIT = 500


@dataclass(frozen=True)
class ApprovalFilter:
    """Criteria for ``ApprovalSelector.list``; unset fields do not filter."""

    kind: RequestKind | str | None = None
    status: RequestStatus | str | None = None
    requester_id: str | None = None
    awaiting_level: int | None = None
    include_deleted: bool = False
    limit: int = 50
    offset: int = 0

    def __post_init__(self):
        if self.kind is not None:
            object.__setattr__(self, "kind", parse_kind(self.kind))
        if self.status is not None and not isinstance(self.status, RequestStatus):
            try:
                object.__setattr__(self, "status", RequestStatus(str(self.status).lower()))
            except ValueError:
                raise InvalidInputError("status", self.status, "unknown status") from None
        if self.awaiting_level is not None:
            parse_level(self.awaiting_level)
        for name in ("limit", "offset"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInputError(name, value, "must be an integer")
        if not 0 < self.limit <= MAX_LIMIT:
            raise InvalidInputError("limit", self.limit, f"must be between 1 and {MAX_LIMIT}")
        if self.offset < 0:
            raise InvalidInputError("offset", self.offset, "cannot be negative")


class ApprovalSelector:
    """Read-only queries over ``approval_requests``."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, request_id: UUID | str, include_deleted: bool = False) -> ApprovalRequest:
        """
        Fetch one request snapshot.

        Raises:
            RequestNotFoundError: unknown id, or soft-deleted and
                ``include_deleted`` is False.
        """
        try:
            key = request_id if isinstance(request_id, UUID) else UUID(str(request_id))
        except ValueError:
            raise RequestNotFoundError(str(request_id)) from None

        model = self.session.get(ApprovalRequestModel, key)
        if model is None or (model.deleted_at is not None and not include_deleted):
            raise RequestNotFoundError(str(request_id))
        return model.to_dto()

    def list(self, criteria: ApprovalFilter | None = None) -> list[ApprovalRequest]:
        """Requests matching ``criteria``, newest first."""
        criteria = criteria or ApprovalFilter()
        stmt = (
            self._filtered(select(ApprovalRequestModel), criteria)
            .order_by(
                ApprovalRequestModel.created_at.desc(),
                ApprovalRequestModel.id.desc(),
            )
            .limit(criteria.limit)
            .offset(criteria.offset)
        )
        return [model.to_dto() for model in self.session.execute(stmt).scalars()]

    def count(self, criteria: ApprovalFilter | None = None) -> int:
        """Number of requests matching ``criteria``; limit and offset are ignored."""
        criteria = criteria or ApprovalFilter()
        stmt = self._filtered(
            select(func.count()).select_from(ApprovalRequestModel), criteria,
        )
        return self.session.execute(stmt).scalar_one()

    @staticmethod
    def _filtered(stmt, criteria: ApprovalFilter):
        if not criteria.include_deleted:
            stmt = stmt.where(ApprovalRequestModel.deleted_at.is_(None))
        if criteria.kind is not None:
            stmt = stmt.where(ApprovalRequestModel.kind == criteria.kind.value)
        if criteria.status is not None:
            stmt = stmt.where(ApprovalRequestModel.status == criteria.status.value)
        if criteria.requester_id is not None:
            stmt = stmt.where(ApprovalRequestModel.requester_id == criteria.requester_id)
        if criteria.awaiting_level is not None:
            required = REQUIRED_STATUS_FOR_LEVEL[criteria.awaiting_level]
            stmt = stmt.where(ApprovalRequestModel.status == required.value)
        return stmt
