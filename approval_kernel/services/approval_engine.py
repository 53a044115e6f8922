"""
ApprovalEngine -- owns every state transition of an approval request.

Responsibility:
    Submission (including auto-approval), per-level decisions, soft
    deletion, a manager's payload correction, and the requester's own
    amend/withdraw.  Consults the injected PermissionOracle and the kind's
    WorkflowConfig, persists the result, then hands one TransitionRecord
    per mutation to the audit trail.

Architecture position:
    Kernel > Services -- imperative shell around the pure domain layer.
    Owns its transactions through an injected session factory, one
    transaction per command.

Invariants enforced:
    - Status only moves along STATUS_TRANSITIONS; terminal states accept
      no further decisions.
    - One decision per level.  Duplicate or late calls surface as
      RequestAlreadyFinalError / WrongLevelError, never as silent no-ops.
    - Confidentiality gating is checked in addition to, and after, the
      level permission.
    - Per-request serialization: an in-process lock per request id, a
      row lock (SELECT ... FOR UPDATE) where the dialect has one, and a
      version compare-and-swap on write.  At most one state change wins
      for a given (request_id, level).
    - Audit emission happens after commit, outside the per-request lock,
      and cannot fail the command.

Failure modes (all typed, none retried here):
    - RequestNotFoundError, RequestAlreadyFinalError, WrongLevelError,
      Level1IncompleteError, AlreadyDeletedError, ForbiddenError,
      InvalidInputError, AlreadyProcessedError.

Audit relevance:
    Every successful command emits at least one TransitionRecord.  Every
    refused command is logged at WARNING with its error code.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.confidentiality import (
    is_confidential,
    may_act_on_confidential,
    requires_override,
)
from approval_kernel.domain.events import (
    Audience,
    AuditAction,
    TransitionRecord,
    audiences_for,
)
from approval_kernel.domain.oracle import PermissionOracle
from approval_kernel.domain.request import (
    AUTO_APPROVED_COMMENT,
    REQUIRED_STATUS_FOR_LEVEL,
    ApprovalRequest,
    Decision,
    DecisionAction,
    RequestStatus,
    SubmitResult,
    is_valid_transition,
    parse_action,
    parse_level,
    resolve_status,
    validate_payload,
)
from approval_kernel.domain.workflow import WorkflowConfig, WorkflowRegistry
from approval_kernel.exceptions import (
    AlreadyDeletedError,
    AlreadyProcessedError,
    ApprovalKernelError,
    ForbiddenError,
    ForbiddenReason,
    InvalidInputError,
    Level1IncompleteError,
    RequestAlreadyFinalError,
    RequestNotFoundError,
    WrongLevelError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval_request import ApprovalRequestModel
from approval_kernel.services.audit_trail import AuditTrailEmitter

logger = get_logger("services.approval_engine")


class _RequestLocks:
    """One re-entrant lock per request id, dropped when nobody holds it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[UUID, list] = {}

    @contextmanager
    def hold(self, request_id: UUID) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(request_id, [threading.RLock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[request_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def _parse_request_id(value: UUID | str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        # A malformed id cannot name an existing request.
        raise RequestNotFoundError(str(value)) from None


def _require_actor(actor_id: Any, field: str = "actor_id") -> str:
    if not isinstance(actor_id, str) or not actor_id.strip():
        raise InvalidInputError(field, actor_id, "must be a non-empty string")
    return actor_id


class ApprovalEngine:
    """
    Multi-level approval workflow engine.

    Contract:
        Every command is a single synchronous attempt in its own
        transaction.  It returns the updated snapshot or raises a typed
        ApprovalKernelError; nothing is retried internally.

    Non-goals:
        - Reads are not filtered by confidentiality; see
          ``confidentiality.filter_visible``.
        - Notification delivery is left to audit sinks.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: WorkflowRegistry,
        oracle: PermissionOracle,
        emitter: AuditTrailEmitter | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._oracle = oracle
        self._emitter = emitter or AuditTrailEmitter()
        self._clock = clock or SystemClock()
        self._locks = _RequestLocks()

    @property
    def registry(self) -> WorkflowRegistry:
        return self._registry

    @property
    def emitter(self) -> AuditTrailEmitter:
        return self._emitter

    # =========================================================================
    # Commands
    # =========================================================================

    def submit(
        self,
        kind,
        requester_id: str,
        payload: dict[str, Any] | None = None,
    ) -> SubmitResult:
        """
        Create a request, auto-approving it when the requester's position
        is trusted for this kind.

        Auto-approval records an approve decision at every configured level,
        attributed to the requester, without consulting permissions.

        Raises:
            InvalidInputError: unknown/unconfigured kind, empty requester,
                requester without a position, or a non-mapping payload.
        """
        config = self._registry.get(kind)
        _require_actor(requester_id, "requester_id")
        payload = validate_payload(payload)

        position = self._oracle.position_of(requester_id)
        if position is None:
            raise InvalidInputError("requester_id", requester_id, "requester has no position")

        now = self._clock.now()
        auto_approved = position in config.auto_approve_positions
        model = ApprovalRequestModel(
            id=uuid4(),
            kind=config.kind.value,
            requester_id=requester_id,
            requester_position=position.value,
            payload=payload,
            status=RequestStatus.PENDING.value,
            confidential=is_confidential(position, config),
            created_at=now,
            updated_at=now,
        )
        if auto_approved:
            for level in range(1, config.levels + 1):
                model.set_decision(
                    Decision(
                        level=level,
                        approver_id=requester_id,
                        action=DecisionAction.APPROVE,
                        decided_at=now,
                        comment=AUTO_APPROVED_COMMENT,
                    )
                )
            model.status = RequestStatus.APPROVED.value

        with LogContext.bind(request_id=model.id, actor_id=requester_id, kind=config.kind.value):
            with session_scope(self._session_factory) as session:
                session.add(model)
                session.flush()
                request = model.to_dto()

            logger.info(
                "approval_request_submitted",
                extra={
                    "status": request.status.value,
                    "confidential": request.confidential,
                    "auto_approved": auto_approved,
                },
            )

            records = [
                TransitionRecord(
                    request_id=request.request_id,
                    kind=request.kind,
                    action=AuditAction.SUBMITTED,
                    actor_id=requester_id,
                    to_status=RequestStatus.PENDING,
                    occurred_at=now,
                    audiences=() if auto_approved else (Audience.approvers(1),),
                )
            ]
            if auto_approved:
                records.append(
                    TransitionRecord(
                        request_id=request.request_id,
                        kind=request.kind,
                        action=AuditAction.AUTO_APPROVED,
                        actor_id=requester_id,
                        from_status=RequestStatus.PENDING,
                        to_status=RequestStatus.APPROVED,
                        occurred_at=now,
                        level=config.final_level,
                        comment=AUTO_APPROVED_COMMENT,
                        audiences=(Audience.requester(),),
                    )
                )
            self._emit(records)

        return SubmitResult(request=request, auto_approved=auto_approved)

    def decide(
        self,
        request_id: UUID | str,
        level: int,
        actor_id: str,
        action: DecisionAction | str,
        comment: str | None = None,
    ) -> ApprovalRequest:
        """
        Record an approve/reject decision at ``level``.

        Checks, in order: request exists and is not deleted, not final,
        level consistent with status and kind, actor holds the level's
        permission key, and (confidential requests at a gated level) the
        actor's position is in the override set.

        Raises:
            RequestNotFoundError, RequestAlreadyFinalError, WrongLevelError,
            Level1IncompleteError, ForbiddenError, InvalidInputError,
            AlreadyProcessedError.
        """
        level = parse_level(level)
        action = parse_action(action)
        _require_actor(actor_id)
        request_id = _parse_request_id(request_id)
        state: dict[str, Any] = {}

        def apply(model: ApprovalRequestModel, before: ApprovalRequest) -> None:
            if before.is_deleted:
                raise RequestNotFoundError(str(before.request_id))
            config = self._registry.get(before.kind)
            self._check_level(before, config, level)
            self._check_permission(actor_id, config.permission_for(level), before)
            if requires_override(before, config, level):
                self._check_confidentiality(actor_id, config, level, before)

            new_status = resolve_status(action, level, config.levels)
            if not is_valid_transition(before.status, new_status):
                raise WrongLevelError(str(before.request_id), level, before.status.value)

            now = self._clock.now()
            model.set_decision(
                Decision(
                    level=level,
                    approver_id=actor_id,
                    action=action,
                    decided_at=now,
                    comment=comment,
                )
            )
            model.status = new_status.value
            model.updated_at = now
            state["config"] = config
            state["now"] = now

        with self._command("decide", request_id, actor_id):
            before, after = self._mutate(request_id, apply)
            config: WorkflowConfig = state["config"]

            logger.info(
                "approval_decision_recorded",
                extra={
                    "kind": after.kind.value,
                    "decision_level": level,
                    "action": action.value,
                    "from_status": before.status.value,
                    "to_status": after.status.value,
                },
            )
            self._emit([
                TransitionRecord(
                    request_id=after.request_id,
                    kind=after.kind,
                    action=(
                        AuditAction.LEVEL_APPROVED
                        if action == DecisionAction.APPROVE
                        else AuditAction.LEVEL_REJECTED
                    ),
                    actor_id=actor_id,
                    level=level,
                    from_status=before.status,
                    to_status=after.status,
                    occurred_at=state["now"],
                    comment=comment,
                    audiences=audiences_for(before, after, config.levels),
                )
            ])
        return after

    def soft_delete(self, request_id: UUID | str, actor_id: str) -> ApprovalRequest:
        """
        Mark a request deleted without touching its status.

        Requires the kind's manage permission and, for confidential
        requests, an override position at the kind's gating level.

        Raises:
            RequestNotFoundError, AlreadyDeletedError, ForbiddenError,
            InvalidInputError, AlreadyProcessedError.
        """
        _require_actor(actor_id)
        request_id = _parse_request_id(request_id)
        state: dict[str, Any] = {}

        def apply(model: ApprovalRequestModel, before: ApprovalRequest) -> None:
            if before.is_deleted:
                raise AlreadyDeletedError(str(before.request_id), before.deleted_by)
            config = self._registry.get(before.kind)
            self._check_permission(actor_id, config.manage_permission, before)
            if requires_override(before, config, config.gating_level):
                self._check_confidentiality(actor_id, config, config.gating_level, before)
            now = self._clock.now()
            model.deleted_at = now
            model.deleted_by = actor_id
            model.updated_at = now
            state["now"] = now

        with self._command("soft_delete", request_id, actor_id):
            before, after = self._mutate(request_id, apply)
            logger.info(
                "approval_request_deleted",
                extra={"kind": after.kind.value, "status": after.status.value},
            )
            self._emit([
                TransitionRecord(
                    request_id=after.request_id,
                    kind=after.kind,
                    action=AuditAction.DELETED,
                    actor_id=actor_id,
                    from_status=before.status,
                    to_status=after.status,
                    occurred_at=state["now"],
                )
            ])
        return after

    def amend(
        self,
        request_id: UUID | str,
        actor_id: str,
        payload: dict[str, Any],
    ) -> ApprovalRequest:
        """
        Replace the payload of the actor's own pending request.

        Raises:
            RequestNotFoundError, ForbiddenError (ownership),
            RequestAlreadyFinalError, WrongLevelError (review started),
            InvalidInputError (payload).
        """
        _require_actor(actor_id)
        request_id = _parse_request_id(request_id)
        state: dict[str, Any] = {}

        def apply(model: ApprovalRequestModel, before: ApprovalRequest) -> None:
            if before.is_deleted:
                raise RequestNotFoundError(str(before.request_id))
            self._check_owner(actor_id, before)
            self._check_unreviewed(before)
            new_payload = validate_payload(payload)
            now = self._clock.now()
            model.payload = new_payload
            model.updated_at = now
            state["now"] = now

        with self._command("amend", request_id, actor_id):
            before, after = self._mutate(request_id, apply)
            logger.info("approval_request_amended", extra={"kind": after.kind.value})
            self._emit([
                TransitionRecord(
                    request_id=after.request_id,
                    kind=after.kind,
                    action=AuditAction.AMENDED,
                    actor_id=actor_id,
                    from_status=before.status,
                    to_status=after.status,
                    occurred_at=state["now"],
                )
            ])
        return after

    def amend_as_manager(
        self,
        request_id: UUID | str,
        actor_id: str,
        payload: dict[str, Any],
    ) -> ApprovalRequest:
        """
        Correct the payload of someone else's request that is still open.

        Needs the kind's manage permission and, for confidential requests,
        an override position at the gating level (the same gate as
        ``soft_delete``).  Allowed while pending or part-approved; status
        and recorded decisions are never touched.

        Raises:
            RequestNotFoundError, ForbiddenError, RequestAlreadyFinalError,
            InvalidInputError, AlreadyProcessedError.
        """
        _require_actor(actor_id)
        request_id = _parse_request_id(request_id)
        state: dict[str, Any] = {}

        def apply(model: ApprovalRequestModel, before: ApprovalRequest) -> None:
            if before.is_deleted:
                raise RequestNotFoundError(str(before.request_id))
            config = self._registry.get(before.kind)
            self._check_permission(actor_id, config.manage_permission, before)
            if requires_override(before, config, config.gating_level):
                self._check_confidentiality(actor_id, config, config.gating_level, before)
            if before.is_final:
                raise RequestAlreadyFinalError(str(before.request_id), before.status.value)
            new_payload = validate_payload(payload)
            now = self._clock.now()
            model.payload = new_payload
            model.updated_at = now
            state["now"] = now

        with self._command("amend_as_manager", request_id, actor_id):
            before, after = self._mutate(request_id, apply)
            logger.info(
                "approval_request_amended",
                extra={"kind": after.kind.value, "by_manager": True},
            )
            self._emit([
                TransitionRecord(
                    request_id=after.request_id,
                    kind=after.kind,
                    action=AuditAction.AMENDED,
                    actor_id=actor_id,
                    from_status=before.status,
                    to_status=after.status,
                    occurred_at=state["now"],
                )
            ])
        return after

    def withdraw(self, request_id: UUID | str, actor_id: str) -> ApprovalRequest:
        """
        Soft-delete the actor's own request before any review.

        Raises:
            RequestNotFoundError, AlreadyDeletedError, ForbiddenError
            (ownership), RequestAlreadyFinalError, WrongLevelError.
        """
        _require_actor(actor_id)
        request_id = _parse_request_id(request_id)
        state: dict[str, Any] = {}

        def apply(model: ApprovalRequestModel, before: ApprovalRequest) -> None:
            if before.is_deleted:
                raise AlreadyDeletedError(str(before.request_id), before.deleted_by)
            self._check_owner(actor_id, before)
            self._check_unreviewed(before)
            now = self._clock.now()
            model.deleted_at = now
            model.deleted_by = actor_id
            model.updated_at = now
            state["now"] = now

        with self._command("withdraw", request_id, actor_id):
            before, after = self._mutate(request_id, apply)
            logger.info("approval_request_withdrawn", extra={"kind": after.kind.value})
            self._emit([
                TransitionRecord(
                    request_id=after.request_id,
                    kind=after.kind,
                    action=AuditAction.WITHDRAWN,
                    actor_id=actor_id,
                    from_status=before.status,
                    to_status=after.status,
                    occurred_at=state["now"],
                )
            ])
        return after

    # =========================================================================
    # Checks
    # =========================================================================

    @staticmethod
    def _check_level(request: ApprovalRequest, config: WorkflowConfig, level: int) -> None:
        request_id = str(request.request_id)
        if request.is_final:
            raise RequestAlreadyFinalError(request_id, request.status.value)
        if not config.has_level(level):
            raise WrongLevelError(request_id, level, request.status.value)
        if request.status != REQUIRED_STATUS_FOR_LEVEL[level]:
            if level == 2:
                raise Level1IncompleteError(request_id, request.status.value)
            raise WrongLevelError(request_id, level, request.status.value)

    def _check_permission(self, actor_id: str, key: str, request: ApprovalRequest) -> None:
        if not self._oracle.has_permission(actor_id, key):
            raise ForbiddenError(
                ForbiddenReason.PERMISSION,
                actor_id,
                request_id=str(request.request_id),
                permission_key=key,
            )

    def _check_confidentiality(
        self,
        actor_id: str,
        config: WorkflowConfig,
        level: int,
        request: ApprovalRequest,
    ) -> None:
        position = self._oracle.position_of(actor_id)
        if not may_act_on_confidential(position, config, level):
            raise ForbiddenError(
                ForbiddenReason.CONFIDENTIALITY,
                actor_id,
                request_id=str(request.request_id),
                position=position.value if position is not None else None,
            )

    @staticmethod
    def _check_owner(actor_id: str, request: ApprovalRequest) -> None:
        if actor_id != request.requester_id:
            raise ForbiddenError(
                ForbiddenReason.OWNERSHIP,
                actor_id,
                request_id=str(request.request_id),
            )

    @staticmethod
    def _check_unreviewed(request: ApprovalRequest) -> None:
        if request.is_final:
            raise RequestAlreadyFinalError(str(request.request_id), request.status.value)
        if request.status != RequestStatus.PENDING:
            raise WrongLevelError(str(request.request_id), 1, request.status.value)

    # =========================================================================
    # Persistence and emission
    # =========================================================================

    @contextmanager
    def _command(self, operation: str, request_id: UUID, actor_id: str) -> Iterator[None]:
        """Bind log context and log refusals.

        The per-request lock is taken inside ``_mutate`` only, so records are
        fanned out to sinks after it is released.
        """
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            try:
                yield
            except ApprovalKernelError as exc:
                logger.warning(
                    "approval_command_rejected",
                    extra={"operation": operation, "error_code": exc.code},
                )
                raise

    def _mutate(
        self,
        request_id: UUID,
        apply: Callable[[ApprovalRequestModel, ApprovalRequest], None],
    ) -> tuple[ApprovalRequest, ApprovalRequest]:
        """Lock, check and write one request in a single transaction.

        ``apply`` raises to refuse the command, or mutates the model.  The
        flush is a version compare-and-swap; losing it is reported as
        already-final or already-processed after re-reading the row.
        """
        observed_version: int | None = None
        with self._locks.hold(request_id):
            try:
                with session_scope(self._session_factory) as session:
                    model = session.execute(
                        select(ApprovalRequestModel)
                        .where(ApprovalRequestModel.id == request_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    ).scalar_one_or_none()
                    if model is None:
                        raise RequestNotFoundError(str(request_id))

                    before = model.to_dto()
                    observed_version = before.version
                    apply(model, before)
                    session.flush()
                    after = model.to_dto()
            except StaleDataError:
                raise self._lost_race(request_id, observed_version) from None
        return before, after

    def _lost_race(self, request_id: UUID, observed_version: int | None) -> ApprovalKernelError:
        with session_scope(self._session_factory) as session:
            model = session.get(ApprovalRequestModel, request_id)
            current = model.to_dto() if model is not None else None

        logger.warning(
            "approval_version_conflict",
            extra={
                "observed_version": observed_version,
                "current_version": current.version if current else None,
            },
        )
        if current is not None and current.is_final:
            return RequestAlreadyFinalError(str(request_id), current.status.value)
        return AlreadyProcessedError(str(request_id), observed_version or 0)

    def _emit(self, records: list[TransitionRecord]) -> None:
        for record in records:
            self._emitter.emit(record)
