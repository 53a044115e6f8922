"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every engine failure is a policy violation or an already-resolved state,
never a transient fault.  Callers (API layers, batch jobs) must map them to
transport responses without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.decide(request_id, 2, actor_id, "approve")
    except ForbiddenError as e:
        api_response(403, code=e.code, reason=e.reason.value)
    except WrongLevelError as e:
        api_response(409, code=e.code, level=e.level, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- RequestError
    |   +-- RequestNotFoundError
    |   +-- RequestAlreadyFinalError
    |   +-- WrongLevelError
    |   |   +-- Level1IncompleteError
    |   +-- AlreadyDeletedError
    |
    +-- ForbiddenError
    |
    +-- InvalidInputError
    |
    +-- ConcurrencyError
    |   +-- AlreadyProcessedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                  | When Raised
----------------|-----------------------|-----------------------------------------
Request         | NOT_FOUND             | Unknown or soft-deleted request id
                | ALREADY_FINAL         | Request already approved/rejected
                | WRONG_LEVEL           | Level inconsistent with status/config
                | LEVEL1_INCOMPLETE     | Level 2 attempted before level 1 approval
                | ALREADY_DELETED       | Duplicate soft delete
----------------|-----------------------|-----------------------------------------
Authorization   | FORBIDDEN             | Missing permission, confidentiality
                |                       | override or ownership
----------------|-----------------------|-----------------------------------------
Input           | INVALID_INPUT         | Unknown kind/level/action, bad payload
----------------|-----------------------|-----------------------------------------
Concurrency     | ALREADY_PROCESSED     | Compare-and-swap lost to another writer
----------------|-----------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION| Modifying an audit record or decision
                | AUDIT_CHAIN_BROKEN    | Stored audit hash chain does not verify

None of these are retried by the engine.  A caller that retries after a
storage failure must re-read state first; ``decide`` is not blindly
idempotent.
"""

from enum import Enum


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Request state errors


class RequestError(ApprovalKernelError):
    """Base exception for request state errors."""

    code: str = "REQUEST_ERROR"


class RequestNotFoundError(RequestError):
    """Request with given ID does not exist or has been soft-deleted."""

    code: str = "NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class RequestAlreadyFinalError(RequestError):
    """Request is already approved or rejected; no further decisions."""

    code: str = "ALREADY_FINAL"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is already final (status={status})"
        )


class WrongLevelError(RequestError):
    """Decision level is inconsistent with current status or configuration."""

    code: str = "WRONG_LEVEL"

    def __init__(self, request_id: str, level: int, status: str):
        self.request_id = request_id
        self.level = level
        self.status = status
        super().__init__(
            f"Cannot act on level {level} of request {request_id} "
            f"in status {status}"
        )


class Level1IncompleteError(WrongLevelError):
    """Level 2 decision attempted before level 1 resolved as approved."""

    code: str = "LEVEL1_INCOMPLETE"

    def __init__(self, request_id: str, status: str):
        super().__init__(request_id, 2, status)
        self.args = (
            f"Level 1 of request {request_id} must be approved before "
            f"level 2 (status={status})",
        )


class AlreadyDeletedError(RequestError):
    """Request is already soft-deleted."""

    code: str = "ALREADY_DELETED"

    def __init__(self, request_id: str, deleted_by: str | None = None):
        self.request_id = request_id
        self.deleted_by = deleted_by
        super().__init__(f"Approval request {request_id} is already deleted")


# Authorization errors


class ForbiddenReason(str, Enum):
    """Why an actor was refused."""

    PERMISSION = "permission"
    CONFIDENTIALITY = "confidentiality"
    OWNERSHIP = "ownership"


class ForbiddenError(ApprovalKernelError):
    """
    Actor lacks the grant required for this operation.

    ``reason`` distinguishes a missing permission key from a confidentiality
    override failure.  The two checks are independent: holding the base
    permission never bypasses the confidentiality check.
    """

    code: str = "FORBIDDEN"

    def __init__(
        self,
        reason: ForbiddenReason,
        actor_id: str,
        request_id: str | None = None,
        permission_key: str | None = None,
        position: str | None = None,
    ):
        self.reason = reason
        self.actor_id = actor_id
        self.request_id = request_id
        self.permission_key = permission_key
        self.position = position
        if reason == ForbiddenReason.PERMISSION:
            detail = f"missing permission '{permission_key}'"
        elif reason == ForbiddenReason.CONFIDENTIALITY:
            detail = f"position '{position}' may not act on confidential requests"
        else:
            detail = "only the requester may perform this action"
        super().__init__(f"Forbidden for actor {actor_id}: {detail}")


# Input errors


class InvalidInputError(ApprovalKernelError):
    """Nonsensical command input (unknown kind, level, action, payload shape)."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, value: object, reason: str = ""):
        self.field = field
        self.value = value
        self.reason = reason
        message = f"Invalid {field}: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


# Concurrency errors


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class AlreadyProcessedError(ConcurrencyError):
    """A concurrent writer changed the request between read and write."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, request_id: str, observed_version: int):
        self.request_id = request_id
        self.observed_version = observed_version
        super().__init__(
            f"Approval request {request_id} was modified concurrently "
            f"(observed version {observed_version})"
        )


# Immutability errors


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(ImmutabilityError):
    """Recomputed audit hash or predecessor link does not match storage."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
