"""
TransitionRecord payloads, notification audiences and the static oracle.
"""

from datetime import datetime, timezone
from uuid import uuid4

from approval_kernel.domain.events import (
    Audience,
    AudienceRole,
    AuditAction,
    TransitionRecord,
    audiences_for,
)
from approval_kernel.domain.oracle import StaticPermissionOracle
from approval_kernel.domain.positions import Position
from approval_kernel.domain.request import ApprovalRequest, RequestKind, RequestStatus

NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def snapshot(status):
    return ApprovalRequest(
        request_id=uuid4(),
        kind=RequestKind.OVERTIME,
        requester_id="emp-alice",
        requester_position=Position.EMPLOYEE,
        status=status,
        confidential=False,
        created_at=NOW,
        updated_at=NOW,
    )


class TestAudiences:

    def test_new_request_notifies_level1_approvers(self):
        assert audiences_for(None, snapshot(RequestStatus.PENDING), 2) == (Audience.approvers(1),)

    def test_level1_approval_notifies_level2_approvers(self):
        before = snapshot(RequestStatus.PENDING)
        after = snapshot(RequestStatus.LEVEL1_APPROVED)
        assert audiences_for(before, after, 2) == (Audience.approvers(2),)

    def test_terminal_transition_notifies_requester(self):
        before = snapshot(RequestStatus.LEVEL1_APPROVED)
        for status in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            assert audiences_for(before, snapshot(status), 2) == (Audience.requester(),)

    def test_no_status_change_has_no_audience(self):
        pending = snapshot(RequestStatus.PENDING)
        assert audiences_for(pending, snapshot(RequestStatus.PENDING), 2) == ()


class TestTransitionRecord:

    def test_payload_is_json_ready(self):
        record = TransitionRecord(
            request_id=uuid4(),
            kind=RequestKind.CASH_ADVANCE,
            action=AuditAction.LEVEL_REJECTED,
            actor_id="lead-dan",
            level=1,
            from_status=RequestStatus.PENDING,
            to_status=RequestStatus.REJECTED,
            occurred_at=NOW,
            comment="insufficient funds",
            audiences=(Audience.requester(),),
        )
        payload = record.to_payload()

        assert payload["kind"] == "cash_advance"
        assert payload["action"] == "level_rejected"
        assert payload["from_status"] == "pending"
        assert payload["occurred_at"] == NOW.isoformat()
        assert payload["audiences"] == [{"role": AudienceRole.REQUESTER.value, "level": None}]
        assert record.is_notification_worthy

    def test_event_ids_are_unique(self):
        fields = dict(
            request_id=uuid4(),
            kind=RequestKind.OVERTIME,
            action=AuditAction.AMENDED,
            actor_id="emp-alice",
            to_status=RequestStatus.PENDING,
            occurred_at=NOW,
        )
        assert TransitionRecord(**fields).event_id != TransitionRecord(**fields).event_id


class TestStaticPermissionOracle:

    def test_permissions_come_from_the_position(self):
        oracle = StaticPermissionOracle(
            {"HR": ["approve_cash_advance_level2"]},
            {"hr-grace": "HR"},
        )
        assert oracle.has_permission("hr-grace", "approve_cash_advance_level2")
        assert not oracle.has_permission("hr-grace", "manage_cash_flow")
        assert oracle.position_of("hr-grace") == Position.HR

    def test_unknown_user_has_nothing(self):
        oracle = StaticPermissionOracle({"HR": ["anything"]})
        assert oracle.position_of("ghost") is None
        assert not oracle.has_permission("ghost", "anything")

    def test_reassignment_changes_grants(self):
        oracle = StaticPermissionOracle(
            {"HR": ["hr_key"], "Accounting": ["acct_key"]},
            {"u1": "HR"},
        )
        oracle.assign("u1", Position.ACCOUNTING)
        assert oracle.has_permission("u1", "acct_key")
        assert not oracle.has_permission("u1", "hr_key")
        assert oracle.holders_of("acct_key") == ("u1",)
