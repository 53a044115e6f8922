"""
Property-based tests for the approval state machine.

Random sequences of decide() calls by random portal users are replayed
against fresh requests.  Whatever the sequence, the following must hold:

- Status only moves forward; a refused command changes nothing
- Once approved or rejected, every further decision is AlreadyFinal
- A level-2 decision only exists on top of an approved level-1 decision
- An auto-approved request carries a decision at every level of its kind
- The version counts state changes exactly
"""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from approval_kernel.domain.request import (
    AUTO_APPROVED_COMMENT,
    REQUIRED_STATUS_FOR_LEVEL,
    STATUS_RANK,
    DecisionAction,
    RequestKind,
    RequestStatus,
    is_valid_transition,
    resolve_status,
)
from approval_kernel.exceptions import ApprovalKernelError, RequestAlreadyFinalError

# Portal users seeded by conftest.USERS.
PORTAL_USERS = [
    "emp-alice", "emp-bob", "tse-carol", "lead-dan", "opsmgr-erin",
    "opsmgr-frank", "hr-grace", "hr-heidi", "acct-ivan", "md-judy",
]

DB_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

kinds = st.sampled_from(list(RequestKind))
users = st.sampled_from(PORTAL_USERS)
steps = st.lists(
    st.tuples(
        st.sampled_from([1, 2]),
        users,
        st.sampled_from(list(DecisionAction)),
    ),
    max_size=8,
)


# ---------------------------------------------------------------------------
# Pure state machine
# ---------------------------------------------------------------------------


@given(
    action=st.sampled_from(list(DecisionAction)),
    level=st.sampled_from([1, 2]),
    levels=st.sampled_from([1, 2]),
)
def test_resolved_status_is_a_forward_edge(action, level, levels):
    if level > levels:
        return
    new = resolve_status(action, level, levels)
    current = REQUIRED_STATUS_FOR_LEVEL[level]

    assert is_valid_transition(current, new)
    assert STATUS_RANK[new] > STATUS_RANK[current]


@given(
    current=st.sampled_from(list(RequestStatus)),
    new=st.sampled_from(list(RequestStatus)),
)
def test_no_edge_leaves_a_terminal_status(current, new):
    if current in (RequestStatus.APPROVED, RequestStatus.REJECTED):
        assert not is_valid_transition(current, new)


# ---------------------------------------------------------------------------
# Engine under random decision sequences
# ---------------------------------------------------------------------------


@DB_SETTINGS
@given(kind=kinds, requester=users, sequence=steps)
def test_random_decision_sequences_keep_invariants(
    engine, registry, load_request, deterministic_clock, kind, requester, sequence,
):
    result = engine.submit(kind, requester, {"fuzz": True})
    request = result.request
    config = registry.get(kind)
    state_changes = 0

    for level, actor, action in sequence:
        deterministic_clock.advance(1)
        before = load_request(request.request_id)
        try:
            after = engine.decide(request.request_id, level, actor, action)
        except ApprovalKernelError as exc:
            if before.is_final:
                assert isinstance(exc, RequestAlreadyFinalError)
            stored = load_request(request.request_id)
            assert stored.status == before.status
            assert stored.version == before.version
            continue

        state_changes += 1
        assert not before.is_final
        assert STATUS_RANK[after.status] > STATUS_RANK[before.status]
        assert after.decision_for(level).approver_id == actor

    final = load_request(request.request_id)
    assert final.version == 1 + state_changes

    if final.level2 is not None:
        assert final.level1.action == DecisionAction.APPROVE
        assert final.level1.decided_at <= final.level2.decided_at

    if final.status == RequestStatus.APPROVED:
        for level in range(1, config.levels + 1):
            assert final.decision_for(level).action == DecisionAction.APPROVE

    if result.auto_approved:
        assert state_changes == 0
        for level in range(1, config.levels + 1):
            decision = final.decision_for(level)
            assert decision.approver_id == requester
            assert decision.comment == AUTO_APPROVED_COMMENT


@DB_SETTINGS
@given(kind=kinds, requester=users)
def test_submission_never_skips_to_rejected(engine, kind, requester):
    result = engine.submit(kind, requester, {})
    assert result.request.status in (RequestStatus.PENDING, RequestStatus.APPROVED)
    assert (result.request.status == RequestStatus.APPROVED) == result.auto_approved
