import pytest

from qfund.errors import (
    AlreadyInactive,
    AlreadyReviewed,
    FundingStillActive,
    InactiveProject,
    NotAuthorized,
)
from qfund.lifecycle import Action, CreatorPolicy, FundingState, LifecycleGate, RolePolicy
from qfund.store.types import Project, ReviewStatus


def _project(**kw) -> Project:
    base = dict(
        project_id=1,
        creator="alice",
        title=b"t",
        description=b"d",
        location=b"l",
        budget=b"b",
        created_at=0,
    )
    base.update(kw)
    return Project(**base)


@pytest.mark.parametrize(
    "actor,action,allowed",
    [
        ("alice", Action.CLOSE, True),
        ("alice", Action.REQUEST_REVEAL, True),
        ("alice", Action.REVIEW, False),
        ("bob", Action.CLOSE, False),
        ("", Action.CLOSE, False),
    ],
)
def test_creator_policy(actor, action, allowed):
    assert CreatorPolicy().allows(actor, action, _project()) is allowed


def test_role_policy_grants_and_revokes():
    policy = RolePolicy()
    p = _project()
    assert not policy.allows("rita", Action.REVIEW, p)

    policy.grant("reviewer", "rita")
    assert policy.allows("rita", Action.REVIEW, p)
    assert not policy.allows("rita", Action.CLOSE, p)

    policy.revoke("reviewer", "rita")
    policy.revoke("reviewer", "nobody")
    assert not policy.allows("rita", Action.REVIEW, p)


def test_admin_may_do_everything():
    policy = RolePolicy({"admin": ["root"]})
    p = _project()
    assert all(policy.allows("root", a, p) for a in Action)
    assert policy.allows("alice", Action.CLOSE, p)


def test_gate_state_checks():
    gate = LifecycleGate()
    open_p, closed_p = _project(), _project(active=False)

    assert gate.funding_state(open_p) is FundingState.OPEN
    assert gate.funding_state(closed_p) is FundingState.CLOSED

    gate.require_open(open_p)
    with pytest.raises(InactiveProject):
        gate.require_open(closed_p)

    gate.require_closed(closed_p)
    with pytest.raises(FundingStillActive):
        gate.require_closed(open_p)


def test_gate_authorizes_before_lifecycle():
    gate = LifecycleGate()
    closed_p = _project(active=False)

    with pytest.raises(NotAuthorized) as ei:
        gate.check_close("bob", closed_p)
    assert ei.value.details == {"actor": "bob", "action": "close", "project_id": 1}

    with pytest.raises(AlreadyInactive):
        gate.check_close("alice", closed_p)


def test_gate_review_is_one_shot():
    gate = LifecycleGate(RolePolicy({"reviewer": ["rita"]}))
    gate.check_review("rita", _project())
    with pytest.raises(AlreadyReviewed):
        gate.check_review("rita", _project(review=ReviewStatus.APPROVED))


def test_project_validation():
    with pytest.raises(ValueError):
        _project(project_id=0)
    with pytest.raises(ValueError):
        _project(creator="")
