"""
test/test_policy.py — Tests for the role-based access policy

Run:  pytest test/test_policy.py -v
  or: python test/test_policy.py
"""

import os
import sys
import tempfile

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from saep_core.audit import AuditRecorder
from saep_core.errors import AuthorizationError, NotFoundError
from saep_core.models import AccessContext, Action, Principal, ResourceType, Role
from saep_core.policy import (
    AccessPolicyEngine,
    REASON_ALLOWED,
    REASON_NOT_ASSIGNED,
    REASON_NOT_OWNER,
    REASON_ROLE_LACKS_ACTION,
    not_found_message,
)
from saep_core.storage import Storage


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

A, M, R = ResourceType.ARTIFACT, ResourceType.METRIC, ResourceType.RECORD

# Written out independently of ACCESS_MATRIX so a change there is caught.
EXPECTED = {
    Role.STUDENT: {A: {"create", "read"}, M: set(), R: {"read"}},
    Role.REVIEWER: {A: {"read"}, M: {"create", "read", "sign"}, R: set()},
    Role.ADMIN: {
        A: {"read", "delete"},
        M: {"read", "verify"},
        R: {"create", "read", "update", "delete"},
    },
}

STUDENT = Principal(id="student-a", role=Role.STUDENT)
OTHER_STUDENT = Principal(id="student-b", role=Role.STUDENT)
REVIEWER = Principal(id="reviewer-r", role=Role.REVIEWER)
OTHER_REVIEWER = Principal(id="reviewer-s", role=Role.REVIEWER)
ADMIN = Principal(id="admin-1", role=Role.ADMIN)

CONTEXT = AccessContext(owner_id="student-a", assigned_reviewer_id="reviewer-r")

_PASS = 0
_FAIL = 0


def _ok(name: str) -> None:
    global _PASS
    _PASS += 1
    print(f"  PASS: {name}")


def _fail(name: str, err: Exception) -> None:
    global _FAIL
    _FAIL += 1
    print(f"  FAIL: {name} — {err}")


def _principal(role: Role) -> Principal:
    return Principal(id=f"{role.value}-x", role=role)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def test_full_matrix():
    """Every (role, resource, action) cell, without context."""
    engine = AccessPolicyEngine()
    cells = 0
    for role, resources in EXPECTED.items():
        for resource_type in ResourceType:
            for action in Action:
                decision = engine.check_access(_principal(role), resource_type, action)
                expected = action.value in resources[resource_type]
                assert decision.allowed is expected, (role, resource_type, action)
                assert decision.reason == (
                    REASON_ALLOWED if expected else REASON_ROLE_LACKS_ACTION
                )
                cells += 1
    assert cells == 3 * 3 * 6
    _ok(f"test_full_matrix ({cells} cells)")


def test_decisions_are_deterministic():
    engine = AccessPolicyEngine()
    for principal in (STUDENT, OTHER_STUDENT, REVIEWER, OTHER_REVIEWER, ADMIN):
        for resource_type in ResourceType:
            for action in Action:
                first = engine.check_access(principal, resource_type, action, CONTEXT)
                second = engine.check_access(principal, resource_type, action, CONTEXT)
                assert first.model_dump(exclude={"timestamp"}) == (
                    second.model_dump(exclude={"timestamp"})
                )
    _ok("test_decisions_are_deterministic")


def test_student_ownership():
    engine = AccessPolicyEngine()
    assert engine.check_access(STUDENT, A, Action.READ, CONTEXT).allowed
    assert engine.check_access(STUDENT, R, Action.READ, CONTEXT).allowed

    for resource_type, action in ((A, Action.READ), (A, Action.CREATE), (R, Action.READ)):
        decision = engine.check_access(OTHER_STUDENT, resource_type, action, CONTEXT)
        assert not decision.allowed
        assert decision.reason == REASON_NOT_OWNER
    _ok("test_student_ownership")


def test_reviewer_assignment():
    engine = AccessPolicyEngine()
    assert engine.check_access(REVIEWER, A, Action.READ, CONTEXT).allowed

    decision = engine.check_access(OTHER_REVIEWER, A, Action.READ, CONTEXT)
    assert not decision.allowed
    assert decision.reason == REASON_NOT_ASSIGNED

    # The assignment rule only applies to reading artifacts.
    assert engine.check_access(OTHER_REVIEWER, M, Action.CREATE, CONTEXT).allowed
    _ok("test_reviewer_assignment")


def test_role_check_precedes_context():
    engine = AccessPolicyEngine()
    decision = engine.check_access(OTHER_STUDENT, A, Action.DELETE, CONTEXT)
    assert decision.reason == REASON_ROLE_LACKS_ACTION
    # Admins are not subject to ownership or assignment.
    assert engine.check_access(ADMIN, A, Action.READ, CONTEXT).allowed
    _ok("test_role_check_precedes_context")


def test_require_conceals_context_denials():
    """Not-owner / not-assigned look exactly like a missing submission."""
    engine = AccessPolicyEngine()
    expected = not_found_message("sub-1")

    for principal in (OTHER_STUDENT, OTHER_REVIEWER):
        try:
            engine.require(principal, A, Action.READ, CONTEXT, submission_id="sub-1")
            assert False, "Should conceal the denial"
        except NotFoundError as e:
            assert not isinstance(e, AuthorizationError)
            assert str(e) == expected

    try:
        engine.require(REVIEWER, R, Action.READ, submission_id="sub-1")
        assert False, "Reviewer lacks Record read"
    except AuthorizationError as e:
        assert e.reason == REASON_ROLE_LACKS_ACTION
        assert "sub-1" not in str(e)
    _ok("test_require_conceals_context_denials")


def test_every_decision_is_audited():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    storage = Storage(db_path)
    try:
        engine = AccessPolicyEngine(AuditRecorder(storage))
        engine.check_access(STUDENT, A, Action.READ, CONTEXT, submission_id="sub-1")
        engine.check_access(OTHER_STUDENT, A, Action.READ, CONTEXT, submission_id="sub-1")
        engine.check_access(REVIEWER, R, Action.READ)

        events = storage.get_audit_events()
        assert [e.event_type for e in events] == ["ACCESS_DECISION"] * 3
        assert [e.outcome for e in events] == ["allowed", "denied", "denied"]
        assert events[1].principal_id == "student-b"
        assert events[1].submission_id == "sub-1"
        assert events[1].detail["reason"] == REASON_NOT_OWNER
        assert events[2].detail == {
            "role": "reviewer",
            "resource_type": "record",
            "action": "read",
            "reason": REASON_ROLE_LACKS_ACTION,
        }
    finally:
        storage.close()
        os.unlink(db_path)
    _ok("test_every_decision_is_audited")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print("=" * 60)
    print("SAEP Access Policy Tests")
    print("=" * 60)

    tests = [
        test_full_matrix,
        test_decisions_are_deterministic,
        test_student_ownership,
        test_reviewer_assignment,
        test_role_check_precedes_context,
        test_require_conceals_context_denials,
        test_every_decision_is_audited,
    ]

    for t in tests:
        try:
            t()
        except Exception as e:
            _fail(t.__name__, e)

    print("=" * 60)
    if _FAIL == 0:
        print(f"ALL {_PASS} TESTS PASSED")
    else:
        print(f"{_PASS} passed, {_FAIL} FAILED")
        sys.exit(1)
    print("=" * 60)
