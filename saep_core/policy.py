"""
saep_core/policy.py — Role-based access policy.

A fixed role × resource → actions matrix plus ownership and assignment
checks. Every call produces an AccessDecision and hands it to the audit
recorder, whether or not the caller acts on a denial.

Evaluation order:
    1. Matrix lookup: action missing          → deny "role lacks action"
    2. Student on Artifact/Record, owner set
       and not the caller                     → deny "not owner"
    3. Reviewer reading an Artifact, assignee
       set and not the caller                 → deny "not assigned"
    4. Otherwise                              → allow
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from .audit import AuditRecorder
from .errors import AuthorizationError, NotFoundError
from .models import (
    AccessContext,
    AccessDecision,
    Action,
    Principal,
    ResourceType,
    Role,
)


REASON_ALLOWED = "allowed"
REASON_ROLE_LACKS_ACTION = "role lacks action"
REASON_NOT_OWNER = "not owner"
REASON_NOT_ASSIGNED = "not assigned"

# Denials that must look like a missing resource to the caller.
CONCEALED_REASONS: FrozenSet[str] = frozenset({REASON_NOT_OWNER, REASON_NOT_ASSIGNED})


# ---------------------------------------------------------------------------
# Access matrix (locked)
# ---------------------------------------------------------------------------

_A = ResourceType.ARTIFACT
_M = ResourceType.METRIC
_R = ResourceType.RECORD

ACCESS_MATRIX: Dict[Role, Dict[ResourceType, FrozenSet[Action]]] = {
    Role.STUDENT: {
        _A: frozenset({Action.CREATE, Action.READ}),
        _R: frozenset({Action.READ}),
    },
    Role.REVIEWER: {
        _A: frozenset({Action.READ}),
        _M: frozenset({Action.CREATE, Action.READ, Action.SIGN}),
    },
    Role.ADMIN: {
        _A: frozenset({Action.READ, Action.DELETE}),
        _M: frozenset({Action.READ, Action.VERIFY}),
        _R: frozenset({Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE}),
    },
}

POLICY_DESCRIPTIONS: Dict[Role, Dict[ResourceType, str]] = {
    Role.STUDENT: {
        _A: "Students create and view their own submissions; no modification.",
        _M: "No access: students do not see evaluations before publication.",
        _R: "Students view their own published results.",
    },
    Role.REVIEWER: {
        _A: "Read-only access to submissions assigned to this reviewer.",
        _M: "Create, read and sign evaluations; signed evaluations are immutable.",
        _R: "No access: evaluation is kept separate from publication.",
    },
    Role.ADMIN: {
        _A: "Oversight: read and delete any submission.",
        _M: "Read and verify evaluation signatures; cannot create or modify them.",
        _R: "Full control over published results.",
    },
}


def allowed_actions(role: Role, resource_type: ResourceType) -> FrozenSet[Action]:
    return ACCESS_MATRIX.get(role, {}).get(resource_type, frozenset())


class AccessPolicyEngine:
    """Evaluates the access matrix and records every decision."""

    def __init__(self, audit: Optional[AuditRecorder] = None) -> None:
        self.audit = audit

    def check_access(
        self,
        principal: Principal,
        resource_type: ResourceType,
        action: Action,
        context: Optional[AccessContext] = None,
        *,
        submission_id: Optional[str] = None,
    ) -> AccessDecision:
        """Decide whether principal may perform action on resource_type.

        Deterministic for identical inputs (apart from the timestamp).
        """
        resource_type = ResourceType(resource_type)
        action = Action(action)
        reason = self._evaluate(principal, resource_type, action, context or AccessContext())

        decision = AccessDecision(
            principal_id=principal.id,
            role=principal.role,
            resource_type=resource_type,
            action=action,
            allowed=reason == REASON_ALLOWED,
            reason=reason,
            policy=POLICY_DESCRIPTIONS[principal.role][resource_type],
        )
        if self.audit is not None:
            self.audit.record_decision(decision, submission_id=submission_id)
        return decision

    def require(
        self,
        principal: Principal,
        resource_type: ResourceType,
        action: Action,
        context: Optional[AccessContext] = None,
        *,
        submission_id: Optional[str] = None,
    ) -> AccessDecision:
        """check_access(), raising on denial.

        Ownership and assignment denials raise NotFoundError with the same
        message an unknown id produces; other denials raise
        AuthorizationError.
        """
        decision = self.check_access(
            principal, resource_type, action, context, submission_id=submission_id
        )
        if decision.allowed:
            return decision
        if decision.reason in CONCEALED_REASONS:
            raise NotFoundError(not_found_message(submission_id))
        raise AuthorizationError(
            f"Role {principal.role.value} may not {action.value} "
            f"{ResourceType(resource_type).value}",
            reason=decision.reason,
        )

    @staticmethod
    def _evaluate(
        principal: Principal,
        resource_type: ResourceType,
        action: Action,
        context: AccessContext,
    ) -> str:
        if action not in allowed_actions(principal.role, resource_type):
            return REASON_ROLE_LACKS_ACTION

        if principal.role == Role.STUDENT and resource_type in (_A, _R):
            if context.owner_id and context.owner_id != principal.id:
                return REASON_NOT_OWNER

        if (
            principal.role == Role.REVIEWER
            and resource_type == _A
            and action == Action.READ
        ):
            if context.assigned_reviewer_id and context.assigned_reviewer_id != principal.id:
                return REASON_NOT_ASSIGNED

        return REASON_ALLOWED


def not_found_message(submission_id: Optional[str]) -> str:
    """The one message used for both unknown and concealed submissions."""
    return f"Submission not found: {submission_id}"
