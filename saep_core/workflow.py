"""
saep_core/workflow.py — Submission workflow state machine.

The only component that changes a submission's status.

Lifecycle:
    submit()              →  PENDING
                               │
    evaluate()                 │  assigned reviewer signs
                               ▼
                           EVALUATED
                               │
    verify_and_publish()       │  admin verifies signature
                               ▼
                           PUBLISHED   (terminal)

    delete():  PENDING  → DELETED   (owner or admin)
               EVALUATED → DELETED  (admin only; evaluation removed too)

Every transition is gated twice: by the access policy, and by the outcome
of the signing or verification step that justifies it. Transitions of one
submission are serialized by a per-submission lock, and the stored status
is compare-and-swapped, so two concurrent evaluate() calls cannot both
attach an evaluation.

Guards run in a fixed order so nothing leaks: role-level checks first,
then the lookup (unknown and deleted ids are NotFound), then ownership or
assignment (concealed as NotFound), then state.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Dict, Optional, Set

from .audit import AuditRecorder
from .errors import (
    AuthorizationError,
    CryptoOperationError,
    InvalidStateTransition,
    NotFoundError,
    SignatureInvalid,
    ValidationError,
)
from .keys import Keyring
from .models import (
    AccessContext,
    Action,
    Evaluation,
    Principal,
    PublishResult,
    ResourceType,
    Role,
    SealedContent,
    Submission,
    SubmissionStatus,
)
from .policy import AccessPolicyEngine, not_found_message
from .signer import EvaluationSigner
from .storage import Storage
from .verifier import VerificationAuthority


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transition table (locked)
# ---------------------------------------------------------------------------

_PEND = SubmissionStatus.PENDING
_EVAL = SubmissionStatus.EVALUATED
_PUBL = SubmissionStatus.PUBLISHED
_DELE = SubmissionStatus.DELETED

VALID_TRANSITIONS: Dict[SubmissionStatus, Set[SubmissionStatus]] = {
    _PEND: {_EVAL, _DELE},
    _EVAL: {_PUBL, _DELE},
    _PUBL: set(),
    _DELE: set(),
}


def can_transition(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def context_for(submission: Submission) -> AccessContext:
    return AccessContext(
        owner_id=submission.owner_id,
        assigned_reviewer_id=submission.assigned_reviewer_id,
    )


class WorkflowStateMachine:
    """Guards and applies every status change of a submission.

    Args:
        storage:  Persistence for submissions and evaluations.
        policy:   Access policy engine (audits each decision).
        signer:   Evaluation signer.
        verifier: Verification authority.
        audit:    Audit recorder for transition outcomes.
        reverify_on_republish: When False, verify_and_publish() on an
            already-published submission is a no-op success. When True,
            the signature is checked again on every call.
    """

    def __init__(
        self,
        storage: Storage,
        policy: AccessPolicyEngine,
        signer: EvaluationSigner,
        verifier: VerificationAuthority,
        audit: AuditRecorder,
        *,
        reverify_on_republish: bool = False,
    ) -> None:
        self.storage = storage
        self.policy = policy
        self.signer = signer
        self.verifier = verifier
        self.audit = audit
        self.reverify_on_republish = reverify_on_republish

        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Locking and loading
    # ------------------------------------------------------------------

    def _submission_lock(self, submission_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(submission_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[submission_id] = lock
            return lock

    def _load(self, submission_id: str) -> Submission:
        submission = self.storage.get_submission(submission_id)
        if submission is None or submission.status == _DELE:
            raise NotFoundError(not_found_message(submission_id))
        return submission

    def _transitioned(
        self,
        principal: Principal,
        submission: Submission,
        target: SubmissionStatus,
        **detail,
    ) -> None:
        self.audit.record_event(
            "STATE_TRANSITION",
            "success",
            principal_id=principal.id,
            submission_id=submission.id,
            detail={"from": submission.status.value, "to": target.value, **detail},
        )
        logger.info(
            "Submission %s: %s -> %s",
            submission.id, submission.status.value, target.value,
        )

    def _rejected(
        self,
        principal: Principal,
        submission_id: str,
        attempted: str,
        error: Exception,
    ) -> None:
        self.audit.record_event(
            attempted.upper(),
            "failure",
            principal_id=principal.id,
            submission_id=submission_id,
            detail={"error": type(error).__name__, "message": str(error)},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def authorize_read(self, principal: Principal, submission_id: str) -> Submission:
        """Load a submission the principal may read, or raise NotFound/AuthorizationError."""
        self.policy.require(
            principal, ResourceType.ARTIFACT, Action.READ, submission_id=submission_id
        )
        submission = self._load(submission_id)
        self.policy.require(
            principal, ResourceType.ARTIFACT, Action.READ,
            context_for(submission), submission_id=submission_id,
        )
        return submission

    # ------------------------------------------------------------------
    # Submit: → PENDING
    # ------------------------------------------------------------------

    def submit(
        self,
        principal: Principal,
        title: str,
        sealed: SealedContent,
        reviewer_id: str,
        owner_id: Optional[str] = None,
    ) -> Submission:
        """Persist a sealed artifact as a new PENDING submission.

        owner_id defaults to the caller; naming anyone else is denied.
        """
        owner_id = owner_id or principal.id
        decision = self.policy.check_access(
            principal, ResourceType.ARTIFACT, Action.CREATE,
            AccessContext(owner_id=owner_id, assigned_reviewer_id=reviewer_id),
        )
        if not decision.allowed:
            raise AuthorizationError(
                f"Principal {principal.id} may not submit for {owner_id}",
                reason=decision.reason,
            )
        if reviewer_id == owner_id:
            raise ValidationError("A submitter cannot review their own work")

        try:
            submission = Submission(
                owner_id=owner_id,
                title=title,
                content_hash=sealed.content_hash,
                cipher_text=sealed.cipher_text,
                iv=sealed.iv,
                wrapped_key=sealed.wrapped_key,
                assigned_reviewer_id=reviewer_id,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        self.storage.save_submission(submission)
        self.audit.record_event(
            "SUBMIT",
            "success",
            principal_id=principal.id,
            submission_id=submission.id,
            detail={
                "content_hash": submission.content_hash,
                "assigned_reviewer_id": reviewer_id,
                "to": _PEND.value,
            },
        )
        logger.info("Submission %s created by %s", submission.id, principal.id)
        return submission

    # ------------------------------------------------------------------
    # Evaluate: PENDING → EVALUATED
    # ------------------------------------------------------------------

    def evaluate(
        self,
        principal: Principal,
        submission_id: str,
        grade: str,
        feedback: str,
        keyring: Keyring,
    ) -> Evaluation:
        """Sign and attach the single evaluation of a submission."""
        if keyring.principal_id != principal.id:
            raise ValidationError("Keyring does not belong to the evaluating principal")

        self.policy.require(
            principal, ResourceType.METRIC, Action.CREATE, submission_id=submission_id
        )
        self.policy.require(
            principal, ResourceType.METRIC, Action.SIGN, submission_id=submission_id
        )

        with self._submission_lock(submission_id):
            submission = self._load(submission_id)
            self.policy.require(
                principal, ResourceType.ARTIFACT, Action.READ,
                context_for(submission), submission_id=submission_id,
            )
            if submission.status != _PEND or self.storage.get_evaluation(submission_id):
                raise InvalidStateTransition(submission_id, submission.status.value, "evaluate")

            try:
                signature = self.signer.sign(submission_id, grade, feedback, keyring)
            except (CryptoOperationError, ValidationError) as exc:
                self._rejected(principal, submission_id, "evaluate", exc)
                raise

            evaluation = Evaluation(
                submission_id=submission_id,
                evaluator_id=principal.id,
                grade=grade,
                feedback=feedback,
                signature=signature,
            )
            updated = submission.model_copy(update={"status": _EVAL})
            if not self.storage.record_evaluation(evaluation, updated, _PEND):
                current = self.storage.get_submission(submission_id)
                status = current.status.value if current else "missing"
                raise InvalidStateTransition(submission_id, status, "evaluate")

            self._transitioned(principal, submission, _EVAL, evaluation_id=evaluation.id)
            return evaluation

    # ------------------------------------------------------------------
    # Verify and publish: EVALUATED → PUBLISHED
    # ------------------------------------------------------------------

    def verify_and_publish(self, principal: Principal, submission_id: str) -> PublishResult:
        """Verify the evaluation signature and publish the result.

        A failed verification leaves the submission EVALUATED with its
        evaluation intact.
        """
        self.policy.require(
            principal, ResourceType.METRIC, Action.VERIFY, submission_id=submission_id
        )
        self.policy.require(
            principal, ResourceType.RECORD, Action.CREATE, submission_id=submission_id
        )

        with self._submission_lock(submission_id):
            submission = self._load(submission_id)

            if submission.status == _PUBL:
                return self._republish(principal, submission)

            if submission.status != _EVAL:
                raise InvalidStateTransition(
                    submission_id, submission.status.value, "verify_and_publish"
                )
            evaluation = self.storage.get_evaluation(submission_id)
            if evaluation is None:
                raise InvalidStateTransition(
                    submission_id, submission.status.value, "verify_and_publish"
                )

            try:
                report = self.verifier.verify_evaluation(evaluation)
            except SignatureInvalid as exc:
                self._rejected(principal, submission_id, "verify_and_publish", exc)
                raise

            updated = submission.model_copy(update={"status": _PUBL})
            if not self.storage.compare_and_set_status(updated, _EVAL):
                current = self.storage.get_submission(submission_id)
                status = current.status.value if current else "missing"
                raise InvalidStateTransition(submission_id, status, "verify_and_publish")

            self._transitioned(
                principal, submission, _PUBL,
                evaluation_id=evaluation.id,
                key_fingerprint=report["key_fingerprint"],
            )
            return PublishResult(
                submission_id=submission_id,
                evaluation_id=evaluation.id,
                status=_PUBL,
            )

    def _republish(self, principal: Principal, submission: Submission) -> PublishResult:
        evaluation = self.storage.get_evaluation(submission.id)
        if evaluation is None:
            raise InvalidStateTransition(submission.id, submission.status.value, "verify_and_publish")

        if self.reverify_on_republish:
            try:
                self.verifier.verify_evaluation(evaluation)
            except SignatureInvalid as exc:
                self._rejected(principal, submission.id, "verify_and_publish", exc)
                raise

        self.audit.record_event(
            "VERIFY_AND_PUBLISH",
            "success",
            principal_id=principal.id,
            submission_id=submission.id,
            detail={
                "already_published": True,
                "reverified": self.reverify_on_republish,
            },
        )
        return PublishResult(
            submission_id=submission.id,
            evaluation_id=evaluation.id,
            status=_PUBL,
            already_published=True,
        )

    # ------------------------------------------------------------------
    # Delete: PENDING | EVALUATED → DELETED
    # ------------------------------------------------------------------

    def delete(self, principal: Principal, submission_id: str) -> Submission:
        """Delete a submission and any evaluation attached to it.

        Admins (delete on Artifact) may delete from PENDING or EVALUATED.
        A student may delete their own submission while it is PENDING.
        """
        owner_path = principal.role == Role.STUDENT
        if not owner_path:
            self.policy.require(
                principal, ResourceType.ARTIFACT, Action.DELETE, submission_id=submission_id
            )

        with self._submission_lock(submission_id):
            submission = self._load(submission_id)

            if owner_path:
                # Ownership is enforced through read access.
                self.policy.require(
                    principal, ResourceType.ARTIFACT, Action.READ,
                    context_for(submission), submission_id=submission_id,
                )
                deletable = {_PEND}
            else:
                deletable = {_PEND, _EVAL}

            if submission.status not in deletable or not can_transition(submission.status, _DELE):
                raise InvalidStateTransition(submission_id, submission.status.value, "delete")

            updated = submission.model_copy(update={"status": _DELE})
            if not self.storage.delete_submission(updated, submission.status):
                current = self.storage.get_submission(submission_id)
                status = current.status.value if current else "missing"
                raise InvalidStateTransition(submission_id, status, "delete")

            self._transitioned(principal, submission, _DELE)
            return updated
