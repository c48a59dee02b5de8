"""
saep_service — The Review Desk.

The operations exposed to callers, one per role:

- submit()               student  — seal content for a reviewer
- unseal()               reviewer — read an assigned submission
- evaluate()             reviewer — sign a grade and feedback
- verify_and_publish()   admin    — verify the signature, publish
- delete()               owner / admin
- check_access()         anyone   — pre-flight policy check

plus the listing views each role works from (my_submissions,
assigned_submissions, pending_verifications) and single-item reads
(get_submission, get_evaluation, get_result).

Architecture:
    Caller (identity already established) → ReviewService → Core

Identity, sessions and notifications belong to other systems. The caller
hands in an authenticated Principal and, where private keys are needed,
the principal's own Keyring. The service never stores private keys.
"""

import logging
from typing import Any, Dict, List, Optional

from saep_core.audit import AuditRecorder
from saep_core.config import Settings
from saep_core.errors import (
    CryptoOperationError,
    IntegrityError,
    KeyNotFound,
    AuthorizationError,
    NotFoundError,
    UnwrapFailure,
    ValidationError,
)
from saep_core.keys import KeyDirectory, KeyManager, Keyring
from saep_core.logging_config import configure_logging
from saep_core.models import (
    AccessContext,
    AccessDecision,
    Action,
    Evaluation,
    KeyPurpose,
    Principal,
    PublishedRecord,
    PublishResult,
    ResourceType,
    Role,
    SubmissionStatus,
    UnsealedContent,
)
from saep_core.policy import AccessPolicyEngine, not_found_message
from saep_core.sealer import ContentSealer
from saep_core.signer import EvaluationSigner
from saep_core.storage import Storage
from saep_core.verifier import VerificationAuthority
from saep_core.workflow import WorkflowStateMachine, context_for


logger = logging.getLogger(__name__)

_VISIBLE = (
    SubmissionStatus.PENDING,
    SubmissionStatus.EVALUATED,
    SubmissionStatus.PUBLISHED,
)


class ReviewService:
    """Wires the core components together over one Storage.

    Args:
        storage:  Storage backend (SQLite).
        settings: Deployment settings; defaults apply when omitted.
    """

    def __init__(self, storage: Storage, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self.storage = storage

        self.audit = AuditRecorder(storage)
        self.directory = KeyDirectory(storage)
        self.key_manager = KeyManager(
            self.directory,
            key_size=self.settings.rsa_key_size,
            workers=self.settings.keygen_workers,
        )
        self.policy = AccessPolicyEngine(self.audit)
        self.sealer = ContentSealer()
        self.signer = EvaluationSigner(self.directory)
        self.verifier = VerificationAuthority(storage, self.directory)
        self.workflow = WorkflowStateMachine(
            storage,
            self.policy,
            self.signer,
            self.verifier,
            self.audit,
            reverify_on_republish=self.settings.reverify_on_republish,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ReviewService":
        """Process entry point: configure logging, open storage, wire the core."""
        settings = settings or Settings.from_env()
        configure_logging(level=settings.log_level, json_format=settings.log_json)
        logger.info(
            "SAEP service starting",
            extra={"fields": {
                "db_path": settings.db_path,
                "integrity_policy": settings.integrity_policy,
                "reverify_on_republish": settings.reverify_on_republish,
            }},
        )
        return cls(Storage(settings.db_path), settings)

    def close(self) -> None:
        self.key_manager.shutdown()
        self.storage.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def provision_keys(self, principal: Principal) -> Keyring:
        """Create both key pairs for a principal and publish the public halves.

        The returned keyring is the principal's to keep; nothing here
        retains a reference to it.
        """
        keyring = self.key_manager.provision(principal.id)
        self.audit.record_event(
            "KEYS_PROVISIONED",
            "success",
            principal_id=principal.id,
            detail={
                purpose.value: self.directory.fingerprint(principal.id, purpose)
                for purpose in KeyPurpose
            },
        )
        return keyring

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def check_access(
        self,
        principal: Principal,
        resource_type: ResourceType,
        action: Action,
        context: Optional[AccessContext] = None,
    ) -> AccessDecision:
        return self.policy.check_access(principal, resource_type, action, context)

    # ------------------------------------------------------------------
    # Student
    # ------------------------------------------------------------------

    def submit(
        self,
        principal: Principal,
        raw_content: bytes,
        reviewer_id: str,
        title: str = "Untitled submission",
    ) -> str:
        """Seal content for reviewer_id and create a PENDING submission.

        Returns the submission id. Nothing is persisted if sealing fails.
        """
        if not reviewer_id:
            raise ValidationError("reviewer_id is required")
        try:
            recipient_key = self.key_manager.lookup_public_key(
                reviewer_id, KeyPurpose.CONFIDENTIALITY
            )
        except KeyNotFound as exc:
            raise ValidationError(f"Unknown reviewer: {reviewer_id}") from exc

        try:
            sealed = self.sealer.seal(raw_content, recipient_key)
        except CryptoOperationError as exc:
            self.audit.record_event(
                "SEAL",
                "failure",
                principal_id=principal.id,
                detail={"error": type(exc).__name__, "message": str(exc)},
            )
            raise

        submission = self.workflow.submit(principal, title, sealed, reviewer_id)
        return submission.id

    def my_submissions(self, principal: Principal) -> List[Dict[str, Any]]:
        self.policy.require(principal, ResourceType.ARTIFACT, Action.READ)
        if principal.role != Role.STUDENT:
            return []
        return [
            s.summary()
            for s in self.storage.list_submissions(owner_id=principal.id, statuses=_VISIBLE)
        ]

    def get_submission(self, principal: Principal, submission_id: str) -> Dict[str, Any]:
        """Submission metadata, without ciphertext, for anyone who may read it."""
        return self.workflow.authorize_read(principal, submission_id).summary()

    def get_result(self, principal: Principal, submission_id: str) -> PublishedRecord:
        """Read a published result (the owner, or an admin)."""
        self.policy.require(
            principal, ResourceType.RECORD, Action.READ, submission_id=submission_id
        )
        submission = self.storage.get_submission(submission_id)
        if submission is None or submission.status == SubmissionStatus.DELETED:
            raise NotFoundError(not_found_message(submission_id))
        self.policy.require(
            principal, ResourceType.RECORD, Action.READ,
            context_for(submission), submission_id=submission_id,
        )
        evaluation = self.storage.get_evaluation(submission_id)
        if submission.status != SubmissionStatus.PUBLISHED or evaluation is None:
            raise NotFoundError(f"No published result for submission {submission_id}")
        return PublishedRecord(
            submission_id=submission.id,
            title=submission.title,
            owner_id=submission.owner_id,
            grade=evaluation.grade,
            feedback=evaluation.feedback,
            evaluator_id=evaluation.evaluator_id,
            signed_at=evaluation.signed_at,
        )

    # ------------------------------------------------------------------
    # Reviewer
    # ------------------------------------------------------------------

    def assigned_submissions(self, principal: Principal) -> List[Dict[str, Any]]:
        self.policy.require(principal, ResourceType.ARTIFACT, Action.READ)
        if principal.role != Role.REVIEWER:
            return []
        return [
            s.summary()
            for s in self.storage.list_submissions(reviewer_id=principal.id, statuses=_VISIBLE)
        ]

    def unseal(
        self,
        principal: Principal,
        keyring: Keyring,
        submission_id: str,
    ) -> UnsealedContent:
        """Decrypt an assigned submission for its reviewer.

        Under the "strict" integrity policy a hash mismatch raises
        IntegrityError. Under "warn" the content is returned with
        integrity_verified=False, after a WARNING log and an audit event.
        """
        submission = self.workflow.authorize_read(principal, submission_id)
        if principal.role != Role.REVIEWER:
            raise AuthorizationError(
                "Only the assigned reviewer can unseal a submission",
                reason="reviewer only",
            )
        if keyring.principal_id != principal.id:
            raise ValidationError("Keyring does not belong to the requesting principal")

        private_key = keyring.get(KeyPurpose.CONFIDENTIALITY)
        try:
            if private_key is None:
                raise UnwrapFailure(f"Principal {principal.id} holds no decryption key")
            data = self.sealer.unseal(submission.sealed, private_key)
        except IntegrityError as exc:
            self.audit.record_event(
                "UNSEAL",
                "integrity_failure",
                principal_id=principal.id,
                submission_id=submission_id,
                detail={
                    "expected_hash": exc.expected_hash,
                    "actual_hash": exc.actual_hash,
                    "policy": self.settings.integrity_policy,
                },
            )
            if self.settings.integrity_policy == "strict":
                raise
            logger.warning(
                "Integrity check failed for submission %s; returning content flagged unverified",
                submission_id,
                extra={"fields": {"expected_hash": exc.expected_hash, "actual_hash": exc.actual_hash}},
            )
            return UnsealedContent(
                submission_id=submission_id,
                data=exc.content,
                content_hash=exc.actual_hash,
                integrity_verified=False,
            )
        except CryptoOperationError as exc:
            self.audit.record_event(
                "UNSEAL",
                "failure",
                principal_id=principal.id,
                submission_id=submission_id,
                detail={"error": type(exc).__name__, "message": str(exc)},
            )
            raise

        self.audit.record_event(
            "UNSEAL",
            "success",
            principal_id=principal.id,
            submission_id=submission_id,
            detail={"content_hash": submission.content_hash},
        )
        return UnsealedContent(
            submission_id=submission_id,
            data=data,
            content_hash=submission.content_hash,
        )

    def evaluate(
        self,
        principal: Principal,
        keyring: Keyring,
        submission_id: str,
        grade: str,
        feedback: str,
    ) -> str:
        """Sign and record the evaluation. Returns the evaluation id."""
        evaluation = self.workflow.evaluate(principal, submission_id, grade, feedback, keyring)
        return evaluation.id

    def get_evaluation(self, principal: Principal, submission_id: str) -> Evaluation:
        """Read an evaluation before publication (its author, or an admin)."""
        self.policy.require(
            principal, ResourceType.METRIC, Action.READ, submission_id=submission_id
        )
        evaluation = self.storage.get_evaluation(submission_id)
        if evaluation is None:
            raise NotFoundError(not_found_message(submission_id))
        if principal.role == Role.REVIEWER and evaluation.evaluator_id != principal.id:
            raise NotFoundError(not_found_message(submission_id))
        return evaluation

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def pending_verifications(self, principal: Principal) -> List[Dict[str, Any]]:
        """Evaluated submissions waiting for signature verification."""
        self.policy.require(principal, ResourceType.METRIC, Action.VERIFY)
        items = []
        for submission in self.storage.list_submissions(statuses=[SubmissionStatus.EVALUATED]):
            evaluation = self.storage.get_evaluation(submission.id)
            entry = submission.summary()
            if evaluation is not None:
                entry.update({
                    "evaluation_id": evaluation.id,
                    "evaluator_id": evaluation.evaluator_id,
                    "grade": evaluation.grade,
                    "signed_at": evaluation.signed_at.isoformat(),
                })
            items.append(entry)
        return items

    def verify_and_publish(self, principal: Principal, submission_id: str) -> PublishResult:
        return self.workflow.verify_and_publish(principal, submission_id)

    # ------------------------------------------------------------------
    # Owner / admin
    # ------------------------------------------------------------------

    def delete(self, principal: Principal, submission_id: str) -> None:
        self.workflow.delete(principal, submission_id)
