"""
saep_core/verifier.py — Verification authority.

Fetch evaluation + reviewer's registered public signing key → rebuild the
canonical payload → RSA-PSS verify.

This is the non-repudiation checkpoint. Only the holder of the reviewer's
private key could produce a signature that verifies over this exact
submission_id/grade/feedback triple, so any later change to the stored
grade or feedback makes verification fail.

On failure SignatureInvalid is raised and nothing else happens: the
caller leaves the submission at EVALUATED and the evidence in place.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from .canonical import evaluation_payload
from .crypto import public_key_fingerprint, verify_signature
from .errors import KeyNotFound, NotFoundError, SignatureInvalid, ValidationError
from .keys import KeyDirectory
from .models import Evaluation, KeyPurpose
from .storage import Storage


logger = logging.getLogger(__name__)


class VerificationAuthority:
    def __init__(self, storage: Storage, directory: KeyDirectory) -> None:
        self.storage = storage
        self.directory = directory

    def verify_evaluation(self, evaluation: Evaluation) -> Dict[str, Any]:
        """Verify one evaluation's signature.

        Returns a report dict on success.

        Raises:
            SignatureInvalid: signature does not verify, the payload can no
                              longer be rebuilt, or the reviewer has no
                              registered signing key.
        """
        try:
            public_key = self.directory.lookup(evaluation.evaluator_id, KeyPurpose.INTEGRITY)
        except KeyNotFound as exc:
            raise SignatureInvalid(
                f"No registered signing key for reviewer {evaluation.evaluator_id}"
            ) from exc
        fingerprint = public_key_fingerprint(public_key)

        try:
            payload = evaluation_payload(
                evaluation.submission_id, evaluation.grade, evaluation.feedback
            )
        except ValidationError as exc:
            raise SignatureInvalid(f"Evaluation payload is malformed: {exc}") from exc

        if not verify_signature(public_key, payload, evaluation.signature):
            logger.warning(
                "Signature verification failed for submission %s",
                evaluation.submission_id,
                extra={"fields": {
                    "evaluation_id": evaluation.id,
                    "reviewer_id": evaluation.evaluator_id,
                }},
            )
            raise SignatureInvalid(
                f"Signature on evaluation {evaluation.id} does not verify "
                f"against reviewer {evaluation.evaluator_id}'s key"
            )

        return {
            "evaluation_id": evaluation.id,
            "submission_id": evaluation.submission_id,
            "reviewer_id": evaluation.evaluator_id,
            "key_fingerprint": fingerprint,
            "signature_valid": True,
        }

    def verify_submission(self, submission_id: str) -> Dict[str, Any]:
        """Fetch the submission's evaluation and verify it."""
        evaluation = self.storage.get_evaluation(submission_id)
        if evaluation is None:
            raise NotFoundError(f"No evaluation for submission {submission_id}")
        return self.verify_evaluation(evaluation)
