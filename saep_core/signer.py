"""
saep_core/signer.py — Evaluation signing.

canonical payload "{submission_id}:{grade}:{feedback}" → RSA-PSS sign with
the reviewer's private integrity key.

The reviewer must have an integrity key registered in the directory, and
the private key in their keyring must be its counterpart; otherwise the
signature could never be verified later and signing is refused.
"""

from __future__ import annotations

import logging

from .canonical import evaluation_payload
from .crypto import public_key_fingerprint, sign_bytes
from .errors import KeyNotFound, SigningKeyUnavailable
from .keys import KeyDirectory, Keyring
from .models import KeyPurpose


logger = logging.getLogger(__name__)


class EvaluationSigner:
    def __init__(self, directory: KeyDirectory) -> None:
        self.directory = directory

    def sign(
        self,
        submission_id: str,
        grade: str,
        feedback: str,
        keyring: Keyring,
    ) -> str:
        """Sign an evaluation. Returns the base64 signature."""
        payload = evaluation_payload(submission_id, grade, feedback)

        reviewer_id = keyring.principal_id
        private_key = keyring.get(KeyPurpose.INTEGRITY)
        if private_key is None:
            raise SigningKeyUnavailable(
                f"Reviewer {reviewer_id} holds no private signing key"
            )
        try:
            registered = self.directory.fingerprint(reviewer_id, KeyPurpose.INTEGRITY)
        except KeyNotFound as exc:
            raise SigningKeyUnavailable(
                f"Reviewer {reviewer_id} has no registered signing key"
            ) from exc
        if public_key_fingerprint(private_key.public_key()) != registered:
            raise SigningKeyUnavailable(
                f"Signing key of {reviewer_id} does not match the registered key"
            )

        signature = sign_bytes(private_key, payload)
        logger.info(
            "Evaluation signed for submission %s", submission_id,
            extra={"fields": {"reviewer_id": reviewer_id, "key_fingerprint": registered}},
        )
        return signature
