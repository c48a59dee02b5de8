"""
saep_core/errors.py — Error taxonomy.

Every cryptographic and workflow-guard failure surfaces as one of these
types. Nothing in the core swallows them.

    SaepError
    ├── ValidationError          malformed or missing input
    ├── NotFoundError            unknown id (also the shape of concealed denials)
    │   └── KeyNotFound
    ├── AuthorizationError       role lacks the action
    ├── IntegrityError           decrypted bytes disagree with contentHash
    ├── CryptoOperationError
    │   ├── UnwrapFailure
    │   ├── DecryptionFailure
    │   ├── SigningKeyUnavailable
    │   └── SignatureInvalid
    └── InvalidStateTransition
"""

from __future__ import annotations

from typing import Optional


class SaepError(Exception):
    """Base class for all SAEP errors."""


class ValidationError(SaepError):
    """Malformed or missing input."""


class NotFoundError(SaepError):
    """Unknown identifier.

    Also raised in place of an ownership/assignment denial so that callers
    cannot tell a hidden resource from a missing one.
    """


class KeyNotFound(NotFoundError):
    def __init__(self, principal_id: str, purpose: str) -> None:
        super().__init__(f"No {purpose} key registered for principal {principal_id}")
        self.principal_id = principal_id
        self.purpose = purpose


class AuthorizationError(SaepError):
    """RBAC denial that reveals nothing about a specific resource."""

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason


class IntegrityError(SaepError):
    """Recomputed content hash does not match the stored contentHash.

    The decrypted bytes are attached so that a soft-fail policy can still
    hand them out, flagged, after recording the failure.
    """

    def __init__(self, expected_hash: str, actual_hash: str, content: bytes = b"") -> None:
        super().__init__(
            f"Content hash mismatch: stored {expected_hash}, computed {actual_hash}"
        )
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        self.content = content


class CryptoOperationError(SaepError):
    """A wrap, unwrap, encrypt, decrypt, sign or verify step failed."""


class UnwrapFailure(CryptoOperationError):
    """The wrapped key could not be recovered with the given private key."""


class DecryptionFailure(CryptoOperationError):
    """The authenticated cipher rejected the ciphertext, nonce or tag."""


class SigningKeyUnavailable(CryptoOperationError):
    """The reviewer has no usable registered signing key."""


class SignatureInvalid(CryptoOperationError):
    """Signature does not verify against the canonical payload and key."""


class InvalidStateTransition(SaepError):
    def __init__(self, submission_id: str, current: str, attempted: str) -> None:
        super().__init__(
            f"Submission {submission_id} is {current}; cannot {attempted}"
        )
        self.submission_id = submission_id
        self.current = current
        self.attempted = attempted
