"""
SAEP Core — Sealed Assessment & Evaluation Protocol.

Sealing and unsealing of submitted content, evaluation signing and
verification, the role-based access policy, and the workflow state
machine guarding all of it.
"""

__version__ = "0.1.0"

from .ids import uuid7
from .errors import (
    SaepError,
    ValidationError,
    NotFoundError,
    KeyNotFound,
    AuthorizationError,
    IntegrityError,
    CryptoOperationError,
    UnwrapFailure,
    DecryptionFailure,
    SigningKeyUnavailable,
    SignatureInvalid,
    InvalidStateTransition,
)
from .models import (
    Role,
    ResourceType,
    Action,
    KeyPurpose,
    SubmissionStatus,
    Principal,
    SealedContent,
    Submission,
    Evaluation,
    AccessContext,
    AccessDecision,
    PublishResult,
    PublishedRecord,
    UnsealedContent,
    AuditEvent,
)
from .canonical import canonicalize, evaluation_payload
from .crypto import (
    sha256_hex,
    generate_rsa_keypair,
    sign_bytes,
    verify_signature,
    private_key_to_pem,
    public_key_to_pem,
    private_key_from_pem,
    public_key_from_pem,
    public_key_fingerprint,
)
from .config import Settings
from .storage import Storage
from .keys import Keyring, KeyDirectory, KeyManager
from .audit import AuditRecorder, verify_audit_chain
from .policy import AccessPolicyEngine, ACCESS_MATRIX
from .sealer import ContentSealer
from .signer import EvaluationSigner
from .verifier import VerificationAuthority
from .workflow import WorkflowStateMachine, VALID_TRANSITIONS
