"""
saep_core/models.py — SAEP Data Model

Pydantic models for principals, sealed content, submissions, evaluations,
access decisions and audit events. Submission and Evaluation are separate
entities linked by submission_id; they are never merged into one record.

Content fields of a Submission and every field of an Evaluation are
write-once. The models are frozen so that in-process code cannot mutate
them either; status changes produce a new Submission via model_copy().
"""

# NOTE: `from __future__ import annotations` is intentionally omitted.
# Pydantic resolves field annotations at class creation time.

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ids import uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Role(str, Enum):
    STUDENT = "student"
    REVIEWER = "reviewer"
    ADMIN = "admin"


class ResourceType(str, Enum):
    """Resources guarded by the access policy.

    ARTIFACT: the sealed submitted content.
    METRIC:   a reviewer's evaluation (grade + feedback) before publication.
    RECORD:   the published, authority-verified final result.
    """
    ARTIFACT = "artifact"
    METRIC = "metric"
    RECORD = "record"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    SIGN = "sign"
    VERIFY = "verify"


class KeyPurpose(str, Enum):
    """Each principal holds one key pair per purpose."""
    CONFIDENTIALITY = "confidentiality"   # wrap / unwrap content keys
    INTEGRITY = "integrity"               # sign / verify evaluations


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    EVALUATED = "evaluated"
    PUBLISHED = "published"
    DELETED = "deleted"


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------

class Principal(BaseModel):
    """An authenticated caller, as handed to the core by the identity layer."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    role: Role
    display_name: Optional[str] = None


# ---------------------------------------------------------------------------
# Sealed content
# ---------------------------------------------------------------------------

class SealedContent(BaseModel):
    """The four artifacts produced together by ContentSealer.seal().

    Binary fields are base64 text; content_hash is SHA-256 hex of the
    plaintext, computed independently of encryption.
    """

    model_config = ConfigDict(frozen=True)

    content_hash: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    iv: str = Field(..., min_length=1)
    cipher_text: str = Field(..., min_length=1)
    wrapped_key: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Submission / Evaluation
# ---------------------------------------------------------------------------

class Submission(BaseModel):
    """A sealed artifact and its workflow status.

    Only the workflow state machine produces a Submission with a new status.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=uuid7)
    owner_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    content_hash: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    cipher_text: str
    iv: str
    wrapped_key: str
    assigned_reviewer_id: str = Field(..., min_length=1)
    status: SubmissionStatus = SubmissionStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be blank")
        return v

    @property
    def sealed(self) -> SealedContent:
        return SealedContent(
            content_hash=self.content_hash,
            iv=self.iv,
            cipher_text=self.cipher_text,
            wrapped_key=self.wrapped_key,
        )

    def summary(self) -> Dict[str, Any]:
        """Listing view without the ciphertext payload."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "content_hash": self.content_hash,
            "assigned_reviewer_id": self.assigned_reviewer_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }


class Evaluation(BaseModel):
    """A reviewer's signed judgment. Frozen once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=uuid7)
    submission_id: str = Field(..., min_length=1)
    evaluator_id: str = Field(..., min_length=1)
    grade: str = Field(..., min_length=1)
    feedback: str
    signature: str = Field(..., min_length=1, description="Base64 RSA-PSS signature.")
    signed_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------

class AccessContext(BaseModel):
    """Ownership / assignment facts about the resource being accessed."""

    model_config = ConfigDict(frozen=True)

    owner_id: Optional[str] = None
    assigned_reviewer_id: Optional[str] = None


class AccessDecision(BaseModel):
    """Outcome of one policy evaluation. Append-only in the audit trail."""

    model_config = ConfigDict(frozen=True)

    principal_id: str
    role: Role
    resource_type: ResourceType
    action: Action
    allowed: bool
    reason: str
    policy: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class PublishResult(BaseModel):
    submission_id: str
    evaluation_id: str
    status: SubmissionStatus
    already_published: bool = False
    verified_at: datetime = Field(default_factory=_utcnow)


class UnsealedContent(BaseModel):
    """Decrypted content handed to the assigned reviewer.

    integrity_verified is False only under the "warn" integrity policy,
    when the recomputed hash disagreed with the stored one.
    """

    submission_id: str
    data: bytes
    content_hash: str
    integrity_verified: bool = True


class PublishedRecord(BaseModel):
    """The published final result, as readable by owner and admin."""

    submission_id: str
    title: str
    owner_id: str
    grade: str
    feedback: str
    evaluator_id: str
    signed_at: datetime


# ---------------------------------------------------------------------------
# Audit events
# ---------------------------------------------------------------------------

class AuditEvent(BaseModel):
    """One entry in the hash-chained audit log."""

    event_id: str = Field(default_factory=uuid7)
    sequence_number: int = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=_utcnow)
    event_type: str = Field(..., min_length=1)
    principal_id: Optional[str] = None
    submission_id: Optional[str] = None
    outcome: str = Field(..., min_length=1)
    detail: Dict[str, Any] = Field(default_factory=dict)
    previous_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def hashable_dict(self) -> dict:
        """Everything except event_hash.

        Pipeline: hashable_dict() → canonicalize() → SHA-256
        """
        d = self.model_dump(mode="json")
        d.pop("event_hash", None)
        return d
