"""
saep_core/canonical.py — Canonical byte sequences for hashing and signing.

Two encodings live here:

1. The evaluation payload that a reviewer signs and the verification
   authority rebuilds:

       "{submission_id}:{grade}:{feedback}"   (UTF-8)

   Fields appear in that fixed order joined by ':'. submission_id and
   grade may not contain ':'; feedback is last, so it may contain
   anything and the split stays unambiguous.

2. RFC 8785 JSON Canonicalization (JCS) for audit events, via the `jcs`
   library. Two implementations processing the same logical event MUST
   produce byte-identical output.

Reference: https://www.rfc-editor.org/rfc/rfc8785
"""

from __future__ import annotations

from typing import Any

import jcs

from .errors import ValidationError


PAYLOAD_DELIMITER = ":"


def evaluation_payload(submission_id: str, grade: str, feedback: str) -> bytes:
    """Build the canonical signing payload for an evaluation.

    Raises:
        ValidationError: If a field is missing, or submission_id / grade
                         contain the delimiter.
    """
    if not submission_id:
        raise ValidationError("submission_id is required")
    if not grade:
        raise ValidationError("grade is required")
    if feedback is None:
        raise ValidationError("feedback is required")
    for name, value in (("submission_id", submission_id), ("grade", grade)):
        if PAYLOAD_DELIMITER in value:
            raise ValidationError(
                f"{name} must not contain {PAYLOAD_DELIMITER!r}: {value!r}"
            )
    text = PAYLOAD_DELIMITER.join((submission_id, grade, feedback))
    return text.encode("utf-8")


def canonicalize(obj: Any) -> bytes:
    """Serialize a JSON-compatible Python object to RFC 8785 canonical bytes."""
    return jcs.canonicalize(obj)
