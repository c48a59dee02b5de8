#!/usr/bin/env python3
"""
SAEP Tamper Detection Demo

Demonstrates SAEP's non-repudiation property: a signed evaluation cannot
be altered after the fact without verification noticing.

Flow:
  1. Run a submission through to EVALUATED
  2. Edit the stored feedback directly in the database
     ("Great work" → "Great work!!!")
  3. Admin runs verify_and_publish → SignatureInvalid
  4. Status stays EVALUATED; the evidence is left in place
  5. Flip one byte of a ciphertext → unseal fails at the cipher layer

This is the "caught red-handed" demo — a grade edit by anyone other than
the signing reviewer is detectable by any verifier.

Run:
    python examples/demo_tamper.py
"""

import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from saep_core.crypto import b64d, b64e
from saep_core.errors import DecryptionFailure, SignatureInvalid
from saep_core.logging_config import configure_logging
from saep_core.models import Principal, Role
from saep_core.storage import Storage
from saep_service import ReviewService


def show_diff(label: str, original: str, tampered: str) -> None:
    print(f"    Field: {label}")
    print(f"    - Original:  {original}")
    print(f"    + Tampered:  {tampered}")


def main():
    configure_logging(level="ERROR", json_format=False)

    print("=" * 72)
    print("  SAEP Tamper Detection Demo")
    print("=" * 72)

    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    try:
        service = ReviewService(Storage(db_path))
        student = Principal(id="student-1", role=Role.STUDENT)
        reviewer = Principal(id="reviewer-1", role=Role.REVIEWER)
        admin = Principal(id="admin-1", role=Role.ADMIN)
        service.provision_keys(student)
        reviewer_keys = service.provision_keys(reviewer)

        sid = service.submit(student, b"hello world", reviewer.id, title="Essay")
        service.evaluate(reviewer, reviewer_keys, sid, "A", "Great work")

        # --- Tamper with the stored evaluation ---
        original = service.storage.get_evaluation(sid)
        tampered = original.model_copy(update={"feedback": "Great work!!!"})
        service.storage.conn.execute(
            "UPDATE evaluations SET data = ? WHERE submission_id = ?",
            (tampered.model_dump_json(), sid),
        )
        service.storage.conn.commit()

        print("\n  [1] Evaluation edited in storage:")
        show_diff("feedback", original.feedback, tampered.feedback)

        print("\n  [2] Admin runs verify_and_publish ...")
        try:
            service.verify_and_publish(admin, sid)
            print("    ✗ Unexpected: tampered evaluation verified")
        except SignatureInvalid as exc:
            print(f"    ✓ Caught: {exc}")
        status = service.storage.get_submission(sid).status.value
        print(f"    Status remains: {status}")

        # --- Tamper with a ciphertext ---
        sid2 = service.submit(student, b"second draft", reviewer.id, title="Draft")
        sub = service.storage.get_submission(sid2)
        raw = bytearray(b64d(sub.cipher_text))
        raw[0] ^= 0x01
        flipped = sub.model_copy(update={"cipher_text": b64e(bytes(raw))})
        service.storage.conn.execute(
            "UPDATE submissions SET data = ? WHERE submission_id = ?",
            (flipped.model_dump_json(), sid2),
        )
        service.storage.conn.commit()

        print("\n  [3] One ciphertext bit flipped; reviewer unseals ...")
        try:
            service.unseal(reviewer, reviewer_keys, sid2)
            print("    ✗ Unexpected: tampered ciphertext decrypted")
        except DecryptionFailure as exc:
            print(f"    ✓ Caught at cipher layer: {exc}")

        service.close()
    finally:
        os.unlink(db_path)


if __name__ == "__main__":
    main()
