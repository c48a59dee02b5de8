#!/usr/bin/env python3
"""
SAEP Workflow Demo — One submission, end to end

Demonstrates the full SAEP lifecycle:
  1. Student, reviewer and admin get key pairs (public halves registered)
  2. Student seals "hello world" for the reviewer → PENDING
  3. Reviewer unseals and recovers the exact bytes
  4. Reviewer signs grade "A" / feedback "Great work" → EVALUATED
  5. Admin verifies the signature and publishes → PUBLISHED
  6. A repeated publish is an idempotent no-op; the student reads the result
  7. The audit chain is verified

Run:
    python examples/demo_workflow.py

Requirements:
    pip install cryptography pydantic jcs
"""

import os
import sys
import tempfile

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from saep_core.audit import verify_audit_chain
from saep_core.config import Settings
from saep_core.logging_config import configure_logging
from saep_core.models import Principal, Role
from saep_core.storage import Storage
from saep_service import ReviewService


def banner(title: str) -> None:
    print(f"\n{'━' * 72}")
    print(f"  {title}")
    print(f"{'━' * 72}")


def main():
    configure_logging(level="WARNING", json_format=False)

    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    try:
        service = ReviewService(Storage(db_path), Settings(db_path=db_path))

        student = Principal(id="student-ada", role=Role.STUDENT, display_name="Ada")
        reviewer = Principal(id="reviewer-rex", role=Role.REVIEWER, display_name="Rex")
        admin = Principal(id="admin-amy", role=Role.ADMIN, display_name="Amy")

        banner("1. Key provisioning")
        keyrings = {}
        for p in (student, reviewer, admin):
            keyrings[p.id] = service.provision_keys(p)
            print(f"  {p.role.value:9s} {p.id:14s} keys registered")

        banner("2. Submit (seal for reviewer)")
        submission_id = service.submit(
            student, b"hello world", reviewer.id, title="Lab 1: Greeting"
        )
        sub = service.storage.get_submission(submission_id)
        print(f"  Submission:   {submission_id}")
        print(f"  Status:       {sub.status.value}")
        print(f"  Content hash: {sub.content_hash[:24]}...")
        print(f"  Ciphertext:   {sub.cipher_text[:32]}... ({len(sub.cipher_text)} chars)")

        banner("3. Reviewer unseals")
        opened = service.unseal(reviewer, keyrings[reviewer.id], submission_id)
        print(f"  Recovered:    {opened.data!r}")
        print(f"  Integrity:    {'✓ verified' if opened.integrity_verified else '✗ MISMATCH'}")

        banner("4. Reviewer evaluates and signs")
        evaluation_id = service.evaluate(
            reviewer, keyrings[reviewer.id], submission_id, "A", "Great work"
        )
        evaluation = service.get_evaluation(reviewer, submission_id)
        print(f"  Evaluation:   {evaluation_id}")
        print(f"  Signature:    {evaluation.signature[:32]}...")

        banner("5. Admin verifies and publishes")
        result = service.verify_and_publish(admin, submission_id)
        print(f"  Status:       {result.status.value}")
        again = service.verify_and_publish(admin, submission_id)
        print(f"  Repeat call:  already_published={again.already_published}")

        record = service.get_result(student, submission_id)
        print(f"  Student sees: grade={record.grade!r} feedback={record.feedback!r}")

        banner("6. Audit chain")
        events = service.storage.get_audit_events()
        check = verify_audit_chain(events)
        print(f"  Events:       {check['total_events']}")
        print(f"  Chain:        {'✓ INTACT' if check['chain_valid'] else '✗ COMPROMISED'}")

        service.close()

    finally:
        os.unlink(db_path)


if __name__ == "__main__":
    main()
