#!/usr/bin/env python3
"""
SAEP CLI — Key provisioning and audit trail inspection.

Usage:
    python -m tools.saep_cli keygen <principal_id> <keyring.json> [--replace] [--db PATH]
    python -m tools.saep_cli directory [--db PATH]
    python -m tools.saep_cli submissions [--db PATH] [--status pending]
    python -m tools.saep_cli audit view [--db PATH] [--submission ID]
    python -m tools.saep_cli audit verify [--db PATH]

Commands:
    keygen       — Generate both key pairs, write the passphrase-encrypted
                   keyring, then register the public halves
    directory    — List registered public keys by fingerprint
    submissions  — List submissions and their workflow status
    audit view   — Render the audit trail
    audit verify — Recompute event hashes and check chain links

The keyring passphrase is read from $SAEP_KEYRING_PASSPHRASE.
The database path defaults to $SAEP_DB_PATH.
"""

import argparse
import os
import sys
from typing import List, Optional

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from saep_core.audit import verify_audit_chain
from saep_core.config import Settings
from saep_core.keys import KeyDirectory, KeyManager
from saep_core.logging_config import configure_logging
from saep_core.models import AuditEvent, KeyPurpose, SubmissionStatus
from saep_core.storage import Storage


PASSPHRASE_ENV = "SAEP_KEYRING_PASSPHRASE"

OUTCOME_MARKS = {
    "success": "✓",
    "allowed": "✓",
    "denied": "✗",
    "failure": "✗",
    "integrity_failure": "⚠",
}


def fmt_hash(h: Optional[str], length: int = 16) -> str:
    """Abbreviate a hash for display."""
    if h is None:
        return "(genesis)"
    return f"{h[:length]}..."


# ============================================================
# keygen / directory
# ============================================================

def cmd_keygen(
    storage: Storage,
    settings: Settings,
    principal_id: str,
    out_path: str,
    replace: bool = False,
) -> int:
    passphrase = os.environ.get(PASSPHRASE_ENV, "")
    if not passphrase:
        print(f"  ERROR: set {PASSPHRASE_ENV} to encrypt the keyring")
        return 2
    if os.path.exists(out_path):
        print(f"  ERROR: refusing to overwrite {out_path}")
        return 2

    directory = KeyDirectory(storage)
    if not replace and any(directory.has_key(principal_id, p) for p in KeyPurpose):
        print(f"  ERROR: {principal_id} already has registered keys (pass --replace)")
        return 2

    manager = KeyManager(
        directory,
        key_size=settings.rsa_key_size,
        workers=settings.keygen_workers,
    )
    try:
        keyring = manager.generate_keyring(principal_id)
    finally:
        manager.shutdown()

    # Private halves are on disk before any public half is advertised.
    try:
        keyring.save(out_path, passphrase.encode("utf-8"))
    except OSError as e:
        print(f"  ERROR: cannot write keyring: {e}")
        return 1
    fingerprints = manager.publish(keyring)

    print(f"━━━ Keys for {principal_id} ━━━")
    for purpose, fingerprint in fingerprints.items():
        print(f"  {purpose.value:16s} {fingerprint}")
    print(f"  Keyring → {out_path}")
    return 0


def cmd_directory(storage: Storage) -> int:
    entries = KeyDirectory(storage).entries()
    if not entries:
        print("  (no registered keys)")
        return 0
    for e in entries:
        print(f"  {e['principal_id']:24s} {e['purpose']:16s} {fmt_hash(e['fingerprint'], 24)}")
    return 0


# ============================================================
# submissions
# ============================================================

def cmd_submissions(storage: Storage, status: Optional[str]) -> int:
    statuses = [SubmissionStatus(status)] if status else None
    submissions = storage.list_submissions(statuses=statuses)
    if not submissions:
        print("  (no submissions)")
        return 0
    for s in submissions:
        print(
            f"  {s.id}  {s.status.value:9s}  owner={s.owner_id}  "
            f"reviewer={s.assigned_reviewer_id}  \"{s.title}\""
        )
    return 0


# ============================================================
# audit view / verify
# ============================================================

def cmd_audit_view(events: List[AuditEvent]) -> int:
    if not events:
        print("  (empty audit trail)")
        return 0

    print(f"━━━ Audit trail: {len(events)} event(s) ━━━")
    for e in events:
        mark = OUTCOME_MARKS.get(e.outcome, "•")
        ts = e.timestamp.isoformat()[:19] + "Z"
        who = e.principal_id or "-"
        line = f"[{e.sequence_number}] {mark} {e.event_type} {e.outcome} | {ts} | {who}"
        if e.submission_id:
            line += f" | {e.submission_id}"
        print(line)
        if e.detail:
            parts = [f"{k}: {v}" for k, v in list(e.detail.items())[:6]]
            print(f"    ─── {', '.join(parts)} ───")
    return 0


def cmd_audit_verify(events: List[AuditEvent]) -> int:
    result = verify_audit_chain(events)

    print("━━━ Audit Chain Verification ━━━")
    print(f"Events: {result['total_events']}")

    errors = []
    for m in result["hash_mismatches"]:
        errors.append(
            f"seq #{m['sequence_number']}: hash MISMATCH "
            f"(stored: {fmt_hash(m['stored'])}, computed: {fmt_hash(m['computed'])})"
        )
    for b in result["broken_links"]:
        errors.append(
            f"seq #{b['sequence_number']}: chain link broken "
            f"(expected prev: {fmt_hash(b['expected_previous_hash'])}, "
            f"actual: {fmt_hash(b['actual_previous_hash'])})"
        )
    for g in result["sequence_gaps"]:
        errors.append(
            f"sequence gap: expected #{g['expected_sequence']}, found #{g['actual_sequence']}"
        )

    print()
    if result["chain_valid"]:
        print(f"  Result: ✓ CHAIN INTACT ({result['total_events']} events verified)")
        return 0
    print(f"  Result: ✗ CHAIN COMPROMISED ({len(errors)} error(s))")
    for e in errors:
        print(f"    • {e}")
    return 1


# ============================================================
# Main
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SAEP CLI — keys, submissions and audit trail",
        prog="python -m tools.saep_cli",
    )
    parser.add_argument("--db", help="SQLite database path (default: $SAEP_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    keygen = sub.add_parser("keygen", help="Generate and register a principal's keys")
    keygen.add_argument("principal_id")
    keygen.add_argument("keyring_file")
    keygen.add_argument(
        "--replace",
        action="store_true",
        help="Replace keys already registered for this principal",
    )

    sub.add_parser("directory", help="List registered public keys")

    subs = sub.add_parser("submissions", help="List submissions")
    subs.add_argument(
        "--status",
        choices=[s.value for s in SubmissionStatus],
        help="Only show submissions in this status",
    )

    audit = sub.add_parser("audit", help="Inspect the audit trail")
    audit.add_argument("action", choices=["view", "verify"])
    audit.add_argument("--submission", help="Only events for this submission (view)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(level="WARNING", json_format=settings.log_json)

    db_path = args.db or settings.db_path
    if args.command != "keygen" and not os.path.exists(db_path):
        print(f"  ERROR: Database not found: {db_path}")
        return 1

    with Storage(db_path) as storage:
        if args.command == "keygen":
            return cmd_keygen(
                storage, settings, args.principal_id, args.keyring_file, args.replace
            )
        if args.command == "directory":
            return cmd_directory(storage)
        if args.command == "submissions":
            return cmd_submissions(storage, args.status)
        if args.action == "view":
            return cmd_audit_view(storage.get_audit_events(args.submission))
        return cmd_audit_verify(storage.get_audit_events())


if __name__ == "__main__":
    sys.exit(main())
