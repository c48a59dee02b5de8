"""
saep_core/storage.py — SAEP SQLite Storage Backend

Tables:
- submissions:   Sealed artifacts + workflow status
- evaluations:   Signed evaluations, at most one per submission
- public_keys:   Key directory contents (public halves only)
- audit_events:  Hash-chained, append-only audit log

The full model JSON is stored in the `data` column; indexed columns are
extracted for efficient querying without deserializing every row.

Status changes are compare-and-swap (`WHERE status = expected`), and every
multi-row change runs in a single transaction, so a failed step never
leaves a partial write behind.
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Callable, Iterable, Optional

from .models import AuditEvent, Evaluation, Submission, SubmissionStatus


class Storage:
    """SQLite storage for SAEP records.

    One connection shared across threads; every statement runs under a
    connection-level lock.
    """

    def __init__(self, db_path: str = "./saep.db"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._create_tables()

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS submissions (
                    submission_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    assigned_reviewer_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    data TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_submissions_owner
                    ON submissions(owner_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_submissions_reviewer
                    ON submissions(assigned_reviewer_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_submissions_status
                    ON submissions(status);

                CREATE TABLE IF NOT EXISTS evaluations (
                    evaluation_id TEXT PRIMARY KEY,
                    submission_id TEXT NOT NULL UNIQUE,
                    evaluator_id TEXT NOT NULL,
                    signed_at TEXT NOT NULL,
                    data TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS public_keys (
                    principal_id TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    public_key_pem TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    registered_at TEXT NOT NULL,
                    PRIMARY KEY (principal_id, purpose)
                );

                CREATE TABLE IF NOT EXISTS audit_events (
                    event_id TEXT PRIMARY KEY,
                    sequence_number INTEGER NOT NULL UNIQUE,
                    event_type TEXT NOT NULL,
                    principal_id TEXT,
                    submission_id TEXT,
                    timestamp TEXT NOT NULL,
                    event_hash TEXT NOT NULL,
                    previous_hash TEXT,
                    data TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_audit_submission
                    ON audit_events(submission_id, sequence_number);
            """)
            self.conn.commit()

    # ------------------------------------------------------------------
    # Submission operations
    # ------------------------------------------------------------------

    def save_submission(self, submission: Submission) -> None:
        """Insert a new submission. All sealed fields go in one row."""
        with self._lock:
            self.conn.execute(
                """INSERT INTO submissions
                   (submission_id, owner_id, assigned_reviewer_id, status,
                    content_hash, created_at, data)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    submission.id,
                    submission.owner_id,
                    submission.assigned_reviewer_id,
                    submission.status.value,
                    submission.content_hash,
                    submission.created_at.isoformat(),
                    submission.model_dump_json(),
                ),
            )
            self.conn.commit()

    def get_submission(self, submission_id: str) -> Optional[Submission]:
        with self._lock:
            row = self.conn.execute(
                "SELECT data FROM submissions WHERE submission_id = ?",
                (submission_id,),
            ).fetchone()
        if row:
            return Submission.model_validate_json(row["data"])
        return None

    def list_submissions(
        self,
        owner_id: Optional[str] = None,
        reviewer_id: Optional[str] = None,
        statuses: Optional[Iterable[SubmissionStatus]] = None,
    ) -> list[Submission]:
        """List submissions, newest first, optionally filtered."""
        query = "SELECT data FROM submissions WHERE 1 = 1"
        params: list = []

        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if reviewer_id is not None:
            query += " AND assigned_reviewer_id = ?"
            params.append(reviewer_id)
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)

        query += " ORDER BY created_at DESC, submission_id DESC"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [Submission.model_validate_json(row["data"]) for row in rows]

    def compare_and_set_status(
        self,
        updated: Submission,
        expected: SubmissionStatus,
    ) -> bool:
        """Write `updated` only if the stored status is still `expected`."""
        with self._lock:
            cur = self.conn.execute(
                """UPDATE submissions SET status = ?, data = ?
                   WHERE submission_id = ? AND status = ?""",
                (
                    updated.status.value,
                    updated.model_dump_json(),
                    updated.id,
                    expected.value,
                ),
            )
            self.conn.commit()
            return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Evaluation operations
    # ------------------------------------------------------------------

    def record_evaluation(
        self,
        evaluation: Evaluation,
        updated: Submission,
        expected: SubmissionStatus,
    ) -> bool:
        """Insert the evaluation and advance the submission in one transaction.

        Returns False (and writes nothing) if the submission left `expected`
        or already has an evaluation.
        """
        with self._lock:
            try:
                cur = self.conn.execute(
                    """UPDATE submissions SET status = ?, data = ?
                       WHERE submission_id = ? AND status = ?""",
                    (
                        updated.status.value,
                        updated.model_dump_json(),
                        updated.id,
                        expected.value,
                    ),
                )
                if cur.rowcount != 1:
                    self.conn.rollback()
                    return False
                self.conn.execute(
                    """INSERT INTO evaluations
                       (evaluation_id, submission_id, evaluator_id, signed_at, data)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        evaluation.id,
                        evaluation.submission_id,
                        evaluation.evaluator_id,
                        evaluation.signed_at.isoformat(),
                        evaluation.model_dump_json(),
                    ),
                )
            except sqlite3.IntegrityError:
                self.conn.rollback()
                return False
            self.conn.commit()
            return True

    def get_evaluation(self, submission_id: str) -> Optional[Evaluation]:
        """Get the evaluation attached to a submission, if any."""
        with self._lock:
            row = self.conn.execute(
                "SELECT data FROM evaluations WHERE submission_id = ?",
                (submission_id,),
            ).fetchone()
        if row:
            return Evaluation.model_validate_json(row["data"])
        return None

    def delete_submission(
        self,
        updated: Submission,
        expected: SubmissionStatus,
    ) -> bool:
        """Mark deleted (CAS on status) and drop any attached evaluation."""
        with self._lock:
            cur = self.conn.execute(
                """UPDATE submissions SET status = ?, data = ?
                   WHERE submission_id = ? AND status = ?""",
                (
                    updated.status.value,
                    updated.model_dump_json(),
                    updated.id,
                    expected.value,
                ),
            )
            if cur.rowcount != 1:
                self.conn.rollback()
                return False
            self.conn.execute(
                "DELETE FROM evaluations WHERE submission_id = ?",
                (updated.id,),
            )
            self.conn.commit()
            return True

    # ------------------------------------------------------------------
    # Public key directory
    # ------------------------------------------------------------------

    def put_public_key(
        self,
        principal_id: str,
        purpose: str,
        public_key_pem: str,
        fingerprint: str,
        registered_at: str,
    ) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT INTO public_keys
                   (principal_id, purpose, public_key_pem, fingerprint, registered_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(principal_id, purpose) DO UPDATE SET
                       public_key_pem = excluded.public_key_pem,
                       fingerprint = excluded.fingerprint,
                       registered_at = excluded.registered_at""",
                (principal_id, purpose, public_key_pem, fingerprint, registered_at),
            )
            self.conn.commit()

    def get_public_key(self, principal_id: str, purpose: str) -> Optional[dict]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM public_keys WHERE principal_id = ? AND purpose = ?",
                (principal_id, purpose),
            ).fetchone()
        return dict(row) if row else None

    def list_public_keys(self) -> list[dict]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM public_keys ORDER BY principal_id, purpose"
            ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def append_chained_audit_event(
        self,
        seal: Callable[[int, Optional[str]], AuditEvent],
    ) -> AuditEvent:
        """Read the chain tail and append one event in a single write transaction.

        `seal(sequence_number, previous_hash)` builds the sealed event.
        BEGIN IMMEDIATE takes the database write lock before the tail is
        read, so several connections on one file extend the same chain.
        """
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                row = self.conn.execute(
                    """SELECT sequence_number, event_hash FROM audit_events
                       ORDER BY sequence_number DESC LIMIT 1"""
                ).fetchone()
                if row:
                    event = seal(row["sequence_number"] + 1, row["event_hash"])
                else:
                    event = seal(0, None)
                self.conn.execute(
                    """INSERT INTO audit_events
                       (event_id, sequence_number, event_type, principal_id,
                        submission_id, timestamp, event_hash, previous_hash, data)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event.event_id,
                        event.sequence_number,
                        event.event_type,
                        event.principal_id,
                        event.submission_id,
                        event.timestamp.isoformat(),
                        event.event_hash,
                        event.previous_hash,
                        event.model_dump_json(),
                    ),
                )
            except Exception:
                self.conn.rollback()
                raise
            self.conn.commit()
            return event

    def get_audit_events(self, submission_id: Optional[str] = None) -> list[AuditEvent]:
        """All audit events in sequence order, optionally for one submission."""
        query = "SELECT data FROM audit_events"
        params: list = []
        if submission_id is not None:
            query += " WHERE submission_id = ?"
            params.append(submission_id)
        query += " ORDER BY sequence_number"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [AuditEvent.model_validate_json(row["data"]) for row in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
