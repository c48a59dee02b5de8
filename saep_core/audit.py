"""
saep_core/audit.py — Hash-chained audit trail.

Append: assign sequence → link previous_hash → JCS canonicalize → SHA-256
Verify: walk events, recompute hashes, check links and sequence continuity

Every access decision and every pipeline outcome (seal, unseal, sign,
verify, state transition) becomes one AuditEvent. Events are also
emitted on the `saep.audit` logger.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .canonical import canonicalize
from .crypto import sha256_hex
from .models import AccessDecision, AuditEvent
from .storage import Storage


audit_logger = logging.getLogger("saep.audit")


def compute_event_hash(event: AuditEvent) -> str:
    return sha256_hex(canonicalize(event.hashable_dict()))


class AuditRecorder:
    """Appends events to the audit chain held in Storage.

    The chain is global to one deployment. The tail is read from storage
    in the same transaction as each insert, so recorders in other
    processes sharing the database extend one gap-free chain.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def record_event(
        self,
        event_type: str,
        outcome: str,
        *,
        principal_id: Optional[str] = None,
        submission_id: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Seal and persist one event. Returns the stored event."""

        def seal(sequence_number: int, previous_hash: Optional[str]) -> AuditEvent:
            event = AuditEvent(
                sequence_number=sequence_number,
                event_type=event_type,
                principal_id=principal_id,
                submission_id=submission_id,
                outcome=outcome,
                detail=detail or {},
                previous_hash=previous_hash,
            )
            return event.model_copy(update={"event_hash": compute_event_hash(event)})

        sealed = self.storage.append_chained_audit_event(seal)

        level = logging.INFO if outcome in ("allowed", "success") else logging.WARNING
        audit_logger.log(
            level,
            "%s: %s",
            event_type, outcome,
            extra={"fields": {
                "event_type": event_type,
                "outcome": outcome,
                "principal_id": principal_id,
                "submission_id": submission_id,
                "sequence_number": sealed.sequence_number,
                **(detail or {}),
            }},
        )
        return sealed

    def record_decision(
        self,
        decision: AccessDecision,
        submission_id: Optional[str] = None,
    ) -> AuditEvent:
        return self.record_event(
            "ACCESS_DECISION",
            "allowed" if decision.allowed else "denied",
            principal_id=decision.principal_id,
            submission_id=submission_id,
            detail={
                "role": decision.role.value,
                "resource_type": decision.resource_type.value,
                "action": decision.action.value,
                "reason": decision.reason,
            },
        )

    def events(self, submission_id: Optional[str] = None) -> List[AuditEvent]:
        return self.storage.get_audit_events(submission_id)


# ---------------------------------------------------------------------------
# Chain verification
# ---------------------------------------------------------------------------

def verify_audit_chain(events: List[AuditEvent]) -> Dict[str, Any]:
    """Verify an audit chain.

    Checks, per event in sequence order:
    - event_hash matches the recomputed canonical hash
    - previous_hash links to the prior event's event_hash
    - sequence_number continuity (genesis is 0)
    """
    result: Dict[str, Any] = {
        "chain_valid": True,
        "total_events": len(events),
        "hash_mismatches": [],
        "broken_links": [],
        "sequence_gaps": [],
    }

    if not events:
        return result

    ordered = sorted(events, key=lambda e: e.sequence_number)

    prev_hash: Optional[str] = None
    expected_seq = 0
    for event in ordered:
        recomputed = compute_event_hash(event)
        if recomputed != event.event_hash:
            result["chain_valid"] = False
            result["hash_mismatches"].append({
                "event_id": event.event_id,
                "sequence_number": event.sequence_number,
                "computed": recomputed,
                "stored": event.event_hash,
            })

        if event.previous_hash != prev_hash:
            result["chain_valid"] = False
            result["broken_links"].append({
                "event_id": event.event_id,
                "sequence_number": event.sequence_number,
                "expected_previous_hash": prev_hash,
                "actual_previous_hash": event.previous_hash,
            })

        if event.sequence_number != expected_seq:
            result["chain_valid"] = False
            result["sequence_gaps"].append({
                "event_id": event.event_id,
                "expected_sequence": expected_seq,
                "actual_sequence": event.sequence_number,
            })

        # Link against the stored hash; a tampered event is already
        # reported as a hash mismatch above.
        prev_hash = event.event_hash
        expected_seq = event.sequence_number + 1

    return result
