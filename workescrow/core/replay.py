"""
workescrow/core/replay.py

Journal replay engine.

Verification runs in one sequential pass because every check depends on
what came before:
    1. Sequence  → event.sequence == position
    2. Chain     → event.verify_chain(prev)
    3. Call      → embedded SignedCall signature, escrow_id and method
    4. Nonce     → no call nonce reused within one escrow
    5. Guards    → the sender held a permitted role, the escrow was not yet
                   cancelled, releases happened with the condition met
    6. State     → apply_transition(prev_state, call, effects) reproduces
                   the recorded state snapshot
    7. Head      → with expected_head, the last event hashes to it; without
                   it a consistent edit of the last event goes unnoticed

The state rebuild uses the same apply_transition() as EscrowAccount.
"""

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set

from workescrow.core.exceptions import EscrowError
from workescrow.core.journal import GENESIS_HASH, JOURNAL_VERSION, EscrowEvent
from workescrow.core.models import PERMISSIONS, EscrowState, Operation, Role
from workescrow.escrow.transitions import apply_transition

logger = logging.getLogger(__name__)

_RELEASES = {Operation.RELEASE_FUNDS, Operation.RELEASE_ASSET}


@dataclass
class JournalViolation:
    """A single detected violation in the journal."""
    at_sequence:    int
    event_id:       str
    violation_type: str   # sequence_gap | chain_break | invalid_call | replayed_call
                          # | unauthorized | after_cancel | condition_not_met
                          # | invalid_transition | state_mismatch | head_mismatch
    detail:         str


@dataclass
class ReplaySummary:
    """Aggregate result of a full journal verification pass."""
    total_events:     int
    chain_valid:      bool
    violations:       List[JournalViolation]
    valid_calls:      int
    invalid_calls:    int
    operation_counts: Dict[str, int]
    escrows:          Dict[str, EscrowState]
    head_hash:        str
    first_timestamp:  Optional[str]
    last_timestamp:   Optional[str]

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict:
        return {
            "total_events":     self.total_events,
            "chain_valid":      self.chain_valid,
            "valid":            self.is_valid,
            "valid_calls":      self.valid_calls,
            "invalid_calls":    self.invalid_calls,
            "operation_counts": self.operation_counts,
            "violations": [
                {
                    "at_sequence":    v.at_sequence,
                    "event_id":       v.event_id,
                    "violation_type": v.violation_type,
                    "detail":         v.detail,
                }
                for v in self.violations
            ],
            "escrows":          {k: s.to_dict() for k, s in self.escrows.items()},
            "head_hash":        self.head_hash,
            "first_timestamp":  self.first_timestamp,
            "last_timestamp":   self.last_timestamp,
        }


class ReplayEngine:
    """
    Usage:
        engine = ReplayEngine()
        engine.load(Path(".workescrow/journal.jsonl"))
        summary = engine.verify()
        summary.escrows["escrow-..."].status
    """

    def __init__(self):
        self.events:       List[EscrowEvent]      = []
        self.violations:   List[JournalViolation] = []
        self._journal_path: Optional[Path]        = None

    # ── Load ──────────────────────────────────────────────────

    def load(self, journal_path: Path) -> None:
        """
        Load a journal JSONL file.

        Raises:
            FileNotFoundError — journal file does not exist
            ValueError        — malformed JSON, missing field, unknown version
        """
        journal_path       = Path(journal_path)
        self._journal_path = journal_path
        self.events        = []
        self.violations    = []

        if not journal_path.exists():
            raise FileNotFoundError(f"Journal not found: {journal_path}")

        with open(journal_path, "r", encoding="utf-8") as f:
            for line_num, raw in enumerate(f, 1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Malformed JSON at journal line {line_num}: {e}") from e
                try:
                    event = EscrowEvent.from_dict(data)
                except KeyError as e:
                    raise ValueError(f"Missing journal field at line {line_num}: {e}") from e
                if event.journal_version != JOURNAL_VERSION:
                    raise ValueError(
                        f"Unsupported journal_version {event.journal_version!r} "
                        f"at line {line_num}"
                    )
                self.events.append(event)

        self.load_events(self.events)
        logger.info(f"Loaded {len(self.events)} journal events from '{journal_path.name}'")

    def load_events(self, events: List[EscrowEvent]) -> None:
        """Use already-parsed events, e.g. EscrowJournal.events."""
        self.events     = sorted(events, key=lambda e: e.sequence)
        self.violations = []

    # ── Verify ────────────────────────────────────────────────

    def verify(self, expected_head: Optional[str] = None) -> ReplaySummary:
        """
        Run every check. expected_head, a previously recorded
        EscrowJournal.head_hash(), also seals the last event against edits.
        """
        self.violations = []
        states:      Dict[str, EscrowState] = {}
        seen_nonces: Dict[str, Set[str]]    = defaultdict(set)
        op_counts:   Dict[str, int]         = defaultdict(int)
        chain_ok     = True
        valid_calls  = 0

        for i, event in enumerate(self.events):
            prev = self.events[i - 1] if i > 0 else None
            op_counts[event.operation] += 1

            if event.sequence != i:
                chain_ok = False
                self._flag(event, "sequence_gap", f"Expected sequence {i}, got {event.sequence}")

            if not event.verify_chain(prev):
                chain_ok = False
                expected = event.expected_causal_hash_from(prev)
                self._flag(
                    event, "chain_break",
                    f"causal_hash mismatch: expected ...{expected[-12:]}, "
                    f"got ...{event.causal_hash[-12:]}",
                )

            if not event.verify_call():
                self._flag(event, "invalid_call", "Embedded call signature or target does not verify")
                continue
            valid_calls += 1
            call = event.signed_call

            if call.nonce in seen_nonces[event.escrow_id]:
                self._flag(event, "replayed_call", f"Nonce {call.nonce} already used in this escrow")
            seen_nonces[event.escrow_id].add(call.nonce)

            prev_state = states.get(event.escrow_id)
            if not self._check_guards(event, prev_state):
                continue

            try:
                next_state = apply_transition(prev_state, call, event.effects)
            except (EscrowError, KeyError, ValueError) as e:
                self._flag(event, "invalid_transition", str(e))
                continue

            if next_state.to_dict() != event.state:
                self._flag(event, "state_mismatch", "Recorded state differs from replayed state")
            states[event.escrow_id] = next_state

        head = self.events[-1].chain_hash() if self.events else GENESIS_HASH
        if expected_head is not None and head != expected_head:
            last = self.events[-1] if self.events else None
            self.violations.append(JournalViolation(
                at_sequence=    last.sequence if last else -1,
                event_id=       last.event_id if last else "",
                violation_type= "head_mismatch",
                detail=         f"Journal head ...{head[-12:]} != expected ...{expected_head[-12:]}",
            ))

        return ReplaySummary(
            total_events=     len(self.events),
            chain_valid=      chain_ok,
            violations=       list(self.violations),
            valid_calls=      valid_calls,
            invalid_calls=    len(self.events) - valid_calls,
            operation_counts= dict(op_counts),
            escrows=          states,
            head_hash=        head,
            first_timestamp=  self.events[0].timestamp if self.events else None,
            last_timestamp=   self.events[-1].timestamp if self.events else None,
        )

    # ── Internal ──────────────────────────────────────────────

    def _check_guards(self, event: EscrowEvent, state: Optional[EscrowState]) -> bool:
        try:
            operation = Operation(event.operation)
        except ValueError:
            self._flag(event, "invalid_transition", f"Unknown operation {event.operation!r}")
            return False

        if state is None:
            # apply_transition reports a non-initialize first event
            return True

        if state.status.is_terminal:
            self._flag(event, "after_cancel", "Event recorded after the escrow was cancelled")
            return False

        sender = event.call.get("sender", "")
        if not PERMISSIONS[operation] & state.roles_of(sender):
            allowed = sorted(r.value for r in PERMISSIONS[operation] if r is not Role.ANYONE)
            self._flag(
                event, "unauthorized",
                f"{str(sender)[:16]} may not call {operation.value} (allowed: {allowed})",
            )
            return False

        if operation in _RELEASES and not state.condition_met:
            self._flag(event, "condition_not_met", f"{operation.value} before the condition was met")
            return False

        return True

    def _flag(self, event: EscrowEvent, violation_type: str, detail: str) -> None:
        self.violations.append(JournalViolation(
            at_sequence=    event.sequence,
            event_id=       event.event_id,
            violation_type= violation_type,
            detail=         detail,
        ))
