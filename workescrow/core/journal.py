"""
workescrow/core/journal.py

Escrow journal: one event per committed escrow operation.

Journal contract — append() MUST, in this order:
  1. Acquire lock
  2. Build the event via EscrowEvent.create(..., prev=last_event)
  3. Assert chain invariants (sequence, causal_hash)
  4. Append to the JSONL file, if one is configured
  5. Advance internal state only after the write succeeded

discard() withdraws the last event, in memory and on disk, when the ledger
group it belongs to fails to commit.

An event embeds the caller's SignedCall verbatim. Integrity of the journal
is therefore: causal_hash chain + every embedded call signature.

Nothing in the file covers the last event: its effects and state can be
rewritten consistently without breaking the chain. head_hash() is that
missing link; record it outside the journal and pass it to
ReplayEngine.verify(expected_head=...) to seal the tail.
"""

import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from workescrow.core.canonical import canonicalize
from workescrow.core.exceptions import JournalError
from workescrow.core.models import EscrowState, SignedCall
from workescrow.core.time import escrow_timestamp

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64
JOURNAL_VERSION = "1"


@dataclass
class EscrowEvent:
    """A committed escrow operation, chained to its predecessor."""

    journal_version: str
    event_id:        str
    sequence:        int
    escrow_id:       str
    operation:       str
    call:            Dict[str, Any]
    effects:         Dict[str, Any]
    state:           Dict[str, Any]
    timestamp:       str
    causal_hash:     str

    @classmethod
    def create(
        cls,
        sequence: int,
        call:     SignedCall,
        effects:  Dict[str, Any],
        state:    EscrowState,
        prev:     Optional["EscrowEvent"] = None,
    ) -> "EscrowEvent":
        if not isinstance(sequence, int) or sequence < 0:
            raise ValueError(f"sequence must be non-negative int, got {sequence!r}")
        return cls(
            journal_version= JOURNAL_VERSION,
            event_id=        f"evt-{uuid.uuid4()}",
            sequence=        sequence,
            escrow_id=       call.escrow_id,
            operation=       call.method,
            call=            call.to_dict(),
            effects=         dict(effects),
            state=           state.to_dict(),
            timestamp=       escrow_timestamp(),
            causal_hash=     cls._compute_causal_hash(prev),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscrowEvent":
        """Deserialize a JSONL line. Raises KeyError on a missing field."""
        return cls(
            journal_version= data["journal_version"],
            event_id=        data["event_id"],
            sequence=        data["sequence"],
            escrow_id=       data["escrow_id"],
            operation=       data["operation"],
            call=            data["call"],
            effects=         data.get("effects", {}),
            state=           data["state"],
            timestamp=       data["timestamp"],
            causal_hash=     data["causal_hash"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "journal_version": self.journal_version,
            "event_id":        self.event_id,
            "sequence":        self.sequence,
            "escrow_id":       self.escrow_id,
            "operation":       self.operation,
            "call":            self.call,
            "effects":         self.effects,
            "state":           self.state,
            "timestamp":       self.timestamp,
            "causal_hash":     self.causal_hash,
        }

    @property
    def signed_call(self) -> SignedCall:
        return SignedCall.from_dict(self.call)

    # ── Chain ─────────────────────────────────────────────────

    @staticmethod
    def _compute_causal_hash(prev: Optional["EscrowEvent"]) -> str:
        if prev is None:
            return GENESIS_HASH
        return hashlib.sha256(canonicalize(prev.to_dict())).hexdigest()

    def expected_causal_hash_from(self, prev: Optional["EscrowEvent"]) -> str:
        return EscrowEvent._compute_causal_hash(prev)

    def verify_chain(self, prev: Optional["EscrowEvent"]) -> bool:
        return self.causal_hash == self.expected_causal_hash_from(prev)

    def chain_hash(self) -> str:
        """The causal_hash the next event must carry."""
        return EscrowEvent._compute_causal_hash(self)

    def verify_call(self) -> bool:
        """The embedded call is validly signed and targets this event."""
        try:
            call = self.signed_call
        except KeyError:
            return False
        if call.escrow_id != self.escrow_id or call.method != self.operation:
            return False
        return call.verify_signature()


class EscrowJournal:
    """
    Append-only escrow journal, in memory with optional JSONL persistence.

    One journal may hold events for many escrows; the chain runs across
    all of them. Thread-safe via an internal lock.
    """

    def __init__(self, journal_path: Optional[Path] = None) -> None:
        self.journal_path = Path(journal_path) if journal_path else None
        self._lock = threading.Lock()
        self._events: List[EscrowEvent] = []
        # file size before the last write, for discard()
        self._tail_offset: Optional[int] = None

        if self.journal_path and self.journal_path.exists():
            self._restore_state()

    # ── Public API ────────────────────────────────────────────

    def append(
        self,
        call:    SignedCall,
        effects: Dict[str, Any],
        state:   EscrowState,
    ) -> EscrowEvent:
        """
        Record one committed operation.

        Raises JournalError on a chain invariant violation or write failure;
        the caller must treat that as a failed operation.
        """
        with self._lock:
            prev = self._events[-1] if self._events else None
            event = EscrowEvent.create(
                sequence= len(self._events),
                call=     call,
                effects=  effects,
                state=    state,
                prev=     prev,
            )

            if not event.verify_chain(prev):
                raise JournalError(
                    "Chain invariant violated: causal_hash mismatch",
                    {"sequence": event.sequence},
                )

            self._write(event)
            self._events.append(event)
            return event

    def discard(self, event: EscrowEvent) -> None:
        """
        Withdraw the last appended event.

        Raises JournalError if event is not the last one or the file
        cannot be truncated.
        """
        with self._lock:
            if (
                not self._events
                or self._events[-1] is not event
                or (self.journal_path is not None and self._tail_offset is None)
            ):
                raise JournalError(
                    "Only the last event written by this journal can be discarded",
                    {"event_id": event.event_id},
                )
            if self.journal_path is not None:
                try:
                    with open(self.journal_path, "r+b") as f:
                        f.truncate(self._tail_offset)
                except OSError as exc:
                    raise JournalError(f"Journal truncate failed: {exc}") from exc
            self._events.pop()
            self._tail_offset = None
        logger.warning(f"Discarded journal event {event.sequence} ({event.operation})")

    def head_hash(self) -> str:
        """Hash covering the whole journal; GENESIS_HASH when empty."""
        with self._lock:
            return self._events[-1].chain_hash() if self._events else GENESIS_HASH

    @property
    def events(self) -> List[EscrowEvent]:
        with self._lock:
            return list(self._events)

    def events_for(self, escrow_id: str) -> List[EscrowEvent]:
        with self._lock:
            return [e for e in self._events if e.escrow_id == escrow_id]

    def verify_chain(self) -> bool:
        """True if sequence, causal_hash chain and every call signature hold."""
        with self._lock:
            events = list(self._events)
        prev = None
        for i, event in enumerate(events):
            if event.sequence != i or not event.verify_chain(prev) or not event.verify_call():
                return False
            prev = event
        return True

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            last = self._events[-1] if self._events else None
            return {
                "total_events":  len(self._events),
                "escrows":       len({e.escrow_id for e in self._events}),
                "last_event_id": last.event_id if last else None,
                "journal_file":  str(self.journal_path) if self.journal_path else None,
            }

    # ── Internal ──────────────────────────────────────────────

    def _write(self, event: EscrowEvent) -> None:
        if self.journal_path is None:
            return
        try:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            offset = self.journal_path.stat().st_size if self.journal_path.exists() else 0
            with open(self.journal_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict()) + "\n")
            self._tail_offset = offset
        except OSError as exc:
            raise JournalError(f"Journal write failed: {exc}") from exc

    def _restore_state(self) -> None:
        """Load existing events so new ones chain onto them."""
        try:
            with open(self.journal_path, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        self._events.append(EscrowEvent.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError) as exc:
                        raise JournalError(
                            f"Invalid journal event at line {line_num}: {exc}"
                        ) from exc
        except OSError as exc:
            raise JournalError(f"Failed to load journal: {exc}") from exc
        logger.info(f"Restored {len(self._events)} journal events from {self.journal_path}")
