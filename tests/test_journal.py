"""
tests/test_journal.py

EscrowJournal chaining and ReplayEngine verification.

Each tampering test writes a valid journal to disk, edits one line the way
an attacker with file access would, and checks the violation replay reports.
"""

import json
from dataclasses import replace

import pytest

from workescrow import EscrowJournal, EscrowStatus, Operation
from workescrow.core.exceptions import JournalError
from workescrow.core.journal import GENESIS_HASH, EscrowEvent
from workescrow.core.replay import ReplayEngine

from conftest import REGISTRATION_FEE


@pytest.fixture
def journal(tmp_path):
    return EscrowJournal(tmp_path / "journal.jsonl")


@pytest.fixture
def completed(ledger, boss, admin, worker, funded_escrow):
    """Six-event journal ending in a released escrow."""
    ledger.register_holding(worker.address, funded_escrow.asset_id)
    admin.set_condition_met(funded_escrow, worker.address)
    admin.release_funds(funded_escrow)
    admin.release_asset(funded_escrow)
    return funded_escrow


def _lines(path):
    return [json.loads(l) for l in path.read_text().splitlines() if l.strip()]


def _rewrite(path, events):
    path.write_text("".join(json.dumps(e) + "\n" for e in events))


def _verify(path):
    engine = ReplayEngine()
    engine.load(path)
    return engine.verify()


def _types(summary):
    return {v.violation_type for v in summary.violations}


class TestJournal:

    def test_events_are_chained(self, journal, completed):
        events = journal.events
        assert [e.sequence for e in events] == list(range(6))
        assert events[0].causal_hash == GENESIS_HASH
        for prev, event in zip(events, events[1:]):
            assert event.verify_chain(prev)
        assert journal.verify_chain()

    def test_event_embeds_signed_call(self, journal, boss, completed):
        first = journal.events[0]
        assert first.operation == Operation.INITIALIZE.value
        assert first.signed_call.sender == boss.address
        assert first.verify_call()

    def test_event_records_state_snapshot(self, journal, completed):
        last = journal.events[-1]
        assert last.state["status"] == EscrowStatus.RELEASED.value
        assert last.state["condition"] == "met"
        assert last.state["payment_amount"] == 0

    def test_events_for(self, ledger, boss, worker, asset_id, journal, completed):
        other = boss.open_escrow(ledger, worker=worker.address, asset_id=asset_id,
                                 quantity=1, journal=journal)
        assert len(journal.events_for(completed.escrow_id)) == 6
        assert len(journal.events_for(other.escrow_id)) == 1
        assert journal.get_stats()["escrows"] == 2

    def test_restart_continues_chain(self, ledger, boss, worker, asset_id, journal, completed):
        reopened = EscrowJournal(journal.journal_path)
        assert len(reopened.events) == 6

        boss.open_escrow(ledger, worker=worker.address, asset_id=asset_id,
                         quantity=1, journal=reopened)
        assert reopened.events[-1].sequence == 6
        assert reopened.verify_chain()

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "journal.jsonl"
        path.write_text("{not json\n")
        with pytest.raises(JournalError):
            EscrowJournal(path)

    def test_discard_withdraws_last_event(self, boss, account, journal):
        text_before = journal.journal_path.read_text()
        call = boss.call(account.escrow_id, Operation.SET_CONDITION_MET, worker_address=None)
        event = journal.append(call, {"transactions": []}, account.state)

        journal.discard(event)

        assert len(journal.events) == 1
        assert journal.journal_path.read_text() == text_before
        assert journal.verify_chain()

    def test_discard_only_last_written_event(self, boss, worker, account, journal):
        boss.set_condition_met(account, worker.address)
        with pytest.raises(JournalError):
            journal.discard(journal.events[0])

        reopened = EscrowJournal(journal.journal_path)
        with pytest.raises(JournalError):
            reopened.discard(reopened.events[-1])
        assert len(reopened.events) == 2

    def test_head_hash_tracks_last_event(self, journal, completed):
        head = journal.head_hash()
        assert head == journal.events[-1].chain_hash()
        assert _verify(journal.journal_path).head_hash == head
        assert EscrowJournal().head_hash() == GENESIS_HASH

    def test_negative_sequence_rejected(self, boss, account):
        call = boss.call(account.escrow_id, Operation.CANCEL)
        with pytest.raises(ValueError):
            EscrowEvent.create(-1, call, {}, account.state)


class TestReplay:

    def test_valid_journal(self, journal, completed):
        summary = _verify(journal.journal_path)
        assert summary.is_valid, summary.violations
        assert summary.chain_valid
        assert summary.total_events == 6
        assert summary.valid_calls == 6
        assert summary.operation_counts["set_condition_met"] == 1
        rebuilt = summary.escrows[completed.escrow_id]
        assert rebuilt.to_dict() == completed.state.to_dict()

    def test_in_memory_events(self, journal, completed):
        engine = ReplayEngine()
        engine.load_events(journal.events)
        assert engine.verify().is_valid

    def test_summary_serializes(self, journal, completed):
        data = _verify(journal.journal_path).to_dict()
        assert data["valid"] is True
        assert completed.escrow_id in data["escrows"]
        json.dumps(data)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ReplayEngine().load(tmp_path / "absent.jsonl")

    def test_malformed_line(self, tmp_path):
        path = tmp_path / "journal.jsonl"
        path.write_text("{oops\n")
        with pytest.raises(ValueError):
            ReplayEngine().load(path)

    def test_unknown_version(self, journal, completed):
        events = _lines(journal.journal_path)
        events[0]["journal_version"] = "99"
        _rewrite(journal.journal_path, events)
        with pytest.raises(ValueError):
            ReplayEngine().load(journal.journal_path)


class TestTampering:

    def test_edited_state_breaks_chain_and_replay(self, journal, completed):
        events = _lines(journal.journal_path)
        events[2]["state"]["payment_amount"] = 9_000_000
        _rewrite(journal.journal_path, events)

        summary = _verify(journal.journal_path)
        assert not summary.chain_valid
        assert {"chain_break", "state_mismatch"} <= _types(summary)
        assert summary.violations[0].at_sequence == 2

    def test_edited_call_args_fail_signature(self, journal, completed, stranger):
        events = _lines(journal.journal_path)
        events[0]["call"]["args"]["worker"] = stranger.address
        _rewrite(journal.journal_path, events)

        summary = _verify(journal.journal_path)
        assert "invalid_call" in _types(summary)
        assert summary.invalid_calls >= 1

    def test_dropped_event_detected(self, journal, completed):
        events = _lines(journal.journal_path)
        del events[3]
        _rewrite(journal.journal_path, events)

        types = _types(_verify(journal.journal_path))
        assert "sequence_gap" in types
        assert "chain_break" in types

    def test_forged_release_by_worker(self, journal, worker, completed):
        """A correctly chained, correctly signed event the guards would refuse."""
        call = worker.call(completed.escrow_id, Operation.CANCEL)
        state = replace(completed.state, status=EscrowStatus.CANCELLED)
        journal.append(call, {"amount": 0, "transactions": []}, state)

        summary = _verify(journal.journal_path)
        assert summary.chain_valid
        assert _types(summary) == {"unauthorized"}

    def test_release_before_condition(self, ledger, boss, account, journal):
        fee = ledger.pay(boss.address, account.address, REGISTRATION_FEE)
        boss.register_asset_holding(account, fee.txid)
        call = boss.call(account.escrow_id, Operation.RELEASE_FUNDS)
        state = replace(account.state, status=EscrowStatus.RELEASED)
        journal.append(call, {"amount": 0, "transactions": []}, state)

        assert _types(_verify(journal.journal_path)) == {"condition_not_met"}

    def test_event_after_cancel(self, boss, worker, account, journal):
        boss.cancel(account)
        call = boss.call(account.escrow_id, Operation.SET_CONDITION_MET, worker_address=worker.address)
        journal.append(call, {"worker_address": worker.address, "transactions": []}, account.state)

        assert _types(_verify(journal.journal_path)) == {"after_cancel"}

    def test_edited_last_event_needs_recorded_head(self, journal, funded_escrow):
        """A consistent edit of the final event passes the chain; the head catches it."""
        head = journal.head_hash()
        events = _lines(journal.journal_path)
        assert events[-1]["operation"] == "confirm_deposit"
        events[-1]["effects"]["amount"] = 9_000_000
        events[-1]["state"]["payment_amount"] = 9_000_000
        _rewrite(journal.journal_path, events)

        assert _verify(journal.journal_path).is_valid

        engine = ReplayEngine()
        engine.load(journal.journal_path)
        summary = engine.verify(expected_head=head)
        assert _types(summary) == {"head_mismatch"}
        assert summary.violations[0].at_sequence == 2

    def test_replayed_nonce(self, journal, completed):
        events = [EscrowEvent.from_dict(e) for e in _lines(journal.journal_path)]
        replayed = events[3].signed_call
        journal.append(replayed, dict(events[3].effects), completed.state)

        assert "replayed_call" in _types(_verify(journal.journal_path))
