"""
tests/test_host_ledger.py

HostLedger balance rules, close-out sweeps, atomic groups and the
hash-chained entry log.
"""

import json

import pytest

from workescrow import HostLedger, LedgerError
from workescrow.core.exceptions import InsufficientFunds, NotRegistered, UnknownAccount
from workescrow.core.models import TxType

A = "a" * 64
B = "b" * 64
C = "c" * 64


@pytest.fixture
def host():
    ledger = HostLedger()
    ledger.fund(A, 1_000_000)
    return ledger


class TestNativePayments:

    def test_pay_moves_balance(self, host):
        tx = host.pay(A, B, 250_000)
        assert tx.is_payment
        assert host.query_balance(A) == 750_000
        assert host.query_balance(B) == 250_000

    def test_unknown_account_has_zero_native(self, host):
        assert host.query_balance(C) == 0

    def test_overdraft_rejected(self, host):
        with pytest.raises(InsufficientFunds):
            host.pay(A, B, 1_000_001)
        assert host.query_balance(A) == 1_000_000

    def test_unknown_sender_rejected(self, host):
        with pytest.raises(UnknownAccount):
            host.pay(C, A, 1)

    @pytest.mark.parametrize("amount", [-1, 1.5, True])
    def test_amount_must_be_non_negative_int(self, host, amount):
        with pytest.raises(LedgerError):
            host.pay(A, B, amount)

    def test_close_remainder_sweeps(self, host):
        host.transfer_native(A, B, 100_000, close_remainder_to=C)
        assert host.query_balance(A) == 0
        assert host.query_balance(B) == 100_000
        assert host.query_balance(C) == 900_000


class TestAssets:

    def test_creator_holds_supply(self, host):
        asset = host.create_asset(A, 10)
        assert asset == 1001
        assert host.asset_exists(asset)
        assert host.query_balance(A, asset) == 10

    def test_asset_ids_increase(self, host):
        first = host.create_asset(A, 1)
        second = host.create_asset(A, 1)
        assert second == first + 1

    def test_transfer_needs_registration(self, host):
        asset = host.create_asset(A, 10)
        with pytest.raises(NotRegistered):
            host.transfer_asset(asset, A, B, 1)
        host.fund(B, 1)
        host.register_holding(B, asset)
        host.transfer_asset(asset, A, B, 4)
        assert host.query_balance(B, asset) == 4

    def test_register_twice_rejected(self, host):
        asset = host.create_asset(A, 10)
        host.fund(B, 1)
        host.register_holding(B, asset)
        with pytest.raises(LedgerError):
            host.register_holding(B, asset)

    def test_register_unknown_asset(self, host):
        with pytest.raises(UnknownAccount):
            host.register_holding(A, 4242)

    def test_query_unregistered_asset(self, host):
        asset = host.create_asset(A, 10)
        with pytest.raises(NotRegistered):
            host.query_balance(B, asset)

    def test_close_to_deregisters_sender(self, host):
        asset = host.create_asset(A, 10)
        host.fund(B, 1)
        host.register_holding(B, asset)
        host.transfer_asset(asset, A, B, 3)
        host.fund(C, 1)
        host.register_holding(C, asset)

        host.transfer_asset(asset, B, C, 1, close_to=A)

        assert not host.is_registered(B, asset)
        assert host.query_balance(C, asset) == 1
        assert host.query_balance(A, asset) == 9


class TestAccounts:

    def test_open_account_once(self, host):
        host.open_account(C)
        with pytest.raises(LedgerError):
            host.open_account(C)

    def test_close_requires_zero_balance(self, host):
        with pytest.raises(LedgerError):
            host.close_account(A)
        host.transfer_native(A, B, 0, close_remainder_to=B)
        host.close_account(A)
        assert host.is_closed(A)

    def test_closed_account_cannot_receive(self, host):
        host.open_account(C)
        host.close_account(C)
        with pytest.raises(LedgerError):
            host.pay(A, C, 1)


class TestAtomic:

    def test_rollback_on_error(self, host):
        entries_before = len(host.entries)
        with pytest.raises(InsufficientFunds):
            with host.atomic():
                host.pay(A, B, 600_000)
                host.pay(A, B, 600_000)
        assert host.query_balance(A) == 1_000_000
        assert host.query_balance(B) == 0
        assert len(host.entries) == entries_before

    def test_rolled_back_transaction_is_forgotten(self, host):
        with pytest.raises(RuntimeError):
            with host.atomic():
                tx = host.pay(A, B, 1)
                raise RuntimeError("abort")
        assert host.get_transaction(tx.txid) is None

    def test_commit(self, host):
        with host.atomic():
            host.pay(A, B, 1)
            host.pay(A, C, 2)
        assert host.query_balance(B) == 1
        assert host.query_balance(C) == 2


class TestEntryLog:

    def test_chain_verifies(self, host):
        host.pay(A, B, 10)
        host.create_asset(A, 5)
        host.verify_or_raise()
        assert host.entries[0].previous_hash == HostLedger.GENESIS_HASH
        assert host.entries[1].previous_hash == host.entries[0].compute_hash()

    def test_tampered_entry_detected(self, host):
        host.pay(A, B, 10)
        host.entries[1].data["amount"] = 999
        with pytest.raises(LedgerError):
            host.verify_or_raise()

    def test_entries_by_type(self, host):
        host.pay(A, B, 10)
        host.pay(A, B, 10)
        assert len(host.get_entries_by_type(TxType.PAYMENT.value)) == 2
        stats = host.get_stats()
        assert stats["total_entries"] == 3
        assert stats["by_type"] == {"fund": 1, "pay": 2}

    def test_rollback_does_not_reach_disk(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = HostLedger(ledger_path=path)
        ledger.fund(A, 5)
        with pytest.raises(InsufficientFunds):
            with ledger.atomic():
                ledger.pay(A, B, 5)
                ledger.pay(A, B, 1)
        lines = path.read_text().splitlines()
        assert [json.loads(l)["entry_type"] for l in lines] == ["fund"]

    def test_tampered_file_refuses_to_load(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = HostLedger(ledger_path=path)
        ledger.fund(A, 5)
        ledger.pay(A, B, 2)

        lines = path.read_text().splitlines()
        entry = json.loads(lines[1])
        entry["data"]["amount"] = 5
        lines[1] = json.dumps(entry)
        path.write_text("\n".join(lines) + "\n")

        with pytest.raises(LedgerError):
            HostLedger(ledger_path=path)

    def test_negative_fee_rejected(self):
        with pytest.raises(LedgerError):
            HostLedger(registration_fee=-1)
