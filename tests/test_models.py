"""
tests/test_models.py

Data model building blocks: amount conversion, the condition latch, the
permission table, signed calls and identities.
"""

from decimal import Decimal

import pytest

from workescrow import (
    PERMISSIONS,
    ZERO_ADDRESS,
    ConditionState,
    Ed25519Identity,
    EscrowStatus,
    Operation,
    SignedCall,
    ValidationError,
)
from workescrow.core.canonical import canonical_hash, canonicalize
from workescrow.core.models import EscrowState, Role, escrow_address, new_escrow_id
from workescrow.core.time import TIMESTAMP_RE, escrow_timestamp
from workescrow.core.units import from_base_units, to_base_units


class TestUnits:

    @pytest.mark.parametrize("amount,expected", [
        (2, 2_000_000),
        (2.0, 2_000_000),
        ("2.0", 2_000_000),
        ("0.000001", 1),
        (Decimal("1.5"), 1_500_000),
        (0, 0),
    ])
    def test_to_base_units(self, amount, expected):
        assert to_base_units(amount) == expected

    @pytest.mark.parametrize("amount", [-1, "0.0000001", "abc", True, float("nan"), float("inf")])
    def test_rejects(self, amount):
        with pytest.raises(ValidationError):
            to_base_units(amount)

    def test_custom_decimals(self):
        assert to_base_units("1.25", decimals=2) == 125
        with pytest.raises(ValidationError):
            to_base_units("1.255", decimals=2)

    def test_from_base_units(self):
        assert from_base_units(2_500_000) == Decimal("2.5")


class TestConditionLatch:

    def test_latch_is_one_way(self):
        assert ConditionState.PENDING.latch() is ConditionState.MET
        assert ConditionState.MET.latch() is ConditionState.MET
        assert not ConditionState.PENDING.is_met

    def test_only_cancel_is_terminal(self):
        assert [s for s in EscrowStatus if s.is_terminal] == [EscrowStatus.CANCELLED]


class TestPermissions:

    def test_every_operation_listed(self):
        assert set(PERMISSIONS) == set(Operation)

    def test_admin_scope(self):
        admin_ops = {op for op, roles in PERMISSIONS.items() if Role.ADMIN in roles}
        assert admin_ops == {
            Operation.SET_CONDITION_MET,
            Operation.RELEASE_FUNDS,
            Operation.RELEASE_ASSET,
        }

    def test_boss_only(self):
        assert PERMISSIONS[Operation.CANCEL] == frozenset({Role.BOSS})
        assert PERMISSIONS[Operation.CONFIRM_DEPOSIT] == frozenset({Role.BOSS})

    def test_roles_of(self):
        boss, admin, worker = (Ed25519Identity.generate().address for _ in range(3))
        state = EscrowState(
            escrow_id="escrow-x", address=escrow_address("escrow-x"),
            boss=boss, admin=admin, worker=worker,
            asset_id=1001, quantity=1, advertised_payment=0,
        )
        assert state.roles_of(boss) == {Role.BOSS, Role.ANYONE}
        assert state.roles_of(admin) == {Role.ADMIN, Role.ANYONE}
        assert state.roles_of(worker) == {Role.ANYONE}

    def test_zero_address_is_not_an_admin(self):
        boss = Ed25519Identity.generate().address
        state = EscrowState(
            escrow_id="escrow-x", address=escrow_address("escrow-x"),
            boss=boss, admin=ZERO_ADDRESS, worker=boss,
            asset_id=1001, quantity=1, advertised_payment=0,
        )
        assert state.roles_of(ZERO_ADDRESS) == {Role.ANYONE}


class TestSignedCall:

    @pytest.fixture
    def identity(self):
        return Ed25519Identity.generate()

    @pytest.fixture
    def call(self, identity):
        return SignedCall.create(identity, "escrow-1", Operation.CONFIRM_DEPOSIT, {"payment_txid": "tx-1"})

    def test_verifies(self, call, identity):
        assert call.sender == identity.address
        assert len(call.nonce) == 32
        assert TIMESTAMP_RE.match(call.timestamp)
        assert call.verify_signature()

    @pytest.mark.parametrize("field,value", [
        ("escrow_id", "escrow-2"),
        ("method", "cancel"),
        ("nonce", "0" * 32),
        ("timestamp", "2020-01-01T00:00:00.000Z"),
    ])
    def test_any_field_change_breaks_signature(self, call, field, value):
        setattr(call, field, value)
        assert not call.verify_signature()

    def test_args_change_breaks_signature(self, call):
        call.args["payment_txid"] = "tx-2"
        assert not call.verify_signature()

    def test_signature_from_other_key(self, call):
        other = Ed25519Identity.generate()
        call.signature = other.sign(call.canonical_bytes())
        assert not call.verify_signature()

    def test_garbage_signature(self, call):
        call.signature = "not-base64!"
        assert not call.verify_signature()

    def test_nonces_unique(self, identity):
        nonces = {
            SignedCall.create(identity, "escrow-1", Operation.CANCEL).nonce
            for _ in range(100)
        }
        assert len(nonces) == 100

    def test_unknown_method_rejected(self, identity):
        with pytest.raises(ValueError):
            SignedCall.create(identity, "escrow-1", "withdraw_everything")


class TestIdentity:

    def test_address_format(self):
        address = Ed25519Identity.generate().address
        assert len(address) == 64
        assert address == address.lower()

    def test_save_and_load(self, tmp_path):
        identity = Ed25519Identity.generate()
        path = tmp_path / "keys" / "boss.pem"
        identity.save(path)
        assert Ed25519Identity.from_file(path).address == identity.address

    def test_from_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Ed25519Identity.from_file(tmp_path / "none.pem")

    def test_seed_is_deterministic(self):
        seed = bytes(range(32))
        assert (
            Ed25519Identity.from_private_bytes(seed).address
            == Ed25519Identity.from_private_bytes(seed).address
        )
        with pytest.raises(ValueError):
            Ed25519Identity.from_private_bytes(b"short")


class TestHelpers:

    def test_canonical_is_order_independent(self):
        assert canonicalize({"b": 1, "a": 2}) == canonicalize({"a": 2, "b": 1})
        assert canonical_hash({"a": 1}) == canonical_hash({"a": 1})
        assert len(canonical_hash({"a": 1})) == 64

    def test_escrow_address(self):
        escrow_id = new_escrow_id()
        assert escrow_id.startswith("escrow-")
        assert escrow_address(escrow_id) == escrow_address(escrow_id)
        assert escrow_address(escrow_id) != escrow_address(new_escrow_id())

    def test_timestamp_format(self):
        assert TIMESTAMP_RE.match(escrow_timestamp())
