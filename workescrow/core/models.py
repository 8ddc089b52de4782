"""
workescrow/core/models.py

Escrow data model.

═══════════════════════════════════════════════════════════════════
CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1 — Signed calls
    bytes_signed = canonicalize(call.to_signing_dict())
    algorithm    = Ed25519, signer = call.sender (address == public key)
    encoding     = base64url, no padding

CONTRACT 2 — Condition latch
    ConditionState.PENDING → ConditionState.MET, never back.
    ConditionState.latch() is the only transition.

CONTRACT 3 — Authority
    PERMISSIONS maps every Operation to the roles allowed to invoke it.
    Admin appears next to boss for the attest/release operations and
    nowhere else. There is no shared "is authorized" shortcut.

CONTRACT 4 — Nonce
    exactly 32 hex characters, unique per escrow account.
═══════════════════════════════════════════════════════════════════
"""

import hashlib
import secrets
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from workescrow.core.canonical import canonicalize
from workescrow.core.crypto import Ed25519Identity, is_valid_address
from workescrow.core.exceptions import ValidationError
from workescrow.core.time import escrow_timestamp


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────

# "No admin" sentinel. No private key maps to it, so nobody can sign as it.
ZERO_ADDRESS = "0" * 64

_NONCE_HEX_LENGTH = 32


def new_escrow_id() -> str:
    """Fresh escrow identifier, chosen by the boss before Initialize."""
    return f"escrow-{uuid.uuid4()}"


def escrow_address(escrow_id: str) -> str:
    """Holding-account address on the host ledger. Nobody holds its key."""
    return hashlib.sha256(f"escrow-account:{escrow_id}".encode()).hexdigest()


def normalize_admin(admin: Optional[str]) -> str:
    """None and ZERO_ADDRESS both mean "no admin"."""
    return ZERO_ADDRESS if admin is None else admin


# ─────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────

class Operation(str, Enum):
    """Every state-changing entry point of an escrow account."""
    INITIALIZE             = "initialize"
    REGISTER_ASSET_HOLDING = "register_asset_holding"
    CONFIRM_DEPOSIT        = "confirm_deposit"
    SET_CONDITION_MET      = "set_condition_met"
    RELEASE_FUNDS          = "release_funds"
    RELEASE_ASSET          = "release_asset"
    CANCEL                 = "cancel"


class Role(str, Enum):
    BOSS   = "boss"
    ADMIN  = "admin"
    ANYONE = "anyone"


PERMISSIONS: Dict[Operation, FrozenSet[Role]] = {
    Operation.INITIALIZE:             frozenset({Role.ANYONE}),
    Operation.REGISTER_ASSET_HOLDING: frozenset({Role.ANYONE}),
    Operation.CONFIRM_DEPOSIT:        frozenset({Role.BOSS}),
    Operation.SET_CONDITION_MET:      frozenset({Role.BOSS, Role.ADMIN}),
    Operation.RELEASE_FUNDS:          frozenset({Role.BOSS, Role.ADMIN}),
    Operation.RELEASE_ASSET:          frozenset({Role.BOSS, Role.ADMIN}),
    Operation.CANCEL:                 frozenset({Role.BOSS}),
}


class ConditionState(str, Enum):
    """Monotone latch for the agreed release condition."""
    PENDING = "pending"
    MET     = "met"

    def latch(self) -> "ConditionState":
        return ConditionState.MET

    @property
    def is_met(self) -> bool:
        return self is ConditionState.MET


class EscrowStatus(str, Enum):
    CREATED          = "created"
    ASSET_REGISTERED = "asset_registered"
    RELEASED         = "released"
    CANCELLED        = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is EscrowStatus.CANCELLED


class AssetRelease(str, Enum):
    """How the escrowed asset reaches the worker."""
    EXPLICIT = "explicit"   # separate ReleaseAsset call
    BUNDLED  = "bundled"    # folded into ReleaseFunds


class TxType(str, Enum):
    FUND           = "fund"
    PAYMENT        = "pay"
    ASSET_CREATE   = "acfg"
    ASSET_OPT_IN   = "optin"
    ASSET_TRANSFER = "axfer"
    ACCOUNT_OPEN   = "open"
    ACCOUNT_CLOSE  = "close"


# ─────────────────────────────────────────────────────────────
# Host ledger transactions
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Transaction:
    """
    One confirmed host-ledger transaction.

    `amount` is in base units (native) or whole asset units (asset
    transfers). `close_to` receives whatever the sender had left.
    """
    txid:     str
    tx_type:  TxType
    sender:   Optional[str]
    receiver: Optional[str]
    amount:   int = 0
    asset_id: Optional[int] = None
    close_to: Optional[str] = None

    @property
    def is_payment(self) -> bool:
        return self.tx_type is TxType.PAYMENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txid":     self.txid,
            "tx_type":  self.tx_type.value,
            "sender":   self.sender,
            "receiver": self.receiver,
            "amount":   self.amount,
            "asset_id": self.asset_id,
            "close_to": self.close_to,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        return cls(
            txid=     data["txid"],
            tx_type=  TxType(data["tx_type"]),
            sender=   data.get("sender"),
            receiver= data.get("receiver"),
            amount=   data.get("amount", 0),
            asset_id= data.get("asset_id"),
            close_to= data.get("close_to"),
        )


# ─────────────────────────────────────────────────────────────
# SignedCall
# ─────────────────────────────────────────────────────────────

@dataclass
class SignedCall:
    """
    A request to run one escrow operation, signed by its sender.

    Build with SignedCall.create(identity, ...); never construct the
    signature by hand.
    """
    escrow_id: str
    method:    str
    args:      Dict[str, Any]
    sender:    str
    nonce:     str
    timestamp: str
    signature: Optional[str] = None

    @classmethod
    def create(
        cls,
        identity:  Ed25519Identity,
        escrow_id: str,
        method:    Operation,
        args:      Optional[Dict[str, Any]] = None,
    ) -> "SignedCall":
        call = cls(
            escrow_id= escrow_id,
            method=    Operation(method).value,
            args=      dict(args or {}),
            sender=    identity.address,
            nonce=     secrets.token_hex(_NONCE_HEX_LENGTH // 2),
            timestamp= escrow_timestamp(),
        )
        call.signature = identity.sign(call.canonical_bytes())
        return call

    def to_signing_dict(self) -> Dict[str, Any]:
        return {
            "args":      self.args,
            "escrow_id": self.escrow_id,
            "method":    self.method,
            "nonce":     self.nonce,
            "sender":    self.sender,
            "timestamp": self.timestamp,
        }

    def canonical_bytes(self) -> bytes:
        return canonicalize(self.to_signing_dict())

    def verify_signature(self) -> bool:
        """True iff the signature is valid for `sender` over the signed fields."""
        if not self.signature:
            return False
        return Ed25519Identity.verify_detached(
            self.canonical_bytes(), self.signature, self.sender
        )

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedCall":
        return cls(
            escrow_id= data["escrow_id"],
            method=    data["method"],
            args=      data.get("args", {}),
            sender=    data["sender"],
            nonce=     data["nonce"],
            timestamp= data["timestamp"],
            signature= data.get("signature"),
        )


# ─────────────────────────────────────────────────────────────
# EscrowState
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EscrowState:
    """
    Immutable snapshot of one escrow agreement.

    EscrowAccount swaps whole snapshots; replay rebuilds them from the
    journal. Amounts are base units.
    """
    escrow_id:          str
    address:            str
    boss:               str
    admin:              str
    worker:             str
    asset_id:           int
    quantity:           int
    advertised_payment: int
    payment_amount:     int = 0
    condition:          ConditionState = ConditionState.PENDING
    status:             EscrowStatus = EscrowStatus.CREATED
    used_nonces:        FrozenSet[str] = field(default_factory=frozenset)
    consumed_txids:     FrozenSet[str] = field(default_factory=frozenset)

    @property
    def has_admin(self) -> bool:
        return self.admin != ZERO_ADDRESS

    @property
    def condition_met(self) -> bool:
        return self.condition.is_met

    def roles_of(self, address: str) -> FrozenSet[Role]:
        roles = {Role.ANYONE}
        if address == self.boss:
            roles.add(Role.BOSS)
        if self.has_admin and address == self.admin:
            roles.add(Role.ADMIN)
        return frozenset(roles)

    def validate(self) -> None:
        """Raise ValidationError if the configuration fields are malformed."""
        if not is_valid_address(self.boss):
            raise ValidationError("boss must be a 64-char hex address", {"boss": self.boss})
        if not is_valid_address(self.worker):
            raise ValidationError("worker must be a 64-char hex address", {"worker": self.worker})
        if self.admin != ZERO_ADDRESS and not is_valid_address(self.admin):
            raise ValidationError("admin must be a 64-char hex address or ZERO_ADDRESS", {"admin": self.admin})
        for name in ("asset_id", "quantity"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError(f"{name} must be a positive integer", {name: value})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "escrow_id":          self.escrow_id,
            "address":            self.address,
            "boss":               self.boss,
            "admin":              self.admin,
            "worker":             self.worker,
            "asset_id":           self.asset_id,
            "quantity":           self.quantity,
            "advertised_payment": self.advertised_payment,
            "payment_amount":     self.payment_amount,
            "condition":          self.condition.value,
            "status":             self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscrowState":
        return cls(
            escrow_id=          data["escrow_id"],
            address=            data["address"],
            boss=               data["boss"],
            admin=              data["admin"],
            worker=             data["worker"],
            asset_id=           data["asset_id"],
            quantity=           data["quantity"],
            advertised_payment= data["advertised_payment"],
            payment_amount=     data.get("payment_amount", 0),
            condition=          ConditionState(data.get("condition", "pending")),
            status=             EscrowStatus(data.get("status", "created")),
        )
