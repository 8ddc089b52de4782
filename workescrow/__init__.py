"""
workescrow/__init__.py

workescrow: two-party boss/worker escrow over a host ledger.

A boss opens an escrow naming a worker and an asset, registers the holding
account for that asset, deposits the asset and a payment reserve, attests
that the agreed condition is met, and releases. Every transition is a
signed call checked against an explicit permission table and recorded in
a hash-chained journal.
"""

__version__ = "0.1.0"

from workescrow.core.crypto import Ed25519Identity
from workescrow.core.exceptions import (
    AccountDestroyed,
    AlreadyRegistered,
    ConditionNotMet,
    EscrowError,
    InsufficientFee,
    InvalidPayment,
    LedgerError,
    Unauthorized,
    ValidationError,
)
from workescrow.core.journal import EscrowJournal
from workescrow.core.models import (
    PERMISSIONS,
    ZERO_ADDRESS,
    AssetRelease,
    ConditionState,
    EscrowState,
    EscrowStatus,
    Operation,
    SignedCall,
)
from workescrow.escrow import EscrowAccount, EscrowParty
from workescrow.ledger import HostLedger
from workescrow.runtime import EscrowContext
from workescrow.settings import EscrowSettings

__all__ = [
    # Core types
    "EscrowAccount",
    "EscrowParty",
    "EscrowState",
    "SignedCall",
    "Ed25519Identity",
    "HostLedger",
    "EscrowJournal",
    "EscrowContext",
    "EscrowSettings",
    # Enums / constants
    "Operation",
    "ConditionState",
    "EscrowStatus",
    "AssetRelease",
    "PERMISSIONS",
    "ZERO_ADDRESS",
    # Errors
    "EscrowError",
    "Unauthorized",
    "AlreadyRegistered",
    "InsufficientFee",
    "InvalidPayment",
    "ConditionNotMet",
    "AccountDestroyed",
    "ValidationError",
    "LedgerError",
]
