"""
workescrow host ledger

The balances, opt-in registrations and transaction log the escrow
account moves value through.
"""

from workescrow.ledger.backend import LedgerBackend
from workescrow.ledger.ledger import (
    DEFAULT_REGISTRATION_FEE,
    AssetInfo,
    HostLedger,
    LedgerEntry,
)

__all__ = [
    "LedgerBackend",
    "HostLedger",
    "LedgerEntry",
    "AssetInfo",
    "DEFAULT_REGISTRATION_FEE",
]
