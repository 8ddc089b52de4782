"""
The host-ledger capabilities an escrow account consumes.

EscrowAccount only talks to this protocol. HostLedger is the in-process
implementation; a client for a real chain would implement the same
methods.
"""

from typing import ContextManager, Optional, Protocol

from workescrow.core.models import Transaction


class LedgerBackend(Protocol):

    registration_fee: int

    def open_account(self, address: str) -> Transaction: ...

    def close_account(self, address: str) -> Transaction: ...

    def asset_exists(self, asset_id: int) -> bool: ...

    def register_holding(self, address: str, asset_id: int) -> Transaction: ...

    def is_registered(self, address: str, asset_id: int) -> bool: ...

    def transfer_native(
        self,
        sender: str,
        receiver: str,
        amount: int,
        close_remainder_to: Optional[str] = None,
    ) -> Transaction: ...

    def transfer_asset(
        self,
        asset_id: int,
        sender: str,
        receiver: str,
        amount: int,
        close_to: Optional[str] = None,
    ) -> Transaction: ...

    def query_balance(self, address: str, asset_id: Optional[int] = None) -> int: ...

    def get_transaction(self, txid: str) -> Optional[Transaction]: ...

    def atomic(self) -> ContextManager: ...
