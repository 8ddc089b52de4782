"""
EscrowParty: a boss, admin, worker or bystander acting on escrows.

Wraps an identity so callers never assemble SignedCalls by hand:

    boss    = EscrowParty(Ed25519Identity.generate())
    account = boss.open_escrow(ledger, worker=w.address, asset_id=a,
                               quantity=3, payment_amount="2.0")
    boss.set_condition_met(account, worker_address=w.address)
    boss.release_funds(account)
"""

from typing import Any, List, Optional

from workescrow.core.crypto import Ed25519Identity
from workescrow.core.journal import EscrowJournal
from workescrow.core.models import Operation, SignedCall, Transaction, new_escrow_id
from workescrow.core.units import Amount
from workescrow.escrow.account import EscrowAccount
from workescrow.ledger.backend import LedgerBackend
from workescrow.settings import EscrowSettings


class EscrowParty:

    def __init__(self, identity: Ed25519Identity):
        self.identity = identity

    @property
    def address(self) -> str:
        return self.identity.address

    def call(self, escrow_id: str, operation: Operation, **args: Any) -> SignedCall:
        return SignedCall.create(self.identity, escrow_id, operation, args)

    def open_escrow(
        self,
        ledger:         LedgerBackend,
        worker:         str,
        asset_id:       int,
        quantity:       int,
        payment_amount: Amount = 0,
        admin:          Optional[str] = None,
        journal:        Optional[EscrowJournal] = None,
        settings:       Optional[EscrowSettings] = None,
        escrow_id:      Optional[str] = None,
    ) -> EscrowAccount:
        """Initialize a new escrow with this party as boss."""
        if isinstance(payment_amount, (int, float)):
            advisory = payment_amount
        else:
            advisory = str(payment_amount)
        call = self.call(
            escrow_id or new_escrow_id(),
            Operation.INITIALIZE,
            worker=worker,
            admin=admin,
            asset_id=asset_id,
            quantity=quantity,
            payment_amount=advisory,
        )
        return EscrowAccount.initialize(call, ledger, journal=journal, settings=settings)

    def register_asset_holding(self, account: EscrowAccount, fee_txid: str) -> Transaction:
        return account.register_asset_holding(
            self.call(account.escrow_id, Operation.REGISTER_ASSET_HOLDING, fee_txid=fee_txid)
        )

    def confirm_deposit(self, account: EscrowAccount, payment_txid: str) -> int:
        return account.confirm_deposit(
            self.call(account.escrow_id, Operation.CONFIRM_DEPOSIT, payment_txid=payment_txid)
        )

    def set_condition_met(self, account: EscrowAccount, worker_address: Optional[str] = None) -> bool:
        return account.set_condition_met(
            self.call(account.escrow_id, Operation.SET_CONDITION_MET, worker_address=worker_address)
        )

    def release_funds(self, account: EscrowAccount) -> List[Transaction]:
        return account.release_funds(self.call(account.escrow_id, Operation.RELEASE_FUNDS))

    def release_asset(self, account: EscrowAccount) -> Transaction:
        return account.release_asset(self.call(account.escrow_id, Operation.RELEASE_ASSET))

    def cancel(self, account: EscrowAccount) -> List[Transaction]:
        return account.cancel(self.call(account.escrow_id, Operation.CANCEL))

    def __repr__(self) -> str:
        return f"EscrowParty(address={self.address[:16]}...)"
