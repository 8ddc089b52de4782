"""
EscrowAccount: the escrow state machine.

    Uninitialized → Created → AssetRegistered → (ConditionPending | ConditionMet)
        → Released | Cancelled → Destroyed

Every operation takes a SignedCall and checks, in this order:
    1. AccountDestroyed   the escrow was cancelled
    2. Unauthorized       call targets another escrow/method, bad signature,
                          reused nonce, or sender lacks the role in PERMISSIONS
    3. preconditions      AlreadyRegistered, InvalidPayment, InsufficientFee,
                          ConditionNotMet

Nothing mutates until every check has passed. Ledger movements, the journal
event and the state swap of one operation commit together inside one
ledger.atomic() group.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from workescrow.core.exceptions import (
    AccountDestroyed,
    AlreadyRegistered,
    ConditionNotMet,
    EscrowError,
    InsufficientFee,
    InvalidPayment,
    Unauthorized,
    ValidationError,
)
from workescrow.core.journal import EscrowEvent, EscrowJournal
from workescrow.core.models import (
    PERMISSIONS,
    AssetRelease,
    ConditionState,
    EscrowState,
    EscrowStatus,
    Operation,
    SignedCall,
    Transaction,
)
from workescrow.core.units import to_base_units
from workescrow.escrow.transitions import apply_transition
from workescrow.ledger.backend import LedgerBackend
from workescrow.settings import EscrowSettings

logger = logging.getLogger(__name__)


@contextmanager
def _committing(
    ledger:  LedgerBackend,
    journal: Optional[EscrowJournal],
) -> Iterator[List[EscrowEvent]]:
    """
    ledger.atomic() that also withdraws the journal events appended inside
    it when the group fails, including a failed flush on exit.
    """
    journaled: List[EscrowEvent] = []
    try:
        with ledger.atomic():
            yield journaled
    except Exception:
        for event in reversed(journaled):
            journal.discard(event)
        raise


class EscrowAccount:
    """
    One escrow agreement between a boss and a worker.

    Create with EscrowAccount.initialize(); the caller of Initialize
    becomes the boss.
    """

    def __init__(
        self,
        state:    EscrowState,
        ledger:   LedgerBackend,
        journal:  Optional[EscrowJournal] = None,
        settings: Optional[EscrowSettings] = None,
    ):
        self._state = state
        self.ledger = ledger
        self.journal = journal
        self.settings = settings or EscrowSettings()
        self._lock = threading.Lock()

    # ── Initialize ────────────────────────────────────────────

    @classmethod
    def initialize(
        cls,
        call:     SignedCall,
        ledger:   LedgerBackend,
        journal:  Optional[EscrowJournal] = None,
        settings: Optional[EscrowSettings] = None,
    ) -> "EscrowAccount":
        """
        Create the agreement and open its empty holding account.

        call.args: worker, admin (None for no admin), asset_id, quantity,
        payment_amount (advisory display amount). The advisory amount is
        recorded but the reserve starts at 0 until ConfirmDeposit.

        Raises:
            Unauthorized:    call is not a validly signed initialize call.
            ValidationError: malformed arguments or unknown asset.
        """
        settings = settings or EscrowSettings()
        if call.method != Operation.INITIALIZE.value:
            raise Unauthorized("Call does not target initialize", {"method": call.method})
        if not call.verify_signature():
            raise Unauthorized("Call signature does not match sender", {"sender": call.sender[:16]})

        effects: Dict[str, Any] = {
            "advertised_payment": to_base_units(
                call.args.get("payment_amount", 0), settings.base_unit_decimals
            ),
        }
        state = apply_transition(None, call, effects)
        if not ledger.asset_exists(state.asset_id):
            raise ValidationError("Unknown asset", {"asset_id": state.asset_id})

        with _committing(ledger, journal) as journaled:
            opened = ledger.open_account(state.address)
            effects["transactions"] = [opened.txid]
            if journal is not None:
                journaled.append(journal.append(call, effects, state))

        logger.info(
            f"Escrow {state.escrow_id} initialized: boss={state.boss[:16]} "
            f"worker={state.worker[:16]} asset={state.asset_id} quantity={state.quantity}"
        )
        return cls(state, ledger, journal, settings)

    # ── State ─────────────────────────────────────────────────

    @property
    def state(self) -> EscrowState:
        return self._state

    @property
    def escrow_id(self) -> str:
        return self._state.escrow_id

    @property
    def address(self) -> str:
        return self._state.address

    @property
    def boss(self) -> str:
        return self._state.boss

    @property
    def admin(self) -> str:
        return self._state.admin

    @property
    def worker(self) -> str:
        return self._state.worker

    @property
    def asset_id(self) -> int:
        return self._state.asset_id

    @property
    def quantity(self) -> int:
        return self._state.quantity

    @property
    def payment_amount(self) -> int:
        return self._state.payment_amount

    @property
    def condition(self) -> ConditionState:
        return self._state.condition

    @property
    def condition_met(self) -> bool:
        return self._state.condition_met

    @property
    def status(self) -> EscrowStatus:
        return self._state.status

    @property
    def is_destroyed(self) -> bool:
        return self._state.status.is_terminal

    def asset_balance(self) -> int:
        """Units of the escrowed asset the holding account currently has."""
        if not self.ledger.is_registered(self.address, self.asset_id):
            return 0
        return self.ledger.query_balance(self.address, self.asset_id)

    def native_balance(self) -> int:
        return self.ledger.query_balance(self.address)

    # ── Operations ────────────────────────────────────────────

    def register_asset_holding(self, call: SignedCall) -> Transaction:
        """
        Register the holding account for the escrowed asset.

        call.args: fee_txid, a confirmed payment into this account of at
        least the ledger's registration fee. Anyone may pay and call.
        """
        with self._operation(Operation.REGISTER_ASSET_HOLDING, call):
            if self.ledger.is_registered(self.address, self.asset_id):
                raise AlreadyRegistered(
                    "Holding already registered for asset",
                    {"escrow_id": self.escrow_id, "asset_id": self.asset_id},
                )
            fee = self._claim_payment(call.args.get("fee_txid"))
            if fee.amount < self.ledger.registration_fee:
                raise InsufficientFee(
                    "Registration fee below ledger minimum",
                    {"paid": fee.amount, "required": self.ledger.registration_fee},
                )

            txns = self._commit(
                call,
                {"consumed_txid": fee.txid, "fee": fee.amount},
                lambda: [self.ledger.register_holding(self.address, self.asset_id)],
            )
            return txns[0]

    def confirm_deposit(self, call: SignedCall) -> int:
        """
        Record the boss's payment reserve. Overwrites any earlier reserve.

        call.args: payment_txid, a confirmed payment into this account.
        Returns the new payment_amount.
        """
        with self._operation(Operation.CONFIRM_DEPOSIT, call):
            payment = self._claim_payment(call.args.get("payment_txid"))
            self._commit(call, {"consumed_txid": payment.txid, "amount": payment.amount})
            return self._state.payment_amount

    def set_condition_met(self, call: SignedCall) -> bool:
        """
        Latch the condition. Idempotent: once met, further calls change
        nothing and still return True.

        call.args: worker_address, recorded for audit only.
        """
        with self._operation(Operation.SET_CONDITION_MET, call):
            worker_address = call.args.get("worker_address")
            if self._state.condition_met:
                logger.debug(f"Escrow {self.escrow_id}: condition already met")
                return True
            if worker_address is not None and worker_address != self.worker:
                logger.warning(
                    f"Escrow {self.escrow_id}: condition attested for "
                    f"{str(worker_address)[:16]}, agreement worker is {self.worker[:16]}"
                )
            self._commit(call, {"worker_address": worker_address})
            return True

    def release_funds(self, call: SignedCall) -> List[Transaction]:
        """
        Pay the reserve to the worker and sweep the residual native balance
        back to the boss. In bundled mode the asset goes to the worker too.
        """
        with self._operation(Operation.RELEASE_FUNDS, call):
            self._require_condition()
            state = self._state
            bundled = self.settings.asset_release is AssetRelease.BUNDLED

            def movements() -> List[Transaction]:
                txns = [
                    self.ledger.transfer_native(
                        state.address,
                        state.worker,
                        state.payment_amount,
                        close_remainder_to=state.boss,
                    )
                ]
                if bundled and self.ledger.is_registered(state.address, state.asset_id):
                    txns.append(self._asset_to_worker())
                return txns

            return self._commit(call, {"amount": state.payment_amount}, movements)

    def release_asset(self, call: SignedCall) -> Transaction:
        """
        Transfer the holding account's whole asset balance to the worker.
        The worker must already be registered for the asset.
        """
        with self._operation(Operation.RELEASE_ASSET, call):
            self._require_condition()
            amount = self.ledger.query_balance(self.address, self.asset_id)
            txns = self._commit(call, {"amount": amount}, lambda: [self._asset_to_worker()])
            return txns[0]

    def cancel(self, call: SignedCall) -> List[Transaction]:
        """
        Return the reserve, residual native balance and remaining asset
        units to the boss, then close the holding account. Terminal.

        If the boss no longer holds the asset, remaining units stay in the
        holding account, which is then left open; native funds are still
        returned. An empty holding is dropped with the account.
        """
        with self._operation(Operation.CANCEL, call):
            state = self._state
            effects: Dict[str, Any] = {"amount": state.payment_amount}

            def movements() -> List[Transaction]:
                txns = [
                    self.ledger.transfer_native(
                        state.address,
                        state.boss,
                        state.payment_amount,
                        close_remainder_to=state.boss,
                    )
                ]
                stranded = 0
                if self.ledger.is_registered(state.address, state.asset_id):
                    if self.ledger.is_registered(state.boss, state.asset_id):
                        txns.append(
                            self.ledger.transfer_asset(
                                state.asset_id, state.address, state.boss, 0, close_to=state.boss,
                            )
                        )
                    else:
                        stranded = self.ledger.query_balance(state.address, state.asset_id)
                if stranded:
                    effects["stranded_asset"] = stranded
                    logger.warning(
                        f"Escrow {state.escrow_id}: boss is not registered for asset "
                        f"{state.asset_id}; {stranded} unit(s) stay in {state.address[:16]}"
                    )
                else:
                    txns.append(self.ledger.close_account(state.address))
                return txns

            return self._commit(call, effects, movements)

    # ── Guards ────────────────────────────────────────────────

    @contextmanager
    def _operation(self, operation: Operation, call: SignedCall) -> Iterator[None]:
        """Serialize the call, run the identity guards, log the outcome."""
        with self._lock:
            try:
                self._authenticate(operation, call)
                self._authorize(operation, call)
                yield
            except EscrowError as exc:
                logger.warning(
                    f"Escrow {self.escrow_id}: {operation.value} by "
                    f"{str(call.sender)[:16]} rejected: {exc}"
                )
                raise

    def _authenticate(self, operation: Operation, call: SignedCall) -> None:
        if self._state.status.is_terminal:
            raise AccountDestroyed("Escrow has been cancelled", {"escrow_id": self.escrow_id})
        if call.escrow_id != self.escrow_id or call.method != operation.value:
            raise Unauthorized(
                "Call does not target this operation",
                {"escrow_id": call.escrow_id, "method": call.method},
            )
        if not call.verify_signature():
            raise Unauthorized("Call signature does not match sender", {"sender": str(call.sender)[:16]})
        if call.nonce in self._state.used_nonces:
            raise Unauthorized("Call nonce already used", {"nonce": call.nonce})

    def _authorize(self, operation: Operation, call: SignedCall) -> None:
        allowed = PERMISSIONS[operation]
        if not allowed & self._state.roles_of(call.sender):
            raise Unauthorized(
                f"Sender may not call {operation.value}",
                {"sender": call.sender[:16], "allowed": sorted(r.value for r in allowed)},
            )

    def _require_condition(self) -> None:
        if not self._state.condition_met:
            raise ConditionNotMet("Condition has not been met", {"escrow_id": self.escrow_id})

    def _claim_payment(self, txid: Optional[str]) -> Transaction:
        """A confirmed, not yet consumed payment into this account."""
        tx = self.ledger.get_transaction(txid) if txid else None
        if tx is None or not tx.is_payment:
            raise InvalidPayment("Unknown payment transaction", {"txid": txid})
        if tx.receiver != self.address:
            raise InvalidPayment(
                "Payment is not addressed to the escrow account",
                {"txid": txid, "receiver": str(tx.receiver)[:16]},
            )
        if txid in self._state.consumed_txids:
            raise InvalidPayment("Payment already used", {"txid": txid})
        return tx

    # ── Commit ────────────────────────────────────────────────

    def _commit(
        self,
        call:      SignedCall,
        effects:   Dict[str, Any],
        movements: Optional[Callable[[], List[Transaction]]] = None,
    ) -> List[Transaction]:
        """
        Apply ledger movements, journal the event and swap in the next
        state, all or nothing.
        """
        with _committing(self.ledger, self.journal) as journaled:
            txns = movements() if movements else []
            effects = dict(effects, transactions=[t.txid for t in txns])
            next_state = apply_transition(self._state, call, effects)
            if self.journal is not None:
                journaled.append(self.journal.append(call, effects, next_state))

        self._state = next_state
        logger.info(
            f"Escrow {self.escrow_id}: {call.method} by {call.sender[:16]} committed "
            f"(status={next_state.status.value}, condition={next_state.condition.value}, "
            f"payment_amount={next_state.payment_amount})"
        )
        return txns

    def _asset_to_worker(self) -> Transaction:
        balance = self.ledger.query_balance(self.address, self.asset_id)
        return self.ledger.transfer_asset(self.asset_id, self.address, self.worker, balance)

    def __repr__(self) -> str:
        return (
            f"EscrowAccount(escrow_id={self.escrow_id!r}, "
            f"status={self.status.value}, condition={self.condition.value})"
        )
