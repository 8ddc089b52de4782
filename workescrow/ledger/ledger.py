"""
In-process host ledger.

Holds native and asset balances, per-asset opt-in registrations and a
hash-chained log of every applied transaction. When a ledger path is
given, the log is appended to a JSONL file and replayed on startup.

Ledger rules:
    - balances are non-negative integers
    - asset transfers need the receiver registered for the asset
    - close_remainder_to / close_to sweep what the sender has left
    - closed accounts can neither send nor receive
"""

import copy
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from workescrow.core.canonical import canonical_hash
from workescrow.core.exceptions import (
    InsufficientFunds,
    LedgerError,
    NotRegistered,
    UnknownAccount,
)
from workescrow.core.models import Transaction, TxType
from workescrow.core.time import escrow_timestamp

logger = logging.getLogger(__name__)

# 0.1 account minimum + 0.1 per asset holding, in base units.
DEFAULT_REGISTRATION_FEE = 200_000

_FIRST_ASSET_ID = 1001


@dataclass
class LedgerEntry:
    """A single applied transaction in the ledger log"""
    index: int
    previous_hash: str
    timestamp: str
    entry_type: str
    data: dict
    data_hash: str

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "entry_type": self.entry_type,
            "data": self.data,
            "data_hash": self.data_hash,
        }

    @staticmethod
    def from_dict(data: dict) -> "LedgerEntry":
        return LedgerEntry(
            index=data["index"],
            previous_hash=data["previous_hash"],
            timestamp=data["timestamp"],
            entry_type=data["entry_type"],
            data=data["data"],
            data_hash=data["data_hash"],
        )

    def compute_hash(self) -> str:
        """Hash of this entry, referenced by the next entry's previous_hash"""
        return canonical_hash({
            "index": self.index,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "entry_type": self.entry_type,
            "data_hash": self.data_hash,
        })


@dataclass
class AccountRecord:
    address: str
    native: int = 0
    # asset_id -> balance; a key is present iff the account is registered
    assets: Dict[int, int] = field(default_factory=dict)
    closed: bool = False


@dataclass(frozen=True)
class AssetInfo:
    asset_id: int
    creator: str
    total: int


class HostLedger:
    """
    Reference implementation of the host ledger an escrow account runs on.

    Thread-safe via an internal re-entrant lock. Use atomic() to group
    several transactions so they commit or roll back together.
    """

    GENESIS_HASH = "0" * 64

    def __init__(
        self,
        registration_fee: int = DEFAULT_REGISTRATION_FEE,
        ledger_path: Optional[Path] = None,
    ):
        if registration_fee < 0:
            raise LedgerError("registration_fee must be non-negative")
        self.registration_fee = registration_fee
        self.ledger_path = Path(ledger_path) if ledger_path else None

        self._lock = threading.RLock()
        self._depth = 0
        self._persisted = 0
        self._accounts: Dict[str, AccountRecord] = {}
        self._assets: Dict[int, AssetInfo] = {}
        self._transactions: Dict[str, Transaction] = {}
        self.entries: List[LedgerEntry] = []

        if self.ledger_path and self.ledger_path.exists():
            self._load()

    # ── Accounts ──────────────────────────────────────────────

    def open_account(self, address: str) -> Transaction:
        """Create an empty account. Fails if the address is already in use."""
        return self._submit(TxType.ACCOUNT_OPEN, sender=None, receiver=address)

    def close_account(self, address: str) -> Transaction:
        """Close an account whose balances have all been swept to zero."""
        return self._submit(TxType.ACCOUNT_CLOSE, sender=address, receiver=None)

    def fund(self, address: str, amount: int) -> Transaction:
        """Dispense native currency to an address (test networks only)."""
        return self._submit(TxType.FUND, sender=None, receiver=address, amount=amount)

    def is_closed(self, address: str) -> bool:
        with self._lock:
            record = self._accounts.get(address)
            return bool(record and record.closed)

    # ── Assets ────────────────────────────────────────────────

    def create_asset(self, creator: str, total: int) -> int:
        """Mint a new fungible asset; the creator holds the whole supply."""
        with self._lock:
            asset_id = max(self._assets, default=_FIRST_ASSET_ID - 1) + 1
            self._submit(
                TxType.ASSET_CREATE,
                sender=creator,
                receiver=creator,
                amount=total,
                asset_id=asset_id,
            )
            return asset_id

    def asset_exists(self, asset_id: int) -> bool:
        with self._lock:
            return asset_id in self._assets

    def register_holding(self, address: str, asset_id: int) -> Transaction:
        """Opt an account in to holding asset_id. One time per asset."""
        return self._submit(
            TxType.ASSET_OPT_IN,
            sender=address,
            receiver=address,
            asset_id=asset_id,
        )

    def is_registered(self, address: str, asset_id: int) -> bool:
        with self._lock:
            record = self._accounts.get(address)
            return bool(record and asset_id in record.assets)

    # ── Transfers ─────────────────────────────────────────────

    def pay(self, sender: str, receiver: str, amount: int) -> Transaction:
        """Plain native payment."""
        return self.transfer_native(sender, receiver, amount)

    def transfer_native(
        self,
        sender: str,
        receiver: str,
        amount: int,
        close_remainder_to: Optional[str] = None,
    ) -> Transaction:
        """Move native currency, optionally sweeping the remainder to a third party."""
        return self._submit(
            TxType.PAYMENT,
            sender=sender,
            receiver=receiver,
            amount=amount,
            close_to=close_remainder_to,
        )

    def transfer_asset(
        self,
        asset_id: int,
        sender: str,
        receiver: str,
        amount: int,
        close_to: Optional[str] = None,
    ) -> Transaction:
        """
        Move asset units. With close_to, the sender's remaining units go to
        close_to and the sender's holding is deregistered.
        """
        return self._submit(
            TxType.ASSET_TRANSFER,
            sender=sender,
            receiver=receiver,
            amount=amount,
            asset_id=asset_id,
            close_to=close_to,
        )

    # ── Queries ───────────────────────────────────────────────

    def query_balance(self, address: str, asset_id: Optional[int] = None) -> int:
        """
        Native balance, or the asset balance when asset_id is given.

        Raises NotRegistered when asking for an asset the account
        does not hold.
        """
        with self._lock:
            record = self._accounts.get(address)
            if asset_id is None:
                return record.native if record else 0
            if record is None or asset_id not in record.assets:
                raise NotRegistered(
                    "Account is not registered for asset",
                    {"address": address[:16], "asset_id": asset_id},
                )
            return record.assets[asset_id]

    def get_transaction(self, txid: str) -> Optional[Transaction]:
        with self._lock:
            return self._transactions.get(txid)

    def get_entries_by_type(self, entry_type: str) -> List[LedgerEntry]:
        with self._lock:
            return [e for e in self.entries if e.entry_type == entry_type]

    def get_stats(self) -> dict:
        with self._lock:
            type_counts: Dict[str, int] = {}
            for entry in self.entries:
                type_counts[entry.entry_type] = type_counts.get(entry.entry_type, 0) + 1
            return {
                "total_entries": len(self.entries),
                "by_type": type_counts,
                "accounts": len(self._accounts),
                "assets": len(self._assets),
            }

    # ── Atomic groups ─────────────────────────────────────────

    @contextmanager
    def atomic(self) -> Iterator["HostLedger"]:
        """
        Run a group of transactions all-or-nothing.

        Any exception inside the block restores balances, registrations
        and the log to their state at entry, then propagates. Nested
        groups commit with the outermost one.
        """
        with self._lock:
            snapshot = self._snapshot()
            self._depth += 1
            try:
                yield self
                if self._depth == 1:
                    self._flush()
            except Exception:
                self._restore(snapshot)
                raise
            finally:
                self._depth -= 1

    # ── Integrity ─────────────────────────────────────────────

    def verify_or_raise(self) -> None:
        """Verify the entry chain and data hashes or raise LedgerError"""
        with self._lock:
            previous_hash = self.GENESIS_HASH
            for i, entry in enumerate(self.entries):
                if entry.index != i:
                    raise LedgerError(f"Index gap at position {i}: got {entry.index}")
                if entry.previous_hash != previous_hash:
                    raise LedgerError(
                        f"Chain break at index {i}: "
                        f"expected {previous_hash}, got {entry.previous_hash}"
                    )
                if canonical_hash(entry.data) != entry.data_hash:
                    raise LedgerError(f"Data hash mismatch at index {i}")
                previous_hash = entry.compute_hash()

    # ── Internal ──────────────────────────────────────────────

    def _submit(
        self,
        tx_type: TxType,
        sender: Optional[str],
        receiver: Optional[str],
        amount: int = 0,
        asset_id: Optional[int] = None,
        close_to: Optional[str] = None,
    ) -> Transaction:
        tx = Transaction(
            txid=f"tx-{uuid.uuid4().hex}",
            tx_type=tx_type,
            sender=sender,
            receiver=receiver,
            amount=amount,
            asset_id=asset_id,
            close_to=close_to,
        )
        with self.atomic():
            self._apply(tx)
            self._transactions[tx.txid] = tx
            self._append_entry(tx)
        logger.debug(f"Applied {tx_type.value} {tx.txid} amount={amount}")
        return tx

    def _apply(self, tx: Transaction) -> None:
        """Validate then apply one transaction. Raises before any mutation."""
        if isinstance(tx.amount, bool) or not isinstance(tx.amount, int) or tx.amount < 0:
            raise LedgerError("Amount must be a non-negative integer", {"amount": tx.amount})

        handler = {
            TxType.ACCOUNT_OPEN:   self._apply_open,
            TxType.ACCOUNT_CLOSE:  self._apply_close,
            TxType.FUND:           self._apply_fund,
            TxType.ASSET_CREATE:   self._apply_asset_create,
            TxType.ASSET_OPT_IN:   self._apply_opt_in,
            TxType.PAYMENT:        self._apply_payment,
            TxType.ASSET_TRANSFER: self._apply_asset_transfer,
        }[tx.tx_type]
        handler(tx)

    def _apply_open(self, tx: Transaction) -> None:
        if tx.receiver in self._accounts:
            raise LedgerError("Address already in use", {"address": tx.receiver[:16]})
        self._accounts[tx.receiver] = AccountRecord(address=tx.receiver)

    def _apply_close(self, tx: Transaction) -> None:
        record = self._sending_account(tx.sender)
        if record.native or any(record.assets.values()):
            raise LedgerError(
                "Cannot close an account with a non-zero balance",
                {"address": tx.sender[:16], "native": record.native},
            )
        record.assets.clear()
        record.closed = True

    def _apply_fund(self, tx: Transaction) -> None:
        self._receiving_account(tx.receiver).native += tx.amount

    def _apply_asset_create(self, tx: Transaction) -> None:
        if tx.asset_id in self._assets:
            raise LedgerError("Asset id already in use", {"asset_id": tx.asset_id})
        if tx.amount <= 0:
            raise LedgerError("Asset total must be positive", {"total": tx.amount})
        creator = self._receiving_account(tx.sender)
        self._assets[tx.asset_id] = AssetInfo(tx.asset_id, tx.sender, tx.amount)
        creator.assets[tx.asset_id] = tx.amount

    def _apply_opt_in(self, tx: Transaction) -> None:
        if tx.asset_id not in self._assets:
            raise UnknownAccount("Unknown asset", {"asset_id": tx.asset_id})
        record = self._sending_account(tx.sender)
        if tx.asset_id in record.assets:
            raise LedgerError(
                "Account already registered for asset",
                {"address": tx.sender[:16], "asset_id": tx.asset_id},
            )
        record.assets[tx.asset_id] = 0

    def _apply_payment(self, tx: Transaction) -> None:
        sender = self._sending_account(tx.sender)
        receiver = self._receiving_account(tx.receiver)
        close_to = self._receiving_account(tx.close_to) if tx.close_to else None
        if sender.native < tx.amount:
            raise InsufficientFunds(
                "Native balance too low",
                {"address": tx.sender[:16], "balance": sender.native, "amount": tx.amount},
            )
        sender.native -= tx.amount
        receiver.native += tx.amount
        if close_to is not None:
            close_to.native += sender.native
            sender.native = 0

    def _apply_asset_transfer(self, tx: Transaction) -> None:
        if tx.asset_id not in self._assets:
            raise UnknownAccount("Unknown asset", {"asset_id": tx.asset_id})
        sender = self._sending_account(tx.sender)
        if tx.asset_id not in sender.assets:
            raise NotRegistered(
                "Sender is not registered for asset",
                {"address": tx.sender[:16], "asset_id": tx.asset_id},
            )
        receiver = self._registered_receiver(tx.receiver, tx.asset_id)
        close_to = self._registered_receiver(tx.close_to, tx.asset_id) if tx.close_to else None
        if sender.assets[tx.asset_id] < tx.amount:
            raise InsufficientFunds(
                "Asset balance too low",
                {
                    "address": tx.sender[:16],
                    "asset_id": tx.asset_id,
                    "balance": sender.assets[tx.asset_id],
                    "amount": tx.amount,
                },
            )
        sender.assets[tx.asset_id] -= tx.amount
        receiver.assets[tx.asset_id] += tx.amount
        if close_to is not None:
            close_to.assets[tx.asset_id] += sender.assets.pop(tx.asset_id)

    def _sending_account(self, address: Optional[str]) -> AccountRecord:
        record = self._accounts.get(address)
        if record is None:
            raise UnknownAccount("Unknown account", {"address": str(address)[:16]})
        if record.closed:
            raise LedgerError("Account is closed", {"address": address[:16]})
        return record

    def _receiving_account(self, address: Optional[str]) -> AccountRecord:
        """Native receivers spring into existence on first credit."""
        if not address:
            raise LedgerError("Receiver address required")
        record = self._accounts.setdefault(address, AccountRecord(address=address))
        if record.closed:
            raise LedgerError("Account is closed", {"address": address[:16]})
        return record

    def _registered_receiver(self, address: str, asset_id: int) -> AccountRecord:
        record = self._accounts.get(address)
        if record is None or asset_id not in record.assets:
            raise NotRegistered(
                "Receiver is not registered for asset",
                {"address": str(address)[:16], "asset_id": asset_id},
            )
        if record.closed:
            raise LedgerError("Account is closed", {"address": address[:16]})
        return record

    def _append_entry(self, tx: Transaction) -> None:
        data = tx.to_dict()
        previous_hash = self.entries[-1].compute_hash() if self.entries else self.GENESIS_HASH
        self.entries.append(LedgerEntry(
            index=len(self.entries),
            previous_hash=previous_hash,
            timestamp=escrow_timestamp(),
            entry_type=tx.tx_type.value,
            data=data,
            data_hash=canonical_hash(data),
        ))

    def _snapshot(self) -> tuple:
        return (
            copy.deepcopy(self._accounts),
            dict(self._assets),
            dict(self._transactions),
            list(self.entries),
            self._persisted,
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self._accounts,
            self._assets,
            self._transactions,
            self.entries,
            self._persisted,
        ) = snapshot

    def _flush(self) -> None:
        """Append unpersisted entries to disk as one write."""
        if self.ledger_path is None:
            self._persisted = len(self.entries)
            return
        pending = self.entries[self._persisted:]
        if not pending:
            return
        try:
            self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
            lines = "".join(json.dumps(e.to_dict()) + "\n" for e in pending)
            with open(self.ledger_path, "a", encoding="utf-8") as f:
                f.write(lines)
                f.flush()
        except OSError as e:
            raise LedgerError(f"Failed to write ledger entries: {e}") from e
        self._persisted = len(self.entries)

    def _load(self) -> None:
        """Load the log from disk, verify it, and replay it into balances"""
        entries: List[LedgerEntry] = []
        try:
            with open(self.ledger_path, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(LedgerEntry.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError) as e:
                        raise LedgerError(f"Invalid ledger entry at line {line_num}: {e}") from e
        except OSError as e:
            raise LedgerError(f"Failed to load ledger: {e}") from e

        self.entries = entries
        self.verify_or_raise()

        for entry in entries:
            tx = Transaction.from_dict(entry.data)
            self._apply(tx)
            self._transactions[tx.txid] = tx
        self._persisted = len(entries)
        logger.info(f"Replayed {len(entries)} ledger entries from {self.ledger_path}")
