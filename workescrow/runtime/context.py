"""
Runtime context for workescrow.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from workescrow.core.journal import EscrowJournal
from workescrow.core.units import Amount
from workescrow.escrow.account import EscrowAccount
from workescrow.escrow.party import EscrowParty
from workescrow.ledger.ledger import HostLedger
from workescrow.settings import EscrowSettings


@dataclass
class EscrowContext:
    """Settings, host ledger and journal shared by the escrows of one process."""

    settings: EscrowSettings
    ledger: HostLedger
    journal: EscrowJournal

    @classmethod
    def from_settings(cls, settings: EscrowSettings) -> "EscrowContext":
        return cls(
            settings=settings,
            ledger=HostLedger(
                registration_fee=settings.registration_fee,
                ledger_path=settings.ledger_path,
            ),
            journal=EscrowJournal(settings.journal_path),
        )

    @classmethod
    def from_config(cls, config_file: Optional[Path] = None) -> "EscrowContext":
        """
        Build a context from a YAML settings file, or defaults without one.
        Applies the file's log_level.
        """
        if config_file is None:
            settings = EscrowSettings()
        else:
            settings = EscrowSettings.from_yaml(Path(config_file))
        settings.configure_logging()
        return cls.from_settings(settings)

    def open_escrow(
        self,
        boss: EscrowParty,
        worker: str,
        asset_id: int,
        quantity: int,
        payment_amount: Amount = 0,
        admin: Optional[str] = None,
    ) -> EscrowAccount:
        return boss.open_escrow(
            self.ledger,
            worker=worker,
            asset_id=asset_id,
            quantity=quantity,
            payment_amount=payment_amount,
            admin=admin,
            journal=self.journal,
            settings=self.settings,
        )

    def __repr__(self) -> str:
        return (
            f"EscrowContext("
            f"ledger_entries={len(self.ledger.entries)}, "
            f"journal_events={len(self.journal.events)})"
        )
