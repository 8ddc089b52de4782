"""
Shared fixtures: a host ledger, four funded parties, a 10-unit asset
owned by the boss, and an escrow for 3 units of it.
"""

import pytest

from workescrow import (
    Ed25519Identity,
    EscrowJournal,
    EscrowParty,
    EscrowSettings,
    HostLedger,
)

STARTING_NATIVE = 10_000_000   # 10.0 at 6 decimals
REGISTRATION_FEE = 200_000     # 0.2
ASSET_SUPPLY = 10


def make_party() -> EscrowParty:
    return EscrowParty(Ed25519Identity.generate())


@pytest.fixture
def ledger():
    return HostLedger(registration_fee=REGISTRATION_FEE)


@pytest.fixture
def boss(ledger):
    party = make_party()
    ledger.fund(party.address, STARTING_NATIVE)
    return party


@pytest.fixture
def admin(ledger):
    party = make_party()
    ledger.fund(party.address, STARTING_NATIVE)
    return party


@pytest.fixture
def worker(ledger):
    party = make_party()
    ledger.fund(party.address, STARTING_NATIVE)
    return party


@pytest.fixture
def stranger(ledger):
    party = make_party()
    ledger.fund(party.address, STARTING_NATIVE)
    return party


@pytest.fixture
def asset_id(ledger, boss):
    return ledger.create_asset(boss.address, ASSET_SUPPLY)


@pytest.fixture
def journal():
    return EscrowJournal()


@pytest.fixture
def settings():
    return EscrowSettings(registration_fee=REGISTRATION_FEE)


@pytest.fixture
def account(ledger, boss, admin, worker, asset_id, journal, settings):
    """Escrow of 3 units with an admin delegate, advertised payment 2.0."""
    return boss.open_escrow(
        ledger,
        worker=worker.address,
        asset_id=asset_id,
        quantity=3,
        payment_amount=2.0,
        admin=admin.address,
        journal=journal,
        settings=settings,
    )


@pytest.fixture
def registered(ledger, boss, account):
    """The escrow account registered for its asset, fee paid by the boss."""
    fee = ledger.pay(boss.address, account.address, REGISTRATION_FEE)
    boss.register_asset_holding(account, fee.txid)
    return account


@pytest.fixture
def funded_escrow(ledger, boss, registered):
    """Registered escrow holding 3 asset units and a confirmed 2.0 reserve."""
    ledger.transfer_asset(registered.asset_id, boss.address, registered.address, 3)
    payment = ledger.pay(boss.address, registered.address, 2_000_000)
    boss.confirm_deposit(registered, payment.txid)
    return registered


@pytest.fixture
def deposit(ledger):
    """deposit(party, account, amount): pay into the escrow and confirm it."""
    def _deposit(party, account, amount):
        payment = ledger.pay(party.address, account.address, amount)
        return party.confirm_deposit(account, payment.txid)
    return _deposit
