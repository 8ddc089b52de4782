"""
workescrow: Basic Usage Example

Demonstrates:
- Opening an escrow on an in-process host ledger
- Registering the holding account and depositing asset + payment
- Admin attestation and release
- Journal verification by replay
"""

from workescrow import EscrowContext, EscrowParty, EscrowSettings, Ed25519Identity
from workescrow.core.replay import ReplayEngine


def main():
    """Basic workescrow usage."""

    print("=" * 60)
    print("workescrow: Basic Usage Example")
    print("=" * 60)
    print()

    # 1. Runtime: settings, ledger, journal
    print("1. Creating runtime context...")
    ctx = EscrowContext.from_settings(EscrowSettings())
    boss = EscrowParty(Ed25519Identity.generate())
    admin = EscrowParty(Ed25519Identity.generate())
    worker = EscrowParty(Ed25519Identity.generate())
    for party in (boss, admin, worker):
        ctx.ledger.fund(party.address, 10_000_000)
    asset_id = ctx.ledger.create_asset(boss.address, 10)
    print(f"   asset {asset_id} minted to boss")
    print()

    # 2. Open the escrow
    print("2. Opening escrow for 3 units, payment 2.0...")
    account = ctx.open_escrow(
        boss,
        worker=worker.address,
        asset_id=asset_id,
        quantity=3,
        payment_amount="2.0",
        admin=admin.address,
    )
    print(f"   {account}")
    print()

    # 3. Register and deposit
    print("3. Registering holding and depositing...")
    fee = ctx.ledger.pay(boss.address, account.address, ctx.ledger.registration_fee)
    boss.register_asset_holding(account, fee.txid)
    ctx.ledger.transfer_asset(asset_id, boss.address, account.address, 3)
    payment = ctx.ledger.pay(boss.address, account.address, 2_000_000)
    boss.confirm_deposit(account, payment.txid)
    print(f"   reserve: {account.payment_amount}, asset held: {account.asset_balance()}")
    print()

    # 4. Attest and release
    print("4. Admin attests and releases...")
    admin.set_condition_met(account, worker_address=worker.address)
    admin.release_funds(account)
    ctx.ledger.register_holding(worker.address, asset_id)
    admin.release_asset(account)
    print(f"   worker native: {ctx.ledger.query_balance(worker.address)}")
    print(f"   worker asset:  {ctx.ledger.query_balance(worker.address, asset_id)}")
    print()

    # 5. Replay the journal
    print("5. Verifying journal...")
    engine = ReplayEngine()
    engine.load_events(ctx.journal.events)
    summary = engine.verify()
    print(f"   events: {summary.total_events}, valid: {summary.is_valid}")
    print()


if __name__ == "__main__":
    main()
