"""
State transitions of an escrow agreement, without guards or side effects.

apply_transition(state, call, effects) returns the next EscrowState for a
call that has ALREADY passed every guard. EscrowAccount uses it to compute
the state it commits; journal replay uses it to rebuild state from
recorded events. Keeping one function keeps the two in lockstep.

effects keys read here:
    advertised_payment   INITIALIZE       base units quoted at creation
    consumed_txid        REGISTER/DEPOSIT payment that may not be reused
    amount               CONFIRM_DEPOSIT  confirmed reserve
"""

from dataclasses import replace
from typing import Any, Dict, Optional

from workescrow.core.exceptions import ValidationError
from workescrow.core.models import (
    ConditionState,
    EscrowState,
    EscrowStatus,
    Operation,
    SignedCall,
    escrow_address,
    normalize_admin,
)


def apply_transition(
    state:   Optional[EscrowState],
    call:    SignedCall,
    effects: Dict[str, Any],
) -> EscrowState:
    operation = Operation(call.method)

    if operation is Operation.INITIALIZE:
        if state is not None:
            raise ValidationError("Escrow already initialized", {"escrow_id": call.escrow_id})
        return _initial_state(call, effects)

    if state is None:
        raise ValidationError(
            "Escrow must be initialized first",
            {"escrow_id": call.escrow_id, "method": call.method},
        )

    changes: Dict[str, Any] = {"used_nonces": state.used_nonces | {call.nonce}}

    consumed = effects.get("consumed_txid")
    if consumed:
        changes["consumed_txids"] = state.consumed_txids | {consumed}

    if operation is Operation.REGISTER_ASSET_HOLDING:
        if state.status is EscrowStatus.CREATED:
            changes["status"] = EscrowStatus.ASSET_REGISTERED

    elif operation is Operation.CONFIRM_DEPOSIT:
        # last write wins, never accumulates
        changes["payment_amount"] = effects["amount"]

    elif operation is Operation.SET_CONDITION_MET:
        changes["condition"] = state.condition.latch()

    elif operation is Operation.RELEASE_FUNDS:
        changes["payment_amount"] = 0
        changes["status"] = EscrowStatus.RELEASED

    elif operation is Operation.CANCEL:
        changes["payment_amount"] = 0
        changes["status"] = EscrowStatus.CANCELLED

    # RELEASE_ASSET moves ledger units only; nothing in the agreement changes.

    return replace(state, **changes)


def _initial_state(call: SignedCall, effects: Dict[str, Any]) -> EscrowState:
    args = call.args
    try:
        state = EscrowState(
            escrow_id=          call.escrow_id,
            address=            escrow_address(call.escrow_id),
            boss=               call.sender,
            admin=              normalize_admin(args.get("admin")),
            worker=             args["worker"],
            asset_id=           args["asset_id"],
            quantity=           args["quantity"],
            advertised_payment= effects.get("advertised_payment", 0),
            payment_amount=     0,
            condition=          ConditionState.PENDING,
            status=             EscrowStatus.CREATED,
            used_nonces=        frozenset({call.nonce}),
        )
    except KeyError as exc:
        raise ValidationError(f"Missing initialize argument: {exc.args[0]}") from exc
    state.validate()
    return state
