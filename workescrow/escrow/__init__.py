"""
workescrow escrow state machine

EscrowAccount holds one boss/worker agreement and guards every
transition; EscrowParty signs calls on behalf of one identity.
"""

from workescrow.escrow.account import EscrowAccount
from workescrow.escrow.party import EscrowParty
from workescrow.escrow.transitions import apply_transition

__all__ = ["EscrowAccount", "EscrowParty", "apply_transition"]
