"""
workescrow runtime - wires settings, host ledger and journal together.
"""

from workescrow.runtime.context import EscrowContext

__all__ = ["EscrowContext"]
