"""
workescrow exception hierarchy

All exceptions inherit from EscrowError for easy catching.

Guard failures (raised by EscrowAccount, never retried internally):
    Unauthorized        sender fails an identity or permission guard
    AlreadyRegistered   holding already registered for the asset
    InsufficientFee     registration payment below the ledger minimum
    InvalidPayment      payment not addressed to / not confirmed for the account
    ConditionNotMet     release attempted while the condition is pending
    AccountDestroyed    any call after Cancel
"""


class EscrowError(Exception):
    """Base exception for all workescrow errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(EscrowError):
    """Raised when input or model data validation fails"""
    pass


class ConfigError(EscrowError):
    """Raised when settings cannot be loaded or are invalid"""
    pass


class JournalError(EscrowError):
    """Raised when journal operations fail"""
    pass


# ── Guard failures ───────────────────────────────────────────

class GuardError(EscrowError):
    """Base class for escrow transition guard failures"""
    pass


class Unauthorized(GuardError):
    """Raised when the sender fails an identity guard"""
    pass


class AlreadyRegistered(GuardError):
    """Raised when the holding account is already registered for the asset"""
    pass


class InsufficientFee(GuardError):
    """Raised when the registration payment is below the required fee"""
    pass


class InvalidPayment(GuardError):
    """Raised when a payment is not a confirmed transfer to the escrow account"""
    pass


class ConditionNotMet(GuardError):
    """Raised when a release is attempted before the condition is set"""
    pass


class AccountDestroyed(GuardError):
    """Raised on any call after the escrow has been cancelled"""
    pass


# ── Host ledger ──────────────────────────────────────────────

class LedgerError(EscrowError):
    """Raised when host ledger operations fail"""
    pass


class UnknownAccount(LedgerError):
    """Raised when an account or asset is not known to the ledger"""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a transfer exceeds the sender's balance"""
    pass


class NotRegistered(LedgerError):
    """Raised when an asset transfer targets an account not registered for it"""
    pass
