"""Exception hierarchy for ledger payment operations."""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger payment errors."""
    pass


class ConfigurationError(LedgerError):
    """Raised for a disallowed account source or a missing/unknown network."""
    pass


class AccountUnavailable(LedgerError):
    """Raised when no signing account can be bound for the selected source."""
    pass


class DerivationError(LedgerError):
    """Raised when delegated account derivation fails."""
    pass


class SessionUnavailable(LedgerError):
    """Raised when no ledger session can be acquired for the account."""
    pass


class OperationFailure(LedgerError):
    """Raised when the ledger service rejects a deposit, withdrawal or query."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class LedgerTimeout(OperationFailure):
    """Raised when a ledger call does not answer within the configured timeout."""
    pass


class InvalidAmountError(OperationFailure):
    """Raised when an amount is missing, malformed or not positive."""
    pass


class InvalidAddressError(OperationFailure):
    """Raised when a recipient address is malformed."""
    pass


class WithdrawalAlreadyPending(LedgerError):
    """Raised when a withdrawal is requested while another is outstanding."""
    pass


class WithdrawalNotReady(LedgerError):
    """Raised when the service reports the security delay has not elapsed."""

    def __init__(self, message: str, time_remaining_seconds: int = 0):
        self.time_remaining_seconds = time_remaining_seconds
        super().__init__(message)


class OperationInFlight(LedgerError):
    """Raised when an action is submitted while the same action is still running."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"{action} is already in progress")


class StaleResultError(LedgerError):
    """Raised internally when a result belongs to a superseded account or session."""
    pass
