"""Interfaces to the remote ledger service.

Ledger flow:
1. Acquire a PaymentManager scoped to an account
2. Query balance / withdrawal state for an address
3. Deposit for self or another address
4. Request a withdrawal, wait out the security delay, execute it
"""

import logging
from abc import ABC, abstractmethod

from ledgerpay.accounts.base import Account
from ledgerpay.ledger.models import (
    Balance,
    OperationOutcome,
    SecurityDelay,
    WithdrawalEligibility,
    WithdrawalRequest,
)

logger = logging.getLogger(__name__)


class PaymentManager(ABC):
    """Ledger operations scoped to one account.

    Every call is safe to repeat but a read is not guaranteed to observe an
    immediately preceding write.
    """

    def __init__(self, account: Account):
        self.account = account

    @property
    def address(self) -> str:
        return self.account.address

    @abstractmethod
    async def get_balance(self, user_address: str) -> Balance:
        """Get total and available ledger balance for an address."""
        pass

    @abstractmethod
    async def deposit(self, amount: str) -> OperationOutcome:
        """Deposit into the account's own ledger balance."""
        pass

    @abstractmethod
    async def deposit_for_user(self, user_address: str, amount: str) -> OperationOutcome:
        """Deposit into another address's ledger balance."""
        pass

    @abstractmethod
    async def get_withdraw_delay(self) -> SecurityDelay:
        """Get the mandatory delay between request and execution."""
        pass

    @abstractmethod
    async def request_withdraw(self, amount: str) -> OperationOutcome:
        """Record a withdrawal request for the account."""
        pass

    @abstractmethod
    async def get_withdraw_request(self, user_address: str) -> WithdrawalRequest:
        """Get the outstanding withdrawal request for an address."""
        pass

    @abstractmethod
    async def can_execute_withdraw(self, user_address: str) -> WithdrawalEligibility:
        """Ask the service whether the pending withdrawal may execute now."""
        pass

    @abstractmethod
    async def withdraw(self, amount: str) -> OperationOutcome:
        """Execute a previously requested withdrawal."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(address={self.address})"


class LedgerClient(ABC):
    """Entry point to a ledger network."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name for logging."""
        pass

    @abstractmethod
    async def get_payment_manager(self, account: Account) -> PaymentManager:
        """Acquire a PaymentManager for the account.

        Raises:
            SessionUnavailable: If the service cannot be reached
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None
