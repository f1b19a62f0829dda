"""Ledger sessions scoped to one account.

A session is bound to an account address and a generation stamp when it is
acquired. It becomes invalid as soon as the account changes and is then
discarded, never reused.
"""

import logging
from typing import Awaitable, Optional, TypeVar

from ledgerpay.accounts.base import Account
from ledgerpay.ledger.client import LedgerClient, PaymentManager
from ledgerpay.ledger.errors import LedgerError, OperationFailure, SessionUnavailable
from ledgerpay.ledger.models import SecurityDelay

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerSession:
    """Address-scoped handle through which ledger operations are issued."""

    def __init__(self, account: Account, manager: PaymentManager, generation: int):
        self.account = account
        self.manager = manager
        self.generation = generation
        self.security_delay: Optional[SecurityDelay] = None
        self._valid = True

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def valid(self) -> bool:
        return self._valid

    async def call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a PaymentManager call, mapping unexpected errors to OperationFailure."""
        try:
            return await awaitable
        except LedgerError:
            raise
        except Exception as e:
            logger.error(f"Ledger {operation} failed for {self.address}: {e}")
            raise OperationFailure(str(e), operation) from e

    def invalidate(self) -> None:
        if self._valid:
            logger.debug(f"Session for {self.address} (generation {self.generation}) invalidated")
        self._valid = False

    async def ensure_security_delay(self) -> Optional[SecurityDelay]:
        """Fetch the security delay once; failures are logged and leave it unknown."""
        if self.security_delay is not None:
            return self.security_delay
        try:
            delay = await self.manager.get_withdraw_delay()
        except Exception as e:
            logger.warning(f"Failed to get withdrawal delay for {self.address}: {e}")
            return None
        # Fixed for the lifetime of the session
        if self.security_delay is None:
            self.security_delay = delay
            logger.info(f"Withdrawal delay for {self.address}: {delay.seconds}s ({delay.hours}h)")
        return self.security_delay

    def __repr__(self) -> str:
        state = "valid" if self._valid else "stale"
        return f"LedgerSession(address={self.address}, generation={self.generation}, {state})"


class LedgerSessionFactory:
    """Acquires LedgerSessions from a ledger client."""

    def __init__(self, client: Optional[LedgerClient]):
        self.client = client

    async def acquire(self, account: Account, generation: int) -> LedgerSession:
        """Acquire a session for the account.

        The security delay is fetched right away on a best-effort basis.

        Raises:
            SessionUnavailable: If no client is configured, the account has no
                address, or the service cannot be reached
        """
        if self.client is None:
            raise SessionUnavailable("No ledger client available")
        if account is None or not account.address:
            raise SessionUnavailable("Account has no resolvable address")

        logger.info(f"Acquiring ledger session for {account.address} via {self.client.name}")
        try:
            manager = await self.client.get_payment_manager(account)
        except SessionUnavailable:
            raise
        except Exception as e:
            logger.error(f"Failed to initialize payment manager: {e}")
            raise SessionUnavailable(f"Failed to initialize payment manager: {e}") from e

        session = LedgerSession(account, manager, generation)
        await session.ensure_security_delay()
        return session
