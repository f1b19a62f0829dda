"""Simulated ledger for dry-run mode and tests.

Keeps balances and withdrawal requests in memory and enforces the same
rules as the real service: one pending withdrawal per address, withdrawals
executable only after the security delay, available <= total.
"""

import asyncio
import hashlib
import logging
import secrets
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from eth_account import Account as EthAccount

from ledgerpay.accounts.base import Account, AccountSource, DelegatedAccountProvider
from ledgerpay.formatting import format_base_units, parse_amount, to_base_units
from ledgerpay.ledger.client import LedgerClient, PaymentManager
from ledgerpay.ledger.errors import DerivationError, OperationFailure, SessionUnavailable
from ledgerpay.ledger.models import (
    Balance,
    BalanceAmount,
    OperationOutcome,
    SecurityDelay,
    WithdrawalEligibility,
    WithdrawalRequest,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _PendingWithdrawal:
    amount: int
    requested_at: datetime


class SimulatedLedger:
    """In-memory ledger state shared by all simulated payment managers."""

    def __init__(
        self,
        delay_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
        latency: float = 0.0,
    ):
        self.delay_seconds = delay_seconds
        self.clock = clock
        self.latency = latency
        self.available = True
        self.balances: dict[str, int] = {}
        self.pending: dict[str, _PendingWithdrawal] = {}
        self.calls: Counter = Counter()
        self.failures: dict[str, Exception] = {}

    def fail_next(self, method: str, error: Exception) -> None:
        """Make the next call to `method` raise `error`."""
        self.failures[method] = error

    def credit(self, address: str, amount: str) -> None:
        """Seed a balance directly."""
        key = address.lower()
        self.balances[key] = self.balances.get(key, 0) + to_base_units(parse_amount(amount))

    async def _enter(self, method: str) -> None:
        self.calls[method] += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        error = self.failures.pop(method, None)
        if error is not None:
            raise error

    def balance_of(self, address: str) -> Balance:
        key = address.lower()
        total = self.balances.get(key, 0)
        pending = self.pending.get(key)
        available = total - (pending.amount if pending else 0)
        return Balance(
            total_balance=BalanceAmount(display=format_base_units(total), raw=total),
            available_balance=BalanceAmount(display=format_base_units(available), raw=available),
        )


def _tx_outcome(kind: str, **extra: Any) -> OperationOutcome:
    return OperationOutcome(transaction_reference=f"0x{secrets.token_hex(32)}", kind=kind, **extra)


class SimulatedPaymentManager(PaymentManager):
    """PaymentManager over a SimulatedLedger."""

    def __init__(self, ledger: SimulatedLedger, account: Account):
        super().__init__(account)
        self.ledger = ledger

    @property
    def _key(self) -> str:
        return self.address.lower()

    async def get_balance(self, user_address: str) -> Balance:
        await self.ledger._enter("get_balance")
        return self.ledger.balance_of(user_address)

    async def deposit(self, amount: str) -> OperationOutcome:
        await self.ledger._enter("deposit")
        raw = to_base_units(parse_amount(amount))
        self.ledger.balances[self._key] = self.ledger.balances.get(self._key, 0) + raw
        logger.info(f"[SIMULATED] Deposit: {amount} to {self.address}")
        return _tx_outcome("deposit", amount=amount)

    async def deposit_for_user(self, user_address: str, amount: str) -> OperationOutcome:
        await self.ledger._enter("deposit_for_user")
        raw = to_base_units(parse_amount(amount))
        key = user_address.lower()
        self.ledger.balances[key] = self.ledger.balances.get(key, 0) + raw
        logger.info(f"[SIMULATED] Deposit for user: {amount} to {user_address}")
        return _tx_outcome("deposit_for_user", amount=amount, user_address=user_address)

    async def get_withdraw_delay(self) -> SecurityDelay:
        await self.ledger._enter("get_withdraw_delay")
        return SecurityDelay.from_seconds(self.ledger.delay_seconds)

    async def request_withdraw(self, amount: str) -> OperationOutcome:
        await self.ledger._enter("request_withdraw")
        if self._key in self.ledger.pending:
            raise OperationFailure("A withdrawal request is already pending", "request_withdraw")

        raw = to_base_units(parse_amount(amount))
        available = self.ledger.balance_of(self.address).available_balance.raw
        if raw > available:
            raise OperationFailure("Insufficient available balance", "request_withdraw")

        self.ledger.pending[self._key] = _PendingWithdrawal(
            amount=raw, requested_at=self.ledger.clock()
        )
        logger.info(f"[SIMULATED] Withdrawal requested: {amount} by {self.address}")
        return _tx_outcome("request_withdraw", amount=amount)

    async def get_withdraw_request(self, user_address: str) -> WithdrawalRequest:
        await self.ledger._enter("get_withdraw_request")
        pending = self.ledger.pending.get(user_address.lower())
        if pending is None:
            return WithdrawalRequest(amount="0", requested_at=None, pending=False)
        return WithdrawalRequest(
            amount=format_base_units(pending.amount),
            requested_at=pending.requested_at,
            pending=True,
        )

    def _remaining(self, key: str) -> Optional[timedelta]:
        pending = self.ledger.pending.get(key)
        if pending is None:
            return None
        ready_at = pending.requested_at + timedelta(seconds=self.ledger.delay_seconds)
        return max(timedelta(0), ready_at - self.ledger.clock())

    async def can_execute_withdraw(self, user_address: str) -> WithdrawalEligibility:
        await self.ledger._enter("can_execute_withdraw")
        remaining = self._remaining(user_address.lower())
        if remaining is None:
            return WithdrawalEligibility(can_execute=False, time_remaining=timedelta(0))
        return WithdrawalEligibility(can_execute=remaining <= timedelta(0), time_remaining=remaining)

    async def withdraw(self, amount: str) -> OperationOutcome:
        await self.ledger._enter("withdraw")
        pending = self.ledger.pending.get(self._key)
        if pending is None:
            raise OperationFailure("No pending withdrawal request", "withdraw")
        remaining = self._remaining(self._key)
        if remaining and remaining > timedelta(0):
            raise OperationFailure("Security delay has not elapsed", "withdraw")

        raw = to_base_units(parse_amount(amount))
        if raw > pending.amount:
            raise OperationFailure("Amount exceeds requested withdrawal", "withdraw")

        self.ledger.balances[self._key] = self.ledger.balances.get(self._key, 0) - raw
        del self.ledger.pending[self._key]
        logger.info(f"[SIMULATED] Withdrawal executed: {amount} by {self.address}")
        return _tx_outcome("withdraw", amount=amount)


class SimulatedLedgerClient(LedgerClient):
    """LedgerClient backed by a SimulatedLedger."""

    def __init__(self, ledger: Optional[SimulatedLedger] = None):
        self.ledger = ledger or SimulatedLedger()

    @property
    def name(self) -> str:
        return "simulated"

    async def get_payment_manager(self, account: Account) -> PaymentManager:
        await self.ledger._enter("get_payment_manager")
        if not self.ledger.available:
            raise SessionUnavailable("Simulated ledger is offline")
        return SimulatedPaymentManager(self.ledger, account)


class SimulatedDelegatedProvider(DelegatedAccountProvider):
    """Derives a deterministic local account from the public key id."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.calls = 0

    async def derive_account(self, public_key_id: str, credential: Any) -> Account:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if not public_key_id:
            raise DerivationError("Missing public key")
        seed = hashlib.sha256(public_key_id.encode()).hexdigest()
        local = EthAccount.from_key(f"0x{seed}")
        return Account(address=local.address, source=AccountSource.DELEGATED, signer=local)
