"""One-shot ledger deposits.

Each call site (own balance, another address) admits one submission at a
time; a second submission while the first is running is rejected.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from ledgerpay.controller.session import LedgerSession
from ledgerpay.formatting import parse_amount
from ledgerpay.ledger.errors import InvalidAddressError, SessionUnavailable
from ledgerpay.ledger.models import OperationOutcome
from ledgerpay.utils.events import EventEmitter
from ledgerpay.utils.guards import ActionGuard

logger = logging.getLogger(__name__)

DEPOSIT_SELF = "deposit"
DEPOSIT_FOR_USER = "deposit-for-user"


@dataclass(frozen=True)
class DepositReceipt:
    """Completed deposit.

    Attributes:
        call_site: Which deposit action produced it
        beneficiary: Address whose ledger balance was credited
        amount: Deposited amount as a decimal string
        outcome: Outcome reported by the ledger
    """
    call_site: str
    beneficiary: str
    amount: str
    outcome: OperationOutcome


def _validate_address(address: Optional[str]) -> str:
    value = (address or "").strip()
    if not value.startswith("0x") or len(value) != 42:
        raise InvalidAddressError(f"Invalid recipient address: {address!r}", DEPOSIT_FOR_USER)
    return value


class DepositExecutor:
    """Performs deposits through the bound session."""

    def __init__(self):
        self.events = EventEmitter("deposit")
        self._guard = ActionGuard()
        self._session: Optional[LedgerSession] = None

    @property
    def in_flight(self) -> frozenset[str]:
        return self._guard.active

    def is_depositing(self, call_site: str = DEPOSIT_SELF) -> bool:
        return self._guard.is_active(call_site)

    def bind(self, session: Optional[LedgerSession]) -> None:
        self._session = session
        self._guard = ActionGuard()
        self.events.emit("changed")

    def _require_session(self) -> LedgerSession:
        if self._session is None or not self._session.valid:
            raise SessionUnavailable("No ledger session for deposits")
        return self._session

    @contextmanager
    def _running(self, call_site: str) -> Iterator[None]:
        try:
            with self._guard.hold(call_site):
                self.events.emit("changed")
                yield
        finally:
            self.events.emit("changed")

    async def deposit_self(self, amount: str) -> DepositReceipt:
        """Deposit into the bound account's own ledger balance.

        Raises:
            OperationInFlight: If a self-deposit is already running
            InvalidAmountError: If the amount is not a positive number
            OperationFailure: If the ledger rejects the deposit
        """
        session = self._require_session()
        value = str(parse_amount(amount))

        with self._running(DEPOSIT_SELF):
            outcome = await session.call("deposit", session.manager.deposit(value))

        logger.info(f"Deposited {value} for {session.address}: {outcome.transaction_reference}")
        return DepositReceipt(
            call_site=DEPOSIT_SELF, beneficiary=session.address, amount=value, outcome=outcome
        )

    async def deposit_for(self, target_address: str, amount: str) -> DepositReceipt:
        """Deposit into another address's ledger balance.

        Raises:
            OperationInFlight: If a deposit-for-user is already running
            InvalidAddressError: If the recipient address is malformed
            InvalidAmountError: If the amount is not a positive number
            OperationFailure: If the ledger rejects the deposit
        """
        session = self._require_session()
        target = _validate_address(target_address)
        value = str(parse_amount(amount))

        with self._running(DEPOSIT_FOR_USER):
            outcome = await session.call(
                "deposit_for_user", session.manager.deposit_for_user(target, value)
            )

        logger.info(f"Deposited {value} for {target} from {session.address}: {outcome.transaction_reference}")
        return DepositReceipt(
            call_site=DEPOSIT_FOR_USER, beneficiary=target, amount=value, outcome=outcome
        )
