"""Two-phase withdrawal protocol.

Withdrawal flow:
1. User requests a withdrawal (IDLE -> PENDING)
2. The ledger enforces a security delay from the request time
3. Eligibility is checked with the service (PENDING -> EXECUTABLE)
4. User executes; the service is asked again right before (EXECUTABLE -> IDLE)

The countdown derived from requested_at + delay is advisory display only.
The authoritative answer is always the service's can_execute_withdraw.
State is per account: binding a new session resets the machine to IDLE.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterator, Optional

from ledgerpay.controller.session import LedgerSession
from ledgerpay.formatting import format_time_remaining, parse_amount
from ledgerpay.ledger.errors import (
    SessionUnavailable,
    StaleResultError,
    WithdrawalAlreadyPending,
    WithdrawalNotReady,
)
from ledgerpay.ledger.models import (
    OperationOutcome,
    SecurityDelay,
    WithdrawalEligibility,
    WithdrawalRequest,
)
from ledgerpay.utils.events import EventEmitter
from ledgerpay.utils.generation import Generation
from ledgerpay.utils.guards import ActionGuard

logger = logging.getLogger(__name__)

REQUEST_ACTION = "request-withdraw"
CHECK_ACTION = "check-withdraw"
STATUS_ACTION = "load-withdraw-status"
EXECUTE_ACTION = "execute-withdraw"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WithdrawalPhase(str, Enum):
    """Withdrawal state for the bound account."""
    IDLE = "idle"               # No pending request
    PENDING = "pending"         # Requested, security delay not known to be over
    EXECUTABLE = "executable"   # Service reported the request can execute


class WithdrawalCoordinator:
    """Drives request -> delay -> execute for one account at a time."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self.clock = clock
        self.events = EventEmitter("withdrawal")
        self._generation = Generation("withdrawal session")
        self._guard = ActionGuard()
        self._session: Optional[LedgerSession] = None
        self._request: Optional[WithdrawalRequest] = None
        self._eligibility: Optional[WithdrawalEligibility] = None

    # ======================
    # State
    # ======================

    @property
    def request(self) -> Optional[WithdrawalRequest]:
        return self._request

    @property
    def eligibility(self) -> Optional[WithdrawalEligibility]:
        """Last authoritative eligibility reported by the service."""
        return self._eligibility

    @property
    def security_delay(self) -> Optional[SecurityDelay]:
        return self._session.security_delay if self._session else None

    @property
    def phase(self) -> WithdrawalPhase:
        if self._request is None or not self._request.pending:
            return WithdrawalPhase.IDLE
        if self._eligibility is not None and self._eligibility.can_execute:
            return WithdrawalPhase.EXECUTABLE
        return WithdrawalPhase.PENDING

    @property
    def is_requesting(self) -> bool:
        return self._guard.is_active(REQUEST_ACTION)

    @property
    def is_checking(self) -> bool:
        return self._guard.is_active(CHECK_ACTION) or self._guard.is_active(STATUS_ACTION)

    @property
    def is_executing(self) -> bool:
        return self._guard.is_active(EXECUTE_ACTION)

    def _require_session(self) -> LedgerSession:
        if self._session is None or not self._session.valid:
            raise SessionUnavailable("No ledger session for withdrawals")
        return self._session

    def _apply(self, stamp: int, request: Optional[WithdrawalRequest],
               eligibility: Optional[WithdrawalEligibility]) -> bool:
        if not self._generation.is_current(stamp):
            logger.debug("Discarding withdrawal state for superseded session")
            return False
        self._request = request if request is not None and request.pending else None
        self._eligibility = eligibility if self._request is not None else None
        return True

    @contextmanager
    def _running(self, action: str) -> Iterator[None]:
        """Guard an action and publish the loading flag around it."""
        try:
            with self._guard.hold(action):
                self.events.emit("changed")
                yield
        finally:
            self.events.emit("changed")

    # ======================
    # Lifecycle
    # ======================

    def bind(self, session: LedgerSession) -> None:
        """Reset to IDLE for a new session."""
        self._generation.advance()
        # Operations still running hold the previous guard
        self._guard = ActionGuard()
        self._session = session
        self._request = None
        self._eligibility = None
        self.events.emit("changed")

    def reset(self) -> None:
        self._generation.advance()
        self._guard = ActionGuard()
        self._session = None
        self._request = None
        self._eligibility = None
        self.events.emit("changed")

    # ======================
    # Queries
    # ======================

    def advisory_eligibility(self, now: Optional[datetime] = None) -> Optional[WithdrawalEligibility]:
        """Client-side countdown from requested_at + security delay.

        Returns None when there is no pending request or the delay is unknown.
        """
        delay = self.security_delay
        if self._request is None or delay is None:
            return None
        eligible_at = self._request.eligible_at(delay)
        if eligible_at is None:
            return None
        remaining = max(timedelta(0), eligible_at - (now or self.clock()))
        return WithdrawalEligibility(can_execute=remaining <= timedelta(0), time_remaining=remaining)

    def countdown_text(self, now: Optional[datetime] = None) -> Optional[str]:
        advisory = self.advisory_eligibility(now)
        if advisory is None:
            return None
        return format_time_remaining(advisory.seconds_remaining)

    async def load_status(self) -> WithdrawalPhase:
        """Reload the pending request (and its eligibility) from the service."""
        session = self._require_session()
        stamp = self._generation.current

        with self._running(STATUS_ACTION):
            request = await session.call(
                "get_withdraw_request", session.manager.get_withdraw_request(session.address)
            )
            eligibility = None
            if request.pending:
                eligibility = await session.call(
                    "can_execute_withdraw", session.manager.can_execute_withdraw(session.address)
                )
            self._apply(stamp, request, eligibility)

        return self.phase

    async def check_eligibility(self) -> Optional[WithdrawalEligibility]:
        """Ask the service whether the pending withdrawal may execute now.

        Returns:
            The service's answer, or None if no withdrawal is pending

        Raises:
            StaleResultError: If the account changed while the delay was fetched
        """
        session = self._require_session()
        stamp = self._generation.current
        if self._request is None:
            return None
        if session.security_delay is None:
            await session.ensure_security_delay()
            if not self._generation.is_current(stamp):
                raise StaleResultError("Account changed during withdrawal eligibility check")

        with self._running(CHECK_ACTION):
            eligibility = await session.call(
                "can_execute_withdraw", session.manager.can_execute_withdraw(session.address)
            )
            if self._generation.is_current(stamp) and self._request is not None:
                advisory = self.advisory_eligibility()
                if advisory is not None and advisory.can_execute != eligibility.can_execute:
                    logger.info(
                        f"Service eligibility ({eligibility.can_execute}) overrides local "
                        f"countdown ({advisory.can_execute}) for {session.address}"
                    )
                self._eligibility = eligibility

        return eligibility

    # ======================
    # Commands
    # ======================

    async def request_withdraw(self, amount: str) -> OperationOutcome:
        """Submit a withdrawal request.

        Raises:
            WithdrawalAlreadyPending: If a request is already outstanding (no remote call)
            OperationInFlight: If an earlier submission has not returned yet (no remote call)
            InvalidAmountError: If the amount is not a positive number
            OperationFailure: If the service rejects the request
        """
        session = self._require_session()
        if self.phase != WithdrawalPhase.IDLE:
            logger.warning(f"Withdrawal already pending for {session.address}")
            raise WithdrawalAlreadyPending(
                f"A withdrawal of {self._request.amount} is already pending"
            )
        value = str(parse_amount(amount))
        stamp = self._generation.current

        with self._running(REQUEST_ACTION):
            outcome = await session.call(
                "request_withdraw", session.manager.request_withdraw(value)
            )
            logger.info(f"Withdrawal of {value} requested by {session.address}")
            request = WithdrawalRequest(amount=value, requested_at=self.clock(), pending=True)
            if not self._apply(stamp, request, None):
                logger.warning(
                    f"Withdrawal request for {session.address} finished after account change"
                )

        return outcome

    async def execute(self) -> OperationOutcome:
        """Execute the pending withdrawal after an authoritative eligibility check.

        Raises:
            WithdrawalNotReady: If nothing is pending or the service says the
                delay has not elapsed; withdraw is not called
            StaleResultError: If the account changed before execution started
            OperationFailure: If the service rejects the withdrawal; state is kept
        """
        session = self._require_session()
        request = self._request
        if request is None:
            raise WithdrawalNotReady("No pending withdrawal to execute")
        stamp = self._generation.current

        with self._running(EXECUTE_ACTION):
            eligibility = await session.call(
                "can_execute_withdraw", session.manager.can_execute_withdraw(session.address)
            )
            if not self._generation.is_current(stamp):
                raise StaleResultError("Account changed before withdrawal execution")

            self._eligibility = eligibility
            if not eligibility.can_execute:
                remaining = eligibility.seconds_remaining
                raise WithdrawalNotReady(
                    f"Security delay has not elapsed ({format_time_remaining(remaining)} remaining)",
                    remaining,
                )

            outcome = await session.call("withdraw", session.manager.withdraw(request.amount))
            logger.info(f"Withdrawal of {request.amount} executed for {session.address}")
            self._apply(stamp, None, None)

        return outcome
