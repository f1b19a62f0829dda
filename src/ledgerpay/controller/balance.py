"""Ledger balance polling and caching.

At most one balance query runs per (session, address) target. Timer ticks
that land while a query is outstanding are skipped, not queued. Results are
only applied if their target is still the active one when they resolve.
"""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from ledgerpay.controller.session import LedgerSession
from ledgerpay.ledger.errors import LedgerError, OperationFailure, SessionUnavailable
from ledgerpay.ledger.models import Balance
from ledgerpay.utils.events import EventEmitter
from ledgerpay.utils.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 30.0

_Target = tuple[int, int, str]


def _target_of(session: LedgerSession, address: str) -> _Target:
    return (id(session), session.generation, address.lower())


def _retrieve_exception(task: asyncio.Task) -> None:
    # Errors are re-raised to awaiting callers; this only marks them retrieved
    if not task.cancelled():
        task.exception()


class BalanceTracker:
    """Polls and caches the ledger balance for one target address."""

    def __init__(self, interval: float = DEFAULT_REFRESH_INTERVAL):
        self.interval = interval
        self.events = EventEmitter("balance")
        self._session: Optional[LedgerSession] = None
        self._address: Optional[str] = None
        self._balance: Optional[Balance] = None
        self._inflight: Optional[tuple[_Target, asyncio.Task]] = None
        self._timer: Optional[PeriodicTask] = None
        self._background: set[asyncio.Task] = set()

    @property
    def balance(self) -> Optional[Balance]:
        return self._balance

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def auto_refreshing(self) -> bool:
        return self._timer is not None and self._timer.running

    @property
    def is_loading(self) -> bool:
        active = self._active_target()
        return self._inflight is not None and active is not None and self._inflight[0] == active

    def _active_target(self) -> Optional[_Target]:
        if self._session is None or self._address is None:
            return None
        return _target_of(self._session, self._address)

    def _is_active(self, target: _Target) -> bool:
        return (
            self._session is not None
            and self._session.valid
            and self._active_target() == target
        )

    def bind(self, session: LedgerSession, address: str) -> None:
        """Point the tracker at a new session/address; the cached balance is dropped."""
        self._session = session
        self._address = address
        self._balance = None
        logger.debug(f"Balance tracker bound to {address}")
        self.events.emit("changed")

    def unbind(self) -> None:
        self.stop()
        self._session = None
        self._address = None
        self._balance = None
        self.events.emit("changed")

    async def refresh(
        self,
        session: Optional[LedgerSession] = None,
        address: Optional[str] = None,
    ) -> Optional[Balance]:
        """Query the balance.

        Defaults to the bound session/address. A refresh for a target that
        already has a query in flight joins that query.

        Returns:
            The new balance, or None if the target was superseded meanwhile

        Raises:
            SessionUnavailable: If there is no session to query through
            OperationFailure: If the ledger rejects the query
        """
        session = session or self._session
        address = address or self._address
        if session is None or not address:
            raise SessionUnavailable("No ledger session for balance query")

        target = _target_of(session, address)
        if self._inflight is not None and self._inflight[0] == target:
            return await asyncio.shield(self._inflight[1])

        task = asyncio.get_running_loop().create_task(self._fetch(session, address, target))
        task.add_done_callback(_retrieve_exception)
        self._inflight = (target, task)
        self.events.emit("changed")
        return await asyncio.shield(task)

    async def _fetch(self, session: LedgerSession, address: str, target: _Target) -> Optional[Balance]:
        error: Optional[LedgerError] = None
        balance: Optional[Balance] = None
        try:
            balance = await session.manager.get_balance(address)
        except ValidationError as e:
            error = OperationFailure(f"Inconsistent balance reported: {e}", "get_balance")
        except LedgerError as e:
            error = e
        except Exception as e:
            error = OperationFailure(str(e), "get_balance")
        finally:
            if self._inflight is not None and self._inflight[0] == target:
                self._inflight = None

        if not self._is_active(target):
            logger.debug(f"Discarding stale balance result for {address}")
            return None

        if error is not None:
            logger.error(f"Balance check failed for {address}: {error}")
            self.events.emit("changed")
            raise error

        self._balance = balance
        logger.debug(
            f"Balance for {address}: total={balance.total_balance.display} "
            f"available={balance.available_balance.display}"
        )
        self.events.emit("changed")
        self.events.emit("balance", payload=balance)
        return balance

    def start_auto_refresh(self, interval: Optional[float] = None) -> None:
        """Start polling at a fixed cadence; the first tick fires immediately."""
        self.stop()
        self._timer = PeriodicTask(self._tick, interval or self.interval, name="balance-refresh")
        self._timer.start(immediate=True)
        logger.info(f"Balance auto-refresh every {self._timer.interval}s")

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None

    def _tick(self) -> None:
        target = self._active_target()
        if target is None:
            return
        if self._inflight is not None and self._inflight[0] == target:
            logger.debug("Skipping balance tick, refresh still in flight")
            return
        task = asyncio.get_running_loop().create_task(self._auto_refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _auto_refresh(self) -> None:
        try:
            await self.refresh()
        except LedgerError as e:
            self.events.emit("error", error=e)

    def close(self) -> None:
        """Stop polling and drop background refreshes."""
        self.stop()
        for task in list(self._background):
            task.cancel()
        self._background.clear()
