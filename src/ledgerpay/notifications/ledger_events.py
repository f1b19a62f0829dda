"""Ledger-changed notifications.

After every successful deposit or withdrawal the controller announces which
address's ledger balance changed, so other parts of the host application
(a balance badge, a history view) can refresh. Delivery is fire-and-forget:
observer failures are logged and never reach the caller.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerChanged:
    """A ledger balance changed for an address."""
    address: str
    reason: str
    transaction_reference: str = ""
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Observer = Callable[[LedgerChanged], Union[None, Awaitable[None]]]


class LedgerEventNotifier:
    """Delivers LedgerChanged events to in-process observers and an optional webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._observers: list[Observer] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def notify_ledger_changed(
        self,
        address: str,
        reason: str,
        transaction_reference: str = "",
    ) -> LedgerChanged:
        """Announce a ledger change without waiting for observers."""
        event = LedgerChanged(
            address=address, reason=reason, transaction_reference=transaction_reference
        )
        logger.info(f"Ledger changed for {address} ({reason})")

        for observer in list(self._observers):
            try:
                result = observer(event)
            except Exception as e:
                logger.error(f"Ledger observer failed for {address}: {e}")
                continue
            if inspect.isawaitable(result):
                self._track(self._await_observer(result, address))

        if self.webhook_url:
            self._track(self._post_webhook(event))
        return event

    def _track(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _await_observer(self, result: Awaitable[None], address: str) -> None:
        try:
            await result
        except Exception as e:
            logger.error(f"Ledger observer failed for {address}: {e}")

    async def _post_webhook(self, event: LedgerChanged) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.webhook_url,
                    json={
                        "address": event.address,
                        "reason": event.reason,
                        "transactionReference": event.transaction_reference,
                        "occurredAt": event.occurred_at.isoformat(),
                    },
                )
                if response.status_code >= 400:
                    logger.warning(
                        f"Ledger webhook rejected event for {event.address}: {response.status_code}"
                    )
        except Exception as e:
            logger.error(f"Failed to deliver ledger webhook for {event.address}: {e}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
