"""Re-entrancy guards for user-initiated ledger actions.

A guarded action may have at most one outstanding invocation. A second
submission while the first is running is rejected immediately rather than
queued behind it.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from ledgerpay.ledger.errors import OperationInFlight

logger = logging.getLogger(__name__)


class ActionGuard:
    """Registry of actions currently in flight.

    Example:
        with guard.hold("deposit"):
            outcome = await manager.deposit(amount)
    """

    def __init__(self):
        self._active: set[str] = set()

    def is_active(self, action: str) -> bool:
        return action in self._active

    @property
    def active(self) -> frozenset[str]:
        return frozenset(self._active)

    @contextmanager
    def hold(self, action: str) -> Iterator[None]:
        """Mark an action in flight for the duration of the block.

        Raises:
            OperationInFlight: If the action is already in flight
        """
        if action in self._active:
            logger.warning(f"Rejected duplicate submission of {action}")
            raise OperationInFlight(action)

        self._active.add(action)
        logger.debug(f"Action started: {action}")
        try:
            yield
        finally:
            self._active.discard(action)
            logger.debug(f"Action finished: {action}")
