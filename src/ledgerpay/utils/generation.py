"""Generation stamps for discarding stale asynchronous results.

Every async operation that writes shared state captures the current stamp
when issued and re-checks it on completion. Advancing the generation (on
account or session change) makes every outstanding stamp stale.
"""

import logging

from ledgerpay.ledger.errors import StaleResultError

logger = logging.getLogger(__name__)


class Generation:
    """Monotonic identity counter for an account/session slot."""

    def __init__(self, name: str = "generation"):
        self.name = name
        self._value = 0

    @property
    def current(self) -> int:
        return self._value

    def advance(self) -> int:
        """Invalidate all outstanding stamps and return the new one."""
        self._value += 1
        logger.debug(f"{self.name} advanced to {self._value}")
        return self._value

    def is_current(self, stamp: int) -> bool:
        return stamp == self._value

    def ensure_current(self, stamp: int, what: str = "result") -> None:
        """Raise StaleResultError if the stamp has been superseded."""
        if stamp != self._value:
            logger.debug(f"Discarding stale {what} (stamp {stamp}, current {self._value})")
            raise StaleResultError(f"{what} belongs to a superseded {self.name}")

    def __repr__(self) -> str:
        return f"Generation(name={self.name!r}, current={self._value})"
