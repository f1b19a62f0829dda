"""Transient user feedback: the error banner and success pulses.

Both auto-clear after a fixed time. The error banner holds one message and
the most recent one wins; success pulses are a set of action ids that each
expire on their own timer.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ErrorBanner:
    """Single most-recent error message with auto-clear."""

    def __init__(self, display_seconds: float, on_change: Callable[[], None]):
        self.display_seconds = display_seconds
        self._on_change = on_change
        self._message = ""
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def message(self) -> str:
        return self._message

    def show(self, message: str) -> None:
        self._cancel_timer()
        self._message = message
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timer = loop.call_later(self.display_seconds, self._expire, message)
        self._on_change()

    def clear(self) -> None:
        self._cancel_timer()
        if self._message:
            self._message = ""
            self._on_change()

    def _expire(self, message: str) -> None:
        self._timer = None
        if self._message == message:
            self._message = ""
            self._on_change()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        self._cancel_timer()


class SuccessPulses:
    """Set of recently succeeded action ids."""

    def __init__(self, display_seconds: float, on_change: Callable[[], None]):
        self.display_seconds = display_seconds
        self._on_change = on_change
        self._active: dict[str, asyncio.TimerHandle] = {}

    @property
    def active(self) -> frozenset[str]:
        return frozenset(self._active)

    def pulse(self, action_id: str) -> None:
        previous = self._active.pop(action_id, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._active[action_id] = loop.call_later(self.display_seconds, self._expire, action_id)
        self._on_change()

    def _expire(self, action_id: str) -> None:
        if self._active.pop(action_id, None) is not None:
            self._on_change()

    def close(self) -> None:
        for handle in self._active.values():
            handle.cancel()
        self._active.clear()
