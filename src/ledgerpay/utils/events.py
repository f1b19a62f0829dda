"""Change notifications from components to their owner."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComponentEvent:
    """Something changed inside a component.

    Attributes:
        source: Component name (binder, balance, withdrawal, ...)
        kind: What happened (changed, error, ...)
        error: Error raised by a background operation, if any
        payload: Optional value carried with the event
    """
    source: str
    kind: str
    error: Optional[BaseException] = None
    payload: Any = None


Listener = Callable[[ComponentEvent], None]


class EventEmitter:
    """Fan-out of component events to subscribed listeners."""

    def __init__(self, source: str):
        self.source = source
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, kind: str, error: Optional[BaseException] = None, payload: Any = None) -> None:
        event = ComponentEvent(source=self.source, kind=kind, error=error, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener for {self.source}.{kind} failed: {e}")
