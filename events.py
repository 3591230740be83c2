"""
The service layer publishes events when interesting state changes occur.

DATA_CHANGED drives auto-sync; the others are for notifications.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, DefaultDict, Iterator, Optional
from collections import defaultdict

DATA_CHANGED = "DATA_CHANGED"
LOW_STOCK = "LOW_STOCK"
CHECKOUT_COMPLETED = "CHECKOUT_COMPLETED"
SYNC_FAILED = "SYNC_FAILED"
SYNC_COMPLETED = "SYNC_COMPLETED"


@dataclass(frozen=True)
class Event:
    """Base event type."""
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Simple synchronous pub/sub event bus."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, list[Callable[[Event], None]]] = defaultdict(list)
        self._held: Optional[list[Event]] = None

    def subscribe(self, event_name: str, handler: Callable[[Event], None]) -> Callable[[], None]:
        # Registers a handler for a specific event name; returns an unsubscribe callable.
        if not isinstance(event_name, str) or not event_name.strip():
            raise ValueError("event_name must be a non-empty string.")
        self._subscribers[event_name].append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers[event_name]:
                self._subscribers[event_name].remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        if self._held is not None:
            self._held.append(event)
            return
        # Synchronous publish keeps ordering deterministic.
        for handler in list(self._subscribers.get(event.name, [])):
            handler(event)

    def emit(self, event_name: str, /, **payload: Any) -> None:
        # Positional-only, so a payload may carry its own "name".
        self.publish(Event(name=event_name, payload=payload))

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """
        Holds events published inside the block.

        They are delivered, in order, once the block exits cleanly and are
        dropped if it raises. Nested blocks deliver at the outermost exit.
        """
        if self._held is not None:
            yield
            return
        self._held = []
        try:
            yield
        except BaseException:
            self._held = None
            raise
        held, self._held = self._held, None
        for event in held:
            self.publish(event)
