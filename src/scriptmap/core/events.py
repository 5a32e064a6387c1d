"""Event bus for job chain observability.

Provides a simple synchronous event bus for emitting domain events from the
engine to CLI formatters. Worker events are emitted from worker threads, so
subscription and dispatch are guarded by a lock; handlers must be thread-safe.
"""

import threading
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol for event bus implementations.

    Allows both EventBus and NullEventBus to satisfy the interface
    without inheritance, preventing accidental substitution bugs.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers."""
        ...


class EventBus:
    """Simple synchronous event bus.

    Events are dispatched synchronously to all subscribers on the emitting
    thread. Handler exceptions propagate to the caller.

    Example:
        bus = EventBus()
        bus.subscribe(JobStarted, lambda e: print(f"[{e.name}] starting"))
        bus.emit(JobStarted(job_id="j1", name="copy", index=0, partition_count=4))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type.

        Args:
            event_type: The event class to subscribe to
            handler: Callable that receives the event instance
        """
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers, in subscription order.

        Events with no subscribers are ignored.
        """
        with self._lock:
            handlers = list(self._subscribers.get(type(event), []))
        for handler in handlers:
            handler(event)


class NullEventBus:
    """No-op event bus for library use where no CLI is present.

    Does NOT inherit from EventBus: subscribing here never delivers anything,
    and inheritance would hide that from a caller expecting callbacks.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """No-op subscription - handler will never be called."""
        pass

    def emit(self, event: T) -> None:
        """No-op emission - no handlers to call."""
        pass
