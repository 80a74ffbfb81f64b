"""Summary: In-process event bus for dispatch record changes.

Importance: Decouples record writes from the listener that schedules sends.
Alternatives: Use database triggers or a message broker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable

from mailcast.storage.sqlite_store import StoredDispatch


logger = logging.getLogger(__name__)

DISPATCH_ADDED = "dispatch.added"
DISPATCH_EDITED = "dispatch.edited"


@dataclass(frozen=True)
class EventContext:
    """Summary: Describes the operation that caused an event.

    Importance: Bulk imports must not trigger live sends.
    Alternatives: Use separate event names for imports.
    """

    importing: bool = False


@dataclass(frozen=True)
class DispatchEvent:
    """Summary: A dispatch record change together with its previous state.

    Importance: Lets listeners detect exact status transitions such as a retry.
    Alternatives: Emit only the new record and re-query history.
    """

    record: StoredDispatch
    previous: StoredDispatch | None = None
    context: EventContext = field(default_factory=EventContext)

    @property
    def status_changed(self) -> bool:
        return self.previous is not None and self.previous.status != self.record.status

    @property
    def previous_status(self) -> str | None:
        return self.previous.status if self.previous is not None else None


Handler = Callable[[DispatchEvent], object]


class EventBus:
    """Summary: Thread-safe publish/subscribe registry.

    Importance: Handlers registered here run synchronously on the emitting thread.
    Alternatives: Queue events for asynchronous delivery.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = Lock()

    def on(self, name: str, handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

    def off(self, name: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, name: str, event: DispatchEvent) -> None:
        """Summary: Call every handler registered for `name`.

        Importance: A failing handler is logged and does not stop the others or the emitter.
        Alternatives: Propagate the first handler exception.
        """

        with self._lock:
            handlers = list(self._handlers.get(name, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler for %s failed.", name)
