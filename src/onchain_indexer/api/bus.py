"""In-process fan-out of decoded events to live subscribers."""

from __future__ import annotations

import itertools
import logging
from typing import Callable

from onchain_indexer.models.events import DecodedEvent

log = logging.getLogger(__name__)

Listener = Callable[[DecodedEvent], None]


class EventBus:
    """Synchronous publish/subscribe for decoded events.

    Listeners are called in registration order. Each publish iterates over
    a snapshot of the listeners, so a listener may subscribe or cancel
    (itself included) while an event is being delivered. A listener that
    raises is logged and skipped; the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: dict[int, Listener] = {}
        self._ids = itertools.count()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Register a listener. Call the returned function to remove it."""
        token = next(self._ids)
        self._listeners[token] = callback

        def cancel() -> None:
            self._listeners.pop(token, None)

        return cancel

    def publish(self, event: DecodedEvent) -> None:
        for listener in tuple(self._listeners.values()):
            try:
                listener(event)
            except Exception:
                log.exception("Error in event listener %r", listener)
