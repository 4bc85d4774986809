"""Publish/subscribe channel for upgrade lifecycle events."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from selfupgrade.models import StatusEvent


_LOGGER = logging.getLogger(__name__)

StatusHandler = Callable[[StatusEvent], object]


class StatusEmitter:
    """Deliver events synchronously, in order, to every current subscriber.

    A failing handler is logged and skipped; it never affects other handlers
    or the emitter's caller.
    """

    def __init__(self) -> None:
        self._handlers: list[StatusHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: StatusHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._handlers.remove(handler)
                except ValueError:
                    pass

        return unsubscribe

    def emit(self, event: StatusEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        _LOGGER.debug("Emitting status %s to %s subscriber(s)", event.phase.value, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                _LOGGER.exception("Status handler %r failed for phase %s", handler, event.phase.value)


__all__ = ["StatusEmitter", "StatusHandler"]
