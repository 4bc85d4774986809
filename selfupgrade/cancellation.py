"""Cooperative cancellation shared between the event loop and worker threads."""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe flag checked by abortable stages between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


__all__ = ["CancellationToken"]
