"""Cooperative cancellation for the synchronous fetch loop."""

from __future__ import annotations

import threading


class CancellationToken:
    """Cooperative cancellation token backed by ``threading.Event``.

    Safe to cancel from a signal handler or another thread; the fetch loop
    polls :attr:`is_cancelled` between pages.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


__all__ = ["CancellationToken"]
