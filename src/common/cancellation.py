from __future__ import annotations

import threading


class CancellationError(RuntimeError):
    """Raised by long-running calls once cancellation has been requested."""


class CancellationToken:
    """Read-only view of a cancellation flag, handed to identity resolution calls."""

    def __init__(self, event: threading.Event) -> None:
        self._event = event

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("operation was cancelled")


class CancellationTokenSource:
    # threading.Event so the flag is visible from asyncio.to_thread workers
    def __init__(self) -> None:
        self._event = threading.Event()
        self.token = CancellationToken(self._event)

    def cancel(self) -> None:
        self._event.set()


NONE = CancellationToken(threading.Event())
