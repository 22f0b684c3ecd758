"""Cooperative cancellation for long-running searches."""

import threading
import time
from typing import Callable, Optional

from ..errors import ResolutionCancelled


class CancellationToken:
    """Cancellation flag shared between a caller and a running solver.

    The token fires when ``cancel()`` is called or when its optional deadline
    passes. It is safe to cancel from another thread or from the event loop
    while the solver runs in a worker thread.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout_seconds if timeout_seconds else None
        self.reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ResolutionCancelled(f"Resolution cancelled: {self.reason}")
