from __future__ import annotations

import threading
import time

from .errors import RouteCancelledError


class CancellationToken:
    """Request-scoped cancel signal shared by graph load, incident fetch and search.

    Fires either when `cancel()` is called or when the optional monotonic
    deadline passes.
    """

    def __init__(self, *, timeout_s: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline_monotonic = (
            time.monotonic() + max(0.0, float(timeout_s)) if timeout_s is not None else None
        )
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = str(reason or "cancelled")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline_monotonic is not None and time.monotonic() >= self._deadline_monotonic:
            self.cancel("deadline_exceeded")
            return True
        return False

    def checkpoint(self, stage: str) -> None:
        if self.cancelled:
            raise RouteCancelledError(
                f"request cancelled during {stage}",
                details={"stage": stage, "reason": self._reason},
            )


def checkpoint(cancel: CancellationToken | None, stage: str) -> None:
    if cancel is not None:
        cancel.checkpoint(stage)
