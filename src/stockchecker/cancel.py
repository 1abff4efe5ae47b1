from __future__ import annotations

import threading
import time

from stockchecker.errors import Cancelled, DeadlineExceeded


class CancelToken:
    """Cancellation signal with an optional deadline.

    Tokens are passed by reference down every call that may wait. A child
    token shares its parent's signal, so cancelling the parent interrupts
    every wait started through any of its children. Deadlines are measured
    on the monotonic clock.
    """

    def __init__(self, deadline: float | None = None, _event: threading.Event | None = None) -> None:
        self._event = _event if _event is not None else threading.Event()
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float | None) -> "CancelToken":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def child(self, timeout: float | None = None) -> "CancelToken":
        deadline = self.deadline
        if timeout is not None:
            candidate = time.monotonic() + timeout
            deadline = candidate if deadline is None else min(deadline, candidate)
        return CancelToken(deadline=deadline, _event=self._event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self._event.is_set():
            raise Cancelled()
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceeded()

    def sleep(self, seconds: float) -> None:
        self.check()
        if seconds <= 0:
            return

        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            if self._event.wait(remaining):
                raise Cancelled()
            raise DeadlineExceeded()

        if self._event.wait(seconds):
            raise Cancelled()
