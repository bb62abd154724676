"""Timer primitives used by the state machines for delayed work."""

from __future__ import annotations

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class _DoneHandle:
    def cancel(self) -> None:
        return None


class ThreadingScheduler:
    """Runs callbacks on ``threading.Timer`` threads.

    A non-positive delay runs the callback inline before ``call_later``
    returns, which keeps zero-delay configurations deterministic.
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        if delay <= 0:
            callback()
            return _DoneHandle()
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

