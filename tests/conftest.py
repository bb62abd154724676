"""Shared fixtures: a hand-driven scheduler and recording transports."""

from __future__ import annotations

from typing import Any, Callable, Dict, List

import pytest

from gridxo.board import Board


class ManualHandle:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Collects callbacks until the test fires them with ``run_all``."""

    def __init__(self) -> None:
        self.pending: List[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(delay, callback)
        self.pending.append(handle)
        return handle

    def run_all(self) -> int:
        ran = 0
        pending, self.pending = self.pending, []
        for handle in pending:
            if not handle.cancelled:
                handle.callback()
                ran += 1
        return ran


class Recorder:
    """Async sender that keeps every frame sent to one client."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    async def __call__(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def events(self) -> List[str]:
        return [m["event"] for m in self.messages]

    def last(self, event: str) -> Dict[str, Any]:
        for message in reversed(self.messages):
            if message["event"] == event:
                return message["data"]
        raise AssertionError(f"No {event} message in {self.events()}")


class FakeTransport:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    def send(self, message: Dict[str, Any]) -> None:
        self.sent.append(message)

    def close(self) -> None:
        self.closed = True

    def events(self) -> List[str]:
        return [m["event"] for m in self.sent]


def board_from(*rows: str) -> Board:
    """Build a board from strings such as ``"XO."`` (``.`` is empty)."""
    return Board.from_rows([[None if ch == "." else ch for ch in row] for row in rows])


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
