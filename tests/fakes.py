"""In-memory line transport for driving sessions in tests."""

from __future__ import annotations

import queue
import threading
import time

from budgetchat.errors import TransportError
from budgetchat.transport import LineTransport


class FakeTransport(LineTransport):
    def __init__(self, lines=(), peer: str = "fake") -> None:
        self.peer = peer
        self.sent: list[str] = []
        self.timeouts: list[float | None] = []
        self.fail_writes = False
        self.closed = threading.Event()

        self._in: queue.Queue = queue.Queue()
        self._cond = threading.Condition()
        for line in lines:
            self._in.put(line)

    def feed(self, line) -> None:
        self._in.put(line)

    def hangup(self) -> None:
        self._in.put(None)

    def read_line(self) -> str | None:
        if self.closed.is_set():
            return None
        item = self._in.get()
        if item is None or self.closed.is_set():
            self._in.put(None)
            return None
        if isinstance(item, Exception):
            raise item
        return item

    def write(self, text: str) -> None:
        if self.closed.is_set() or self.fail_writes:
            raise TransportError("write on closed fake transport")
        with self._cond:
            self.sent.append(text)
            self._cond.notify_all()

    def set_timeout(self, seconds: float | None) -> None:
        self.timeouts.append(seconds)

    def close(self) -> None:
        self.closed.set()
        self._in.put(None)

    def wait_for(self, text: str, timeout: float = 2.0) -> list[str]:
        with self._cond:
            ok = self._cond.wait_for(lambda: text in self.sent, timeout=timeout)
            assert ok, f"{text!r} never sent; got {self.sent!r}"
            return list(self.sent)


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
