"""Per-user bounded delivery queue.

A Mailbox is written to by any session broadcasting into the room and drained
by exactly one session: the one that owns the user. Capacity and the
full-mailbox policy are explicit:

- ``block``: the producer waits for space (bounded by ``block_timeout_s`` when
  it is > 0), then gives up and the event is dropped for this user.
- ``drop``: the producer never waits; an event that does not fit is dropped.

Producers are never made to wait while holding the registry lock.
"""

from __future__ import annotations

import threading
import time
from collections import deque

from .constants import MAILBOX_BLOCK, MAILBOX_DROP, MAILBOX_POLICIES
from .errors import MailboxClosed
from .messages import ChatEvent


class Mailbox:
    def __init__(
        self,
        capacity: int = 1,
        *,
        policy: str = MAILBOX_BLOCK,
        block_timeout_s: float = 0.0,
    ) -> None:
        if int(capacity) < 1:
            raise ValueError("mailbox capacity must be at least 1")
        if policy not in MAILBOX_POLICIES:
            raise ValueError(f"unknown mailbox policy {policy!r}")

        self.capacity = int(capacity)
        self.policy = policy
        self.block_timeout_s = float(block_timeout_s)
        self.dropped = 0

        self._items: deque[ChatEvent] = deque()
        self._closed = False
        self._cond = threading.Condition(threading.Lock())

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, event: ChatEvent) -> bool:
        """Queue an event. Returns False if it was dropped.

        Raises MailboxClosed once the owning session has gone away.
        """
        with self._cond:
            if self._closed:
                raise MailboxClosed("mailbox is closed")

            if len(self._items) >= self.capacity:
                if self.policy == MAILBOX_DROP:
                    self.dropped += 1
                    return False

                deadline = (
                    time.monotonic() + self.block_timeout_s
                    if self.block_timeout_s > 0
                    else None
                )
                while len(self._items) >= self.capacity and not self._closed:
                    if deadline is None:
                        self._cond.wait()
                        continue
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self.dropped += 1
                        return False
                    self._cond.wait(remaining)

                if self._closed:
                    raise MailboxClosed("mailbox closed while waiting")

            self._items.append(event)
            self._cond.notify_all()
            return True

    def get(self, timeout: float | None = None) -> ChatEvent | None:
        """Take the oldest event, waiting for one if needed.

        Returns None when the mailbox is closed or the timeout expires.
        """
        with self._cond:
            if not self._cond.wait_for(
                lambda: self._items or self._closed, timeout=timeout
            ):
                return None
            if self._closed:
                return None
            event = self._items.popleft()
            self._cond.notify_all()
            return event

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._items.clear()
            self._cond.notify_all()
