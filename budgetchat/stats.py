"""Statistics tracking and reporting for the chat room."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .rooms import RoomRegistry


class StatsManager:
    """
    Lifetime counters for the chat service.

    Tracks:
    - Connections accepted and transport failures
    - Joins, parts and rejected joins
    - Messages received, truncated and fanned out
    - Deliveries dropped by full mailboxes
    - Bytes in/out
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "joins": 0,
            "parts": 0,
            "joins_rejected": 0,
            "msgs_in": 0,
            "msgs_truncated": 0,
            "deliveries": 0,
            "deliveries_dropped": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "transport_errors": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def uptime_s(self) -> float:
        started = self.started_monotonic
        return (time.monotonic() - started) if started is not None else 0.0

    def format_stats(self, registry: RoomRegistry | None = None) -> str:
        """Format current statistics as a single log-friendly line."""
        from . import __version__

        c = self.snapshot()
        parts: list[str] = [f"budgetchat {__version__} stats"]
        parts.append(f"uptime_s={self.uptime_s():.1f}")

        if registry is not None:
            room_stats = registry.get_stats()
            parts.append(
                f"users={room_stats['users']} queued={room_stats['queued']}"
            )

        parts.append(
            "io: connections={} bytes_in={} bytes_out={} transport_errors={}".format(
                c.get("connections", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
                c.get("transport_errors", 0),
            )
        )
        parts.append(
            "events: joins={} parts={} rejected={} msgs_in={} truncated={}".format(
                c.get("joins", 0),
                c.get("parts", 0),
                c.get("joins_rejected", 0),
                c.get("msgs_in", 0),
                c.get("msgs_truncated", 0),
            )
        )
        parts.append(
            "fanout: deliveries={} dropped={}".format(
                c.get("deliveries", 0),
                c.get("deliveries_dropped", 0),
            )
        )

        return " | ".join(parts)
