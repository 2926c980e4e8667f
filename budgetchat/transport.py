"""Line transports: the boundary between raw byte streams and sessions.

A session only ever sees whole text lines (terminator included) coming in and
pre-formatted strings going out.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import TYPE_CHECKING

from .constants import LINE_MAX_BYTES
from .errors import TransportError

if TYPE_CHECKING:
    from .stats import StatsManager


def decode_line(raw: bytes) -> str:
    return raw.decode("utf-8", "replace")


class LineTransport:
    """Interface a Session drives.

    read_line() returns the next line including its terminator, or None at
    end of stream. Both read_line() and write() raise TransportError on I/O
    failure. close() must unblock a read_line() pending on another thread.
    """

    peer: str = "-"

    def read_line(self) -> str | None:
        raise NotImplementedError

    def write(self, text: str) -> None:
        raise NotImplementedError

    def set_timeout(self, seconds: float | None) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class LineAssembler:
    """Incrementally split byte chunks into newline terminated lines.

    Lines longer than `max_line_bytes` (excluding the newline) are cut; the
    rest of such a line is discarded up to its newline.
    """

    def __init__(self, max_line_bytes: int = LINE_MAX_BYTES) -> None:
        if int(max_line_bytes) < 1:
            raise ValueError("max_line_bytes must be positive")
        self.max_line_bytes = int(max_line_bytes)
        self._buf = bytearray()
        self._head: bytes | None = None

    def feed(self, data: bytes) -> list[bytes]:
        lines: list[bytes] = []
        self._buf.extend(data)

        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                if self._head is not None:
                    self._buf.clear()
                elif len(self._buf) > self.max_line_bytes:
                    self._head = bytes(self._buf[: self.max_line_bytes])
                    self._buf.clear()
                return lines

            line = bytes(self._buf[: idx + 1])
            del self._buf[: idx + 1]

            if self._head is not None:
                lines.append(self._head + b"\n")
                self._head = None
            elif idx > self.max_line_bytes:
                lines.append(line[: self.max_line_bytes] + b"\n")
            else:
                lines.append(line)

    def flush(self) -> bytes | None:
        """Return an unterminated trailing line at end of stream, if any."""
        if self._head is not None:
            rest, self._head = self._head, None
            self._buf.clear()
            return rest
        if self._buf:
            rest = bytes(self._buf)
            self._buf.clear()
            return rest
        return None


class SocketTransport(LineTransport):
    """LineTransport over a connected stream socket."""

    def __init__(
        self,
        sock: socket.socket,
        *,
        max_line_bytes: int = LINE_MAX_BYTES,
        stats: StatsManager | None = None,
    ) -> None:
        self.log = logging.getLogger("budgetchat.transport")
        self.sock = sock
        self.max_line_bytes = int(max_line_bytes)
        self.stats = stats

        self._rfile = sock.makefile("rb")
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

        try:
            host, port = sock.getpeername()[:2]
            self.peer = f"{host}:{port}"
        except (OSError, ValueError):
            # Unix domain socket pairs have no (host, port) peer.
            self.peer = "-"

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def _readline_raw(self) -> bytes:
        try:
            return self._rfile.readline(self.max_line_bytes + 1)
        except (OSError, ValueError) as e:
            # ValueError: the file object was closed under us by close().
            if self._closed.is_set():
                return b""
            raise TransportError(f"read failed: {e}") from e

    def read_line(self) -> str | None:
        raw = self._readline_raw()
        if not raw:
            return None
        self._inc("bytes_in", len(raw))

        if len(raw) > self.max_line_bytes and not raw.endswith(b"\n"):
            head = raw[: self.max_line_bytes]
            while True:
                rest = self._readline_raw()
                if not rest:
                    return decode_line(head)
                self._inc("bytes_in", len(rest))
                if rest.endswith(b"\n"):
                    return decode_line(head + b"\n")

        return decode_line(raw)

    def write(self, text: str) -> None:
        data = text.encode("utf-8")
        with self._write_lock:
            if self._closed.is_set():
                raise TransportError("transport is closed")
            try:
                self.sock.sendall(data)
            except OSError as e:
                raise TransportError(f"write failed: {e}") from e
        self._inc("bytes_out", len(data))

    def set_timeout(self, seconds: float | None) -> None:
        try:
            self.sock.settimeout(seconds if seconds and seconds > 0 else None)
        except OSError as e:
            raise TransportError(f"settimeout failed: {e}") from e

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()

        # shutdown() wakes a reader blocked in recv() on another thread.
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for closer in (self._rfile.close, self.sock.close):
            try:
                closer()
            except OSError:
                self.log.debug("Close failed peer=%s", self.peer, exc_info=True)
