"""Serve the chat room over Reticulum links.

Each established link gets a bidirectional RNS Buffer. Incoming bytes arrive
on Reticulum's callback thread and are split into lines; a session thread
consumes them through the ordinary LineTransport interface.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import RNS

from .config import ChatRuntimeConfig
from .constants import RNS_STREAM_ID
from .errors import TransportError
from .paths import default_identity_path, ensure_private_dir
from .transport import LineAssembler, LineTransport, decode_line
from .util import expand_path

if TYPE_CHECKING:
    from .stats import StatsManager


def fmt_link_id(link: RNS.Link) -> str:
    lid = getattr(link, "link_id", None)
    if isinstance(lid, (bytes, bytearray)):
        return bytes(lid).hex()
    return "-"


class ReticulumTransport(LineTransport):
    def __init__(
        self,
        link: RNS.Link,
        *,
        max_line_bytes: int,
        stats: StatsManager | None = None,
    ) -> None:
        self.log = logging.getLogger("budgetchat.reticulum")
        self.link = link
        self.stats = stats
        self.peer = f"rns:{fmt_link_id(link)}"

        self._lines: queue.Queue[bytes | None] = queue.Queue()
        self._assembler = LineAssembler(max_line_bytes)
        self._feed_lock = threading.Lock()
        self._timeout: float | None = None
        self._closed = threading.Event()

        self._buffer = RNS.Buffer.create_bidirectional_buffer(
            RNS_STREAM_ID, RNS_STREAM_ID, link.get_channel(), self._on_ready
        )
        link.set_link_closed_callback(self._on_link_closed)

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def _on_ready(self, ready_bytes: int) -> None:
        data = self._buffer.read(ready_bytes)
        if not data:
            return
        self._inc("bytes_in", len(data))
        with self._feed_lock:
            for raw in self._assembler.feed(data):
                self._lines.put(raw)

    def _on_link_closed(self, link: RNS.Link) -> None:
        with self._feed_lock:
            rest = self._assembler.flush()
        if rest:
            self._lines.put(rest)
        self._closed.set()
        self._lines.put(None)

    def read_line(self) -> str | None:
        if self._closed.is_set() and self._lines.empty():
            return None
        try:
            raw = self._lines.get(timeout=self._timeout)
        except queue.Empty as e:
            raise TransportError("read timed out") from e
        if raw is None:
            # Leave the marker for any later reader.
            self._lines.put(None)
            return None
        return decode_line(raw)

    def write(self, text: str) -> None:
        if self._closed.is_set():
            raise TransportError("link is closed")
        data = text.encode("utf-8")
        try:
            self._buffer.write(data)
            self._buffer.flush()
        except Exception as e:
            raise TransportError(f"write failed: {e}") from e
        self._inc("bytes_out", len(data))

    def set_timeout(self, seconds: float | None) -> None:
        self._timeout = seconds if seconds and seconds > 0 else None

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._lines.put(None)
        try:
            self.link.teardown()
        except Exception:
            self.log.debug("Link teardown failed peer=%s", self.peer, exc_info=True)


class ReticulumEndpoint:
    """Announces the room destination and hands new links to `on_transport`."""

    def __init__(
        self,
        config: ChatRuntimeConfig,
        on_transport: Callable[[LineTransport], None],
        *,
        stats: StatsManager | None = None,
    ) -> None:
        self.config = config
        self.on_transport = on_transport
        self.stats = stats
        self.log = logging.getLogger("budgetchat.reticulum")

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        self.identity = self._load_identity(
            self.config.identity_path or str(default_identity_path())
        )

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self.announce()

        self.log.info(
            "Reticulum room dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex(),
        )

    def announce(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce()
        except Exception:
            self.log.exception("Announce failed")

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if os.path.exists(p):
            ident = RNS.Identity.from_file(p)
            if ident is None:
                raise RuntimeError(f"Could not load identity from {p}")
            return ident

        storage_dir = os.path.dirname(p)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(p)
        try:
            os.chmod(p, 0o600)
        except OSError:
            pass
        self.log.info("Created room identity at %s", p)
        return ident

    def _on_link(self, link: RNS.Link) -> None:
        self.log.info("Link established link_id=%s", fmt_link_id(link))
        transport = ReticulumTransport(
            link, max_line_bytes=self.config.max_line_bytes, stats=self.stats
        )
        self.on_transport(transport)
