from __future__ import annotations

import logging
import signal
import socketserver
import threading
import time
from typing import TYPE_CHECKING

from .config import ChatRuntimeConfig, validate_config
from .rooms import RoomRegistry
from .session import Session
from .stats import StatsManager
from .transport import LineTransport, SocketTransport

if TYPE_CHECKING:
    from .reticulum import ReticulumEndpoint


class _ChatRequestHandler(socketserver.BaseRequestHandler):
    server: _ChatTCPServer

    def handle(self) -> None:
        service = self.server.service
        transport = SocketTransport(
            self.request,
            max_line_bytes=service.config.max_line_bytes,
            stats=service.stats,
        )
        service.serve_transport(transport)


class _ChatTCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], service: ChatService) -> None:
        self.service = service
        super().__init__(address, _ChatRequestHandler)


class ChatService:
    def __init__(self, config: ChatRuntimeConfig) -> None:
        validate_config(config)
        self.config = config
        self.log = logging.getLogger("budgetchat.service")

        self.stats = StatsManager()
        self.registry = RoomRegistry(
            mailbox_capacity=config.mailbox_capacity,
            mailbox_policy=config.mailbox_policy,
            block_timeout_s=config.mailbox_block_timeout_s,
            max_nick_chars=config.max_nick_chars,
            nick_policy=config.nick_policy,
            stats=self.stats,
        )

        # Live sessions, so shutdown can release their transports.
        self._sessions: set[Session] = set()
        self._sessions_lock = threading.Lock()

        self._shutdown = threading.Event()
        self._stopped = False

        self._server: _ChatTCPServer | None = None
        self._server_thread: threading.Thread | None = None
        self._stats_thread: threading.Thread | None = None
        self.reticulum: ReticulumEndpoint | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        if self._server is not None:
            return
        self.stats.set_start_time()

        self._server = _ChatTCPServer((self.config.host, int(self.config.port)), self)
        self._server_thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.25},
            name="budgetchat-listener",
            daemon=True,
        )
        self._server_thread.start()

        host, port = self.address or ("-", 0)
        self.log.info("Listening on %s:%s", host, port)
        self.log.info(
            "Policy nick_policy=%s max_nick_chars=%s max_message_bytes=%s "
            "message_overflow=%s mailbox_capacity=%s mailbox_policy=%s",
            self.config.nick_policy,
            self.config.max_nick_chars,
            self.config.max_message_bytes,
            self.config.message_overflow,
            self.config.mailbox_capacity,
            self.config.mailbox_policy,
        )

        if self.config.reticulum_enabled:
            from .reticulum import ReticulumEndpoint

            self.reticulum = ReticulumEndpoint(
                self.config, self.spawn_session, stats=self.stats
            )
            self.reticulum.start()

        if self.config.stats_interval_s and self.config.stats_interval_s > 0:
            self._stats_thread = threading.Thread(
                target=self._stats_loop, name="budgetchat-stats", daemon=True
            )
            self._stats_thread.start()

    def serve_transport(self, transport: LineTransport) -> None:
        """Run a session for `transport` on the calling thread."""
        session = Session(self.registry, transport, self.config, stats=self.stats)
        with self._sessions_lock:
            if self._shutdown.is_set():
                transport.close()
                return
            self._sessions.add(session)

        self.stats.inc("connections")
        self.log.info("Accepted connection peer=%s", transport.peer)
        try:
            session.run()
        finally:
            with self._sessions_lock:
                self._sessions.discard(session)

    def spawn_session(self, transport: LineTransport) -> threading.Thread:
        t = threading.Thread(
            target=self.serve_transport,
            args=(transport,),
            name=f"budgetchat-session-{transport.peer}",
            daemon=True,
        )
        t.start()
        return t

    def session_count(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)

    def _stats_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.stats_interval_s)):
            self.log.info("%s", self.stats.format_stats(self.registry))

    def run_forever(self) -> None:
        if self._server is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        with self._sessions_lock:
            if self._stopped:
                return
            self._stopped = True
            self._shutdown.set()
            sessions = list(self._sessions)

        if self._server is not None:
            self._server.shutdown()

        for session in sessions:
            session.transport.close()

        nicks = self.registry.clear_all()

        if self._server is not None:
            self._server.server_close()

        self.log.info("Stopped; disconnected users=%s", len(nicks))
        self.log.info("%s", self.stats.format_stats(self.registry))
