from __future__ import annotations

import enum
import logging
import threading
from typing import TYPE_CHECKING

from .config import ChatRuntimeConfig
from .constants import OVERFLOW_CLOSE, PROMPT_NICK
from .errors import InvalidNick, MessageTooLong, NickTaken, TransportError
from .messages import format_event, format_rejection, format_roster
from .util import clamp_utf8, strip_terminator

if TYPE_CHECKING:
    from .mailbox import Mailbox
    from .rooms import RoomRegistry
    from .stats import StatsManager
    from .transport import LineTransport


class SessionState(enum.Enum):
    AWAITING_NICK = "awaiting_nick"
    JOINED = "joined"
    CLOSED = "closed"


class Session:
    """
    Drives one connection through its lifecycle.

    AWAITING_NICK: prompt, read one line, try to join the room.
    JOINED: relay inbound lines into room broadcasts on the calling thread
    while an outbound thread drains this user's mailbox to the transport.
    CLOSED: the nick has left the room and the transport is released.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        transport: LineTransport,
        config: ChatRuntimeConfig | None = None,
        *,
        stats: StatsManager | None = None,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.config = config or ChatRuntimeConfig()
        self.stats = stats
        self.log = logging.getLogger("budgetchat.session")

        self.state = SessionState.AWAITING_NICK
        self.nick: str | None = None
        self.mailbox: Mailbox | None = None

        self._outbound: threading.Thread | None = None
        self._close_lock = threading.Lock()

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def run(self) -> None:
        try:
            if self._handshake():
                self._relay_inbound()
        except TransportError as e:
            self._inc("transport_errors")
            self.log.info(
                "Transport error peer=%s nick=%r err=%s",
                self.transport.peer,
                self.nick,
                e,
            )
        except MessageTooLong as e:
            self.log.info(
                "Closing peer=%s nick=%r: %s", self.transport.peer, self.nick, e
            )
        finally:
            self.close()

    def _handshake(self) -> bool:
        self.transport.set_timeout(self.config.handshake_timeout_s)
        self.transport.write(PROMPT_NICK)

        line = self.transport.read_line()
        if line is None:
            self.log.debug("Peer left before sending a nick peer=%s", self.transport.peer)
            return False

        try:
            nick, mailbox, roster = self.registry.try_join(line)
        except (InvalidNick, NickTaken) as e:
            self._inc("joins_rejected")
            self.log.info("Join rejected peer=%s reason=%s", self.transport.peer, e.reason)
            if self.config.send_reject_reason:
                self.transport.write(format_rejection(e.reason))
            return False

        self.nick = nick
        self.mailbox = mailbox
        self.state = SessionState.JOINED

        self.transport.write(format_roster(roster))
        self.transport.set_timeout(self.config.idle_timeout_s)

        self._outbound = threading.Thread(
            target=self._relay_outbound,
            name=f"budgetchat-out-{nick}",
            daemon=True,
        )
        self._outbound.start()
        return True

    def _relay_outbound(self) -> None:
        mailbox = self.mailbox
        if mailbox is None:
            return

        while True:
            event = mailbox.get()
            if event is None:
                return
            try:
                self.transport.write(format_event(event))
            except TransportError as e:
                self._inc("transport_errors")
                self.log.info(
                    "Write failed peer=%s nick=%r err=%s",
                    self.transport.peer,
                    self.nick,
                    e,
                )
                # Unblocks the inbound read, which then runs close().
                self.transport.close()
                return

    def _relay_inbound(self) -> None:
        while self.state is SessionState.JOINED:
            line = self.transport.read_line()
            if line is None:
                return
            text = self._prepare_message(line)
            if text is None:
                continue
            self._inc("msgs_in")
            self.registry.broadcast(self.nick, text)

    def _prepare_message(self, line: str) -> str | None:
        body, terminator = strip_terminator(line)
        if not body:
            return None

        limit = int(self.config.max_message_bytes)
        size = len(body.encode("utf-8"))
        if size <= limit:
            return line

        if self.config.message_overflow == OVERFLOW_CLOSE:
            raise MessageTooLong(size, limit)

        self._inc("msgs_truncated")
        self.log.debug("Truncated message nick=%r bytes=%s", self.nick, size)
        return clamp_utf8(body, limit) + terminator

    def close(self) -> None:
        """Leave the room and release the transport. Safe to call repeatedly."""
        with self._close_lock:
            if self.state is SessionState.CLOSED:
                return
            was_joined = self.state is SessionState.JOINED
            self.state = SessionState.CLOSED

        if was_joined and self.nick is not None:
            self.registry.leave(self.nick, self.mailbox)

        self.transport.close()

        outbound = self._outbound
        if outbound is not None and outbound is not threading.current_thread():
            outbound.join(timeout=5.0)

        self.log.info(
            "Session closed peer=%s nick=%r joined=%s",
            self.transport.peer,
            self.nick,
            was_joined,
        )
