"""Room membership and broadcast fan-out.

The registry is the only state shared between sessions. Every join, leave,
broadcast and roster read goes through one lock; the nick -> mailbox table is
never handed out. Broadcast snapshots its targets under the lock and delivers
after releasing it, so a full mailbox can only stall the sender, never the
room.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from .constants import MAILBOX_BLOCK, NICK_MAX_CHARS, NICK_POLICY_ALNUM
from .errors import MailboxClosed, NickTaken
from .mailbox import Mailbox
from .messages import ChatEvent
from .util import validate_nick

if TYPE_CHECKING:
    from .stats import StatsManager


class RoomRegistry:
    """Tracks present users and fans chat events out to their mailboxes."""

    def __init__(
        self,
        *,
        mailbox_capacity: int = 1,
        mailbox_policy: str = MAILBOX_BLOCK,
        block_timeout_s: float = 0.0,
        max_nick_chars: int = NICK_MAX_CHARS,
        nick_policy: str = NICK_POLICY_ALNUM,
        stats: StatsManager | None = None,
    ) -> None:
        self.log = logging.getLogger("budgetchat.rooms")
        self.mailbox_capacity = int(mailbox_capacity)
        self.mailbox_policy = mailbox_policy
        self.block_timeout_s = float(block_timeout_s)
        self.max_nick_chars = int(max_nick_chars)
        self.nick_policy = nick_policy
        self.stats = stats

        self._lock = threading.RLock()
        # Insertion ordered: roster snapshots list users in join order.
        self._members: dict[str, Mailbox] = {}

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def try_join(self, nick: str) -> tuple[str, Mailbox, list[str]]:
        """
        Reserve a nick and create its mailbox.

        Returns (nick, mailbox, roster) where roster lists the users that
        were present before this join. Raises InvalidNick or NickTaken; in
        both cases the registry is left untouched.
        """
        n = validate_nick(nick, max_chars=self.max_nick_chars, policy=self.nick_policy)

        mailbox = Mailbox(
            self.mailbox_capacity,
            policy=self.mailbox_policy,
            block_timeout_s=self.block_timeout_s,
        )

        with self._lock:
            if n in self._members:
                raise NickTaken(n)
            roster = list(self._members)
            self._members[n] = mailbox
            present = len(self._members)

        self._inc("joins")
        self.log.info("Joined nick=%r users=%s", n, present)
        return n, mailbox, roster

    def leave(self, nick: str, mailbox: Mailbox | None = None) -> bool:
        """
        Remove a nick and close its mailbox. Removing an absent nick is a
        no-op. When `mailbox` is given the entry is only removed if it still
        belongs to that mailbox.
        """
        with self._lock:
            current = self._members.get(nick)
            if current is None:
                return False
            if mailbox is not None and current is not mailbox:
                return False
            self._members.pop(nick, None)
            present = len(self._members)

        current.close()
        self._inc("parts")
        self.log.info("Left nick=%r users=%s", nick, present)
        return True

    def broadcast(self, sender: str, text: str) -> int:
        """Deliver `text` from `sender` to every other present user.

        Returns the number of mailboxes the event was queued in.
        """
        event = ChatEvent(sender=sender, text=text)

        with self._lock:
            targets = [
                (nick, mb) for nick, mb in self._members.items() if nick != sender
            ]

        delivered = 0
        for nick, mb in targets:
            try:
                ok = mb.put(event)
            except MailboxClosed:
                # Target is disconnecting concurrently.
                continue
            if ok:
                delivered += 1
            else:
                self._inc("deliveries_dropped")
                self.log.debug("Mailbox full, dropped event from=%r to=%r", sender, nick)

        self._inc("deliveries", delivered)
        return delivered

    def roster(self) -> list[str]:
        with self._lock:
            return list(self._members)

    def __contains__(self, nick: object) -> bool:
        with self._lock:
            return nick in self._members

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def get_stats(self) -> dict[str, Any]:
        """Get room statistics for service stats."""
        with self._lock:
            mailboxes = list(self._members.values())
        return {
            "users": len(mailboxes),
            "queued": sum(len(mb) for mb in mailboxes),
            "dropped": sum(mb.dropped for mb in mailboxes),
        }

    def clear_all(self) -> list[str]:
        """Remove every user and close their mailboxes. Called at shutdown."""
        with self._lock:
            members = list(self._members.items())
            self._members.clear()

        for _, mb in members:
            mb.close()
        return [nick for nick, _ in members]
