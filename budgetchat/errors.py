"""Error taxonomy for the chat room."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for budgetchat errors."""


class InvalidNick(ChatError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NickTaken(ChatError):
    def __init__(self, nick: str) -> None:
        super().__init__(f"nick {nick!r} is already in use")
        self.nick = nick
        self.reason = "nick already in use"


class TransportError(ChatError):
    """Read or write failure on a line transport."""


class MailboxClosed(ChatError):
    """The consumer side of a mailbox is gone."""


class MessageTooLong(ChatError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"message is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit
