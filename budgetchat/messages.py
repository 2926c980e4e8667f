"""Chat events and the text lines the room sends to clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .constants import REJECT_PREFIX, ROSTER_PREFIX, ROSTER_SEPARATOR


@dataclass(frozen=True)
class ChatEvent:
    """One broadcastable message. `text` keeps the sender's line terminator."""

    sender: str
    text: str


def format_event(event: ChatEvent) -> str:
    return f"[{event.sender}]: {event.text}"


def format_roster(nicks: Iterable[str]) -> str:
    return ROSTER_PREFIX + ROSTER_SEPARATOR.join(nicks) + "\n"


def format_rejection(reason: str) -> str:
    return REJECT_PREFIX + reason + "\n"
