from __future__ import annotations

import os
import unicodedata

from .constants import NICK_MAX_CHARS, NICK_POLICY_ALNUM
from .errors import InvalidNick


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _nick_problem(s: str, *, max_chars: int, policy: str) -> str | None:
    if not s:
        return "nick must not be empty"

    if max_chars > 0 and len(s) > int(max_chars):
        return f"nick must be at most {max_chars} characters"

    # The nick arrives as one transport line; embedded control characters
    # (newlines, NUL, escapes) would break framing and log output.
    if any(unicodedata.category(ch) == "Cc" for ch in s):
        return "nick must not contain control characters"

    if policy == NICK_POLICY_ALNUM and not (s.isascii() and s.isalnum()):
        return "nick must be alphanumeric"

    try:
        s.encode("utf-8", "strict")
    except UnicodeError:
        return "nick must be valid UTF-8"

    return None


def validate_nick(
    value,
    *,
    max_chars: int = NICK_MAX_CHARS,
    policy: str = NICK_POLICY_ALNUM,
) -> str:
    """Return the normalized nick or raise InvalidNick."""
    if not isinstance(value, str):
        raise InvalidNick("nick must be a string")

    s = value.strip()
    problem = _nick_problem(s, max_chars=max_chars, policy=policy)
    if problem is not None:
        raise InvalidNick(problem)
    return s


def normalize_nick(
    value,
    *,
    max_chars: int = NICK_MAX_CHARS,
    policy: str = NICK_POLICY_ALNUM,
) -> str | None:
    try:
        return validate_nick(value, max_chars=max_chars, policy=policy)
    except InvalidNick:
        return None


def strip_terminator(line: str) -> tuple[str, str]:
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n"):
        return line[:-1], "\n"
    return line, ""


def clamp_utf8(text: str, max_bytes: int) -> str:
    raw = text.encode("utf-8")
    if len(raw) <= max_bytes:
        return text
    return raw[:max_bytes].decode("utf-8", "ignore")
