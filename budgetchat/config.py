from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import (
    DEFAULT_DEST_NAME,
    DEFAULT_HOST,
    DEFAULT_PORT,
    LINE_MAX_BYTES,
    MAILBOX_BLOCK,
    MAILBOX_POLICIES,
    MSG_MAX_BYTES,
    NICK_MAX_CHARS,
    NICK_POLICIES,
    NICK_POLICY_ALNUM,
    OVERFLOW_POLICIES,
    OVERFLOW_TRUNCATE,
)


@dataclass(frozen=True)
class ChatRuntimeConfig:
    config_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_nick_chars: int = NICK_MAX_CHARS
    nick_policy: str = NICK_POLICY_ALNUM
    max_message_bytes: int = MSG_MAX_BYTES
    message_overflow: str = OVERFLOW_TRUNCATE
    max_line_bytes: int = LINE_MAX_BYTES
    mailbox_capacity: int = 64
    mailbox_policy: str = MAILBOX_BLOCK
    mailbox_block_timeout_s: float = 5.0
    handshake_timeout_s: float = 60.0
    idle_timeout_s: float = 0.0
    send_reject_reason: bool = True
    stats_interval_s: float = 0.0
    reticulum_enabled: bool = False
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = DEFAULT_DEST_NAME
    announce_on_start: bool = True
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


# Keys whose empty-string value means "unset".
_OPTIONAL_STR_KEYS = ("configdir", "identity_path", "log_file", "log_datefmt")

_INT_KEYS = ("port", "max_nick_chars", "max_message_bytes", "max_line_bytes", "mailbox_capacity")
_FLOAT_KEYS = (
    "mailbox_block_timeout_s",
    "handshake_timeout_s",
    "idle_timeout_s",
    "stats_interval_s",
)


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: ChatRuntimeConfig, data: dict) -> ChatRuntimeConfig:
    """Overlay a parsed TOML document onto `cfg`.

    The [server], [room] and [reticulum] tables are flattened into the top
    level; [logging] keys map onto the log_* fields. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return cfg

    for table_name in ("server", "room", "reticulum"):
        table = data.get(table_name)
        if isinstance(table, dict):
            data = {**data, **table}

    rns_table = data.get("reticulum")
    if isinstance(rns_table, dict) and "enabled" in rns_table:
        data = {**data, "reticulum_enabled": rns_table.get("enabled")}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "rns_level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates: dict[str, Any] = {k: v for k, v in data.items() if k in allowed}

    for key in _OPTIONAL_STR_KEYS:
        if key in updates and updates[key] == "":
            updates[key] = None
    for key in _INT_KEYS:
        if key in updates:
            updates[key] = int(updates[key])
    for key in _FLOAT_KEYS:
        if key in updates:
            updates[key] = float(updates[key])

    return replace(cfg, **updates) if updates else cfg


def validate_config(cfg: ChatRuntimeConfig) -> None:
    if not 0 <= int(cfg.port) <= 65535:
        raise ValueError(f"port out of range: {cfg.port}")
    if cfg.nick_policy not in NICK_POLICIES:
        raise ValueError(f"nick_policy must be one of {', '.join(NICK_POLICIES)}")
    if cfg.mailbox_policy not in MAILBOX_POLICIES:
        raise ValueError(
            f"mailbox_policy must be one of {', '.join(MAILBOX_POLICIES)}"
        )
    if cfg.message_overflow not in OVERFLOW_POLICIES:
        raise ValueError(
            f"message_overflow must be one of {', '.join(OVERFLOW_POLICIES)}"
        )
    if int(cfg.mailbox_capacity) < 1:
        raise ValueError("mailbox_capacity must be at least 1")
    if int(cfg.max_nick_chars) < 0:
        raise ValueError("max_nick_chars must not be negative")
    if int(cfg.max_message_bytes) < 1:
        raise ValueError("max_message_bytes must be positive")
    if int(cfg.max_line_bytes) < max(int(cfg.max_message_bytes), int(cfg.max_nick_chars)):
        raise ValueError("max_line_bytes must cover max_message_bytes and max_nick_chars")
    if cfg.reticulum_enabled and not str(cfg.dest_name).strip("."):
        raise ValueError("dest_name must not be empty")


def default_config_text(identity_path: str) -> str:
    return f"""# budgetchat configuration (TOML)
#
# Command line flags override values from this file.

[server]

# Listen address for the TCP room.
host = "{DEFAULT_HOST}"
port = {DEFAULT_PORT}

# Seconds a new connection has to send its nick (0 disables).
handshake_timeout_s = 60.0

# Close joined connections that send nothing for this many seconds (0 disables).
idle_timeout_s = 0.0

# Hard cap for any single input line in bytes.
max_line_bytes = {LINE_MAX_BYTES}

# Log a stats line every N seconds (0 disables; stats are always logged on shutdown).
stats_interval_s = 0.0

[room]

# Nick policy: "alnum" (ASCII letters and digits) or "printable"
# (anything without control characters).
nick_policy = "alnum"
max_nick_chars = {NICK_MAX_CHARS}

# Tell rejected clients why before disconnecting them.
send_reject_reason = true

# Messages longer than this (UTF-8 bytes, excluding the line terminator)
# are either truncated or cause the connection to be closed.
max_message_bytes = {MSG_MAX_BYTES}
message_overflow = "truncate"

# Per-user delivery queue.
#
# mailbox_policy = "block": a sender waits up to mailbox_block_timeout_s for a
# slow reader (0 waits forever), then the message is dropped for that reader.
# mailbox_policy = "drop": messages that do not fit are dropped immediately.
mailbox_capacity = 64
mailbox_policy = "block"
mailbox_block_timeout_s = 5.0

[reticulum]

# Also serve the room over Reticulum links.
enabled = false

# Reticulum configuration directory (empty uses the Reticulum default).
configdir = ""

# Identity used for the room destination (created if missing).
identity_path = {identity_path!r}

dest_name = "{DEFAULT_DEST_NAME}"
announce_on_start = true

[logging]

level = "INFO"
rns_level = "WARNING"
console = true
file = ""
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""
