from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import ChatRuntimeConfig

_LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

_FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text in _LEVELS:
        return _LEVELS[text]
    try:
        return int(text)
    except ValueError:
        return default


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _file_handler(log_file: str) -> logging.Handler:
    p = Path(os.path.expanduser(log_file))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: ChatRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure Python logging for budgetchat.

    Safe to call more than once; previous root handlers are replaced.
    """

    level = parse_level(override_level or cfg.log_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if bool(cfg.log_console):
        handlers.append(logging.StreamHandler())

    log_file = _clean_optional(override_file) if override_file is not None else None
    if log_file is None:
        log_file = _clean_optional(cfg.log_file)
    if log_file:
        handlers.append(_file_handler(log_file))

    fmt = str(cfg.log_format).strip() or _FALLBACK_FORMAT
    formatter = logging.Formatter(fmt=fmt, datefmt=_clean_optional(cfg.log_datefmt))
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)

    # Reticulum logs through its own logger when the link transport is on.
    logging.getLogger("RNS").setLevel(parse_level(cfg.log_rns_level, logging.WARNING))

    logging.captureWarnings(True)
