from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import (
    ChatRuntimeConfig,
    apply_config_data,
    default_config_text,
    load_toml,
    validate_config,
)
from .constants import MAILBOX_POLICIES, NICK_POLICIES, OVERFLOW_POLICIES
from .logging_config import configure_logging
from .paths import default_config_path, default_identity_path, ensure_private_dir
from .service import ChatService


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(default_config_text(str(default_identity_path())))


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="budgetchatd", description="Run a line-based TCP chat room"
    )

    p.add_argument(
        "port",
        nargs="?",
        type=int,
        default=None,
        help="TCP port to listen on (default: 9999)",
    )
    p.add_argument(
        "--config",
        default=None,
        help=f"Path to a TOML config file (default: {default_config_path()}, if present)",
    )
    p.add_argument(
        "--write-config",
        action="store_true",
        help="Write a commented default config file and exit",
    )
    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")

    p.add_argument(
        "--max-nick-chars", type=int, default=None, help="Maximum nick length"
    )
    p.add_argument(
        "--nick-policy",
        choices=NICK_POLICIES,
        default=None,
        help="Allowed nick characters",
    )
    p.add_argument(
        "--max-message-bytes",
        type=int,
        default=None,
        help="Maximum message size in UTF-8 bytes",
    )
    p.add_argument(
        "--message-overflow",
        choices=OVERFLOW_POLICIES,
        default=None,
        help="What to do with over-long messages",
    )
    p.add_argument(
        "--mailbox-capacity",
        type=int,
        default=None,
        help="Pending messages buffered per user",
    )
    p.add_argument(
        "--mailbox-policy",
        choices=MAILBOX_POLICIES,
        default=None,
        help="Wait for slow readers (block) or drop for them (drop)",
    )
    p.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Disconnect joined users idle this many seconds (0 disables)",
    )
    p.add_argument(
        "--stats-interval",
        type=float,
        default=None,
        help="Log a stats line every N seconds (0 disables)",
    )

    p.add_argument(
        "--reticulum",
        action="store_true",
        help="Also serve the room over Reticulum links",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> ChatRuntimeConfig:
    config_path = str(args.config) if args.config else str(default_config_path())

    cfg = ChatRuntimeConfig(config_path=config_path)
    if os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))
    elif args.config:
        raise SystemExit(f"Config file not found: {config_path}")

    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))

    if args.max_nick_chars is not None:
        cfg = replace(cfg, max_nick_chars=int(args.max_nick_chars))
    if args.nick_policy is not None:
        cfg = replace(cfg, nick_policy=args.nick_policy)
    if args.max_message_bytes is not None:
        cfg = replace(cfg, max_message_bytes=int(args.max_message_bytes))
    if args.message_overflow is not None:
        cfg = replace(cfg, message_overflow=args.message_overflow)

    if args.mailbox_capacity is not None:
        cfg = replace(cfg, mailbox_capacity=int(args.mailbox_capacity))
    if args.mailbox_policy is not None:
        cfg = replace(cfg, mailbox_policy=args.mailbox_policy)

    if args.idle_timeout is not None:
        cfg = replace(cfg, idle_timeout_s=float(args.idle_timeout))
    if args.stats_interval is not None:
        cfg = replace(cfg, stats_interval_s=float(args.stats_interval))

    if args.reticulum:
        cfg = replace(cfg, reticulum_enabled=True)
    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    if args.write_config:
        config_path = str(args.config) if args.config else str(default_config_path())
        if os.path.exists(config_path):
            raise SystemExit(f"Refusing to overwrite existing config: {config_path}")
        _write_default_config(config_path)
        print(f"Wrote default config to {config_path}", file=sys.stderr)
        raise SystemExit(0)

    cfg = build_config(args)
    try:
        validate_config(cfg)
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}") from e

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = ChatService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
