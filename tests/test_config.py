import logging

import pytest

from budgetchat.cli import _build_arg_parser, build_config
from budgetchat.config import (
    ChatRuntimeConfig,
    apply_config_data,
    default_config_text,
    load_toml,
    validate_config,
)
from budgetchat.logging_config import configure_logging, parse_level


def test_defaults_are_valid() -> None:
    cfg = ChatRuntimeConfig()
    validate_config(cfg)
    assert cfg.port == 9999
    assert cfg.max_nick_chars == 128
    assert cfg.max_message_bytes == 1000


def test_apply_config_data_flattens_tables() -> None:
    data = {
        "server": {"port": "4000", "idle_timeout_s": 30},
        "room": {"mailbox_policy": "drop", "mailbox_capacity": 2, "nick_policy": "printable"},
        "reticulum": {"enabled": True, "configdir": "", "dest_name": "chat.lobby"},
        "logging": {"level": "DEBUG", "file": "", "console": False},
        "config_path": "/elsewhere.toml",
        "unknown_key": 1,
    }
    cfg = apply_config_data(ChatRuntimeConfig(config_path="/here.toml"), data)

    assert cfg.port == 4000
    assert cfg.idle_timeout_s == 30.0
    assert cfg.mailbox_policy == "drop"
    assert cfg.mailbox_capacity == 2
    assert cfg.nick_policy == "printable"
    assert cfg.reticulum_enabled is True
    assert cfg.configdir is None
    assert cfg.dest_name == "chat.lobby"
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.log_console is False
    assert cfg.config_path == "/here.toml"


@pytest.mark.parametrize(
    "overrides",
    [
        {"port": 70000},
        {"nick_policy": "anything"},
        {"mailbox_policy": "sometimes"},
        {"message_overflow": "explode"},
        {"mailbox_capacity": 0},
        {"max_message_bytes": 0},
        {"max_line_bytes": 10},
    ],
)
def test_validate_config_rejects(overrides) -> None:
    with pytest.raises(ValueError):
        validate_config(ChatRuntimeConfig(**overrides))


def test_default_config_text_loads_cleanly(tmp_path) -> None:
    path = tmp_path / "budgetchat.toml"
    path.write_text(default_config_text(str(tmp_path / "identity")), encoding="utf-8")

    cfg = apply_config_data(ChatRuntimeConfig(), load_toml(str(path)))
    validate_config(cfg)
    assert cfg == ChatRuntimeConfig(identity_path=str(tmp_path / "identity"))


def test_cli_overrides_config_file(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BUDGETCHAT_HOME", str(tmp_path))
    path = tmp_path / "custom.toml"
    path.write_text('[server]\nport = 4000\nhost = "127.0.0.1"\n', encoding="utf-8")

    args = _build_arg_parser().parse_args(
        ["5000", "--config", str(path), "--mailbox-policy", "drop", "--log-file", ""]
    )
    cfg = build_config(args)

    assert cfg.port == 5000
    assert cfg.host == "127.0.0.1"
    assert cfg.mailbox_policy == "drop"
    assert cfg.log_file is None
    assert cfg.config_path == str(path)


def test_cli_without_config_file_uses_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BUDGETCHAT_HOME", str(tmp_path))
    cfg = build_config(_build_arg_parser().parse_args([]))
    assert cfg.port == 9999
    assert cfg.config_path == str(tmp_path / "budgetchat.toml")


def test_cli_missing_explicit_config_is_an_error(tmp_path) -> None:
    args = _build_arg_parser().parse_args(["--config", str(tmp_path / "nope.toml")])
    with pytest.raises(SystemExit):
        build_config(args)


def test_parse_level() -> None:
    assert parse_level("debug", logging.INFO) == logging.DEBUG
    assert parse_level("", logging.INFO) == logging.INFO
    assert parse_level("15", logging.INFO) == 15
    assert parse_level("loud", logging.WARNING) == logging.WARNING


def test_configure_logging_writes_file(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "budgetchat.log"
    try:
        configure_logging(
            ChatRuntimeConfig(log_console=False, log_file=str(log_file)),
            override_level="DEBUG",
        )
        logging.getLogger("budgetchat.test").debug("hello from the room")
        for h in root.handlers:
            h.flush()
        assert "hello from the room" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
