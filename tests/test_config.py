from __future__ import annotations

from pathlib import Path

import allure
import pytest

from docpilot.agent.transport import DirectProcessTransport, MailboxTransport, build_transport
from docpilot.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_defaults_are_valid(monkeypatch) -> None:
    for name in ("DOCPILOT_TRANSPORT", "DOCPILOT_COMMAND_TEMPLATE", "DOCPILOT_DEFAULT_TIER"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env(db_path=Path("docs.db"))
    settings.validate()

    assert settings.db_path == Path("docs.db")
    assert settings.agent.transport == "process"
    assert settings.agent.fast.model == "haiku"
    assert settings.agent.quality.edit_max_turns is None
    assert isinstance(build_transport(settings), DirectProcessTransport)


def test_env_overrides_tiers_and_transport(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DOCPILOT_TRANSPORT", " Mailbox ")
    monkeypatch.setenv("DOCPILOT_MAILBOX_DIR", str(tmp_path))
    monkeypatch.setenv("DOCPILOT_MAILBOX_POLL_SECONDS", "0.1")
    monkeypatch.setenv("DOCPILOT_FAST_MODEL", "tiny")
    monkeypatch.setenv("DOCPILOT_FAST_EDIT_MAX_TURNS", "unlimited")
    monkeypatch.setenv("DOCPILOT_DEFAULT_RESTRICT_TOOLS", "no")
    monkeypatch.setenv("DOCPILOT_ALLOWED_TOOLS", "Read, Edit")

    settings = Settings.from_env()
    settings.validate()

    assert settings.agent.fast.model == "tiny"
    assert settings.agent.fast.edit_max_turns is None
    assert settings.agent.default.restrict_tools is False
    assert settings.agent.allowed_tools == ("Read", "Edit")
    transport = build_transport(settings)
    assert isinstance(transport, MailboxTransport)
    assert transport.directory == tmp_path
    assert transport.poll_interval_seconds == 0.1


def test_backups_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setenv("DOCPILOT_BACKUPS_ENABLED", "off")

    assert Settings.from_env().history.backup_dir_name is None


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("DOCPILOT_FAST_CHAT_MAX_TURNS", "many"),
        ("DOCPILOT_BACKUPS_ENABLED", "maybe"),
    ],
)
def test_malformed_env_values_are_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        Settings.from_env()


def test_validate_rejects_unknown_transport() -> None:
    settings = Settings()
    settings.agent.transport = "carrier-pigeon"

    with pytest.raises(ValueError, match="Unsupported DOCPILOT_TRANSPORT"):
        settings.validate()


def test_validate_rejects_empty_command_template() -> None:
    settings = Settings()
    settings.agent.command_template = "  "

    with pytest.raises(ValueError, match="DOCPILOT_COMMAND_TEMPLATE"):
        settings.validate()


def test_validate_rejects_non_positive_turn_caps() -> None:
    settings = Settings()
    settings.agent.default.edit_max_turns = 0

    with pytest.raises(ValueError, match="DOCPILOT_DEFAULT turn caps"):
        settings.validate()


def test_validate_rejects_non_positive_poll_interval() -> None:
    settings = Settings()
    settings.mailbox.poll_interval_seconds = 0

    with pytest.raises(ValueError, match="DOCPILOT_MAILBOX_POLL_SECONDS"):
        settings.validate()
