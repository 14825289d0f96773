"""Runtime configuration for the editing session and agent transports."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_TRANSPORTS = ("process", "mailbox")

DEFAULT_COMMAND_TEMPLATE = "claude -p --model {model}"


@dataclass(slots=True)
class TierSettings:
    """Model and turn caps for one capability tier."""

    model: str
    edit_max_turns: int | None
    chat_max_turns: int | None
    restrict_tools: bool = True


@dataclass(slots=True)
class AgentSettings:
    """External assistant invocation settings."""

    transport: str = "process"
    command_template: str = DEFAULT_COMMAND_TEMPLATE
    allowed_tools: tuple[str, ...] = ("Read", "Edit", "Write")
    default_tier: str = "default"
    fast: TierSettings = field(
        default_factory=lambda: TierSettings(model="haiku", edit_max_turns=3, chat_max_turns=2),
    )
    default: TierSettings = field(
        default_factory=lambda: TierSettings(model="sonnet", edit_max_turns=5, chat_max_turns=3),
    )
    quality: TierSettings = field(
        default_factory=lambda: TierSettings(
            model="opus",
            edit_max_turns=None,
            chat_max_turns=None,
            restrict_tools=False,
        ),
    )
    kill_grace_seconds: float = 2.0


@dataclass(slots=True)
class MailboxSettings:
    """File mailbox shared with an external watcher process."""

    directory: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    poll_interval_seconds: float = 0.5


@dataclass(slots=True)
class HistorySettings:
    snapshot_list_limit: int = 50
    backup_dir_name: str | None = ".backups"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".docpilot.db")
    sqlite_busy_timeout_ms: int = 5_000
    agent: AgentSettings = field(default_factory=AgentSettings)
    mailbox: MailboxSettings = field(default_factory=MailboxSettings)
    history: HistorySettings = field(default_factory=HistorySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        defaults = AgentSettings()
        backups_enabled = _env_bool("DOCPILOT_BACKUPS_ENABLED", default=True)
        return cls(
            db_path=db_path or Path(os.getenv("DOCPILOT_DB_PATH", ".docpilot.db")),
            sqlite_busy_timeout_ms=int(os.getenv("DOCPILOT_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            agent=AgentSettings(
                transport=os.getenv("DOCPILOT_TRANSPORT", "process").strip().lower(),
                command_template=os.getenv("DOCPILOT_COMMAND_TEMPLATE", DEFAULT_COMMAND_TEMPLATE),
                allowed_tools=_env_csv("DOCPILOT_ALLOWED_TOOLS", defaults.allowed_tools),
                default_tier=os.getenv("DOCPILOT_DEFAULT_TIER", "default").strip().lower(),
                fast=_tier_from_env("FAST", defaults.fast),
                default=_tier_from_env("DEFAULT", defaults.default),
                quality=_tier_from_env("QUALITY", defaults.quality),
                kill_grace_seconds=float(os.getenv("DOCPILOT_KILL_GRACE_SECONDS", "2.0")),
            ),
            mailbox=MailboxSettings(
                directory=Path(os.getenv("DOCPILOT_MAILBOX_DIR", tempfile.gettempdir())),
                poll_interval_seconds=float(os.getenv("DOCPILOT_MAILBOX_POLL_SECONDS", "0.5")),
            ),
            history=HistorySettings(
                snapshot_list_limit=int(os.getenv("DOCPILOT_SNAPSHOT_LIST_LIMIT", "50")),
                backup_dir_name=(
                    os.getenv("DOCPILOT_BACKUP_DIR_NAME", ".backups") if backups_enabled else None
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the session cannot run with."""

        if self.agent.transport not in SUPPORTED_TRANSPORTS:
            raise ValueError(
                f"Unsupported DOCPILOT_TRANSPORT: {self.agent.transport!r}. "
                f"Use one of {SUPPORTED_TRANSPORTS}.",
            )
        if self.agent.transport == "process" and not self.agent.command_template.strip():
            raise ValueError("DOCPILOT_COMMAND_TEMPLATE must not be empty.")
        if self.mailbox.poll_interval_seconds <= 0:
            raise ValueError("DOCPILOT_MAILBOX_POLL_SECONDS must be > 0.")
        if self.agent.kill_grace_seconds < 0:
            raise ValueError("DOCPILOT_KILL_GRACE_SECONDS must be >= 0.")
        if self.history.snapshot_list_limit <= 0:
            raise ValueError("DOCPILOT_SNAPSHOT_LIST_LIMIT must be a positive integer.")
        for name, tier in (
            ("FAST", self.agent.fast),
            ("DEFAULT", self.agent.default),
            ("QUALITY", self.agent.quality),
        ):
            if not tier.model.strip():
                raise ValueError(f"DOCPILOT_{name}_MODEL must not be empty.")
            for turns in (tier.edit_max_turns, tier.chat_max_turns):
                if turns is not None and turns <= 0:
                    raise ValueError(f"DOCPILOT_{name} turn caps must be positive or empty.")


def _tier_from_env(prefix: str, fallback: TierSettings) -> TierSettings:
    name = f"DOCPILOT_{prefix}"
    return TierSettings(
        model=os.getenv(f"{name}_MODEL", fallback.model).strip(),
        edit_max_turns=_env_optional_int(f"{name}_EDIT_MAX_TURNS", fallback.edit_max_turns),
        chat_max_turns=_env_optional_int(f"{name}_CHAT_MAX_TURNS", fallback.chat_max_turns),
        restrict_tools=_env_bool(f"{name}_RESTRICT_TOOLS", default=fallback.restrict_tools),
    )


def _env_optional_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"", "none", "unlimited"}:
        return None
    try:
        return int(normalized)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
