from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from docpilot.agent.models import TaskKind, Tier
from docpilot.agent.prompts import (
    PART_SEPARATOR,
    build_chat_prompt,
    build_edit_prompt,
    extract_references,
    format_comment_instructions,
    resolve_references,
)
from docpilot.agent.routing import TierRouting, parse_tier
from docpilot.config import AgentSettings
from docpilot.workspace.models import ChatRole, CommentStatus, CommentView, HistoryMessage

pytestmark = [
    allure.epic("Agent Dispatch"),
    allure.feature("Tier Routing & Prompts"),
]


def _comment(comment_id: int, selected: str, instruction: str, hint: str | None = None):
    return CommentView(
        id=comment_id,
        document_id=1,
        selected_text=selected,
        instruction=instruction,
        line_hint=hint,
        status=CommentStatus.PENDING,
        request_id=None,
        created_at=datetime(2026, 10, 19, tzinfo=UTC),
        resolved_at=None,
    )


def test_default_tier_is_used_without_hint() -> None:
    routing = TierRouting.from_settings(AgentSettings())

    profile = routing.resolve(TaskKind.EDIT, None)

    assert profile.tier is Tier.DEFAULT
    assert profile.model == "sonnet"
    assert profile.max_turns == 5
    assert profile.allowed_tools == ("Read", "Edit", "Write")


def test_chat_tasks_are_never_tool_restricted() -> None:
    routing = TierRouting.from_settings(AgentSettings())

    profile = routing.resolve(TaskKind.CHAT, "fast")

    assert profile.model == "haiku"
    assert profile.max_turns == 2
    assert profile.allowed_tools is None


def test_quality_tier_is_unbounded() -> None:
    routing = TierRouting.from_settings(AgentSettings())

    profile = routing.resolve(TaskKind.EDIT, Tier.QUALITY)

    assert profile.model == "opus"
    assert profile.max_turns is None
    assert profile.allowed_tools is None
    assert profile.cli_args() == []


def test_cli_args_for_restricted_profile() -> None:
    profile = TierRouting.from_settings(AgentSettings()).resolve(TaskKind.EDIT, "fast")

    assert profile.cli_args() == ["--max-turns", "3", "--allowedTools", "Read,Edit,Write"]


def test_parse_tier_normalizes_and_rejects() -> None:
    assert parse_tier(" Quality ") is Tier.QUALITY

    with pytest.raises(ValueError, match="Unsupported tier"):
        parse_tier("turbo")


def test_references_are_deduplicated_in_order() -> None:
    text = "See @notes/a.md and @b.md, then @notes/a.md again; mail me@example.com"

    assert extract_references(text) == ["notes/a.md", "b.md"]


def test_unreadable_references_are_skipped(tmp_path: Path) -> None:
    (tmp_path / "a.md").write_text("alpha", "utf-8")

    references = resolve_references("use @a.md and @missing.md", tmp_path)

    assert [(item.name, item.content) for item in references] == [("a.md", "alpha")]


def test_comment_instructions_are_numbered() -> None:
    text = format_comment_instructions(
        [
            _comment(1, "Old", "Say new", hint="line 2"),
            _comment(2, "Intro", "Shorten"),
        ],
    )

    assert text == (
        '1. Selected text:\n"""\nOld\n"""\nInstruction: Say new\nNear: line 2'
        "\n\n"
        '2. Selected text:\n"""\nIntro\n"""\nInstruction: Shorten'
    )


def test_edit_prompt_orders_document_instructions_references(tmp_path: Path) -> None:
    target = tmp_path / "doc.md"
    (tmp_path / "ref.md").write_text("reference body", "utf-8")
    references = resolve_references("@ref.md", tmp_path)

    prompt = build_edit_prompt(
        target=target,
        document="# T\nOld",
        instructions="1. Replace Old",
        references=references,
    )

    assert prompt.startswith(f"Edit the file at {target}:")
    assert prompt.index("# T\nOld") < prompt.index("1. Replace Old") < prompt.index(
        "reference body",
    )
    assert "Do not explain" not in prompt


def test_fast_edit_prompt_adds_terse_preamble(tmp_path: Path) -> None:
    prompt = build_edit_prompt(
        target=tmp_path / "doc.md",
        document=None,
        instructions="Fix typo",
        fast=True,
    )

    assert "Read it, apply the changes, and stop. Do not explain." in prompt
    assert "could not be read" in prompt


def test_chat_prompt_joins_parts_with_separator(tmp_path: Path) -> None:
    prompt = build_chat_prompt(
        target=tmp_path / "doc.md",
        document="body",
        message="Summarize",
        context_selection="the intro",
        history=[HistoryMessage(role=ChatRole.USER, content="hi")],
    )

    parts = prompt.split(PART_SEPARATOR)
    assert len(parts) == 4
    assert parts[0].endswith("body")
    assert parts[1].endswith("the intro")
    assert parts[2] == "Previous conversation:\n\nuser: hi"
    assert parts[3] == "User message: Summarize"
