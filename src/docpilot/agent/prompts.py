"""Outbound prompt construction for edit and chat tasks."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from docpilot.workspace.models import ChatRole, CommentView, HistoryMessage

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"@((?:[\w.-]+/)*[\w.-]+\.md)")
PART_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True, slots=True)
class ReferenceDocument:
    name: str
    content: str


def extract_references(text: str) -> list[str]:
    """Return ``@name.md`` references in first-seen order without duplicates."""

    seen: dict[str, None] = {}
    for match in REFERENCE_PATTERN.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def resolve_references(text: str, base_dir: Path) -> list[ReferenceDocument]:
    """Read referenced documents relative to ``base_dir``; unreadable ones are skipped."""

    documents: list[ReferenceDocument] = []
    for name in extract_references(text):
        path = base_dir / name
        try:
            content = path.read_text("utf-8")
        except (OSError, UnicodeDecodeError):
            logger.info("Skipping unreadable reference %s", path)
            continue
        documents.append(ReferenceDocument(name=name, content=content))
    return documents


def format_comment_instructions(comments: Sequence[CommentView]) -> str:
    """Numbered selection/instruction list sent as one edit request."""

    blocks = [
        f'{index}. Selected text:\n"""\n{comment.selected_text}\n"""\n'
        f"Instruction: {comment.instruction}"
        + (f"\nNear: {comment.line_hint}" if comment.line_hint else "")
        for index, comment in enumerate(comments, start=1)
    ]
    return "\n\n".join(blocks)


def read_document(path: Path) -> str | None:
    try:
        return path.read_text("utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def build_edit_prompt(
    *,
    target: Path,
    document: str | None,
    instructions: str,
    references: Sequence[ReferenceDocument] = (),
    fast: bool = False,
) -> str:
    """Document content, then instructions, then reference material."""

    header = (
        f"Edit the file at {target}. Read it, apply the changes, and stop. Do not explain."
        if fast
        else f"Edit the file at {target}:"
    )
    if document is None:
        body = f"{header}\n\n(The current content of {target} could not be read.)"
    else:
        body = f"{header}\n\nCurrent content:\n```\n{document}\n```"

    prompt = (
        f"{body}\n\nApply these changes:\n\n{instructions.strip()}\n\n"
        "Make the changes directly to the file. Be precise and only change what's requested."
    )
    for reference in references:
        prompt += f"\n\nReference document ({reference.name}):\n```\n{reference.content}\n```"
    return prompt


def build_chat_prompt(
    *,
    target: Path,
    document: str | None,
    message: str,
    context_selection: str | None = None,
    history: Sequence[HistoryMessage] = (),
    references: Sequence[ReferenceDocument] = (),
) -> str:
    parts: list[str] = []
    if document is None:
        parts.append(f"The user is working on a document at {target} (could not read file).")
    else:
        parts.append(
            f"The user is working on a document at {target}. "
            f"Here is its current content:\n\n{document}",
        )
    if context_selection:
        parts.append(f"The user has selected this text for context:\n\n{context_selection}")
    if history:
        history_text = "\n\n".join(
            f"{ChatRole(item.role).value}: {item.content}" for item in history
        )
        parts.append(f"Previous conversation:\n\n{history_text}")
    parts.append(f"User message: {message}")
    for reference in references:
        parts.append(f"Reference document ({reference.name}):\n```\n{reference.content}\n```")
    return PART_SEPARATOR.join(parts)
