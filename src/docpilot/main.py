"""CLI entrypoint for docpilot."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from docpilot import __version__
from docpilot.controllers import (
    ChatCommand,
    CommentAddCommand,
    CommentListCommand,
    CommentRemoveCommand,
    DocpilotCliController,
    EditCommand,
    HistoryChangelogCommand,
    HistoryClearCommand,
    HistorySnapshotCommand,
    HistorySnapshotsCommand,
    LastOutputCommand,
    ReviewCommand,
)
from docpilot.history.review import PendingReview, ReviewError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = DocpilotCliController()

TIER_CHOICE = click.Choice(["fast", "default", "quality"], case_sensitive=False)
DOCUMENT_ARGUMENT = click.argument(
    "document",
    type=click.Path(path_type=Path, dir_okay=False),
)
DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="docpilot")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def docpilot(log_level: str) -> None:
    """Review-comment driven document editing with an external coding assistant."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@docpilot.group()
def comment() -> None:
    """Review comment commands."""


@comment.command("add")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
@click.option("--selection", "selected_text", required=True, help="Text the comment is about.")
@click.option("--instruction", required=True, help="What the assistant should change.")
@click.option("--line-hint", default=None, help="Optional location hint, for example a heading.")
def comment_add(
    db_path: Path | None,
    document: Path,
    selected_text: str,
    instruction: str,
    line_hint: str | None,
) -> None:
    """Attach a pending comment to a document."""

    _run(
        lambda: CONTROLLER.add_comment(
            CommentAddCommand(
                db_path=db_path,
                document=document,
                selected_text=selected_text,
                instruction=instruction,
                line_hint=line_hint,
            ),
        ),
    )


@comment.command("list")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
@click.option(
    "--status",
    type=click.Choice(["pending", "applied"], case_sensitive=False),
    default=None,
    help="Only show comments with this status.",
)
def comment_list(db_path: Path | None, document: Path, status: str | None) -> None:
    """List comments of a document in creation order."""

    _run(
        lambda: CONTROLLER.list_comments(
            CommentListCommand(
                db_path=db_path,
                document=document,
                status=status.lower() if status else None,
            ),
        ),
    )


@comment.command("remove")
@DB_PATH_OPTION
@click.argument("comment_id", type=click.IntRange(min=1))
def comment_remove(db_path: Path | None, comment_id: int) -> None:
    """Delete one comment."""

    _run(
        lambda: CONTROLLER.remove_comment(
            CommentRemoveCommand(db_path=db_path, comment_id=comment_id),
        ),
    )


@docpilot.command("edit")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
@click.option("--tier", type=TIER_CHOICE, default=None, help="Assistant tier override.")
@click.option(
    "--decision",
    type=click.Choice(["prompt", "approve", "reject", "keep"], case_sensitive=False),
    default="prompt",
    show_default=True,
    help="How to settle the review: ask, approve, reject, or keep the edit undecided.",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=1),
    default=600,
    show_default=True,
    help="Seconds to wait for the assistant.",
)
@click.option(
    "--context",
    "diff_context",
    type=click.IntRange(min=0),
    default=3,
    show_default=True,
    help="Unchanged lines shown around each change.",
)
def edit(  # noqa: PLR0913
    db_path: Path | None,
    document: Path,
    tier: str | None,
    decision: str,
    timeout_seconds: float,
    diff_context: int,
) -> None:
    """Send all pending comments as one edit request and review the result."""

    _run(
        lambda: CONTROLLER.edit(
            EditCommand(
                db_path=db_path,
                document=document,
                tier=tier.lower() if tier else None,
                decision=None if decision.lower() == "prompt" else decision.lower(),
                timeout_seconds=timeout_seconds,
                diff_context=diff_context,
            ),
            echo=click.echo,
            decide=_prompt_decision,
        ),
    )


@docpilot.command("chat")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
@click.argument("message")
@click.option("--session-id", type=click.IntRange(min=1), default=None, help="Continue a session.")
@click.option("--selection", "context_selection", default=None, help="Selected text for context.")
@click.option("--tier", type=TIER_CHOICE, default=None, help="Assistant tier override.")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=1),
    default=600,
    show_default=True,
    help="Seconds to wait for the assistant.",
)
def chat(  # noqa: PLR0913
    db_path: Path | None,
    document: Path,
    message: str,
    session_id: int | None,
    context_selection: str | None,
    tier: str | None,
    timeout_seconds: float,
) -> None:
    """Ask the assistant about a document; the reply is stored in the session."""

    _run(
        lambda: CONTROLLER.chat(
            ChatCommand(
                db_path=db_path,
                document=document,
                message=message,
                session_id=session_id,
                context_selection=context_selection,
                tier=tier.lower() if tier else None,
                timeout_seconds=timeout_seconds,
            ),
            echo=click.echo,
        ),
    )


@docpilot.group()
def review() -> None:
    """Settle an edit whose review was left undecided."""


@review.command("approve")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
def review_approve(db_path: Path | None, document: Path) -> None:
    """Keep the edit and resolve every applied comment."""

    _run(lambda: CONTROLLER.approve_kept(ReviewCommand(db_path=db_path, document=document)))


@review.command("reject")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
def review_reject(db_path: Path | None, document: Path) -> None:
    """Restore the content from before the last agent edit and reopen its comments."""

    _run(lambda: CONTROLLER.reject_kept(ReviewCommand(db_path=db_path, document=document)))


@docpilot.group()
def history() -> None:
    """Changelog and snapshot commands."""


@history.command("changelog")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="How many latest entries to print.",
)
@click.option(
    "--show-log/--no-show-log",
    default=False,
    show_default=True,
    help="Print the captured assistant output of each entry.",
)
def history_changelog(db_path: Path | None, document: Path, limit: int, show_log: bool) -> None:
    """Show edit requests of a document, newest first."""

    _run(
        lambda: CONTROLLER.changelog(
            HistoryChangelogCommand(
                db_path=db_path,
                document=document,
                limit=limit,
                show_log=show_log,
            ),
        ),
    )


@history.command("snapshots")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=None,
    help="How many latest snapshots to print. Defaults to DOCPILOT_SNAPSHOT_LIST_LIMIT.",
)
def history_snapshots(db_path: Path | None, document: Path, limit: int | None) -> None:
    """List saved versions of a document, newest first."""

    _run(
        lambda: CONTROLLER.snapshots(
            HistorySnapshotsCommand(db_path=db_path, document=document, limit=limit),
        ),
    )


@history.command("show")
@DB_PATH_OPTION
@click.argument("snapshot_id", type=click.IntRange(min=1))
def history_show(db_path: Path | None, snapshot_id: int) -> None:
    """Print the content of one snapshot."""

    _run(
        lambda: CONTROLLER.show_snapshot(
            HistorySnapshotCommand(db_path=db_path, snapshot_id=snapshot_id),
        ),
    )


@history.command("diff")
@DB_PATH_OPTION
@click.argument("snapshot_id", type=click.IntRange(min=1))
@click.option(
    "--context",
    "diff_context",
    type=click.IntRange(min=0),
    default=None,
    help="Collapse unchanged lines farther than this from a change.",
)
def history_diff(db_path: Path | None, snapshot_id: int, diff_context: int | None) -> None:
    """Compare a snapshot with the one before it."""

    _run(
        lambda: CONTROLLER.diff_snapshot(
            HistorySnapshotCommand(
                db_path=db_path,
                snapshot_id=snapshot_id,
                diff_context=diff_context,
            ),
        ),
    )


@history.command("rollback")
@DB_PATH_OPTION
@click.argument("snapshot_id", type=click.IntRange(min=1))
def history_rollback(db_path: Path | None, snapshot_id: int) -> None:
    """Restore the document to a snapshot."""

    _run(
        lambda: CONTROLLER.rollback(
            HistorySnapshotCommand(db_path=db_path, snapshot_id=snapshot_id),
        ),
    )


@history.command("clear")
@DB_PATH_OPTION
@DOCUMENT_ARGUMENT
@click.option("--changelog/--no-changelog", default=True, show_default=True)
@click.option("--snapshots/--no-snapshots", default=True, show_default=True)
def history_clear(db_path: Path | None, document: Path, changelog: bool, snapshots: bool) -> None:
    """Delete the changelog and/or snapshots of a document."""

    _run(
        lambda: CONTROLLER.clear_history(
            HistoryClearCommand(
                db_path=db_path,
                document=document,
                changelog=changelog,
                snapshots=snapshots,
            ),
        ),
    )


@docpilot.command("last-output")
@DB_PATH_OPTION
@click.option(
    "--kind",
    type=click.Choice(["edit", "chat"], case_sensitive=False),
    default="edit",
    show_default=True,
    help="Which task kind to show.",
)
def last_output(db_path: Path | None, kind: str) -> None:
    """Print the last streamed assistant output."""

    _run(lambda: CONTROLLER.last_output(LastOutputCommand(db_path=db_path, kind=kind.lower())))


def _prompt_decision(_review: PendingReview) -> str:
    return click.prompt(
        "Keep these changes?",
        type=click.Choice(["approve", "reject"]),
        default="approve",
    )


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (ValueError, ReviewError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    docpilot()
