"""CLI entrypoint for knowledge-inbox."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from knowledge_inbox import __version__
from knowledge_inbox.config import Settings
from knowledge_inbox.errors import PipelineError
from knowledge_inbox.orchestrator.controllers import (
    EntryAddCommand,
    EntryListCommand,
    EntryMutateCommand,
    EntryShowCommand,
    InboxCliController,
    QueueHistoryCommand,
    QueueListCommand,
    QueueWorkerCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = InboxCliController()


@click.group()
@click.version_option(version=__version__, prog_name="knowledge-inbox")
def knowledge_inbox() -> None:
    """Knowledge inbox CLI."""

    with _domain_errors():
        log_level = Settings.from_env().log_level
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@knowledge_inbox.group()
def entries() -> None:
    """Entry commands."""


@entries.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "entry_type",
    type=click.Choice(["article", "company", "note"], case_sensitive=False),
    required=True,
    help="Entry type; selects the enrichment chain.",
)
@click.option("--url", default=None, help="Article or company URL.")
@click.option("--title", default=None, help="Optional title.")
@click.option("--text", default=None, help="Note text.")
@click.option("--company-name", default=None, help="Known company name for research.")
@click.option(
    "--run/--no-run",
    default=True,
    show_default=True,
    help="Drain the queue right after submitting.",
)
def entries_add(  # noqa: PLR0913
    db_path: Path | None,
    entry_type: str,
    url: str | None,
    title: str | None,
    text: str | None,
    company_name: str | None,
    run: bool,
) -> None:
    """Create an entry and submit it for enrichment."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.add_entry(
                EntryAddCommand(
                    db_path=db_path,
                    entry_type=entry_type,
                    url=url,
                    title=title,
                    text=text,
                    company_name=company_name,
                    run=run,
                ),
            ),
        )


@entries.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--events/--no-events",
    default=False,
    show_default=True,
    help="Include the state/progress audit trail.",
)
@click.argument("entry_id")
def entries_show(db_path: Path | None, events: bool, entry_id: str) -> None:
    """Show one entry with its metadata."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.show_entry(
                EntryShowCommand(db_path=db_path, entry_id=entry_id, show_events=events),
            ),
        )


@entries.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--state",
    type=click.Choice(["idle", "started", "processing", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional stored state filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max entries to print.",
)
def entries_list(db_path: Path | None, state: str | None, limit: int) -> None:
    """List recent entries."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.list_entries(EntryListCommand(db_path=db_path, state=state, limit=limit)),
        )


@entries.command("reprocess")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--run/--no-run",
    default=True,
    show_default=True,
    help="Drain the queue right after resubmitting.",
)
@click.argument("entry_id")
def entries_reprocess(db_path: Path | None, run: bool, entry_id: str) -> None:
    """Clear enrichment results and run the chain again."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.reprocess_entry(
                EntryMutateCommand(db_path=db_path, entry_id=entry_id, run=run),
            ),
        )


@entries.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("entry_id")
def entries_delete(db_path: Path | None, entry_id: str) -> None:
    """Delete an entry; its pending messages are dropped on delivery."""

    with _domain_errors():
        _emit_lines(CONTROLLER.delete_entry(EntryMutateCommand(db_path=db_path, entry_id=entry_id)))


@knowledge_inbox.group()
def queue() -> None:
    """Queue and worker commands."""


@queue.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process a single message or loop until idle.",
)
@click.option(
    "--max-messages",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed messages in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Stop after this many consecutive empty polls.",
)
def queue_worker(
    db_path: Path | None,
    once: bool,
    max_messages: int | None,
    max_idle_polls: int,
) -> None:
    """Run the queue processor."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.run_worker(
                QueueWorkerCommand(
                    db_path=db_path,
                    once=once,
                    max_messages=max_messages,
                    max_idle_polls=max_idle_polls,
                ),
            ),
        )


@queue.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--entry-id",
    default=None,
    help="Show active and archived messages of one entry.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=100,
    show_default=True,
    help="Max active messages to print.",
)
def queue_list(db_path: Path | None, entry_id: str | None, limit: int) -> None:
    """List queue messages without leasing them."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.list_queue(QueueListCommand(db_path=db_path, entry_id=entry_id, limit=limit)),
        )


@queue.command("history")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--entry-id", default=None, help="Optional entry filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max history items to print.",
)
def queue_history(db_path: Path | None, entry_id: str | None, limit: int) -> None:
    """List archived and dropped messages, newest first."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.history(QueueHistoryCommand(db_path=db_path, entry_id=entry_id, limit=limit)),
        )


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (PipelineError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    knowledge_inbox()
