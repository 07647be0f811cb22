"""Controllers for entry and queue CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from knowledge_inbox.config import Settings
from knowledge_inbox.entries.models import EntryCreate, EntryType, EntryView, ProcessingState
from knowledge_inbox.orchestrator.models import ProcessorRunSummary
from knowledge_inbox.orchestrator.services import PipelineService, SubmitResult, build_pipeline
from knowledge_inbox.queue.models import QueueItem

_PREVIEW_CHARS = 120


@dataclass(slots=True)
class EntryAddCommand:
    """CLI input for creating and submitting an entry."""

    db_path: Path | None
    entry_type: str
    url: str | None
    title: str | None
    text: str | None
    company_name: str | None
    run: bool = True


@dataclass(slots=True)
class EntryShowCommand:
    """CLI input for entry inspection."""

    db_path: Path | None
    entry_id: str
    show_events: bool = False


@dataclass(slots=True)
class EntryListCommand:
    """CLI input for entry listing."""

    db_path: Path | None
    state: str | None
    limit: int


@dataclass(slots=True)
class EntryMutateCommand:
    """CLI input for reprocess/delete operations."""

    db_path: Path | None
    entry_id: str
    run: bool = True


@dataclass(slots=True)
class QueueWorkerCommand:
    """CLI input for processor execution."""

    db_path: Path | None
    once: bool
    max_messages: int | None
    max_idle_polls: int = 1


@dataclass(slots=True)
class QueueListCommand:
    """CLI input for active/per-entry queue listing."""

    db_path: Path | None
    entry_id: str | None
    limit: int = 100


@dataclass(slots=True)
class QueueHistoryCommand:
    """CLI input for archived/dropped message listing."""

    db_path: Path | None
    entry_id: str | None
    limit: int


class InboxCliController:
    """Coordinates entry submission, queue worker, and inspection CLI operations."""

    def add_entry(self, command: EntryAddCommand) -> list[str]:
        metadata: dict[str, Any] = {}
        if command.title:
            metadata["title"] = command.title
        if command.text:
            metadata["text"] = command.text
        if command.company_name:
            metadata["companyName"] = command.company_name
        payload = EntryCreate(
            entry_type=EntryType(command.entry_type.strip().lower()),
            url=command.url,
            metadata=metadata,
        )

        with _pipeline(command.db_path) as pipeline:
            result = pipeline.create_entry(payload, run=command.run)

        return _submit_lines("Entry created", result)

    def show_entry(self, command: EntryShowCommand) -> list[str]:
        with _pipeline(command.db_path) as pipeline:
            entry = pipeline.require_entry(command.entry_id)
            events = pipeline.list_progress_events(command.entry_id) if command.show_events else []

        lines = [
            *_entry_header(entry),
            f"url={entry.url or '-'}",
            f"run_id={entry.run_id} version={entry.version}",
            f"created_at={entry.created_at.isoformat()} updated_at={entry.updated_at.isoformat()}",
            "Metadata:",
        ]
        for key in sorted(entry.metadata):
            lines.append(f"  {key}={_preview(entry.metadata[key])}")
        if events:
            lines.append("Events:")
            for event in events:
                line = (
                    f"  {event.created_at.isoformat()} {event.event_type} "
                    f"state={event.processing_state.value} progress={event.processing_progress}"
                )
                if event.details:
                    line += f" details={json.dumps(event.details, ensure_ascii=False, sort_keys=True)}"
                lines.append(line)
        return lines

    def list_entries(self, command: EntryListCommand) -> list[str]:
        state = ProcessingState(command.state.strip().lower()) if command.state else None
        with _pipeline(command.db_path) as pipeline:
            entries = pipeline.list_entries(state=state, limit=command.limit)

        if not entries:
            return ["No entries found."]
        lines = [f"Entries: {len(entries)}"]
        for entry in entries:
            title = entry.metadata.get("title") or entry.url or ""
            lines.append(
                f"- {entry.entry_id} type={entry.entry_type.value} "
                f"state={entry.effective_state.value} progress={entry.processing_progress}"
                f"{' failed=yes' if entry.processing_failed else ''} {_preview(title)}".rstrip(),
            )
        return lines

    def reprocess_entry(self, command: EntryMutateCommand) -> list[str]:
        with _pipeline(command.db_path) as pipeline:
            result = pipeline.reprocess_entry(command.entry_id, run=command.run)
        return _submit_lines("Entry reprocessed", result)

    def delete_entry(self, command: EntryMutateCommand) -> list[str]:
        with _pipeline(command.db_path) as pipeline:
            deleted = pipeline.delete_entry(command.entry_id)
        if not deleted:
            return [f"Entry not found: {command.entry_id}"]
        return [f"Entry deleted: {command.entry_id}"]

    def run_worker(self, command: QueueWorkerCommand) -> list[str]:
        with _pipeline(command.db_path) as pipeline:
            summary = (
                pipeline.run_once()
                if command.once
                else pipeline.run_loop(
                    max_messages=command.max_messages,
                    max_idle_polls=command.max_idle_polls,
                )
            )
        return [_summary_line(summary)]

    def list_queue(self, command: QueueListCommand) -> list[str]:
        with _pipeline(command.db_path) as pipeline:
            items = (
                pipeline.list_queue_items_for_entry(command.entry_id)
                if command.entry_id
                else pipeline.list_queue_items(limit=command.limit)
            )
        if not items:
            return ["Queue is empty."]
        return [f"Queue items: {len(items)}", *(_item_line(item) for item in items)]

    def history(self, command: QueueHistoryCommand) -> list[str]:
        with _pipeline(command.db_path) as pipeline:
            items = pipeline.list_history(entry_id=command.entry_id, limit=command.limit)
        if not items:
            return ["No queue history."]
        return [f"History items: {len(items)}", *(_item_line(item) for item in items)]


def _submit_lines(label: str, result: SubmitResult) -> list[str]:
    lines = [
        f"{label}: entry_id={result.entry.entry_id} type={result.entry.entry_type.value} "
        f"run_id={result.entry.run_id} enqueued={'yes' if result.enqueued else 'no'}",
    ]
    if result.summary is not None:
        lines.append(_summary_line(result.summary))
    lines.extend(_entry_header(result.entry))
    error = result.entry.metadata.get("error")
    if error:
        lines.append(f"error={error}")
    return lines


def _entry_header(entry: EntryView) -> list[str]:
    return [
        f"Entry: {entry.entry_id} type={entry.entry_type.value} "
        f"state={entry.effective_state.value} progress={entry.processing_progress} "
        f"failed={'yes' if entry.processing_failed else 'no'}",
    ]


def _summary_line(summary: ProcessorRunSummary) -> str:
    return f"Worker summary: {summary.render()}"


def _item_line(item: QueueItem) -> str:
    line = (
        f"- #{item.message_id} entry={item.entry_id} agent={item.agent_name} "
        f"status={item.message.status.value} delivery={item.delivery_state.value} "
        f"attempts={item.attempts} reads={item.read_count}"
    )
    if item.reason:
        line += f" reason={_preview(item.reason)}"
    return line


def _preview(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    text = " ".join(text.split())
    if len(text) <= _PREVIEW_CHARS:
        return text
    return text[: _PREVIEW_CHARS - 3] + "..."


@contextmanager
def _pipeline(db_path: Path | None) -> Iterator[PipelineService]:
    settings = Settings.from_env(db_path=db_path)
    pipeline = build_pipeline(settings)
    pipeline.init_schema()
    try:
        yield pipeline
    finally:
        pipeline.close()
