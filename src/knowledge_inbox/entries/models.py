"""Domain models for entries and their processing lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

COMPLETE_PROGRESS = 100


class EntryType(str, Enum):
    """Closed set of entry variants; each selects one agent chain."""

    ARTICLE = "article"
    COMPANY = "company"
    NOTE = "note"


class ProcessingState(str, Enum):
    """Coarse entry lifecycle polled by clients."""

    IDLE = "idle"
    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ProcessingState.COMPLETED, ProcessingState.FAILED}


@dataclass(slots=True)
class EntryCreate:
    """Input payload for creating an entry."""

    entry_type: EntryType
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    entry_id: str | None = None

    def validate(self) -> None:
        """Raise ValueError when the payload cannot start a run."""

        if self.entry_type in {EntryType.ARTICLE, EntryType.COMPANY} and not (self.url or "").strip():
            raise ValueError(f"{self.entry_type.value} entries require a url.")


@dataclass(slots=True)
class EntryView:
    """Readable entry view for agents, processor and CLI."""

    entry_id: str
    user_id: str
    entry_type: EntryType
    url: str | None
    processing_state: ProcessingState
    processing_progress: int
    metadata: dict[str, Any]
    run_id: str
    version: int
    created_at: datetime
    updated_at: datetime

    @property
    def effective_state(self) -> ProcessingState:
        """Stored state, normalized to completed once progress reaches 100."""

        if self.processing_progress >= COMPLETE_PROGRESS:
            return ProcessingState.COMPLETED
        return self.processing_state

    @property
    def processing_failed(self) -> bool:
        return bool(self.metadata.get("processingFailed")) or (
            self.processing_state == ProcessingState.FAILED
        )


@dataclass(slots=True)
class EntryEventView:
    """Entry state/progress transition for the audit trail."""

    event_id: int
    entry_id: str
    run_id: str
    event_type: str
    processing_state: ProcessingState
    processing_progress: int
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


def merge_metadata(
    current: dict[str, Any],
    patch: dict[str, Any] | None,
) -> dict[str, Any]:
    """Shallow-merge patch into metadata without deleting or blanking prior fields.

    ``None`` values are ignored and empty strings/lists never replace a
    non-empty existing value.
    """

    merged = dict(current)
    for key, value in (patch or {}).items():
        if value is None:
            continue
        if _is_blank(value) and not _is_blank(merged.get(key)):
            continue
        merged[key] = value
    return merged


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list | dict | tuple):
        return len(value) == 0
    return False


@dataclass(slots=True)
class EntryChunkWrite:
    """One embedded chunk of entry text."""

    chunk_order: int
    chunk_text: str
    model_name: str
    embedding_dim: int
    embedding_blob: bytes
