from __future__ import annotations

from pathlib import Path

import allure
import pytest

from knowledge_inbox.entries.models import (
    EntryCreate,
    EntryType,
    ProcessingState,
    merge_metadata,
)
from knowledge_inbox.entries.repository import EntryRepository
from knowledge_inbox.errors import EntryNotFoundError, StaleEntryError

pytestmark = [
    allure.epic("Entry Pipeline"),
    allure.feature("Entry Store"),
]


def _repository(db_path: Path) -> EntryRepository:
    repository = EntryRepository(db_path)
    repository.init_schema()
    return repository


def test_create_entry_starts_run_at_zero_progress(db_path: Path) -> None:
    repository = _repository(db_path)

    entry = repository.create_entry(
        EntryCreate(
            entry_type=EntryType.ARTICLE,
            url="https://example.com/a",
            metadata={"title": "Draft", "ignored": None},
        ),
    )

    assert entry.processing_state == ProcessingState.STARTED
    assert entry.processing_progress == 0
    assert entry.version == 1
    assert entry.run_id
    assert entry.metadata == {"title": "Draft"}
    assert repository.get_entry(entry.entry_id) == entry
    repository.close()


def test_create_entry_requires_url_for_articles_and_companies(db_path: Path) -> None:
    repository = _repository(db_path)

    with pytest.raises(ValueError, match="article entries require a url"):
        repository.create_entry(EntryCreate(entry_type=EntryType.ARTICLE))
    with pytest.raises(ValueError, match="company entries require a url"):
        repository.create_entry(EntryCreate(entry_type=EntryType.COMPANY, url="  "))

    note = repository.create_entry(EntryCreate(entry_type=EntryType.NOTE))
    assert note.url is None
    repository.close()


def test_update_processing_state_merges_metadata(db_path: Path) -> None:
    repository = _repository(db_path)
    entry = repository.create_entry(
        EntryCreate(entry_type=EntryType.NOTE, metadata={"title": "Keep", "text": "body"}),
    )

    updated = repository.update_processing_state(
        entry.entry_id,
        state=ProcessingState.PROCESSING,
        progress=40,
        metadata_patch={"summary": "short", "title": "", "text": None},
    )

    assert updated.processing_state == ProcessingState.PROCESSING
    assert updated.processing_progress == 40
    assert updated.metadata == {"title": "Keep", "text": "body", "summary": "short"}
    assert updated.version == entry.version + 1
    repository.close()


def test_progress_never_decreases_within_a_run(db_path: Path) -> None:
    repository = _repository(db_path)
    entry = repository.create_entry(EntryCreate(entry_type=EntryType.NOTE))

    repository.update_processing_state(entry.entry_id, state=ProcessingState.PROCESSING, progress=50)
    lowered = repository.update_processing_state(
        entry.entry_id,
        state=ProcessingState.PROCESSING,
        progress=30,
    )
    clamped = repository.update_processing_state(
        entry.entry_id,
        state=ProcessingState.COMPLETED,
        progress=250,
    )

    assert lowered.processing_progress == 50
    assert clamped.processing_progress == 100
    progress = [event.processing_progress for event in repository.list_progress_events(entry.entry_id)]
    assert progress == sorted(progress)
    repository.close()


def test_expected_version_mismatch_raises_stale_entry(db_path: Path) -> None:
    repository = _repository(db_path)
    entry = repository.create_entry(EntryCreate(entry_type=EntryType.NOTE))
    repository.update_entry(entry.entry_id, metadata_patch={"text": "first writer"})

    with pytest.raises(StaleEntryError) as error:
        repository.update_processing_state(
            entry.entry_id,
            state=ProcessingState.PROCESSING,
            progress=10,
            metadata_patch={"text": "second writer"},
            expected_version=entry.version,
        )

    assert error.value.expected_version == 1
    assert error.value.actual_version == 2
    assert repository.require_entry(entry.entry_id).metadata["text"] == "first writer"
    repository.close()


def test_start_run_resets_progress_and_clears_fields(db_path: Path) -> None:
    repository = _repository(db_path)
    entry = repository.create_entry(
        EntryCreate(entry_type=EntryType.ARTICLE, url="https://example.com/a"),
    )
    repository.update_processing_state(
        entry.entry_id,
        state=ProcessingState.COMPLETED,
        progress=100,
        metadata_patch={"title": "T", "summary": "S", "error": "boom"},
    )

    restarted = repository.start_run(entry.entry_id, clear_fields=("summary", "error"))

    assert restarted.processing_state == ProcessingState.STARTED
    assert restarted.processing_progress == 0
    assert restarted.run_id != entry.run_id
    assert restarted.metadata == {"title": "T"}
    events = repository.list_progress_events(entry.entry_id)
    assert [event.event_type for event in events] == ["created", "progress", "run_started"]
    assert events[-1].details == {"cleared_fields": ["error", "summary"]}
    repository.close()


def test_effective_state_is_completed_at_full_progress(db_path: Path) -> None:
    repository = _repository(db_path)
    entry = repository.create_entry(EntryCreate(entry_type=EntryType.NOTE))

    updated = repository.update_processing_state(
        entry.entry_id,
        state=ProcessingState.PROCESSING,
        progress=100,
    )

    assert updated.processing_state == ProcessingState.PROCESSING
    assert updated.effective_state == ProcessingState.COMPLETED
    repository.close()


def test_delete_entry_and_missing_entry_errors(db_path: Path) -> None:
    repository = _repository(db_path)
    entry = repository.create_entry(EntryCreate(entry_type=EntryType.NOTE))

    assert repository.delete_entry(entry.entry_id) is True
    assert repository.delete_entry(entry.entry_id) is False
    assert repository.get_entry(entry.entry_id) is None
    with pytest.raises(EntryNotFoundError):
        repository.require_entry(entry.entry_id)
    with pytest.raises(EntryNotFoundError):
        repository.update_entry(entry.entry_id, metadata_patch={"text": "late"})
    repository.close()


def test_list_entries_filters_by_state(db_path: Path) -> None:
    repository = _repository(db_path)
    done = repository.create_entry(EntryCreate(entry_type=EntryType.NOTE))
    repository.create_entry(EntryCreate(entry_type=EntryType.NOTE))
    repository.update_processing_state(done.entry_id, state=ProcessingState.COMPLETED, progress=100)

    completed = repository.list_entries(state=ProcessingState.COMPLETED)

    assert [entry.entry_id for entry in completed] == [done.entry_id]
    assert len(repository.list_entries()) == 2
    repository.close()


def test_entries_are_scoped_to_user(db_path: Path) -> None:
    alice = _repository(db_path)
    bob = EntryRepository(db_path, user_id="bob", user_name="Bob")
    bob.init_schema()
    entry = alice.create_entry(EntryCreate(entry_type=EntryType.NOTE))

    assert bob.get_entry(entry.entry_id) is None
    assert bob.list_entries() == []
    alice.close()
    bob.close()


def test_merge_metadata_ignores_none_and_blank_over_value() -> None:
    current = {"title": "Kept", "keyPoints": ["a"], "content": ""}

    merged = merge_metadata(
        current,
        {"title": "  ", "keyPoints": [], "content": "text", "author": None, "new": 1},
    )

    assert merged == {"title": "Kept", "keyPoints": ["a"], "content": "text", "new": 1}
    assert current == {"title": "Kept", "keyPoints": ["a"], "content": ""}
