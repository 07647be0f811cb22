from __future__ import annotations

from pathlib import Path

import allure
import pytest
from sqlmodel import Session, select

from knowledge_inbox.errors import QueueUnavailableError
from knowledge_inbox.queue.models import DeliveryState, QueueItemStatus, QueueMessage
from knowledge_inbox.queue.repository import SQLiteQueue
from knowledge_inbox.storage.sqlmodel_models import QueueMessageRow

pytestmark = [
    allure.epic("Entry Pipeline"),
    allure.feature("Durable Queue"),
]


def _queue(db_path: Path, clock, *, name: str = "entry_processing_queue") -> SQLiteQueue:
    queue = SQLiteQueue(db_path, queue_name=name, visibility_timeout_seconds=30, clock=clock)
    queue.init_schema()
    return queue


def test_pop_next_returns_none_on_empty_queue(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)

    assert queue.pop_next() is None
    queue.close()


def test_pop_next_leases_oldest_message_first(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    first = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent", run_id="r1"))
    queue.enqueue(QueueMessage(entry_id="e-2", agent_name="entry-agent", run_id="r2"))

    item = queue.pop_next()

    assert item is not None
    assert item.message_id == first
    assert item.entry_id == "e-1"
    assert item.agent_name == "entry-agent"
    assert item.attempts == 1
    assert item.read_count == 1
    assert item.message.status == QueueItemStatus.PROCESSING
    assert item.delivery_state == DeliveryState.LEASED
    queue.close()


def test_leased_message_is_invisible_until_lease_expires(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="summary-agent"))

    leased = queue.pop_next()
    assert leased is not None
    assert queue.pop_next() is None

    clock.advance(29)
    assert queue.pop_next() is None

    clock.advance(2)
    redelivered = queue.pop_next()
    assert redelivered is not None
    assert redelivered.message_id == message_id
    assert redelivered.attempts == 2
    assert redelivered.read_count == 2
    queue.close()


def test_archive_moves_message_to_history(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"))
    assert queue.pop_next() is not None

    assert queue.archive(message_id, result={"nextAgent": "content-fetch-agent"}) is True
    assert queue.archive(message_id) is False

    clock.advance(120)
    assert queue.pop_next() is None
    assert queue.peek_all() == []

    history = queue.list_history()
    assert len(history) == 1
    assert history[0].delivery_state == DeliveryState.ARCHIVED
    assert history[0].message.status == QueueItemStatus.COMPLETED
    assert history[0].message.result == {"nextAgent": "content-fetch-agent"}
    assert history[0].message.completed_at is not None
    queue.close()


def test_drop_keeps_reason_in_history(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="mystery-agent"))
    assert queue.pop_next() is not None

    assert queue.drop(message_id, reason="Unknown agent: mystery-agent") is True

    [item] = queue.list_history(entry_id="e-1")
    assert item.delivery_state == DeliveryState.DROPPED
    assert item.reason == "Unknown agent: mystery-agent"
    assert item.message.status == QueueItemStatus.FAILED
    assert item.message.error == "Unknown agent: mystery-agent"
    queue.close()


def test_release_makes_message_visible_after_delay(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="summary-agent"))
    assert queue.pop_next() is not None

    assert queue.release(message_id, delay_seconds=10, error="rate limited") is True
    assert queue.pop_next() is None

    [pending] = queue.peek_all()
    assert pending.delivery_state == DeliveryState.LEASED
    assert pending.message.status == QueueItemStatus.PENDING
    assert pending.message.error == "rate limited"

    clock.advance(10)
    retried = queue.pop_next()
    assert retried is not None
    assert retried.attempts == 2
    queue.close()


def test_enqueue_with_delay_hides_message(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"), delay_seconds=5)

    assert queue.pop_next() is None
    [item] = queue.peek_all()
    assert item.delivery_state == DeliveryState.VISIBLE

    clock.advance(5)
    assert queue.pop_next() is not None
    queue.close()


def test_queues_are_isolated_by_name(db_path: Path, clock) -> None:
    first = _queue(db_path, clock, name="first")
    second = _queue(db_path, clock, name="second")
    first.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"))

    assert second.pop_next() is None
    assert second.peek_all() == []
    assert first.pop_next() is not None
    first.close()
    second.close()


def test_list_for_entry_combines_active_and_archived(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    first = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent", run_id="r1"))
    queue.enqueue(QueueMessage(entry_id="e-2", agent_name="entry-agent", run_id="r2"))
    assert queue.pop_next() is not None
    queue.archive(first)
    second = queue.enqueue(
        QueueMessage(entry_id="e-1", agent_name="content-fetch-agent", run_id="r1"),
    )

    items = queue.list_for_entry("e-1")

    assert [item.message_id for item in items] == [first, second]
    assert [item.delivery_state for item in items] == [
        DeliveryState.ARCHIVED,
        DeliveryState.VISIBLE,
    ]
    assert all(item.message.run_id == "r1" for item in items)
    queue.close()


def _overwrite_payload(queue: SQLiteQueue, message_id: int, raw: str) -> None:
    with Session(queue.engine) as session:
        row = session.exec(
            select(QueueMessageRow).where(QueueMessageRow.message_id == message_id),
        ).one()
        row.message_json = raw
        session.add(row)
        session.commit()


def test_message_ids_are_not_reused_after_archive(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    first = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"))
    assert queue.pop_next() is not None
    assert queue.archive(first)

    second = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="content-fetch-agent"))

    assert second > first
    assert [item.message_id for item in queue.list_for_entry("e-1")] == [first, second]
    queue.close()


def test_expired_lease_cannot_acknowledge_redelivered_message(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="summary-agent"))
    stale = queue.pop_next()
    assert stale is not None
    clock.advance(31)
    current = queue.pop_next()
    assert current is not None
    assert current.message_id == message_id

    assert queue.archive(message_id, read_count=stale.read_count) is False
    assert queue.drop(message_id, reason="late", read_count=stale.read_count) is False
    assert queue.release(message_id, delay_seconds=0, read_count=stale.read_count) is False
    [still_leased] = queue.peek_all()
    assert still_leased.delivery_state == DeliveryState.LEASED
    assert still_leased.read_count == current.read_count

    assert queue.archive(message_id, read_count=current.read_count) is True
    assert queue.peek_all() == []
    queue.close()


def test_racing_poppers_lease_a_message_once(
    db_path: Path,
    clock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    queue = _queue(db_path, clock)
    rival = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"))
    original_from_json = QueueMessage.from_json
    rival_items = []

    def from_json_then_rival_pops(raw: str) -> QueueMessage:
        parsed = original_from_json(raw)
        if not rival_items:
            rival_items.append(None)
            rival_items[0] = rival.pop_next()
        return parsed

    monkeypatch.setattr(QueueMessage, "from_json", staticmethod(from_json_then_rival_pops))

    assert queue.pop_next() is None
    [rival_item] = rival_items
    assert rival_item is not None
    assert rival_item.message_id == message_id
    assert rival_item.read_count == 1
    queue.close()
    rival.close()


def test_corrupt_payload_is_dropped_and_next_message_delivered(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    corrupt_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"))
    valid_id = queue.enqueue(QueueMessage(entry_id="e-2", agent_name="entry-agent"))
    _overwrite_payload(queue, corrupt_id, "not json")

    item = queue.pop_next()

    assert item is not None
    assert item.message_id == valid_id
    [dropped] = queue.list_history(entry_id="e-1")
    assert dropped.message_id == corrupt_id
    assert dropped.delivery_state == DeliveryState.DROPPED
    assert dropped.reason is not None
    assert dropped.reason.startswith("Corrupt payload:")
    assert dropped.message.status == QueueItemStatus.FAILED
    queue.close()


def test_payload_with_null_attempts_is_treated_as_corrupt(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"))
    _overwrite_payload(
        queue,
        message_id,
        '{"entryId": "e-1", "agentName": "entry-agent", "attempts": null}',
    )

    assert queue.pop_next() is None
    [dropped] = queue.list_history()
    assert dropped.reason == "Corrupt payload: Queue payload attempts must be an integer."
    queue.close()


def test_listing_a_corrupt_active_payload_raises_queue_unavailable(db_path: Path, clock) -> None:
    queue = _queue(db_path, clock)
    message_id = queue.enqueue(QueueMessage(entry_id="e-1", agent_name="entry-agent"))
    _overwrite_payload(queue, message_id, "[]")

    with pytest.raises(QueueUnavailableError, match="corrupt"):
        queue.peek_all()
    queue.close()


def test_queue_message_json_uses_camel_case_keys() -> None:
    message = QueueMessage(entry_id="e-1", agent_name="entry-agent", run_id="r1", attempts=2)

    restored = QueueMessage.from_json(message.to_json())

    assert '"entryId": "e-1"' in message.to_json()
    assert '"agentName": "entry-agent"' in message.to_json()
    assert restored.entry_id == "e-1"
    assert restored.run_id == "r1"
    assert restored.attempts == 2


def test_queue_message_from_json_rejects_missing_fields() -> None:
    with pytest.raises(ValueError, match="entryId"):
        QueueMessage.from_json('{"agentName": "entry-agent"}')
    with pytest.raises(ValueError, match="agentName"):
        QueueMessage.from_json('{"entryId": "e-1"}')


def test_queue_message_from_json_rejects_non_integer_attempts() -> None:
    with pytest.raises(ValueError, match="attempts"):
        QueueMessage.from_json('{"entryId": "e-1", "agentName": "entry-agent", "attempts": "2"}')
