"""Queue payload and observability views."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from knowledge_inbox.storage.common import to_utc_aware_datetime, utc_now


class QueueItemStatus(str, Enum):
    """Logical step status carried in the payload for observability."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryState(str, Enum):
    """Queue-side delivery state; authoritative over the payload status."""

    VISIBLE = "visible"
    LEASED = "leased"
    ARCHIVED = "archived"
    DROPPED = "dropped"


@dataclass(slots=True)
class QueueMessage:
    """One pipeline step: run ``agent_name`` on ``entry_id``.

    Serialized with camelCase keys so the payload shape stays stable across
    redeliveries.
    """

    entry_id: str
    agent_name: str
    status: QueueItemStatus = QueueItemStatus.PENDING
    attempts: int = 0
    created_at: datetime = field(default_factory=utc_now)
    run_id: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    completed_at: datetime | None = None

    def to_json(self) -> str:
        payload: dict[str, Any] = {
            "entryId": self.entry_id,
            "agentName": self.agent_name,
            "status": self.status.value,
            "attempts": self.attempts,
            "createdAt": to_utc_aware_datetime(self.created_at).isoformat(),
        }
        if self.run_id is not None:
            payload["runId"] = self.run_id
        if self.result is not None:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
        if self.completed_at is not None:
            payload["completedAt"] = to_utc_aware_datetime(self.completed_at).isoformat()
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> QueueMessage:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("Queue payload must be a JSON object.")
        entry_id = payload.get("entryId")
        agent_name = payload.get("agentName")
        if not isinstance(entry_id, str) or not entry_id:
            raise ValueError("Queue payload is missing entryId.")
        if not isinstance(agent_name, str) or not agent_name:
            raise ValueError("Queue payload is missing agentName.")

        attempts = payload.get("attempts", 0)
        if isinstance(attempts, bool) or not isinstance(attempts, int):
            raise ValueError("Queue payload attempts must be an integer.")

        result = payload.get("result")
        completed_at = payload.get("completedAt")
        created_at = payload.get("createdAt")
        return cls(
            entry_id=entry_id,
            agent_name=agent_name,
            status=QueueItemStatus(payload.get("status", QueueItemStatus.PENDING.value)),
            attempts=attempts,
            created_at=(
                datetime.fromisoformat(created_at) if isinstance(created_at, str) else utc_now()
            ),
            run_id=payload.get("runId"),
            result=result if isinstance(result, dict) else None,
            error=payload.get("error"),
            completed_at=(
                datetime.fromisoformat(completed_at) if isinstance(completed_at, str) else None
            ),
        )

    def with_status(self, status: QueueItemStatus, **changes: Any) -> QueueMessage:
        return replace(self, status=status, **changes)


@dataclass(slots=True)
class QueueItem:
    """Queue row as seen by the processor and dashboards."""

    message_id: int
    queue_name: str
    message: QueueMessage
    read_count: int
    delivery_state: DeliveryState
    enqueued_at: datetime
    visible_at: datetime | None = None
    last_read_at: datetime | None = None
    archived_at: datetime | None = None
    reason: str | None = None

    @property
    def entry_id(self) -> str:
        return self.message.entry_id

    @property
    def agent_name(self) -> str:
        return self.message.agent_name

    @property
    def attempts(self) -> int:
        return self.message.attempts
