"""Queue contract consumed by the processor and the trigger surface."""

from __future__ import annotations

from typing import Any, Protocol

from knowledge_inbox.queue.models import QueueItem, QueueMessage


class DurableQueue(Protocol):
    """At-least-once queue with visibility-timeout leases.

    ``read_count`` on the acknowledging calls names the delivery being
    acknowledged. A worker whose lease expired and was taken over gets
    ``False`` instead of acknowledging someone else's delivery.
    """

    queue_name: str

    def enqueue(self, message: QueueMessage, *, delay_seconds: int = 0) -> int:
        """Add a message and return its id."""

    def pop_next(self, *, visibility_timeout_seconds: int | None = None) -> QueueItem | None:
        """Lease the oldest visible message, or return ``None`` when nothing is visible."""

    def archive(
        self,
        message_id: int,
        *,
        result: dict[str, Any] | None = None,
        read_count: int | None = None,
    ) -> bool:
        """Acknowledge a message and move it to history."""

    def drop(self, message_id: int, *, reason: str, read_count: int | None = None) -> bool:
        """Remove a message permanently without retry."""

    def release(
        self,
        message_id: int,
        *,
        delay_seconds: int,
        error: str | None = None,
        read_count: int | None = None,
    ) -> bool:
        """Return a leased message to the queue after ``delay_seconds``."""

    def peek_all(self, *, limit: int = 100) -> list[QueueItem]:
        """List active messages without leasing them."""

    def list_for_entry(self, entry_id: str) -> list[QueueItem]:
        """List active and historical messages for one entry."""
