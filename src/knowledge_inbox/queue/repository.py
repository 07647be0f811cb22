"""SQLite-backed durable queue with visibility-timeout leases."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from knowledge_inbox.errors import QueueUnavailableError
from knowledge_inbox.queue.models import (
    DeliveryState,
    QueueItem,
    QueueItemStatus,
    QueueMessage,
)
from knowledge_inbox.storage.alembic_runner import upgrade_head
from knowledge_inbox.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from knowledge_inbox.storage.sqlmodel_models import QueueArchiveRow, QueueMessageRow

logger = logging.getLogger(__name__)

OUTCOME_ARCHIVED = "archived"
OUTCOME_DROPPED = "dropped"
CORRUPT_AGENT_NAME = "unknown"


class SQLiteQueue:
    """Named queue stored in ``queue_messages`` with history in ``queue_archive``.

    A popped message is hidden until its lease expires. If it is neither
    archived nor dropped by then, the next ``pop_next`` delivers it again.
    Concurrent poppers are serialized by a compare-and-set on ``visible_at``.
    """

    def __init__(  # noqa: PLR0913
        self,
        db_path: Path,
        *,
        queue_name: str = "entry_processing_queue",
        visibility_timeout_seconds: int = 600,
        busy_timeout_ms: int = 5_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self.queue_name = queue_name
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self._clock = clock
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(self, message: QueueMessage, *, delay_seconds: int = 0) -> int:
        """Add a message and return its id."""

        now = self._now()
        with self._session() as session:
            row = QueueMessageRow(
                queue_name=self.queue_name,
                entry_id=message.entry_id,
                message_json=message.to_json(),
                read_count=0,
                enqueued_at=now,
                visible_at=now + timedelta(seconds=max(0, delay_seconds)),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            message_id = row.message_id
        if message_id is None:
            raise QueueUnavailableError("Queue did not assign a message id.")
        logger.debug(
            "Enqueued message %s entry=%s agent=%s",
            message_id,
            message.entry_id,
            message.agent_name,
        )
        return message_id

    def pop_next(self, *, visibility_timeout_seconds: int | None = None) -> QueueItem | None:
        """Lease the oldest visible message, or return ``None`` when nothing is visible.

        A message whose payload does not parse is dropped into history and the
        next candidate is tried.
        """

        timeout = (
            self.visibility_timeout_seconds
            if visibility_timeout_seconds is None
            else visibility_timeout_seconds
        )
        while True:
            now = self._now()
            with self._session() as session:
                candidate = session.exec(
                    select(QueueMessageRow)
                    .where(
                        QueueMessageRow.queue_name == self.queue_name,
                        QueueMessageRow.visible_at <= now,
                    )
                    .order_by(col(QueueMessageRow.message_id).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                message_id = candidate.message_id or 0
                try:
                    message = QueueMessage.from_json(candidate.message_json)
                except (ValueError, TypeError) as exc:
                    self._drop_corrupt(session=session, row=candidate, error=exc, now=now)
                    continue

                read_count = candidate.read_count + 1
                enqueued_at = candidate.enqueued_at
                lease_until = now + timedelta(seconds=timeout)
                leased = message.with_status(
                    QueueItemStatus.PROCESSING,
                    attempts=message.attempts + 1,
                )
                result = session.exec(
                    sa_update(QueueMessageRow)
                    .where(
                        col(QueueMessageRow.message_id) == message_id,
                        col(QueueMessageRow.visible_at) == candidate.visible_at,
                    )
                    .values(
                        visible_at=lease_until,
                        read_count=read_count,
                        last_read_at=now,
                        message_json=leased.to_json(),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                item = QueueItem(
                    message_id=message_id,
                    queue_name=self.queue_name,
                    message=leased,
                    read_count=read_count,
                    delivery_state=DeliveryState.LEASED,
                    enqueued_at=to_utc_aware_datetime(enqueued_at),
                    visible_at=to_utc_aware_datetime(lease_until),
                    last_read_at=to_utc_aware_datetime(now),
                )
                session.commit()
                return item

    def archive(
        self,
        message_id: int,
        *,
        result: dict[str, Any] | None = None,
        read_count: int | None = None,
    ) -> bool:
        """Acknowledge a message and move it to history as completed.

        With ``read_count`` the acknowledgement only applies to that delivery;
        ``False`` means the lease was lost to a later pop.
        """

        return self._move_to_archive(
            message_id=message_id,
            read_count=read_count,
            outcome=OUTCOME_ARCHIVED,
            reason=None,
            transform=lambda message, now: message.with_status(
                QueueItemStatus.COMPLETED,
                result=result,
                completed_at=now,
            ),
        )

    def drop(self, message_id: int, *, reason: str, read_count: int | None = None) -> bool:
        """Remove a message permanently; it is kept in history as failed."""

        return self._move_to_archive(
            message_id=message_id,
            read_count=read_count,
            outcome=OUTCOME_DROPPED,
            reason=reason,
            transform=lambda message, now: message.with_status(
                QueueItemStatus.FAILED,
                error=reason,
                completed_at=now,
            ),
        )

    def release(
        self,
        message_id: int,
        *,
        delay_seconds: int,
        error: str | None = None,
        read_count: int | None = None,
    ) -> bool:
        """Make a leased message visible again after ``delay_seconds``."""

        now = self._now()
        with self._session() as session:
            row = self._get_row(session=session, message_id=message_id)
            if row is None or (read_count is not None and row.read_count != read_count):
                return False
            message = _parse_message(row.message_json).with_status(
                QueueItemStatus.PENDING,
                error=error,
            )
            updated = session.exec(
                sa_update(QueueMessageRow)
                .where(
                    col(QueueMessageRow.message_id) == message_id,
                    col(QueueMessageRow.visible_at) == row.visible_at,
                    col(QueueMessageRow.read_count) == row.read_count,
                )
                .values(
                    visible_at=now + timedelta(seconds=max(0, delay_seconds)),
                    message_json=message.to_json(),
                ),
            )
            if updated.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        return True

    def peek_all(self, *, limit: int = 100) -> list[QueueItem]:
        """List active messages without leasing them."""

        now = self._now()
        with self._session() as session:
            rows = session.exec(
                select(QueueMessageRow)
                .where(QueueMessageRow.queue_name == self.queue_name)
                .order_by(col(QueueMessageRow.message_id).asc())
                .limit(limit),
            ).all()
        return [_to_active_item(row, now=now) for row in rows]

    def list_for_entry(self, entry_id: str) -> list[QueueItem]:
        """List active and historical messages for one entry, oldest first."""

        now = self._now()
        with self._session() as session:
            active = session.exec(
                select(QueueMessageRow).where(
                    QueueMessageRow.queue_name == self.queue_name,
                    QueueMessageRow.entry_id == entry_id,
                ),
            ).all()
            archived = session.exec(
                select(QueueArchiveRow).where(
                    QueueArchiveRow.queue_name == self.queue_name,
                    QueueArchiveRow.entry_id == entry_id,
                ),
            ).all()
        items = [_to_archived_item(row) for row in archived]
        items.extend(_to_active_item(row, now=now) for row in active)
        return sorted(items, key=lambda item: item.message_id)

    def list_history(self, *, entry_id: str | None = None, limit: int = 50) -> list[QueueItem]:
        """List archived and dropped messages, newest first."""

        with self._session() as session:
            statement = (
                select(QueueArchiveRow)
                .where(QueueArchiveRow.queue_name == self.queue_name)
                .order_by(col(QueueArchiveRow.id).desc())
                .limit(limit)
            )
            if entry_id is not None:
                statement = statement.where(QueueArchiveRow.entry_id == entry_id)
            rows = session.exec(statement).all()
        return [_to_archived_item(row) for row in rows]

    def _move_to_archive(  # noqa: PLR0913
        self,
        *,
        message_id: int,
        read_count: int | None,
        outcome: str,
        reason: str | None,
        transform: Callable[[QueueMessage, datetime], QueueMessage],
    ) -> bool:
        now = self._now()
        with self._session() as session:
            row = self._get_row(session=session, message_id=message_id)
            if row is None:
                return False
            if read_count is not None and row.read_count != read_count:
                logger.warning(
                    "Message %s was re-leased (read %d, expected %d); not moving to %s",
                    message_id,
                    row.read_count,
                    read_count,
                    outcome,
                )
                return False
            entry_id = row.entry_id
            message = transform(_parse_message(row.message_json), now)
            archived = QueueArchiveRow(
                message_id=message_id,
                queue_name=row.queue_name,
                entry_id=entry_id,
                message_json=message.to_json(),
                read_count=row.read_count,
                outcome=outcome,
                reason=reason,
                enqueued_at=row.enqueued_at,
                archived_at=now,
            )
            deleted = session.exec(
                sa_delete(QueueMessageRow).where(
                    col(QueueMessageRow.message_id) == message_id,
                    col(QueueMessageRow.read_count) == row.read_count,
                ),
            )
            if deleted.rowcount != 1:
                session.rollback()
                return False
            session.add(archived)
            session.commit()
        logger.debug("Message %s %s entry=%s", message_id, outcome, entry_id)
        return True

    def _drop_corrupt(
        self,
        *,
        session: Session,
        row: QueueMessageRow,
        error: Exception,
        now: datetime,
    ) -> None:
        logger.error(
            "Dropping message %s with corrupt payload: %s; payload=%r",
            row.message_id,
            error,
            row.message_json,
        )
        reason = f"Corrupt payload: {error}"
        placeholder = QueueMessage(
            entry_id=row.entry_id,
            agent_name=CORRUPT_AGENT_NAME,
            status=QueueItemStatus.FAILED,
            attempts=row.read_count,
            created_at=to_utc_aware_datetime(row.enqueued_at),
            error=reason,
            completed_at=to_utc_aware_datetime(now),
        )
        deleted = session.exec(
            sa_delete(QueueMessageRow).where(
                col(QueueMessageRow.message_id) == row.message_id,
                col(QueueMessageRow.visible_at) == row.visible_at,
            ),
        )
        if deleted.rowcount != 1:
            session.rollback()
            return
        session.add(
            QueueArchiveRow(
                message_id=row.message_id or 0,
                queue_name=row.queue_name,
                entry_id=row.entry_id,
                message_json=placeholder.to_json(),
                read_count=row.read_count,
                outcome=OUTCOME_DROPPED,
                reason=reason,
                enqueued_at=row.enqueued_at,
                archived_at=now,
            ),
        )
        session.commit()

    def _get_row(self, *, session: Session, message_id: int) -> QueueMessageRow | None:
        return session.exec(
            select(QueueMessageRow).where(
                QueueMessageRow.message_id == message_id,
                QueueMessageRow.queue_name == self.queue_name,
            ),
        ).one_or_none()

    def _now(self) -> datetime:
        return to_db_datetime(self._clock())

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(f"Queue {self.queue_name!r} unavailable: {exc}") from exc


def _parse_message(raw: str) -> QueueMessage:
    try:
        return QueueMessage.from_json(raw)
    except (ValueError, TypeError) as exc:
        raise QueueUnavailableError(f"Queue payload is corrupt: {exc}") from exc


def _to_active_item(row: QueueMessageRow, *, now: datetime) -> QueueItem:
    leased = row.last_read_at is not None and row.visible_at > now
    return QueueItem(
        message_id=row.message_id or 0,
        queue_name=row.queue_name,
        message=_parse_message(row.message_json),
        read_count=row.read_count,
        delivery_state=DeliveryState.LEASED if leased else DeliveryState.VISIBLE,
        enqueued_at=to_utc_aware_datetime(row.enqueued_at),
        visible_at=to_utc_aware_datetime(row.visible_at),
        last_read_at=optional_utc(row.last_read_at),
    )


def _to_archived_item(row: QueueArchiveRow) -> QueueItem:
    return QueueItem(
        message_id=row.message_id,
        queue_name=row.queue_name,
        message=_parse_message(row.message_json),
        read_count=row.read_count,
        delivery_state=(
            DeliveryState.DROPPED if row.outcome == OUTCOME_DROPPED else DeliveryState.ARCHIVED
        ),
        enqueued_at=to_utc_aware_datetime(row.enqueued_at),
        archived_at=to_utc_aware_datetime(row.archived_at),
        reason=row.reason,
    )
