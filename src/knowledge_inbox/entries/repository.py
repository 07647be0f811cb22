"""Entry store backed by SQLModel + SQLite with optimistic concurrency."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, func, select

from knowledge_inbox.entries.models import (
    COMPLETE_PROGRESS,
    EntryChunkWrite,
    EntryCreate,
    EntryEventView,
    EntryType,
    EntryView,
    ProcessingState,
    merge_metadata,
)
from knowledge_inbox.errors import EntryNotFoundError, StaleEntryError
from knowledge_inbox.storage.alembic_runner import upgrade_head
from knowledge_inbox.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from knowledge_inbox.storage.sqlmodel_models import (
    DEFAULT_USER_ID,
    AppUser,
    Entry,
    EntryChunk,
    EntryEvent,
)

logger = logging.getLogger(__name__)


class EntryRepository:
    """Entry persistence facade.

    Every write bumps ``version``. Writers that pass ``expected_version`` get
    :class:`StaleEntryError` when somebody else wrote in between.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        user_id: str = DEFAULT_USER_ID,
        user_name: str = "Default User",
        busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.user_id = user_id
        self.user_name = user_name
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations and ensure actor context exists."""

        upgrade_head(self.db_path)
        self._ensure_actor_context()

    def _ensure_actor_context(self) -> None:
        with Session(self.engine) as session:
            user = session.exec(
                select(AppUser).where(AppUser.user_id == self.user_id),
            ).one_or_none()
            if user is not None:
                return
            session.add(
                AppUser(
                    user_id=self.user_id,
                    display_name=self.user_name,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    def create_entry(self, payload: EntryCreate) -> EntryView:
        """Create an entry in ``started`` state with progress 0 and a fresh run."""

        payload.validate()
        now = to_db_datetime(utc_now())
        entry_id = payload.entry_id or str(uuid4())
        run_id = str(uuid4())
        with Session(self.engine) as session:
            row = Entry(
                entry_id=entry_id,
                user_id=self.user_id,
                entry_type=payload.entry_type.value,
                url=payload.url,
                processing_state=ProcessingState.STARTED.value,
                processing_progress=0,
                metadata_json=_dump_metadata(merge_metadata({}, payload.metadata)),
                run_id=run_id,
                version=1,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_event(
                session=session,
                entry_id=entry_id,
                run_id=run_id,
                event_type="created",
                state=ProcessingState.STARTED,
                progress=0,
                details={"entry_type": payload.entry_type.value},
            )
            session.commit()
            session.refresh(row)
            return _to_entry_view(row)

    def get_entry(self, entry_id: str) -> EntryView | None:
        """Return entry or ``None`` when it does not exist."""

        with Session(self.engine) as session:
            row = self._get_row(session=session, entry_id=entry_id)
            return _to_entry_view(row) if row is not None else None

    def require_entry(self, entry_id: str) -> EntryView:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def update_entry(
        self,
        entry_id: str,
        *,
        url: str | None = None,
        metadata_patch: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> EntryView:
        """Update non-processing fields; metadata is merged, never replaced."""

        def apply(row: Entry) -> dict[str, Any]:
            values: dict[str, Any] = {
                "metadata_json": _dump_metadata(
                    merge_metadata(_load_metadata(row.metadata_json), metadata_patch),
                ),
            }
            if url is not None:
                values["url"] = url
            return values

        return self._write(
            entry_id=entry_id,
            expected_version=expected_version,
            apply=apply,
            event_type=None,
        )

    def update_processing_state(
        self,
        entry_id: str,
        *,
        state: ProcessingState,
        progress: int,
        metadata_patch: dict[str, Any] | None = None,
        expected_version: int | None = None,
        event_type: str = "progress",
        event_details: dict[str, Any] | None = None,
    ) -> EntryView:
        """Set state and progress, merging ``metadata_patch`` into metadata.

        Progress never decreases inside a run: the stored value is the maximum
        of the current and requested progress.
        """

        def apply(row: Entry) -> dict[str, Any]:
            requested = min(COMPLETE_PROGRESS, max(0, progress))
            next_progress = max(row.processing_progress, requested)
            return {
                "processing_state": state.value,
                "processing_progress": next_progress,
                "metadata_json": _dump_metadata(
                    merge_metadata(_load_metadata(row.metadata_json), metadata_patch),
                ),
            }

        return self._write(
            entry_id=entry_id,
            expected_version=expected_version,
            apply=apply,
            event_type=event_type,
            event_details={**(_patch_summary(metadata_patch) or {}), **(event_details or {})},
        )

    def start_run(
        self,
        entry_id: str,
        *,
        clear_fields: Iterable[str] = (),
    ) -> EntryView:
        """Reset an entry to ``started``/0 under a new run id.

        ``clear_fields`` are removed from metadata so the new run recomputes them.
        """

        cleared = frozenset(clear_fields)

        def apply(row: Entry) -> dict[str, Any]:
            metadata = {
                key: value
                for key, value in _load_metadata(row.metadata_json).items()
                if key not in cleared
            }
            return {
                "processing_state": ProcessingState.STARTED.value,
                "processing_progress": 0,
                "metadata_json": _dump_metadata(metadata),
                "run_id": str(uuid4()),
            }

        return self._write(
            entry_id=entry_id,
            expected_version=None,
            apply=apply,
            event_type="run_started",
            event_details={"cleared_fields": sorted(cleared)} if cleared else None,
        )

    def delete_entry(self, entry_id: str) -> bool:
        """Delete entry together with its events and chunks."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(Entry).where(
                    col(Entry.entry_id) == entry_id,
                    col(Entry.user_id) == self.user_id,
                ),
            )
            session.commit()
            deleted = result.rowcount == 1
        if deleted:
            logger.info("Deleted entry %s", entry_id)
        return deleted

    def list_entries(
        self,
        *,
        state: ProcessingState | None = None,
        limit: int = 50,
    ) -> list[EntryView]:
        """List recent entries, optionally filtered by stored state."""

        with Session(self.engine) as session:
            statement = (
                select(Entry)
                .where(Entry.user_id == self.user_id)
                .order_by(col(Entry.created_at).desc())
                .limit(limit)
            )
            if state is not None:
                statement = statement.where(Entry.processing_state == state.value)
            rows = session.exec(statement).all()
        return [_to_entry_view(row) for row in rows]

    def list_progress_events(self, entry_id: str) -> list[EntryEventView]:
        """Return the state/progress audit trail in write order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(EntryEvent)
                .where(EntryEvent.entry_id == entry_id)
                .order_by(col(EntryEvent.id).asc()),
            ).all()

        events: list[EntryEventView] = []
        for row in rows:
            details: dict[str, Any] = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                EntryEventView(
                    event_id=row.id or 0,
                    entry_id=row.entry_id,
                    run_id=row.run_id,
                    event_type=row.event_type,
                    processing_state=ProcessingState(row.processing_state),
                    processing_progress=row.processing_progress,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return events

    def replace_chunks(self, entry_id: str, chunks: list[EntryChunkWrite]) -> int:
        """Replace all embedded chunks of an entry."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.exec(sa_delete(EntryChunk).where(col(EntryChunk.entry_id) == entry_id))
            for chunk in chunks:
                session.add(
                    EntryChunk(
                        entry_id=entry_id,
                        chunk_order=chunk.chunk_order,
                        chunk_text=chunk.chunk_text,
                        model_name=chunk.model_name,
                        embedding_dim=chunk.embedding_dim,
                        embedding_blob=chunk.embedding_blob,
                        created_at=now,
                    ),
                )
            session.commit()
        return len(chunks)

    def count_chunks(self, entry_id: str) -> int:
        with Session(self.engine) as session:
            return session.exec(
                select(func.count()).select_from(EntryChunk).where(EntryChunk.entry_id == entry_id),
            ).one()

    def _write(  # noqa: PLR0913
        self,
        *,
        entry_id: str,
        expected_version: int | None,
        apply: Callable[[Entry], dict[str, Any]],
        event_type: str | None,
        event_details: dict[str, Any] | None = None,
    ) -> EntryView:
        while True:
            with Session(self.engine) as session:
                row = self._get_row(session=session, entry_id=entry_id)
                if row is None:
                    raise EntryNotFoundError(entry_id)
                if expected_version is not None and row.version != expected_version:
                    raise StaleEntryError(
                        entry_id,
                        expected_version=expected_version,
                        actual_version=row.version,
                    )

                values = apply(row)
                result = session.exec(
                    sa_update(Entry)
                    .where(
                        col(Entry.entry_id) == entry_id,
                        col(Entry.user_id) == self.user_id,
                        col(Entry.version) == row.version,
                    )
                    .values(
                        **values,
                        version=row.version + 1,
                        updated_at=to_db_datetime(utc_now()),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    if expected_version is not None:
                        current = self.get_entry(entry_id)
                        if current is None:
                            raise EntryNotFoundError(entry_id)
                        raise StaleEntryError(
                            entry_id,
                            expected_version=expected_version,
                            actual_version=current.version,
                        )
                    continue

                session.expire_all()
                updated = self._get_row(session=session, entry_id=entry_id)
                if updated is None:
                    raise EntryNotFoundError(entry_id)
                if event_type is not None:
                    self._add_event(
                        session=session,
                        entry_id=entry_id,
                        run_id=updated.run_id,
                        event_type=event_type,
                        state=ProcessingState(updated.processing_state),
                        progress=updated.processing_progress,
                        details=event_details or {},
                    )
                view = _to_entry_view(updated)
                session.commit()
                return view

    def _get_row(self, *, session: Session, entry_id: str) -> Entry | None:
        return session.exec(
            select(Entry).where(
                Entry.entry_id == entry_id,
                Entry.user_id == self.user_id,
            ),
        ).one_or_none()

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        entry_id: str,
        run_id: str,
        event_type: str,
        state: ProcessingState,
        progress: int,
        details: dict[str, Any],
    ) -> None:
        session.add(
            EntryEvent(
                entry_id=entry_id,
                run_id=run_id,
                event_type=event_type,
                processing_state=state.value,
                processing_progress=progress,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _dump_metadata(metadata: dict[str, Any]) -> str:
    return json.dumps(metadata, ensure_ascii=False, sort_keys=True)


def _load_metadata(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {}


def _patch_summary(patch: dict[str, Any] | None) -> dict[str, Any] | None:
    if not patch:
        return None
    return {"fields": sorted(key for key, value in patch.items() if value is not None)}


def _to_entry_view(row: Entry) -> EntryView:
    return EntryView(
        entry_id=row.entry_id,
        user_id=row.user_id,
        entry_type=EntryType(row.entry_type),
        url=row.url,
        processing_state=ProcessingState(row.processing_state),
        processing_progress=row.processing_progress,
        metadata=_load_metadata(row.metadata_json),
        run_id=row.run_id,
        version=row.version,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
