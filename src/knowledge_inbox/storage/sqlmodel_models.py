"""SQLModel ORM tables for entries and the durable queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    LargeBinary,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

DEFAULT_USER_ID = "default_user"


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True, index=True)
    display_name: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Entry(SQLModel, table=True):
    __tablename__ = "entries"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_entries_user_state", "user_id", "processing_state"),)

    entry_id: str = Field(primary_key=True)
    user_id: str = Field(
        default=DEFAULT_USER_ID,
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            server_default=DEFAULT_USER_ID,
            index=True,
        ),
    )
    entry_type: str = Field(index=True)
    url: str | None = None
    processing_state: str = Field(index=True)
    processing_progress: int = 0
    metadata_json: str = Field(sa_column=Column(Text, nullable=False, server_default="{}"))
    run_id: str
    version: int = 1
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EntryEvent(SQLModel, table=True):
    __tablename__ = "entry_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_entry_events_entry_time", "entry_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    entry_id: str = Field(
        sa_column=Column(
            ForeignKey("entries.entry_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    run_id: str = Field(index=True)
    event_type: str = Field(index=True)
    processing_state: str
    processing_progress: int
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EntryChunk(SQLModel, table=True):
    __tablename__ = "entry_chunks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("entry_id", "chunk_order", name="uq_entry_chunks_entry_order"),
    )

    id: int | None = Field(default=None, primary_key=True)
    entry_id: str = Field(
        sa_column=Column(
            ForeignKey("entries.entry_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    chunk_order: int
    chunk_text: str = Field(sa_column=Column(Text, nullable=False))
    model_name: str = Field(index=True)
    embedding_dim: int
    embedding_blob: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueMessageRow(SQLModel, table=True):
    __tablename__ = "queue_messages"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_queue_messages_visibility", "queue_name", "visible_at"),
        {"sqlite_autoincrement": True},
    )

    message_id: int | None = Field(default=None, primary_key=True)
    queue_name: str = Field(index=True)
    entry_id: str = Field(index=True)
    message_json: str = Field(sa_column=Column(Text, nullable=False))
    read_count: int = 0
    enqueued_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    visible_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_read_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class QueueArchiveRow(SQLModel, table=True):
    __tablename__ = "queue_archive"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_queue_archive_entry_time", "entry_id", "archived_at"),)

    id: int | None = Field(default=None, primary_key=True)
    message_id: int = Field(index=True)
    queue_name: str = Field(index=True)
    entry_id: str = Field(index=True)
    message_json: str = Field(sa_column=Column(Text, nullable=False))
    read_count: int = 0
    outcome: str = Field(index=True)
    reason: str | None = Field(default=None, sa_column=Column(Text))
    enqueued_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    archived_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
