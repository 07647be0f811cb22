"""Initial schema: users, entries, entry audit trail, chunks and queue tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"], unique=False)
    op.create_index("ix_users_display_name", "users", ["display_name"], unique=False)

    op.create_table(
        "entries",
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), server_default="default_user", nullable=False),
        sa.Column("entry_type", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("processing_state", sa.String(), nullable=False),
        sa.Column("processing_progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("entry_id"),
    )
    op.create_index("ix_entries_user_id", "entries", ["user_id"], unique=False)
    op.create_index("ix_entries_entry_type", "entries", ["entry_type"], unique=False)
    op.create_index("ix_entries_processing_state", "entries", ["processing_state"], unique=False)
    op.create_index(
        "idx_entries_user_state",
        "entries",
        ["user_id", "processing_state"],
        unique=False,
    )

    op.create_table(
        "entry_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("processing_state", sa.String(), nullable=False),
        sa.Column("processing_progress", sa.Integer(), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["entries.entry_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_entry_events_entry_id", "entry_events", ["entry_id"], unique=False)
    op.create_index("ix_entry_events_run_id", "entry_events", ["run_id"], unique=False)
    op.create_index("ix_entry_events_event_type", "entry_events", ["event_type"], unique=False)
    op.create_index(
        "idx_entry_events_entry_time",
        "entry_events",
        ["entry_id", "id"],
        unique=False,
    )

    op.create_table(
        "entry_chunks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("chunk_order", sa.Integer(), nullable=False),
        sa.Column("chunk_text", sa.Text(), nullable=False),
        sa.Column("model_name", sa.String(), nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=False),
        sa.Column("embedding_blob", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["entries.entry_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "chunk_order", name="uq_entry_chunks_entry_order"),
    )
    op.create_index("ix_entry_chunks_entry_id", "entry_chunks", ["entry_id"], unique=False)
    op.create_index("ix_entry_chunks_model_name", "entry_chunks", ["model_name"], unique=False)

    op.create_table(
        "queue_messages",
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("queue_name", sa.String(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("message_json", sa.Text(), nullable=False),
        sa.Column("read_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("visible_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("message_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_queue_messages_queue_name", "queue_messages", ["queue_name"], unique=False)
    op.create_index("ix_queue_messages_entry_id", "queue_messages", ["entry_id"], unique=False)
    op.create_index(
        "idx_queue_messages_visibility",
        "queue_messages",
        ["queue_name", "visible_at"],
        unique=False,
    )

    op.create_table(
        "queue_archive",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("queue_name", sa.String(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("message_json", sa.Text(), nullable=False),
        sa.Column("read_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_queue_archive_message_id", "queue_archive", ["message_id"], unique=False)
    op.create_index("ix_queue_archive_queue_name", "queue_archive", ["queue_name"], unique=False)
    op.create_index("ix_queue_archive_entry_id", "queue_archive", ["entry_id"], unique=False)
    op.create_index("ix_queue_archive_outcome", "queue_archive", ["outcome"], unique=False)
    op.create_index(
        "idx_queue_archive_entry_time",
        "queue_archive",
        ["entry_id", "archived_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("queue_archive")
    op.drop_table("queue_messages")
    op.drop_table("entry_chunks")
    op.drop_table("entry_events")
    op.drop_table("entries")
    op.drop_table("users")
