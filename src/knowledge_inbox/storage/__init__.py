"""SQLite storage: engine helpers, SQLModel tables and migrations."""
