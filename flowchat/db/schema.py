"""Database schema DDL and tracked migrations.

All tables use CREATE IF NOT EXISTS for idempotency. Columns added after the
first release are listed again in _MIGRATIONS so databases created before
them catch up; on a fresh database those ALTERs hit "duplicate column" and
are simply recorded as applied.
"""

import logging
from datetime import UTC, datetime

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    name TEXT PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS templates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    system_prompt TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rooms (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    name_manually_set INTEGER NOT NULL DEFAULT 0,
    template_id TEXT REFERENCES templates(id) ON DELETE SET NULL,
    default_model TEXT,
    focus_node_id TEXT,
    viewport_x REAL,
    viewport_y REAL,
    viewport_zoom REAL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
    parent_id TEXT REFERENCES messages(id) ON DELETE CASCADE,
    room_id TEXT NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    summary TEXT,
    show_summary INTEGER NOT NULL DEFAULT 0,
    memory TEXT NOT NULL DEFAULT '[]',
    embedding TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_room_id ON messages(room_id);
CREATE INDEX IF NOT EXISTS idx_messages_parent_id ON messages(parent_id);

CREATE TABLE IF NOT EXISTS message_parts (
    id TEXT PRIMARY KEY,
    message_id TEXT NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
    part_type TEXT NOT NULL,
    content TEXT NOT NULL,
    text TEXT NOT NULL DEFAULT '',
    sort_order INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (message_id, sort_order)
);

CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    scope TEXT NOT NULL CHECK (scope IN ('global', 'room')),
    room_id TEXT REFERENCES rooms(id) ON DELETE CASCADE,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_room_id ON memories(room_id);
"""

# (name, sql) pairs, applied in order and recorded in schema_migrations.
_MIGRATIONS: list[tuple[str, str]] = [
    ("001_messages_summary", "ALTER TABLE messages ADD COLUMN summary TEXT"),
    (
        "002_messages_show_summary",
        "ALTER TABLE messages ADD COLUMN show_summary INTEGER NOT NULL DEFAULT 0",
    ),
    ("003_messages_embedding", "ALTER TABLE messages ADD COLUMN embedding TEXT"),
    ("004_rooms_focus_node", "ALTER TABLE rooms ADD COLUMN focus_node_id TEXT"),
    ("005_rooms_viewport_x", "ALTER TABLE rooms ADD COLUMN viewport_x REAL"),
    ("006_rooms_viewport_y", "ALTER TABLE rooms ADD COLUMN viewport_y REAL"),
    ("007_rooms_viewport_zoom", "ALTER TABLE rooms ADD COLUMN viewport_zoom REAL"),
    (
        "008_memories_dedup_index",
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_memories_dedup "
        "ON memories(content, scope, COALESCE(room_id, ''))",
    ),
]


async def run_migrations(db: object) -> None:
    """Apply pending migrations in order, recording each one.

    Already-recorded migrations are skipped. A "duplicate column" error means
    the column predates tracking and is recorded as applied; any other error
    propagates.
    """
    await db.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations ("
        "name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    rows = await db.fetchall("SELECT name FROM schema_migrations")
    applied = {row["name"] for row in rows}

    for name, sql in _MIGRATIONS:
        if name in applied:
            continue
        try:
            await db.execute(sql)
        except aiosqlite.OperationalError as e:
            if "duplicate column" not in str(e).lower():
                raise
            logger.debug("Migration %s already present in schema", name)
        await db.execute(
            "INSERT INTO schema_migrations (name, applied_at) VALUES (?, ?)",
            (name, datetime.now(UTC).isoformat()),
        )
        logger.info("Applied migration %s", name)
