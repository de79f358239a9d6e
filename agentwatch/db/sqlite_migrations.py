"""Archive schema creation.

Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("agentwatch.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── Sessions ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS sessions (
    id                    TEXT PRIMARY KEY,
    type                  TEXT NOT NULL DEFAULT 'claude_code',
    pid                   INTEGER DEFAULT 0,
    repo                  TEXT DEFAULT '',
    branch                TEXT DEFAULT '',
    tmux_key              TEXT DEFAULT '',
    working_directory     TEXT DEFAULT '',
    user                  TEXT DEFAULT '',
    status                TEXT NOT NULL DEFAULT 'running',
    started_at            TEXT,
    ended_at              TEXT,
    last_activity         TEXT,
    is_deleted            INTEGER DEFAULT 0,
    plan_name             TEXT DEFAULT '',
    plan_directory        TEXT DEFAULT '',
    job_title             TEXT DEFAULT '',
    job_file_path         TEXT DEFAULT '',
    claude_session_id     TEXT DEFAULT '',
    project_name          TEXT DEFAULT '',
    is_worktree           INTEGER DEFAULT 0,
    is_ecosystem          INTEGER DEFAULT 0,
    parent_ecosystem_path TEXT DEFAULT '',
    provider              TEXT DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_sessions_status   ON sessions(status) WHERE is_deleted = 0;
CREATE INDEX IF NOT EXISTS idx_sessions_activity ON sessions(last_activity DESC);
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.Error:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.debug("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)
    await db.executescript(_TABLES)

    # Archives written before provider tracking.
    await _ensure_column(db, "sessions", "provider", "TEXT DEFAULT ''")

    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    await db.commit()
