"""Database connection factory.

Opens async connections to the local SQLite archive with WAL mode. Each
engine owns the connection it opened; there is no process-wide singleton.
"""
from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger("agentwatch.db")


async def open_connection(db_path: Path | str) -> aiosqlite.Connection:
    """Open a new connection configured for concurrent readers."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(db_path))
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info("Database connection established: %s", db_path)
    return conn
