"""SQLite implementation of the session archive."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

import aiosqlite

from agentwatch.date_utils import format_rfc3339, parse_rfc3339, utc_now
from agentwatch.models import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_FAILED,
    STATUS_INTERRUPTED,
    Session,
)

_ENDING_STATUSES = (STATUS_COMPLETED, STATUS_FAILED, STATUS_ERROR, STATUS_INTERRUPTED)

_COLUMNS = (
    "id", "type", "pid", "repo", "branch", "tmux_key", "working_directory", "user",
    "status", "started_at", "ended_at", "last_activity",
    "plan_name", "plan_directory", "job_title", "job_file_path", "claude_session_id",
    "project_name", "is_worktree", "is_ecosystem", "parent_ecosystem_path", "provider",
)
_DATETIME_COLUMNS = {"started_at", "ended_at", "last_activity"}
_BOOL_COLUMNS = {"is_worktree", "is_ecosystem"}


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_rfc3339(value)
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class SqliteSessionRepository:
    """SQLite-backed session archive. Archived rows are soft-deleted."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, session: Session) -> None:
        values = [_to_db(getattr(session, col)) for col in _COLUMNS]
        updates = ", ".join(f"{col}=excluded.{col}" for col in _COLUMNS if col != "id")
        await self.db.execute(
            f"""INSERT INTO sessions ({", ".join(_COLUMNS)})
            VALUES ({", ".join("?" for _ in _COLUMNS)})
            ON CONFLICT(id) DO UPDATE SET {updates}
            """,
            values,
        )
        await self.db.commit()

    async def get_by_id(self, session_id: str) -> Optional[Session]:
        async with self.db.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ) as cur:
            row = await cur.fetchone()
            if not row:
                return None
            return self._row_to_session(row)

    async def list_all(self) -> list[Session]:
        async with self.db.execute(
            "SELECT * FROM sessions WHERE is_deleted = 0 ORDER BY last_activity DESC, started_at DESC"
        ) as cur:
            rows = await cur.fetchall()
            return [self._row_to_session(r) for r in rows]

    async def list_by_status(self, statuses: Iterable[str]) -> list[Session]:
        wanted = list(statuses)
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        async with self.db.execute(
            f"SELECT * FROM sessions WHERE is_deleted = 0 AND status IN ({placeholders})",
            wanted,
        ) as cur:
            rows = await cur.fetchall()
            return [self._row_to_session(r) for r in rows]

    async def update_status(self, session_id: str, status: str) -> bool:
        now = format_rfc3339(utc_now())
        if status in _ENDING_STATUSES:
            cur = await self.db.execute(
                "UPDATE sessions SET status = ?, ended_at = ?, last_activity = COALESCE(last_activity, ?) WHERE id = ?",
                (status, now, now, session_id),
            )
        else:
            cur = await self.db.execute(
                "UPDATE sessions SET status = ?, ended_at = NULL WHERE id = ?",
                (status, session_id),
            )
        await self.db.commit()
        return cur.rowcount > 0

    async def archive(self, session_ids: Iterable[str]) -> int:
        ids = list(session_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cur = await self.db.execute(
            f"UPDATE sessions SET is_deleted = 1 WHERE id IN ({placeholders})",
            ids,
        )
        await self.db.commit()
        return cur.rowcount

    def _row_to_session(self, row: aiosqlite.Row) -> Session:
        data: dict[str, Any] = {}
        keys = row.keys()
        for col in _COLUMNS:
            if col not in keys:
                continue
            value = row[col]
            if col in _DATETIME_COLUMNS:
                value = parse_rfc3339(value)
            elif col in _BOOL_COLUMNS:
                value = bool(value)
            elif value is None:
                continue
            data[col] = value
        data["source"] = "archive"
        return Session(**data)
