"""In-memory job file cache keyed on modification time."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from agentwatch import observability
from agentwatch.discovery.builder import build_job_session
from agentwatch.models import JobInfo, ScanRoot, Session
from agentwatch.parsers.jobs import parse_job_file
from agentwatch.workspace import WorkspaceRegistry

logger = logging.getLogger("agentwatch.cache")


@dataclass
class _Entry:
    mtime_ns: int
    job: Optional[JobInfo]
    sessions: dict[str, Session] = field(default_factory=dict)


def _stat_mtime_ns(path: Path) -> int:
    return path.stat().st_mtime_ns


def _read_job(path: Path) -> Optional[JobInfo]:
    try:
        return parse_job_file(path)
    except OSError as e:
        logger.debug("Skipping unreadable job file %s: %s", path, e)
        observability.record_parse_failure("job_file")
        return None


class ParseCache:
    """Per-file parse results, reused while a file's mtime is unchanged.

    A file is read again only when its nanosecond mtime differs from the
    cached one. Negative results (unreadable or not a job) are cached the
    same way. Every lookup returns a copy.
    """

    def __init__(self, registry: Optional[WorkspaceRegistry] = None):
        self.registry = registry
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self.parse_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    async def _entry_for(self, path: Path) -> Optional[_Entry]:
        key = str(path)
        try:
            mtime_ns = await asyncio.to_thread(_stat_mtime_ns, path)
        except OSError:
            async with self._lock:
                self._entries.pop(key, None)
            return None

        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.mtime_ns == mtime_ns:
                return entry

        job = await asyncio.to_thread(_read_job, path)
        entry = _Entry(mtime_ns=mtime_ns, job=job)
        async with self._lock:
            self.parse_count += 1
            self._entries[key] = entry
        return entry

    async def get_job(self, path: Path | str) -> Optional[JobInfo]:
        entry = await self._entry_for(Path(path))
        if entry is None or entry.job is None:
            return None
        return entry.job.model_copy()

    async def resolve(self, path: Path | str, root: ScanRoot) -> Optional[Session]:
        """Session for the job file at ``path`` found under ``root``."""
        path = Path(path)
        entry = await self._entry_for(path)
        if entry is None or entry.job is None:
            return None
        async with self._lock:
            session = entry.sessions.get(root.path)
            if session is None:
                session = build_job_session(entry.job, path, root, self.registry)
                entry.sessions[root.path] = session
            return session.model_copy(deep=True)

    async def invalidate(self, path: Path | str) -> None:
        async with self._lock:
            self._entries.pop(str(path), None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
