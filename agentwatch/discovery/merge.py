"""Reconcile archival, job-scan and live sources into one session list."""
from __future__ import annotations

from typing import Iterable, Optional

from agentwatch.models import (
    AGENT_JOB_TYPES,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_FAILED,
    STATUS_IDLE,
    STATUS_INTERRUPTED,
    STATUS_PENDING_USER,
    STATUS_RUNNING,
    Session,
)

HIDDEN_WHEN_ACTIVE = frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_ERROR, STATUS_INTERRUPTED})

_FILL_FROM_LIVE = ("repo", "branch", "working_directory", "user", "started_at", "project_name")


def _is_empty(value) -> bool:
    return value is None or value == "" or value == 0 or value is False


def _overlay_job(existing: Session, job: Session) -> Session:
    """Job data wins; fields only the archive knows survive when the job leaves them empty."""
    merged = job.model_copy()
    for name in Session.model_fields:
        if name in ("status", "source"):
            continue
        if _is_empty(getattr(merged, name)) and not _is_empty(getattr(existing, name)):
            setattr(merged, name, getattr(existing, name))
    return merged


def _overlay_live(existing: Session, live: Session) -> None:
    if live.pid > 0:
        existing.pid = live.pid
    if live.last_activity is not None:
        existing.last_activity = live.last_activity
    if live.claude_session_id:
        existing.claude_session_id = live.claude_session_id
    if live.provider:
        existing.provider = live.provider
    if live.tmux_key:
        existing.tmux_key = live.tmux_key
    for name in _FILL_FROM_LIVE:
        if _is_empty(getattr(existing, name)) and not _is_empty(getattr(live, name)):
            setattr(existing, name, getattr(live, name))

    # Terminal states are final; a live signal never revives them.
    if not existing.is_terminal and live.status != existing.status:
        existing.status = live.status
        if existing.is_terminal and existing.ended_at is None:
            existing.ended_at = live.ended_at


class _Index:
    def __init__(self) -> None:
        self.by_id: dict[str, Session] = {}
        self.order: list[str] = []

    def put(self, session: Session) -> None:
        if session.id not in self.by_id:
            self.order.append(session.id)
        self.by_id[session.id] = session

    def find_live_match(self, live: Session) -> Optional[Session]:
        exact = self.by_id.get(live.id)
        if exact is not None:
            return exact
        for candidate in self.by_id.values():
            # Only agent entries are backed by a differently named session.
            if candidate.type not in AGENT_JOB_TYPES:
                continue
            if live.job_file_path and candidate.job_file_path == live.job_file_path:
                return candidate
            if live.claude_session_id and live.claude_session_id == candidate.id:
                return candidate
            if candidate.claude_session_id and candidate.claude_session_id == live.id:
                return candidate
            if (
                live.claude_session_id
                and candidate.claude_session_id
                and live.claude_session_id == candidate.claude_session_id
            ):
                return candidate
        return None

    def values(self) -> list[Session]:
        return [self.by_id[sid] for sid in self.order]


def merge_sessions(
    archival: Iterable[Session],
    cached_jobs: Iterable[Session],
    live: Iterable[Session],
) -> list[Session]:
    """Merge sources with precedence archival < job scan < live.

    Inputs are not mutated. The result is unsorted; see ``sort_sessions``.
    """
    index = _Index()
    for session in archival:
        index.put(session.model_copy())

    for job in cached_jobs:
        existing = index.by_id.get(job.id)
        index.put(_overlay_job(existing, job) if existing is not None else job.model_copy())

    for session in live:
        match = index.find_live_match(session)
        if match is None:
            index.put(session.model_copy())
        else:
            _overlay_live(match, session)

    return index.values()


def status_priority(status: str) -> int:
    if status == STATUS_RUNNING:
        return 1
    if status in (STATUS_IDLE, STATUS_PENDING_USER):
        return 2
    return 3


def sort_sessions(sessions: Iterable[Session]) -> list[Session]:
    """Running first, then idle/pending_user, then the rest; newest activity first."""
    def _key(session: Session):
        epoch = session.activity_epoch()
        return (status_priority(session.status), epoch == 0.0, -epoch, session.id)

    return sorted(sessions, key=_key)


def filter_active(sessions: Iterable[Session]) -> list[Session]:
    return [s for s in sessions if s.status not in HIDDEN_WHEN_ACTIVE]
