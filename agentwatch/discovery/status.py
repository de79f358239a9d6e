"""Derive a job's real status from its declared status and process liveness."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from agentwatch.date_utils import utc_now
from agentwatch.models import (
    LOCKLESS_JOB_TYPES,
    SETTLED_JOB_STATUSES,
    STATUS_INTERRUPTED,
    STATUS_PENDING_USER,
    STATUS_RUNNING,
    Session,
)
from agentwatch.process import LivenessProbe, is_process_alive, lock_file_for, read_pid_file

if TYPE_CHECKING:
    from agentwatch.discovery.parse_cache import ParseCache

logger = logging.getLogger("agentwatch.discovery")


def derive_status(
    declared: str,
    job_type: str,
    job_file_path: str,
    probe: LivenessProbe = is_process_alive,
) -> str:
    """Real status of a job.

    Settled statuses are trusted. A job that claims to be running is
    believed only when it is session-backed (chat, interactive agent) or
    its ``<job>.lock`` names a live process.
    """
    if declared in SETTLED_JOB_STATUSES:
        return declared
    if declared not in (STATUS_RUNNING, STATUS_PENDING_USER):
        return declared
    if job_type in LOCKLESS_JOB_TYPES:
        return declared
    if not job_file_path:
        return STATUS_INTERRUPTED

    pid = read_pid_file(lock_file_for(job_file_path))
    if pid is None or pid <= 0:
        return STATUS_INTERRUPTED
    if not probe(pid):
        return STATUS_INTERRUPTED
    return STATUS_RUNNING


async def refresh_session_status(
    session: Session,
    parse_cache: "ParseCache",
    probe: LivenessProbe = is_process_alive,
) -> bool:
    """Re-derive ``session.status`` in place from its job file.

    Returns True when the status changed.
    """
    if not session.job_file_path:
        return False

    path = Path(session.job_file_path)
    before = session.status
    if not path.exists():
        new_status = STATUS_INTERRUPTED
    else:
        job = await parse_cache.get_job(path)
        if job is None:
            logger.debug("Job file %s unreadable; keeping status %s", path, before)
            return False
        new_status = derive_status(job.status, job.type, session.job_file_path, probe)

    if new_status == before:
        return False
    session.status = new_status
    if new_status == STATUS_INTERRUPTED and session.ended_at is None:
        session.ended_at = utc_now()
    return True
