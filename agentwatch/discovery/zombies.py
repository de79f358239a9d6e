"""Find and repair jobs whose declared status outlived their process."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from agentwatch import observability
from agentwatch.discovery.status import derive_status
from agentwatch.errors import FrontmatterParseError
from agentwatch.models import (
    LIVE_STATUSES,
    LOCKLESS_JOB_TYPES,
    STATUS_INTERRUPTED,
    STATUS_PENDING_USER,
    STATUS_RUNNING,
    RepairReport,
    Session,
)
from agentwatch.parsers.status_writer import read_declared_status, set_job_status
from agentwatch.process import LivenessProbe, is_process_alive

logger = logging.getLogger("agentwatch.zombies")

# Declared statuses that claim an owning process still exists.
CLAIMS_PROCESS = frozenset({STATUS_RUNNING, STATUS_PENDING_USER})


def find_zombie_jobs(live_sessions: Iterable[Session], job_sessions: Iterable[Session]) -> list[Session]:
    """Session-backed jobs that claim a process but have no live session attached.

    ``job_sessions`` carry the declared status of each job file.
    """
    attached = {
        s.job_file_path
        for s in live_sessions
        if s.job_file_path and s.status in LIVE_STATUSES
    }
    zombies = []
    for job in job_sessions:
        if job.type not in LOCKLESS_JOB_TYPES:
            continue
        if job.status not in CLAIMS_PROCESS or not job.job_file_path:
            continue
        if job.job_file_path in attached:
            continue
        zombies.append(job)
    return zombies


def find_stale_locked_jobs(
    job_sessions: Iterable[Session],
    probe: LivenessProbe = is_process_alive,
) -> list[Session]:
    """Lock-backed jobs claiming a process whose lock holder is gone."""
    stale = []
    for job in job_sessions:
        if job.type in LOCKLESS_JOB_TYPES or not job.job_file_path:
            continue
        if job.status not in CLAIMS_PROCESS:
            continue
        if derive_status(job.status, job.type, job.job_file_path, probe) == STATUS_INTERRUPTED:
            stale.append(job)
    return stale


def repair_zombie_jobs(zombies: Iterable[Session], dry_run: bool = False) -> RepairReport:
    """Rewrite each zombie's job file to ``status: interrupted``.

    A failed write is counted and logged; the rest of the batch continues.
    """
    report = RepairReport(dry_run=dry_run)
    for job in zombies:
        report.found += 1
        report.paths.append(job.job_file_path)
        if dry_run:
            logger.info("[dry-run] would mark %s interrupted", job.job_file_path)
            continue
        path = Path(job.job_file_path)
        try:
            if read_declared_status(path) not in CLAIMS_PROCESS:
                # Changed on disk since the scan.
                report.skipped += 1
                logger.info("Job %s changed since the scan; left alone", job.job_file_path)
                continue
            set_job_status(path, STATUS_INTERRUPTED)
        except (OSError, FrontmatterParseError) as e:
            report.failed += 1
            report.failed_paths.append(job.job_file_path)
            logger.warning("Failed to mark %s interrupted: %s", job.job_file_path, e)
            continue
        report.updated += 1
        report.updated_paths.append(job.job_file_path)
        job.status = STATUS_INTERRUPTED
        logger.info("Marked job %s interrupted [%s]", job.id, job.job_file_path)
    observability.record_zombie_repair(report.updated, report.failed, dry_run=dry_run)
    return report
