"""SessionEngine: one object that owns discovery, caches and the archive."""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time as dt_time, timedelta
from pathlib import Path
from typing import Optional

import aiosqlite

from agentwatch import observability
from agentwatch.config import EngineSettings
from agentwatch.date_utils import utc_now
from agentwatch.db import connection
from agentwatch.db.repositories import SqliteSessionRepository
from agentwatch.db.sqlite_migrations import run_migrations
from agentwatch.discovery.live import LiveSessionScanner
from agentwatch.discovery.merge import filter_active, merge_sessions, sort_sessions
from agentwatch.discovery.parse_cache import ParseCache
from agentwatch.discovery.refresher import ProgressiveRefresher
from agentwatch.discovery.scan_cache import ScanCache
from agentwatch.discovery.scanner import JobScanner
from agentwatch.discovery.status import derive_status, refresh_session_status
from agentwatch.discovery.zombies import find_stale_locked_jobs, find_zombie_jobs, repair_zombie_jobs
from agentwatch.errors import AgentwatchError, ArchiveUnavailableError, FrontmatterParseError
from agentwatch.models import (
    STATUS_ABANDONED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IDLE,
    STATUS_INTERRUPTED,
    STATUS_RUNNING,
    CleanupReport,
    RepairReport,
    Session,
)
from agentwatch.orchestrator import CompletionTrigger
from agentwatch.parsers.status_writer import set_job_status, set_job_status_checked
from agentwatch.process import LivenessProbe, is_process_alive
from agentwatch.tasks import BackgroundTaskRunner
from agentwatch.workspace import WorkspaceRegistry

logger = logging.getLogger("agentwatch.engine")

# aiosqlite raises ValueError once its connection has been closed.
_ARCHIVE_ERRORS = (aiosqlite.Error, OSError, ValueError)

# Jobs a bulk completion leaves alone.
_FINISHED_STATUSES = frozenset({STATUS_COMPLETED, STATUS_ABANDONED, STATUS_FAILED, STATUS_INTERRUPTED})


class SessionEngine:
    """Unified session list from the archive, job files and live sessions.

    Construct once per process and pass it to call sites. Nothing runs in
    the background unless ``enable_background_refresh`` was called.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        probe: LivenessProbe = is_process_alive,
        registry: Optional[WorkspaceRegistry] = None,
        repository: Optional[SqliteSessionRepository] = None,
        runner: Optional[BackgroundTaskRunner] = None,
        trigger: Optional[CompletionTrigger] = None,
    ):
        self.settings = settings or EngineSettings()
        self.probe = probe
        self.registry = registry if registry is not None else WorkspaceRegistry.load(self.settings.workspaces_file)
        self.parse_cache = ParseCache(self.registry)
        self.scanner = JobScanner(
            self.registry,
            self.parse_cache,
            probe=probe,
            workers=self.settings.scan_workers,
            queue_size=self.settings.scan_queue_size,
        )
        self.scan_cache = ScanCache(self.settings.cache_path, self.settings.cache_ttl_seconds)
        self.runner = runner if runner is not None else BackgroundTaskRunner()
        self.trigger = trigger if trigger is not None else CompletionTrigger(
            binary=self.settings.orchestrator_bin,
            grace_seconds=self.settings.completion_grace_seconds,
            debug=self.settings.debug,
        )
        self.live = LiveSessionScanner(
            self.settings.sessions_dir,
            probe=probe,
            archive_lookup=self._archive_lookup,
            trigger=self.trigger,
            runner=self.runner,
            cleanup_after_completion=self.settings.cleanup_after_completion,
            registry=self.registry,
        )
        self.refresher = ProgressiveRefresher(
            self.scanner,
            self.scan_cache,
            self.parse_cache,
            probe=probe,
            tick_seconds=self.settings.refresh_tick_seconds,
            full_every=self.settings.full_refresh_every_ticks,
        )
        self.repository = repository
        self._db: Optional[aiosqlite.Connection] = None
        self._repo_lock = asyncio.Lock()

    # ── Lifecycle ───────────────────────────────────────────────────

    @property
    def background_refresh_enabled(self) -> bool:
        return self.refresher.enabled

    def enable_background_refresh(self) -> None:
        self.refresher.enabled = True

    async def start(self) -> None:
        await self.refresher.start()

    async def drain(self) -> None:
        """Wait for submitted background work (completion triggers)."""
        await self.runner.drain()

    async def close(self) -> None:
        await self.refresher.stop()
        await self.runner.stop()
        if self._db is not None:
            db, self._db = self._db, None
            self.repository = None
            await db.close()
            logger.info("Database connection closed: %s", self.settings.db_path)

    async def __aenter__(self) -> "SessionEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Archive access ──────────────────────────────────────────────

    async def _repo(self) -> SqliteSessionRepository:
        async with self._repo_lock:
            if self.repository is None:
                try:
                    db = await connection.open_connection(self.settings.db_path)
                except _ARCHIVE_ERRORS as e:
                    raise ArchiveUnavailableError(f"session archive unavailable: {e}") from e
                try:
                    await run_migrations(db)
                except _ARCHIVE_ERRORS as e:
                    await db.close()
                    raise ArchiveUnavailableError(f"session archive migration failed: {e}") from e
                self._db = db
                self.repository = SqliteSessionRepository(db)
            return self.repository

    async def _archive_lookup(self, session_id: str) -> Optional[Session]:
        repo = await self._repo()
        return await repo.get_by_id(session_id)

    async def _list_archive(self) -> list[Session]:
        repo = await self._repo()
        try:
            return await repo.list_all()
        except _ARCHIVE_ERRORS as e:
            raise ArchiveUnavailableError(f"session archive unavailable: {e}") from e

    async def _set_archived_status(self, repo: SqliteSessionRepository, session_id: str, status: str) -> None:
        try:
            await repo.update_status(session_id, status)
        except _ARCHIVE_ERRORS as e:
            raise ArchiveUnavailableError(f"failed to update session {session_id}: {e}") from e

    # ── Discovery ───────────────────────────────────────────────────

    async def _rederive(self, sessions: list[Session]) -> None:
        candidates = [s for s in sessions if s.is_job and not s.is_terminal]
        await asyncio.gather(
            *(refresh_session_status(s, self.parse_cache, self.probe) for s in candidates)
        )

    async def discover_jobs(self) -> list[Session]:
        """Job sessions, served from the scan cache when possible.

        A stale cache is still served while the background refresher is
        enabled; it is asked for a full rescan instead of blocking here.
        """
        if self.refresher.enabled:
            await self.refresher.start()

        cached = await asyncio.to_thread(self.scan_cache.read, False)
        if cached is not None:
            await self._rederive(cached)
            return cached

        if self.refresher.enabled:
            stale = await asyncio.to_thread(self.scan_cache.read, True)
            if stale is not None:
                await self._rederive(stale)
                self.refresher.request_full_refresh()
                return stale

        sessions = await self.scanner.scan()
        try:
            await asyncio.to_thread(self.scan_cache.write, sessions)
        except OSError as e:
            logger.warning("Failed to write scan cache %s: %s", self.scan_cache.path, e)
        return sessions

    async def _discover_live(self, reap: bool = False) -> list[Session]:
        try:
            return await self.live.scan(reap=reap)
        except (AgentwatchError, OSError) as e:
            logger.warning("Live session discovery failed: %s", e)
            return []

    async def get_all_sessions(self, hide_completed: bool = False) -> list[Session]:
        """Merged, sorted session list. Only an archive failure is raised."""
        with observability.start_span("agentwatch.get_all_sessions"):
            live = await self._discover_live()
            try:
                jobs = await self.discover_jobs()
            except Exception as e:  # noqa: BLE001
                logger.warning("Job discovery failed: %s", e)
                jobs = []
            archival = await self._list_archive()

        merged = merge_sessions(archival, jobs, live)
        if hide_completed:
            merged = filter_active(merged)
        return sort_sessions(merged)

    async def get_session(self, session_id: str) -> Optional[Session]:
        for session in await self.get_all_sessions():
            if session.id == session_id or (session.claude_session_id and session.claude_session_id == session_id):
                return session
        repo = await self._repo()
        try:
            return await repo.get_by_id(session_id)
        except _ARCHIVE_ERRORS as e:
            raise ArchiveUnavailableError(f"session archive unavailable: {e}") from e

    # ── Repairs ─────────────────────────────────────────────────────

    async def _patch_cached_statuses(self, statuses: dict[str, str]) -> None:
        """Apply job status changes to the persisted snapshot."""
        if not statuses:
            return
        sessions = await asyncio.to_thread(self.scan_cache.read, True)
        if sessions is None:
            return
        now = utc_now()
        changed = False
        for session in sessions:
            new_status = statuses.get(session.job_file_path)
            if new_status is None or new_status == session.status:
                continue
            session.status = new_status
            if new_status in (STATUS_INTERRUPTED, STATUS_COMPLETED) and session.ended_at is None:
                session.ended_at = now
            changed = True
        if changed:
            try:
                await asyncio.to_thread(self.scan_cache.write, sessions)
            except OSError as e:
                logger.warning("Failed to update scan cache %s: %s", self.scan_cache.path, e)

    async def _after_rewrite(self, paths: list[str], status: str) -> None:
        for path in paths:
            await self.parse_cache.invalidate(path)
        await self._patch_cached_statuses({p: status for p in paths})

    async def _repair(self, candidates: list[Session], dry_run: bool) -> RepairReport:
        report = await asyncio.to_thread(repair_zombie_jobs, candidates, dry_run)
        if not dry_run:
            await self._after_rewrite(report.updated_paths, STATUS_INTERRUPTED)
        return report

    async def mark_zombies_interrupted(self, dry_run: bool = False) -> RepairReport:
        """Session-backed jobs still claiming a process with no live session."""
        live = await self._discover_live()
        declared = await self.scanner.scan(derive=False)
        zombies = find_zombie_jobs(live, declared)
        report = await self._repair(zombies, dry_run)
        if report.found:
            logger.info(
                "Zombie jobs: found=%d updated=%d skipped=%d failed=%d dry_run=%s",
                report.found, report.updated, report.skipped, report.failed, dry_run,
            )
        return report

    async def mark_interrupted_jobs(self, dry_run: bool = False) -> RepairReport:
        """Lock-backed jobs claiming a process whose lock holder is gone."""
        declared = await self.scanner.scan(derive=False)
        stale = find_stale_locked_jobs(declared, self.probe)
        return await self._repair(stale, dry_run)

    async def mark_old_completed(self, before: Optional[date] = None, dry_run: bool = False) -> RepairReport:
        """Bulk-complete jobs started before ``before`` (default: today, local time).

        Jobs already completed, abandoned, failed or interrupted are skipped,
        as are jobs without a start time or whose file is gone.
        """
        cutoff = datetime.combine(before or date.today(), dt_time.min).astimezone()
        report = RepairReport(dry_run=dry_run)

        selected: list[Session] = []
        for session in await self.discover_jobs():
            if (
                session.status in _FINISHED_STATUSES
                or not session.job_file_path
                or session.started_at is None
                or session.started_at >= cutoff
                or not Path(session.job_file_path).is_file()
            ):
                report.skipped += 1
                continue
            selected.append(session)
        selected.sort(key=lambda s: s.started_at, reverse=True)

        for session in selected:
            report.found += 1
            report.paths.append(session.job_file_path)
            if dry_run:
                logger.info("[dry-run] would mark %s completed", session.job_file_path)
                continue
            try:
                await asyncio.to_thread(set_job_status, Path(session.job_file_path), STATUS_COMPLETED)
            except (OSError, FrontmatterParseError) as e:
                report.failed += 1
                report.failed_paths.append(session.job_file_path)
                logger.warning("Failed to mark %s completed: %s", session.job_file_path, e)
                continue
            report.updated += 1
            report.updated_paths.append(session.job_file_path)

        if not dry_run:
            await self._after_rewrite(report.updated_paths, STATUS_COMPLETED)
        logger.info(
            "Old jobs before %s: found=%d updated=%d failed=%d dry_run=%s",
            cutoff.date(), report.found, report.updated, report.failed, dry_run,
        )
        return report

    async def set_job_status(self, job_file_path: str | Path, status: str) -> str:
        """Manually set a job's declared status; returns the previous one."""
        path = Path(job_file_path)
        old_status = await asyncio.to_thread(set_job_status_checked, path, status)
        await self.parse_cache.invalidate(path)

        job = await self.parse_cache.get_job(path)
        job_type = job.type if job is not None else ""
        derived = derive_status(status, job_type, str(path), self.probe)
        await self._patch_cached_statuses({str(path): derived})
        logger.info("Job %s status %s → %s", path, old_status, status)
        return old_status

    async def kill_session(self, session_id: str) -> bool:
        """SIGTERM a live session and remove its directory.

        Returns False when the process had already exited.
        """
        return await self.live.kill(session_id)

    async def cleanup_dead_sessions(self, inactivity_minutes: Optional[int] = None) -> CleanupReport:
        """Settle archived sessions that are no longer running.

        Dead live-session directories are reaped first. Then archived
        running/idle sessions with a dead PID, or with no PID and no session
        directory, become interrupted; those inactive past the threshold
        become completed. Job sessions are left to the job file, which the
        final zombie repair settles.
        """
        threshold = timedelta(
            minutes=inactivity_minutes if inactivity_minutes is not None else self.settings.inactivity_minutes
        )
        report = CleanupReport()

        triggered_before = len(self.live.triggered_directories)
        removed_before = self.live.removed_directories
        await self._discover_live(reap=True)
        report.completion_triggers = len(self.live.triggered_directories) - triggered_before
        report.reaped_directories = self.live.removed_directories - removed_before

        repo = await self._repo()
        try:
            candidates = await repo.list_by_status([STATUS_RUNNING, STATUS_IDLE])
        except _ARCHIVE_ERRORS as e:
            raise ArchiveUnavailableError(f"session archive unavailable: {e}") from e

        now = utc_now()
        for session in candidates:
            if session.is_job:
                continue
            if session.pid > 0:
                if not self.probe(session.pid):
                    await self._set_archived_status(repo, session.id, STATUS_INTERRUPTED)
                    report.interrupted += 1
                    logger.info("Session %s (pid %d) is dead; marked interrupted", session.id, session.pid)
                    continue
            elif not self.live.has_directory(session.id):
                await self._set_archived_status(repo, session.id, STATUS_INTERRUPTED)
                report.interrupted += 1
                logger.info("Session %s has no PID tracking; marked interrupted", session.id)
                continue

            activity = session.activity_time
            if activity is not None and now - activity > threshold:
                await self._set_archived_status(repo, session.id, STATUS_COMPLETED)
                report.completed += 1
                logger.info("Session %s inactive since %s; marked completed", session.id, activity)

        zombies = await self.mark_zombies_interrupted()
        report.zombies = zombies.updated
        return report

    async def archive_sessions(self, session_ids: list[str]) -> int:
        repo = await self._repo()
        try:
            count = await repo.archive(session_ids)
        except _ARCHIVE_ERRORS as e:
            raise ArchiveUnavailableError(f"failed to archive sessions: {e}") from e
        logger.info("Archived %d sessions", count)
        return count
