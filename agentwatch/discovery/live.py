"""Scan live interactive-session directories (pid.lock + metadata.json)."""
from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from agentwatch import config
from agentwatch.date_utils import utc_now
from agentwatch.errors import DiscoveryError
from agentwatch.models import (
    AGENT_JOB_TYPES,
    LIVE_STATUSES,
    STATUS_INTERRUPTED,
    STATUS_RUNNING,
    TYPE_CLAUDE_CODE,
    LiveSessionMetadata,
    Session,
)
from agentwatch.orchestrator import CompletionTrigger
from agentwatch.process import LivenessProbe, is_process_alive, read_pid_file, terminate_process
from agentwatch.tasks import BackgroundTaskRunner
from agentwatch.workspace import WorkspaceRegistry

logger = logging.getLogger("agentwatch.live")

PID_FILENAME = "pid.lock"
METADATA_FILENAME = "metadata.json"

ArchiveLookup = Callable[[str], Awaitable[Optional[Session]]]


def _read_metadata(path: Path) -> Optional[LiveSessionMetadata]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.debug("Skipping session metadata %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        return None
    try:
        return LiveSessionMetadata.model_validate(data)
    except ValidationError as e:
        logger.debug("Invalid session metadata %s: %s", path, e)
        return None


def _remove_dir(path: Path) -> bool:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Failed to remove session directory %s: %s", path, e)
        return False
    logger.info("Removed dead session directory %s", path)
    return True


def is_agent_linked(metadata: LiveSessionMetadata) -> bool:
    return metadata.type in AGENT_JOB_TYPES and bool(metadata.job_file_path)


class LiveSessionScanner:
    """One Session per live session directory.

    With ``reap=True`` dead directories are handled: an agent job gets its
    completion trigger submitted once, anything else is removed.
    """

    def __init__(
        self,
        sessions_dir: Path = config.SESSIONS_DIR,
        probe: LivenessProbe = is_process_alive,
        archive_lookup: Optional[ArchiveLookup] = None,
        trigger: Optional[CompletionTrigger] = None,
        runner: Optional[BackgroundTaskRunner] = None,
        cleanup_after_completion: bool = config.CLEANUP_AFTER_COMPLETION,
        registry: Optional[WorkspaceRegistry] = None,
        terminate: Callable[[int], bool] = terminate_process,
    ):
        self.sessions_dir = Path(sessions_dir)
        self.probe = probe
        self.archive_lookup = archive_lookup
        self.trigger = trigger
        self.runner = runner
        self.cleanup_after_completion = cleanup_after_completion
        self.registry = registry
        self.terminate = terminate
        self._triggered: set[str] = set()
        self.removed_directories = 0

    async def scan(self, reap: bool = False) -> list[Session]:
        if not self.sessions_dir.exists():
            return []
        try:
            entries = await asyncio.to_thread(
                lambda: sorted(p for p in self.sessions_dir.iterdir() if p.is_dir())
            )
        except OSError as e:
            raise DiscoveryError(f"failed to read sessions directory {self.sessions_dir}: {e}") from e

        sessions: list[Session] = []
        for session_dir in entries:
            session = await self._read_session(session_dir, reap)
            if session is not None:
                sessions.append(session)
        return sessions

    async def _read_session(self, session_dir: Path, reap: bool) -> Optional[Session]:
        pid = await asyncio.to_thread(read_pid_file, session_dir / PID_FILENAME)
        if pid is None:
            return None
        metadata = await asyncio.to_thread(_read_metadata, session_dir / METADATA_FILENAME)
        if metadata is None:
            return None

        dir_name = session_dir.name
        session_id = metadata.session_id or dir_name
        claude_session_id = metadata.claude_session_id
        if session_id != dir_name:
            claude_session_id = dir_name

        session = Session(
            id=session_id,
            type=metadata.type or TYPE_CLAUDE_CODE,
            source="live",
            pid=pid,
            repo=metadata.repo,
            branch=metadata.branch,
            tmux_key=metadata.tmux_key,
            working_directory=metadata.working_directory,
            user=metadata.user,
            started_at=metadata.started_at,
            last_activity=metadata.started_at,
            job_file_path=metadata.job_file_path,
            claude_session_id=claude_session_id,
            provider=metadata.provider,
            project_name=metadata.project_name,
            is_worktree=metadata.is_worktree,
            parent_ecosystem_path=metadata.parent_ecosystem_path,
        )
        self._attribute(session)

        if self.probe(pid):
            session.status = STATUS_RUNNING
            await self._overlay_archive(session)
        else:
            session.status = STATUS_INTERRUPTED
            session.ended_at = utc_now()
            if reap:
                await self._reap(session_dir, metadata)
        return session

    def _attribute(self, session: Session) -> None:
        """Fill repo context from the workspace containing the working directory."""
        if self.registry is None or session.repo or not session.working_directory:
            return
        node = self.registry.resolve_path(session.working_directory)
        if node is None:
            return
        project = self.registry.project_of(node)
        session.repo = project.name
        if not session.project_name:
            session.project_name = project.name
        if node.is_worktree:
            session.is_worktree = True
            if not session.branch:
                session.branch = node.name

    async def _overlay_archive(self, session: Session) -> None:
        if self.archive_lookup is None:
            return
        try:
            stored = await self.archive_lookup(session.id)
        except Exception as e:  # noqa: BLE001
            logger.debug("Archive lookup for %s failed: %s", session.id, e)
            return
        if stored is None or stored.status not in LIVE_STATUSES:
            return
        session.status = stored.status
        if stored.last_activity is not None:
            session.last_activity = stored.last_activity

    async def _reap(self, session_dir: Path, metadata: LiveSessionMetadata) -> None:
        if not is_agent_linked(metadata):
            if await asyncio.to_thread(_remove_dir, session_dir):
                self.removed_directories += 1
            return

        key = str(session_dir)
        if key in self._triggered or self.trigger is None or self.runner is None:
            return
        self._triggered.add(key)

        trigger = self.trigger
        job_file_path = metadata.job_file_path

        async def _complete() -> None:
            await trigger.complete(job_file_path)
            if self.cleanup_after_completion:
                await asyncio.sleep(trigger.grace_seconds)
                if await asyncio.to_thread(_remove_dir, session_dir):
                    self.removed_directories += 1

        logger.info("Agent session %s ended; completing job %s", session_dir.name, job_file_path)
        await self.runner.submit(_complete, name=f"complete:{session_dir.name}")

    async def kill(self, session_id: str) -> bool:
        """Terminate a session's process and remove its directory.

        Returns True when a signal was sent and False when the process was
        already gone. Raises DiscoveryError for an unknown session or an
        unreadable lock file.
        """
        session_dir = self.sessions_dir / session_id
        if not session_dir.is_dir():
            raise DiscoveryError(f"session not found: {session_id}")
        pid = await asyncio.to_thread(read_pid_file, session_dir / PID_FILENAME)
        if pid is None:
            raise DiscoveryError(f"no readable PID for session {session_id}")

        signalled = self.probe(pid) and self.terminate(pid)
        if signalled:
            logger.info("Sent SIGTERM to session %s (pid %d)", session_id, pid)
        if await asyncio.to_thread(_remove_dir, session_dir):
            self.removed_directories += 1
        return signalled

    @property
    def triggered_directories(self) -> set[str]:
        return set(self._triggered)

    def has_directory(self, session_id: str) -> bool:
        return (self.sessions_dir / session_id).is_dir()
