"""Pydantic models shared by discovery, cache, and storage."""
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from agentwatch.date_utils import to_epoch

# ── Status + type vocabulary ───────────────────────────────────────

STATUS_RUNNING = "running"
STATUS_IDLE = "idle"
STATUS_PENDING_USER = "pending_user"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_INTERRUPTED = "interrupted"
STATUS_ERROR = "error"
STATUS_ABANDONED = "abandoned"
STATUS_HOLD = "hold"
STATUS_TODO = "todo"
STATUS_PENDING = "pending"

LIVE_STATUSES = frozenset({STATUS_RUNNING, STATUS_IDLE, STATUS_PENDING_USER})

# Declared job statuses that are never re-derived from the filesystem.
SETTLED_JOB_STATUSES = frozenset({
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_INTERRUPTED,
    STATUS_ERROR,
    STATUS_ABANDONED,
    STATUS_HOLD,
    STATUS_TODO,
    STATUS_PENDING,
})

# Statuses a merge never turns back into a live one.
TERMINAL_STATUSES = frozenset({
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_INTERRUPTED,
    STATUS_ERROR,
    STATUS_ABANDONED,
    STATUS_HOLD,
    STATUS_TODO,
})

TYPE_CLAUDE_CODE = "claude_code"
TYPE_CHAT = "chat"
TYPE_ONESHOT = "oneshot"
TYPE_INTERACTIVE_AGENT = "interactive_agent"
TYPE_AGENT = "agent"
TYPE_HEADLESS_AGENT = "headless_agent"
TYPE_SHELL = "shell"

# Job types backed by a foreground session instead of a lock file.
LOCKLESS_JOB_TYPES = frozenset({TYPE_CHAT, TYPE_INTERACTIVE_AGENT})
AGENT_JOB_TYPES = frozenset({TYPE_INTERACTIVE_AGENT, TYPE_AGENT, TYPE_HEADLESS_AGENT})

SessionSource = Literal["archive", "jobs", "live"]


class Session(BaseModel):
    """One work unit as every consumer sees it.

    Job-specific fields are always present and empty when the session did
    not come from a job file.
    """

    id: str
    type: str = TYPE_CLAUDE_CODE
    status: str = STATUS_RUNNING
    source: SessionSource = "archive"
    pid: int = 0
    repo: str = ""
    branch: str = ""
    tmux_key: str = ""
    working_directory: str = ""
    user: str = ""
    started_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    plan_name: str = ""
    plan_directory: str = ""
    job_title: str = ""
    job_file_path: str = ""
    claude_session_id: str = ""
    provider: str = ""
    project_name: str = ""
    is_worktree: bool = False
    is_ecosystem: bool = False
    parent_ecosystem_path: str = ""

    @property
    def is_job(self) -> bool:
        return bool(self.job_file_path)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def activity_time(self) -> Optional[datetime]:
        return self.last_activity or self.started_at

    def activity_epoch(self) -> float:
        return to_epoch(self.activity_time)


class JobInfo(BaseModel):
    """Fields read from a job file's metadata block."""

    id: str
    title: str = ""
    status: str = STATUS_PENDING
    type: str = TYPE_ONESHOT
    worktree: str = ""
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LiveSessionMetadata(BaseModel):
    """metadata.json inside a live session directory."""

    session_id: str = ""
    pid: int = 0
    repo: str = ""
    branch: str = ""
    tmux_key: str = ""
    working_directory: str = ""
    user: str = ""
    started_at: Optional[datetime] = None
    transcript_path: str = ""
    project_name: str = ""
    is_worktree: bool = False
    parent_ecosystem_path: str = ""
    type: str = ""
    job_file_path: str = ""
    claude_session_id: str = ""
    provider: str = ""


class ScanCacheSnapshot(BaseModel):
    timestamp: datetime
    sessions: list[Session] = Field(default_factory=list)


class RepairReport(BaseModel):
    """Outcome of a batch rewrite of job file statuses."""

    found: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    dry_run: bool = False
    paths: list[str] = Field(default_factory=list)
    updated_paths: list[str] = Field(default_factory=list)
    failed_paths: list[str] = Field(default_factory=list)


class CleanupReport(BaseModel):
    interrupted: int = 0
    completed: int = 0
    reaped_directories: int = 0
    completion_triggers: int = 0
    zombies: int = 0

    @property
    def total(self) -> int:
        return (
            self.interrupted
            + self.completed
            + self.reaped_directories
            + self.completion_triggers
            + self.zombies
        )


# ── Workspace hierarchy ────────────────────────────────────────────

WorkspaceKind = Literal["project", "worktree", "ecosystem"]


class WorkspaceNode(BaseModel):
    name: str
    path: str
    kind: WorkspaceKind = "project"
    parent: str = ""
    notebook: str = ""

    @property
    def is_worktree(self) -> bool:
        return self.kind == "worktree"

    @property
    def is_ecosystem(self) -> bool:
        return self.kind == "ecosystem"


class ScanRoot(BaseModel):
    """One directory the job scanner walks, with the node that owns it."""

    path: str
    owner: WorkspaceNode
    group: str
    is_plan: bool = False
