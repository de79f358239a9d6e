"""Turn a parsed job file into a Session attributed to its workspace."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from agentwatch.models import (
    JobInfo,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_INTERRUPTED,
    ScanRoot,
    Session,
    WorkspaceNode,
)
from agentwatch.workspace import WorkspaceRegistry

_ENDED_STATUSES = {STATUS_COMPLETED, STATUS_FAILED, STATUS_INTERRUPTED}


def resolve_owner(
    job: JobInfo,
    root: ScanRoot,
    registry: Optional[WorkspaceRegistry],
) -> WorkspaceNode:
    """Effective workspace node for a job found under ``root``.

    An explicit worktree hint wins. Jobs in generic note groups of a
    worktree belong to the project the worktree was cut from.
    """
    owner = root.owner
    if registry is None:
        return owner

    if job.worktree:
        worktree = registry.resolve_worktree(owner, job.worktree)
        if worktree is not None:
            return worktree

    if not root.is_plan and owner.kind == "worktree":
        project = registry.project_of(owner)
        if project.kind != "worktree":
            return project
    return owner


def build_job_session(
    job: JobInfo,
    path: Path,
    root: ScanRoot,
    registry: Optional[WorkspaceRegistry] = None,
) -> Session:
    node = resolve_owner(job, root, registry)
    project = registry.project_of(node) if registry is not None else node
    ecosystem = registry.ecosystem_of(project) if registry is not None else None

    if node.kind == "worktree":
        branch = node.name
    else:
        branch = job.worktree

    parent_ecosystem_path = ""
    if ecosystem is not None and ecosystem.path != node.path:
        parent_ecosystem_path = ecosystem.path

    return Session(
        id=job.id,
        type=job.type,
        status=job.status,
        source="jobs",
        repo=project.name,
        branch=branch,
        working_directory=node.path,
        user=os.getenv("USER", ""),
        started_at=job.started_at,
        last_activity=job.updated_at,
        ended_at=job.updated_at if job.status in _ENDED_STATUSES else None,
        plan_name=root.group,
        plan_directory=root.path,
        job_title=job.title,
        job_file_path=str(path),
        project_name=project.name,
        is_worktree=node.kind == "worktree",
        is_ecosystem=node.kind == "ecosystem",
        parent_ecosystem_path=parent_ecosystem_path,
    )
