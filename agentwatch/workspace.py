"""Workspace registry: projects, ecosystems, worktrees and their notebooks."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from agentwatch.models import ScanRoot, WorkspaceNode

logger = logging.getLogger("agentwatch.workspace")

WORKTREES_DIRNAME = ".grove-worktrees"
DEFAULT_NOTEBOOK_DIRNAME = ".notebook"
PLANS_DIRNAME = "plans"
GENERIC_GROUPS = ("chats", "inbox", "notes", "quick")


def _is_within(path: Path, base: Path) -> bool:
    try:
        path.relative_to(base)
    except ValueError:
        return False
    return True


class WorkspaceRegistry:
    """Resolves job file locations to the workspace node that owns them.

    Explicit nodes come from ``workspaces.json``; worktrees of every project
    are discovered under ``<project>/.grove-worktrees/<name>``.
    """

    def __init__(self, nodes: Iterable[WorkspaceNode] = (), discover_worktrees: bool = True):
        self._nodes: list[WorkspaceNode] = []
        self._by_name: dict[str, WorkspaceNode] = {}
        for node in nodes:
            self._add(node)
        if discover_worktrees:
            self._discover_worktrees()

    @classmethod
    def load(cls, storage_path: Path) -> "WorkspaceRegistry":
        """Load the registry file; a missing or unreadable file yields no nodes."""
        nodes: list[WorkspaceNode] = []
        if not storage_path.exists():
            logger.debug("No workspace registry at %s", storage_path)
            return cls(nodes)
        try:
            content = storage_path.read_text(encoding="utf-8")
            data = json.loads(content) if content.strip() else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load workspace registry %s: %s", storage_path, e)
            return cls(nodes)

        entries = data.get("workspaces", []) if isinstance(data, dict) else []
        for entry in entries:
            try:
                nodes.append(WorkspaceNode(**entry))
            except (TypeError, ValidationError) as e:
                logger.warning("Skipping malformed workspace entry %r: %s", entry, e)
        return cls(nodes)

    def _add(self, node: WorkspaceNode) -> None:
        if node.kind != "worktree" and node.name in self._by_name:
            logger.warning("Duplicate workspace name %s; keeping the first entry", node.name)
            return
        self._nodes.append(node)
        if node.kind != "worktree":
            self._by_name[node.name] = node

    def _discover_worktrees(self) -> None:
        known = {str(Path(n.path)) for n in self._nodes}
        for project in [n for n in self._nodes if n.kind != "worktree"]:
            worktrees_dir = Path(project.path) / WORKTREES_DIRNAME
            if not worktrees_dir.is_dir():
                continue
            try:
                children = sorted(p for p in worktrees_dir.iterdir() if p.is_dir())
            except OSError as e:
                logger.debug("Cannot list worktrees in %s: %s", worktrees_dir, e)
                continue
            for child in children:
                if str(child) in known:
                    continue
                self._nodes.append(
                    WorkspaceNode(name=child.name, path=str(child), kind="worktree", parent=project.name)
                )
                known.add(str(child))

    # ── Lookups ─────────────────────────────────────────────────────

    @property
    def nodes(self) -> list[WorkspaceNode]:
        return list(self._nodes)

    def get(self, name: str) -> Optional[WorkspaceNode]:
        return self._by_name.get(name)

    def parent_of(self, node: WorkspaceNode) -> Optional[WorkspaceNode]:
        if not node.parent:
            return None
        return self._by_name.get(node.parent)

    def project_of(self, node: WorkspaceNode) -> WorkspaceNode:
        """The nearest non-worktree node, or ``node`` itself."""
        current = node
        seen: set[str] = set()
        while current.kind == "worktree":
            parent = self.parent_of(current)
            if parent is None or parent.path in seen:
                return node
            seen.add(current.path)
            current = parent
        return current

    def ecosystem_of(self, node: WorkspaceNode) -> Optional[WorkspaceNode]:
        current: Optional[WorkspaceNode] = node
        seen: set[str] = set()
        while current is not None and current.path not in seen:
            if current.kind == "ecosystem":
                return current
            seen.add(current.path)
            current = self.parent_of(current)
        return None

    def resolve_path(self, path: Path | str) -> Optional[WorkspaceNode]:
        """Deepest node whose directory contains ``path``."""
        target = Path(path)
        best: Optional[WorkspaceNode] = None
        best_depth = -1
        for node in self._nodes:
            base = Path(node.path)
            if _is_within(target, base) and len(base.parts) > best_depth:
                best = node
                best_depth = len(base.parts)
        return best

    def resolve_worktree(self, owner: WorkspaceNode, hint: str) -> Optional[WorkspaceNode]:
        """Worktree named ``hint`` belonging to the owner's project."""
        hint = (hint or "").strip()
        if not hint:
            return None
        base = owner
        if owner.kind == "worktree":
            parent = self.parent_of(owner)
            if parent is None:
                return None
            base = parent
        for node in self._nodes:
            if node.kind == "worktree" and node.name == hint and node.parent == base.name:
                return node
        return None

    # ── Scan roots ──────────────────────────────────────────────────

    @staticmethod
    def notebook_dir(node: WorkspaceNode) -> Path:
        if node.notebook:
            return Path(node.notebook).expanduser()
        return Path(node.path) / DEFAULT_NOTEBOOK_DIRNAME

    def scan_roots(self) -> list[ScanRoot]:
        roots: list[ScanRoot] = []
        seen: set[str] = set()
        for node in self._nodes:
            notebook = self.notebook_dir(node)
            if not notebook.is_dir():
                continue

            plans_dir = notebook / PLANS_DIRNAME
            if plans_dir.is_dir():
                try:
                    plan_dirs = sorted(p for p in plans_dir.iterdir() if p.is_dir())
                except OSError as e:
                    logger.debug("Cannot list plans in %s: %s", plans_dir, e)
                    plan_dirs = []
                for plan_dir in plan_dirs:
                    if plan_dir.name.startswith(".") or str(plan_dir) in seen:
                        continue
                    seen.add(str(plan_dir))
                    roots.append(ScanRoot(path=str(plan_dir), owner=node, group=plan_dir.name, is_plan=True))

            for group in GENERIC_GROUPS:
                group_dir = notebook / group
                if group_dir.is_dir() and str(group_dir) not in seen:
                    seen.add(str(group_dir))
                    roots.append(ScanRoot(path=str(group_dir), owner=node, group=group, is_plan=False))
        return roots
