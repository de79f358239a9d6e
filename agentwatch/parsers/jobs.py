"""Parse orchestrator job files (markdown + leading metadata block)."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from agentwatch.date_utils import parse_rfc3339
from agentwatch.models import JobInfo, STATUS_PENDING, TYPE_ONESHOT

logger = logging.getLogger("agentwatch.parsers")

FRONTMATTER_DELIMITER = "---"

# Markdown files that live next to jobs but never describe one.
NON_JOB_FILENAMES = frozenset({
    "spec.md",
    "README.md",
    "CLAUDE.md",
    "AGENTS.md",
    "index.md",
})

_JOB_KEYS = ("id", "title", "status", "type", "worktree", "start_time", "updated_at")


def is_candidate_job_file(path: Path) -> bool:
    return path.suffix == ".md" and path.name not in NON_JOB_FILENAMES


def split_frontmatter(text: str) -> tuple[list[str] | None, int]:
    """Return (block_lines, closing_index) for the leading metadata block.

    The block must open on the first non-blank line. ``closing_index`` is the
    line index of the closing delimiter in ``text.splitlines()``; both are
    (None, -1) when the file has no complete block.
    """
    lines = text.splitlines()
    start = -1
    for idx, line in enumerate(lines):
        if not line.strip():
            continue
        if line.strip() == FRONTMATTER_DELIMITER:
            start = idx
        break
    if start < 0:
        return None, -1
    for idx in range(start + 1, len(lines)):
        if lines[idx].strip() == FRONTMATTER_DELIMITER:
            return lines[start + 1 : idx], idx
    return None, -1


def _scan_top_level_keys(block: list[str]) -> dict[str, str]:
    """Restricted key: value scan used when the block is not valid YAML."""
    values: dict[str, str] = {}
    for line in block:
        if line[:1] in (" ", "\t"):
            continue  # nested value
        key, sep, value = line.strip().partition(":")
        if not sep:
            continue
        values[key.strip()] = value.strip().strip('"')
    return values


def _load_block(block: list[str]) -> dict[str, Any]:
    text = "\n".join(block)
    try:
        # BaseLoader keeps every scalar as the literal string written.
        loaded = yaml.load(text, Loader=yaml.BaseLoader)
    except yaml.YAMLError:
        return _scan_top_level_keys(block)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        return _scan_top_level_keys(block)
    return loaded


def _scalar(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def parse_job_text(text: str) -> JobInfo | None:
    """Build a JobInfo from file contents; None when the file is not a job."""
    block, _ = split_frontmatter(text)
    if block is None:
        return None
    raw = _load_block(block)
    fields = {key: _scalar(raw.get(key)) for key in _JOB_KEYS}

    job_id = fields["id"] or fields["title"]
    if not job_id:
        return None

    started_at = parse_rfc3339(fields["start_time"])
    updated_at = parse_rfc3339(fields["updated_at"])

    return JobInfo(
        id=job_id,
        title=fields["title"],
        status=fields["status"] or STATUS_PENDING,
        type=fields["type"] or TYPE_ONESHOT,
        worktree=fields["worktree"],
        started_at=started_at or updated_at,
        updated_at=updated_at,
    )


def parse_job_file(path: Path) -> JobInfo | None:
    """Read and parse one job file.

    Raises OSError when the file cannot be read; callers decide whether that
    is fatal.
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    return parse_job_text(text)
