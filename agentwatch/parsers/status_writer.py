"""Utilities for writing status changes back to job file frontmatter."""
from __future__ import annotations

import re
from pathlib import Path

from agentwatch.errors import FrontmatterParseError
from agentwatch.parsers.jobs import split_frontmatter

VALID_MANUAL_STATUSES = frozenset({
    "pending",
    "running",
    "completed",
    "failed",
    "interrupted",
    "hold",
    "todo",
    "abandoned",
})

_STATUS_LINE = re.compile(r"^status\s*:\s*(.*?)\s*$")


def _find_status_line(lines: list[str], closing_index: int) -> tuple[int, str]:
    for idx in range(closing_index):
        line = lines[idx]
        if line[:1] in (" ", "\t"):
            continue
        match = _STATUS_LINE.match(line)
        if match:
            return idx, match.group(1).strip().strip('"').strip("'")
    return -1, ""


def _read_raw(file_path: Path) -> str:
    with open(file_path, "r", encoding="utf-8", newline="") as fh:
        return fh.read()


def read_declared_status(file_path: Path) -> str:
    text = _read_raw(file_path)
    block, closing = split_frontmatter(text)
    if block is None:
        raise FrontmatterParseError(f"No frontmatter in {file_path}")
    _, status = _find_status_line(text.splitlines(), closing)
    return status


def set_job_status(file_path: Path, new_status: str) -> str:
    """Rewrite the top-level ``status:`` line of a job file in place.

    Only that line changes; every other byte of the file is preserved.
    Returns the previous status.
    """
    text = _read_raw(file_path)
    block, closing = split_frontmatter(text)
    if block is None:
        raise FrontmatterParseError(f"No frontmatter in {file_path}")

    lines = text.splitlines(keepends=True)
    idx, old_status = _find_status_line([line.rstrip("\r\n") for line in lines], closing)
    if idx < 0:
        raise FrontmatterParseError(f"No status field in frontmatter of {file_path}")

    original = lines[idx]
    ending = original[len(original.rstrip("\r\n")):]
    lines[idx] = f"status: {new_status}{ending}"
    with open(file_path, "w", encoding="utf-8", newline="") as fh:
        fh.write("".join(lines))
    return old_status


def set_job_status_checked(file_path: Path, new_status: str) -> str:
    """Manual status change: validate the target status and the file first."""
    if new_status not in VALID_MANUAL_STATUSES:
        valid = ", ".join(sorted(VALID_MANUAL_STATUSES))
        raise ValueError(f"invalid status: {new_status} (valid: {valid})")
    if not file_path.is_file():
        raise FileNotFoundError(f"job file not found: {file_path}")
    return set_job_status(file_path, new_status)
