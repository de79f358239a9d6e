"""Process liveness checks and PID lock files."""
from __future__ import annotations

import errno
import os
import re
import signal
from pathlib import Path
from typing import Callable

LivenessProbe = Callable[[int], bool]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def is_process_alive(pid: int) -> bool:
    """Return True when a process with ``pid`` exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)  # signal 0 = existence check only
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    except OSError as exc:
        return exc.errno == errno.EPERM
    return True


def terminate_process(pid: int) -> bool:
    """Send SIGTERM; False when the process is already gone."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    return True


def parse_pid(text: str) -> int | None:
    match = _LEADING_INT.match(text or "")
    if not match:
        return None
    try:
        return int(match.group(1))
    except ValueError:
        return None


def read_pid_file(path: Path) -> int | None:
    """Read a lock file holding one decimal PID.

    Returns None when the file is missing, unreadable or does not start
    with an integer.
    """
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return parse_pid(content)


def lock_file_for(job_file: Path | str) -> Path:
    return Path(f"{job_file}.lock")
