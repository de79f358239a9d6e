"""Persistent JSON snapshot of the last full job scan."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from agentwatch import config
from agentwatch.date_utils import utc_now
from agentwatch.models import ScanCacheSnapshot, Session

logger = logging.getLogger("agentwatch.cache")


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class ScanCache:
    """``{"timestamp": ..., "sessions": [...]}`` on disk.

    Writers replace the file atomically, so readers never see a partial
    snapshot and no lock is needed.
    """

    def __init__(self, path: Path = config.CACHE_PATH, ttl_seconds: float = config.CACHE_TTL_SECONDS):
        self.path = Path(path)
        self.ttl_seconds = ttl_seconds

    def read_snapshot(self) -> Optional[ScanCacheSnapshot]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug("Scan cache unreadable at %s: %s", self.path, e)
            return None
        try:
            return ScanCacheSnapshot.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.debug("Ignoring corrupt scan cache %s: %s", self.path, e)
            return None

    def read(self, ignore_ttl: bool = False) -> Optional[list[Session]]:
        snapshot = self.read_snapshot()
        if snapshot is None:
            return None
        if not ignore_ttl and self._age_of(snapshot.timestamp) > self.ttl_seconds:
            return None
        return snapshot.sessions

    def write(self, sessions: list[Session]) -> None:
        snapshot = ScanCacheSnapshot(timestamp=utc_now(), sessions=sessions)
        _atomic_write(self.path, snapshot.model_dump_json(indent=2))

    @staticmethod
    def _age_of(timestamp: datetime) -> float:
        return (utc_now() - timestamp).total_seconds()

    def age(self) -> Optional[float]:
        """Seconds since the snapshot was written; None without a snapshot."""
        snapshot = self.read_snapshot()
        if snapshot is None:
            return None
        return self._age_of(snapshot.timestamp)

    def is_fresh(self) -> bool:
        age = self.age()
        return age is not None and age <= self.ttl_seconds

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
