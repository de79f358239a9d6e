"""agentwatch configuration."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value:
        return default
    return Path(value).expanduser()


def _default_data_dir() -> Path:
    # XDG_DATA_HOME wins over the dot-directory in $HOME
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg).expanduser() / "agentwatch"
    return Path.home() / ".agentwatch"


DATA_DIR = _env_path("AGENTWATCH_DATA_DIR", _default_data_dir())
SESSIONS_DIR = _env_path("AGENTWATCH_SESSIONS_DIR", DATA_DIR / "sessions")
CACHE_PATH = _env_path("AGENTWATCH_CACHE_PATH", DATA_DIR / "jobs_cache.json")
DB_PATH = _env_path("AGENTWATCH_DB_PATH", DATA_DIR / "state.db")
WORKSPACES_FILE = _env_path("AGENTWATCH_WORKSPACES_FILE", DATA_DIR / "workspaces.json")

DEBUG = _env_bool("AGENTWATCH_DEBUG", False)

# Scan cache + refresh tuning
CACHE_TTL_SECONDS = _env_float("AGENTWATCH_CACHE_TTL_SECONDS", 60.0)
REFRESH_TICK_SECONDS = _env_float("AGENTWATCH_REFRESH_TICK_SECONDS", 5.0)
FULL_REFRESH_EVERY_TICKS = _env_int("AGENTWATCH_FULL_REFRESH_EVERY_TICKS", 6)
SCAN_WORKERS = _env_int("AGENTWATCH_SCAN_WORKERS", 8)
SCAN_QUEUE_SIZE = _env_int("AGENTWATCH_SCAN_QUEUE_SIZE", 256)

# Orchestrator bridge
ORCHESTRATOR_BIN = os.getenv("AGENTWATCH_ORCHESTRATOR_BIN", "flow")
COMPLETION_GRACE_SECONDS = _env_float("AGENTWATCH_COMPLETION_GRACE_SECONDS", 10.0)
CLEANUP_AFTER_COMPLETION = _env_bool("AGENTWATCH_CLEANUP_AFTER_COMPLETION", False)

# Archival cleanup
INACTIVITY_MINUTES = _env_int("AGENTWATCH_INACTIVITY_MINUTES", 30)

# Observability
OTEL_ENABLED = _env_bool("AGENTWATCH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("AGENTWATCH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("AGENTWATCH_OTEL_SERVICE_NAME", "agentwatch")
PROM_PORT = _env_int("AGENTWATCH_PROM_PORT", 0)


@dataclass
class EngineSettings:
    """Snapshot of the knobs a SessionEngine needs.

    Built from the module constants by default; tests build one with
    temporary paths instead of patching the environment.
    """

    sessions_dir: Path = field(default_factory=lambda: SESSIONS_DIR)
    cache_path: Path = field(default_factory=lambda: CACHE_PATH)
    db_path: Path = field(default_factory=lambda: DB_PATH)
    workspaces_file: Path = field(default_factory=lambda: WORKSPACES_FILE)
    cache_ttl_seconds: float = CACHE_TTL_SECONDS
    refresh_tick_seconds: float = REFRESH_TICK_SECONDS
    full_refresh_every_ticks: int = FULL_REFRESH_EVERY_TICKS
    scan_workers: int = SCAN_WORKERS
    scan_queue_size: int = SCAN_QUEUE_SIZE
    orchestrator_bin: str = ORCHESTRATOR_BIN
    completion_grace_seconds: float = COMPLETION_GRACE_SECONDS
    cleanup_after_completion: bool = CLEANUP_AFTER_COMPLETION
    inactivity_minutes: int = INACTIVITY_MINUTES
    debug: bool = DEBUG

    @classmethod
    def for_data_dir(cls, data_dir: Path, **overrides) -> "EngineSettings":
        """Settings rooted at a single directory (tests, sandboxes)."""
        values = {
            "sessions_dir": data_dir / "sessions",
            "cache_path": data_dir / "jobs_cache.json",
            "db_path": data_dir / "state.db",
            "workspaces_file": data_dir / "workspaces.json",
        }
        values.update(overrides)
        return cls(**values)
