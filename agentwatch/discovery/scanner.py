"""Full discovery scan over every workspace notebook."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path

from agentwatch import config, observability
from agentwatch.discovery.parse_cache import ParseCache
from agentwatch.discovery.status import refresh_session_status
from agentwatch.models import ScanRoot, Session
from agentwatch.parsers.jobs import is_candidate_job_file
from agentwatch.process import LivenessProbe, is_process_alive
from agentwatch.workspace import WorkspaceRegistry

logger = logging.getLogger("agentwatch.discovery")

SKIPPED_DIRS = frozenset({".archive", "archive", ".artifacts"})

_DONE = object()


def _walk_root(root: ScanRoot) -> list[Path]:
    """Candidate job files under one scan root (runs in a worker thread)."""
    found: list[Path] = []

    def _on_error(err: OSError) -> None:
        logger.debug("Walk error under %s: %s", root.path, err)

    for dirpath, dirnames, filenames in os.walk(root.path, onerror=_on_error):
        dirnames[:] = sorted(
            d for d in dirnames if d not in SKIPPED_DIRS and not d.startswith(".")
        )
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if is_candidate_job_file(path):
                found.append(path)
    return found


class JobScanner:
    """Walks scan roots, parses candidates through the cache, derives status.

    One walker feeds a bounded queue; a fixed pool of workers drains it and
    a collector deduplicates results by job file path.
    """

    def __init__(
        self,
        registry: WorkspaceRegistry,
        parse_cache: ParseCache,
        probe: LivenessProbe = is_process_alive,
        workers: int = config.SCAN_WORKERS,
        queue_size: int = config.SCAN_QUEUE_SIZE,
    ):
        self.registry = registry
        self.parse_cache = parse_cache
        self.probe = probe
        self.workers = max(1, workers)
        self.queue_size = max(1, queue_size)

    async def scan(self, derive: bool = True) -> list[Session]:
        """Every job under the scan roots.

        With ``derive=False`` sessions keep the status declared in their files.
        """
        started = time.monotonic()
        with observability.start_span("agentwatch.scan", {"workers": self.workers}):
            sessions = await self._scan(derive)
        duration_ms = (time.monotonic() - started) * 1000
        observability.record_scan("full", duration_ms)
        logger.info("Job scan found %d jobs in %.0fms", len(sessions), duration_ms)
        return sessions

    async def _scan(self, derive: bool) -> list[Session]:
        roots = self.registry.scan_roots()
        if not roots:
            return []

        paths: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        results: asyncio.Queue = asyncio.Queue()

        async def walker() -> None:
            try:
                for root in roots:
                    try:
                        files = await asyncio.to_thread(_walk_root, root)
                    except OSError as e:
                        logger.warning("Skipping scan root %s: %s", root.path, e)
                        continue
                    for path in files:
                        await paths.put((path, root))
            finally:
                for _ in range(self.workers):
                    await paths.put(_DONE)

        async def worker() -> None:
            while True:
                item = await paths.get()
                if item is _DONE:
                    break
                path, root = item
                try:
                    session = await self.parse_cache.resolve(path, root)
                except Exception as e:  # noqa: BLE001
                    logger.debug("Skipping job file %s: %s", path, e)
                    observability.record_parse_failure("job_file")
                    continue
                if session is not None:
                    await results.put(session)
            await results.put(_DONE)

        collected: dict[str, Session] = {}

        async def collector() -> None:
            finished = 0
            while finished < self.workers:
                item = await results.get()
                if item is _DONE:
                    finished += 1
                    continue
                collected.setdefault(item.job_file_path, item)

        await asyncio.gather(
            walker(),
            *(worker() for _ in range(self.workers)),
            collector(),
        )

        sessions = list(collected.values())
        if derive:
            live_candidates = [s for s in sessions if not s.is_terminal]
            await asyncio.gather(
                *(refresh_session_status(s, self.parse_cache, self.probe) for s in live_candidates)
            )
        sessions.sort(key=lambda s: s.job_file_path)
        return sessions
