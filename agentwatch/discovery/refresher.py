"""Background refresh of the persistent scan cache."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from agentwatch import config, observability
from agentwatch.discovery.parse_cache import ParseCache
from agentwatch.discovery.scan_cache import ScanCache
from agentwatch.discovery.scanner import JobScanner
from agentwatch.discovery.status import refresh_session_status
from agentwatch.process import LivenessProbe, is_process_alive

logger = logging.getLogger("agentwatch.refresh")


class ProgressiveRefresher:
    """Keeps the scan cache warm with a two-tier loop.

    Every tick re-derives the status of cached non-terminal jobs (fast
    tier). Every ``full_every`` ticks, or when a full refresh is requested,
    it rescans all workspaces instead (slow tier). Starts at most once.
    """

    def __init__(
        self,
        scanner: JobScanner,
        scan_cache: ScanCache,
        parse_cache: ParseCache,
        probe: LivenessProbe = is_process_alive,
        tick_seconds: float = config.REFRESH_TICK_SECONDS,
        full_every: int = config.FULL_REFRESH_EVERY_TICKS,
        enabled: bool = False,
    ):
        self.scanner = scanner
        self.scan_cache = scan_cache
        self.parse_cache = parse_cache
        self.probe = probe
        self.tick_seconds = tick_seconds
        self.full_every = max(1, full_every)
        self.enabled = enabled
        self._task: Optional[asyncio.Task] = None
        self._started = False
        self._running = False
        self._stopping = False
        self._wake = asyncio.Event()
        self.ticks = 0
        self.full_runs = 0
        self.fast_runs = 0

    @property
    def started(self) -> bool:
        return self._started

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if not self.enabled or self._started:
            return
        self._started = True
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="agentwatch-refresher")
        logger.info(
            "Progressive refresher started (tick=%ss, full every %d ticks)",
            self.tick_seconds,
            self.full_every,
        )

    async def stop(self) -> None:
        self._stopping = True
        self._wake.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._running:
            logger.info("Progressive refresher stopped")
        self._running = False

    def request_full_refresh(self) -> None:
        self._wake.set()

    async def _loop(self) -> None:
        try:
            await self._run_tier(full=False)
            while not self._stopping:
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.tick_seconds)
                except asyncio.TimeoutError:
                    pass
                if self._stopping:
                    break
                self.ticks += 1
                full = self._wake.is_set() or self.ticks % self.full_every == 0
                self._wake.clear()
                await self._run_tier(full=full)
        except asyncio.CancelledError:
            logger.debug("Refresher task cancelled")
        finally:
            self._running = False

    async def _run_tier(self, full: bool) -> None:
        try:
            if full:
                await self.full_refresh()
            else:
                await self.fast_refresh()
        except Exception as e:  # noqa: BLE001
            logger.error("Refresh tier (%s) failed: %s", "full" if full else "fast", e)

    async def full_refresh(self) -> None:
        sessions = await self.scanner.scan()
        await asyncio.to_thread(self.scan_cache.write, sessions)
        self.full_runs += 1

    async def fast_refresh(self) -> None:
        started = time.monotonic()
        sessions = await asyncio.to_thread(self.scan_cache.read, True)
        if sessions is None:
            # Nothing to refresh yet.
            await self.full_refresh()
            return

        candidates = [s for s in sessions if s.is_job and not s.is_terminal]
        changed = await asyncio.gather(
            *(refresh_session_status(s, self.parse_cache, self.probe) for s in candidates)
        )
        # Always rewritten so the snapshot timestamp advances.
        await asyncio.to_thread(self.scan_cache.write, sessions)
        self.fast_runs += 1
        changed_count = sum(1 for c in changed if c)
        if changed_count:
            logger.info("Fast refresh updated %d job statuses", changed_count)
        observability.record_scan("fast", (time.monotonic() - started) * 1000)
