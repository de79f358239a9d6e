import asyncio
import tempfile
import unittest
from pathlib import Path

from agentwatch.discovery.parse_cache import ParseCache
from agentwatch.discovery.refresher import ProgressiveRefresher
from agentwatch.discovery.scan_cache import ScanCache
from agentwatch.models import Session


class _FakeScanner:
    def __init__(self, sessions: list[Session]):
        self.sessions = sessions
        self.calls = 0

    async def scan(self, derive: bool = True) -> list[Session]:
        self.calls += 1
        return [s.model_copy() for s in self.sessions]


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class ProgressiveRefresherTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.job = self.root / "01-job.md"
        self.job.write_text("---\nid: job-1\nstatus: running\ntype: chat\n---\n", encoding="utf-8")
        self.session = Session(
            id="job-1", type="chat", status="running", source="jobs", job_file_path=str(self.job)
        )
        self.scanner = _FakeScanner([self.session])
        self.scan_cache = ScanCache(self.root / "jobs_cache.json", ttl_seconds=60)
        self.refresher = ProgressiveRefresher(
            self.scanner,
            self.scan_cache,
            ParseCache(),
            probe=lambda pid: False,
            tick_seconds=3600,
            full_every=6,
        )

    async def asyncTearDown(self) -> None:
        await self.refresher.stop()
        self._tmp.cleanup()

    async def test_disabled_refresher_does_not_start(self) -> None:
        await self.refresher.start()
        self.assertFalse(self.refresher.started)
        self.assertFalse(self.refresher.is_running)

    async def test_starts_only_once(self) -> None:
        self.refresher.enabled = True
        await self.refresher.start()
        first_task = self.refresher._task
        await self.refresher.start()
        self.assertIs(self.refresher._task, first_task)
        self.assertTrue(self.refresher.started)
        await _wait_for(lambda: self.scanner.calls == 1)

        await self.refresher.stop()
        self.assertFalse(self.refresher.is_running)
        await self.refresher.start()
        self.assertIsNone(self.refresher._task)

    async def test_fast_refresh_rederives_cached_jobs(self) -> None:
        self.scan_cache.write([self.session])
        self.job.write_text("---\nid: job-1\nstatus: completed\ntype: chat\n---\n", encoding="utf-8")
        await self.refresher.fast_refresh()
        cached = self.scan_cache.read()
        assert cached is not None
        self.assertEqual(cached[0].status, "completed")
        self.assertEqual(self.scanner.calls, 0)
        self.assertEqual(self.refresher.fast_runs, 1)

    async def test_fast_refresh_without_cache_runs_full_scan(self) -> None:
        await self.refresher.fast_refresh()
        self.assertEqual(self.scanner.calls, 1)
        self.assertIsNotNone(self.scan_cache.read())

    async def test_requested_full_refresh_wakes_the_loop(self) -> None:
        self.scan_cache.write([self.session])
        self.refresher.enabled = True
        await self.refresher.start()
        await _wait_for(lambda: self.refresher.fast_runs == 1)
        self.assertEqual(self.scanner.calls, 0)

        self.refresher.request_full_refresh()
        await _wait_for(lambda: self.refresher.full_runs == 1)
        self.assertEqual(self.scanner.calls, 1)

    async def test_tier_errors_do_not_stop_the_loop(self) -> None:
        async def boom(derive: bool = True):
            raise RuntimeError("scan failed")

        self.scanner.scan = boom
        self.refresher.enabled = True
        self.refresher.tick_seconds = 0.01
        self.refresher.full_every = 1
        await self.refresher.start()
        await _wait_for(lambda: self.refresher.ticks >= 3)
        self.assertTrue(self.refresher.is_running)


if __name__ == "__main__":
    unittest.main()
