import tempfile
import unittest
from pathlib import Path

from agentwatch.discovery.parse_cache import ParseCache
from agentwatch.discovery.scanner import JobScanner
from agentwatch.models import WorkspaceNode
from agentwatch.workspace import WorkspaceRegistry

LIVE_PID = 4242


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _job(job_id: str, status: str, job_type: str = "oneshot", extra: str = "") -> str:
    return f"---\nid: {job_id}\ntitle: {job_id} title\nstatus: {status}\ntype: {job_type}\n{extra}---\nbody\n"


class JobScannerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.proj = Path(self._tmp.name) / "proj"
        notebook = self.proj / ".notebook"
        plan = notebook / "plans" / "alpha"

        self.live_job = _write(plan / "01-live.md", _job("live", "running"))
        _write(Path(f"{self.live_job}.lock"), str(LIVE_PID))
        self.dead_job = _write(plan / "02-dead.md", _job("dead", "running"))
        _write(plan / "03-done.md", _job("done", "completed", extra="updated_at: 2026-01-02T03:04:05Z\n"))
        _write(plan / "nested" / "04-deep.md", _job("deep", "pending"))
        _write(plan / "spec.md", _job("spec", "running"))
        _write(plan / "README.md", _job("readme", "running"))
        _write(plan / "archive" / "old.md", _job("archived", "running"))
        _write(plan / ".archive" / "older.md", _job("hidden-archive", "running"))
        _write(plan / ".artifacts" / "a.md", _job("artifact", "running"))
        _write(plan / "notes.md", "# scratch\n")
        _write(notebook / "inbox" / "chat.md", _job("chat", "running", job_type="chat"))

        registry = WorkspaceRegistry([WorkspaceNode(name="proj", path=str(self.proj))])
        self.cache = ParseCache(registry)
        self.scanner = JobScanner(
            registry,
            self.cache,
            probe=lambda pid: pid == LIVE_PID,
            workers=2,
            queue_size=1,
        )

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_scan_finds_jobs_and_derives_status(self) -> None:
        sessions = {s.id: s for s in await self.scanner.scan()}
        self.assertEqual(sorted(sessions), ["chat", "dead", "deep", "done", "live"])
        self.assertEqual(sessions["live"].status, "running")
        self.assertEqual(sessions["dead"].status, "interrupted")
        self.assertIsNotNone(sessions["dead"].ended_at)
        self.assertEqual(sessions["done"].status, "completed")
        self.assertEqual(sessions["done"].ended_at.year, 2026)
        self.assertEqual(sessions["chat"].status, "running")
        self.assertEqual(sessions["deep"].plan_name, "alpha")
        self.assertEqual(sessions["chat"].plan_name, "inbox")
        for session in sessions.values():
            self.assertEqual(session.source, "jobs")
            self.assertEqual(session.repo, "proj")
            self.assertTrue(session.job_file_path)

    async def test_declared_scan_skips_derivation(self) -> None:
        sessions = {s.id: s for s in await self.scanner.scan(derive=False)}
        self.assertEqual(sessions["dead"].status, "running")

    async def test_rescan_reuses_parse_cache(self) -> None:
        await self.scanner.scan()
        parsed = self.cache.parse_count
        await self.scanner.scan()
        self.assertEqual(self.cache.parse_count, parsed)

    async def test_no_roots_yields_nothing(self) -> None:
        scanner = JobScanner(WorkspaceRegistry([]), ParseCache())
        self.assertEqual(await scanner.scan(), [])


if __name__ == "__main__":
    unittest.main()
