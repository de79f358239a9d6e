import tempfile
import unittest
from pathlib import Path

from agentwatch.discovery.zombies import find_stale_locked_jobs, find_zombie_jobs, repair_zombie_jobs
from agentwatch.models import Session
from agentwatch.parsers.jobs import parse_job_file


def _write_job(path: Path, status: str, job_type: str) -> Session:
    path.write_text(
        f"---\nid: {path.stem}\ntitle: {path.stem}\nstatus: {status}\ntype: {job_type}\n---\nbody\n",
        encoding="utf-8",
    )
    return Session(id=path.stem, type=job_type, status=status, source="jobs", job_file_path=str(path))


def _declared(paths: list[Path]) -> list[Session]:
    sessions = []
    for path in paths:
        job = parse_job_file(path)
        assert job is not None
        sessions.append(Session(id=job.id, type=job.type, status=job.status, source="jobs", job_file_path=str(path)))
    return sessions


class ZombieDetectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_only_unattached_session_backed_jobs_are_zombies(self) -> None:
        jobs = [
            _write_job(self.root / "chat.md", "running", "chat"),
            _write_job(self.root / "agent.md", "running", "interactive_agent"),
            _write_job(self.root / "attached.md", "running", "chat"),
            _write_job(self.root / "waiting.md", "pending_user", "chat"),
            _write_job(self.root / "oneshot.md", "running", "oneshot"),
            _write_job(self.root / "done.md", "completed", "chat"),
        ]
        live = [
            Session(id="live-1", status="running", source="live", job_file_path=str(self.root / "attached.md")),
            Session(id="live-2", status="interrupted", source="live", job_file_path=str(self.root / "agent.md")),
        ]
        zombies = find_zombie_jobs(live, jobs)
        self.assertEqual(sorted(z.id for z in zombies), ["agent", "chat", "waiting"])

    def test_repair_is_idempotent(self) -> None:
        paths = [self.root / "a.md", self.root / "b.md"]
        for path in paths:
            _write_job(path, "running", "chat")

        first = repair_zombie_jobs(find_zombie_jobs([], _declared(paths)))
        self.assertEqual((first.found, first.updated, first.failed), (2, 2, 0))
        for path in paths:
            job = parse_job_file(path)
            assert job is not None
            self.assertEqual(job.status, "interrupted")
            self.assertTrue(path.read_text(encoding="utf-8").endswith("---\nbody\n"))

        second = repair_zombie_jobs(find_zombie_jobs([], _declared(paths)))
        self.assertEqual((second.found, second.updated), (0, 0))

    def test_dry_run_writes_nothing(self) -> None:
        path = self.root / "a.md"
        job = _write_job(path, "running", "chat")
        report = repair_zombie_jobs([job], dry_run=True)
        self.assertTrue(report.dry_run)
        self.assertEqual(report.found, 1)
        self.assertEqual(report.updated, 0)
        self.assertEqual(report.paths, [str(path)])
        self.assertIn("status: running", path.read_text(encoding="utf-8"))

    def test_write_failure_is_counted_and_batch_continues(self) -> None:
        good = _write_job(self.root / "good.md", "running", "chat")
        missing = Session(id="gone", type="chat", status="running", job_file_path=str(self.root / "gone.md"))
        report = repair_zombie_jobs([missing, good])
        self.assertEqual(report.found, 2)
        self.assertEqual(report.updated, 1)
        self.assertEqual(report.failed, 1)
        self.assertEqual(report.failed_paths, [str(self.root / "gone.md")])
        self.assertEqual(report.updated_paths, [str(self.root / "good.md")])

    def test_pending_user_zombie_is_repaired(self) -> None:
        path = self.root / "waiting.md"
        job = _write_job(path, "pending_user", "chat")
        report = repair_zombie_jobs(find_zombie_jobs([], [job]))
        self.assertEqual(report.updated_paths, [str(path)])
        parsed = parse_job_file(path)
        assert parsed is not None
        self.assertEqual(parsed.status, "interrupted")

    def test_job_changed_since_scan_is_skipped_not_updated(self) -> None:
        path = self.root / "moved-on.md"
        scanned = _write_job(path, "running", "chat")
        _write_job(path, "completed", "chat")

        report = repair_zombie_jobs([scanned])
        self.assertEqual((report.found, report.updated, report.skipped, report.failed), (1, 0, 1, 0))
        self.assertEqual(report.updated_paths, [])
        self.assertEqual(scanned.status, "running")
        self.assertIn("status: completed", path.read_text(encoding="utf-8"))

    def test_stale_locked_jobs(self) -> None:
        dead = _write_job(self.root / "dead.md", "running", "oneshot")
        Path(f"{dead.job_file_path}.lock").write_text("111", encoding="utf-8")
        alive = _write_job(self.root / "alive.md", "running", "agent")
        Path(f"{alive.job_file_path}.lock").write_text("222", encoding="utf-8")
        unlocked = _write_job(self.root / "unlocked.md", "running", "headless_agent")
        chat = _write_job(self.root / "chat.md", "running", "chat")

        stale = find_stale_locked_jobs([dead, alive, unlocked, chat], probe=lambda pid: pid == 222)
        self.assertEqual(sorted(s.id for s in stale), ["dead", "unlocked"])


if __name__ == "__main__":
    unittest.main()
