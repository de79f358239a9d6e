import os
import signal
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from agentwatch.process import (
    is_process_alive,
    lock_file_for,
    parse_pid,
    read_pid_file,
    terminate_process,
)


class ProcessTests(unittest.TestCase):
    def test_current_process_is_alive(self) -> None:
        self.assertTrue(is_process_alive(os.getpid()))

    def test_non_positive_pids_are_dead(self) -> None:
        self.assertFalse(is_process_alive(0))
        self.assertFalse(is_process_alive(-5))

    def test_missing_process_is_dead(self) -> None:
        with mock.patch("agentwatch.process.os.kill", side_effect=ProcessLookupError):
            self.assertFalse(is_process_alive(1234))

    def test_foreign_process_counts_as_alive(self) -> None:
        with mock.patch("agentwatch.process.os.kill", side_effect=PermissionError):
            self.assertTrue(is_process_alive(1))

    def test_terminate_sends_sigterm(self) -> None:
        with mock.patch("agentwatch.process.os.kill") as kill:
            self.assertTrue(terminate_process(4321))
        kill.assert_called_once_with(4321, signal.SIGTERM)

    def test_terminate_reports_missing_or_invalid_pids(self) -> None:
        self.assertFalse(terminate_process(0))
        self.assertFalse(terminate_process(-1))
        with mock.patch("agentwatch.process.os.kill", side_effect=ProcessLookupError):
            self.assertFalse(terminate_process(4321))

    def test_parse_pid_accepts_leading_integer(self) -> None:
        self.assertEqual(parse_pid("  1234\n"), 1234)
        self.assertEqual(parse_pid("77 trailing"), 77)
        self.assertEqual(parse_pid("-3"), -3)
        self.assertIsNone(parse_pid("abc"))
        self.assertIsNone(parse_pid(""))

    def test_read_pid_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "pid.lock"
            self.assertIsNone(read_pid_file(path))
            path.write_text("5150\n", encoding="utf-8")
            self.assertEqual(read_pid_file(path), 5150)

    def test_lock_file_sits_next_to_job(self) -> None:
        self.assertEqual(lock_file_for("/plans/a/01-job.md"), Path("/plans/a/01-job.md.lock"))


if __name__ == "__main__":
    unittest.main()
