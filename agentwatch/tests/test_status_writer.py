import tempfile
import unittest
from pathlib import Path

from agentwatch.errors import FrontmatterParseError
from agentwatch.parsers.status_writer import (
    read_declared_status,
    set_job_status,
    set_job_status_checked,
)

_JOB = """---
id: job-1
title: Example
status: running
type: chat
notes:
  status: nested-should-stay
---

status: body text stays too
"""


class StatusWriterTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.path = self.root / "job.md"
        self.path.write_text(_JOB, encoding="utf-8")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_rewrites_only_the_status_line(self) -> None:
        old = set_job_status(self.path, "interrupted")
        self.assertEqual(old, "running")
        expected = _JOB.replace("status: running\n", "status: interrupted\n", 1)
        self.assertEqual(self.path.read_text(encoding="utf-8"), expected)
        self.assertEqual(read_declared_status(self.path), "interrupted")

    def test_preserves_crlf_line_endings(self) -> None:
        self.path.write_bytes(b"---\r\nid: a\r\nstatus: pending\r\n---\r\nbody\r\n")
        set_job_status(self.path, "completed")
        self.assertEqual(
            self.path.read_bytes(),
            b"---\r\nid: a\r\nstatus: completed\r\n---\r\nbody\r\n",
        )

    def test_missing_frontmatter_raises(self) -> None:
        self.path.write_text("no metadata here\n", encoding="utf-8")
        with self.assertRaises(FrontmatterParseError):
            set_job_status(self.path, "completed")

    def test_missing_status_line_raises(self) -> None:
        self.path.write_text("---\nid: a\n---\n", encoding="utf-8")
        with self.assertRaises(FrontmatterParseError):
            set_job_status(self.path, "completed")

    def test_checked_update_rejects_unknown_status(self) -> None:
        with self.assertRaises(ValueError):
            set_job_status_checked(self.path, "exploded")
        self.assertEqual(self.path.read_text(encoding="utf-8"), _JOB)

    def test_checked_update_requires_existing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            set_job_status_checked(self.root / "gone.md", "completed")


if __name__ == "__main__":
    unittest.main()
