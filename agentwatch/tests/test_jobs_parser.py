import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from agentwatch.parsers.jobs import (
    is_candidate_job_file,
    parse_job_file,
    parse_job_text,
    split_frontmatter,
)


class JobParserTests(unittest.TestCase):
    def test_parse_full_job_metadata(self) -> None:
        job = parse_job_text(
            """---
id: job-42
title: Wire the cache
status: running
type: chat
worktree: feature-cache
start_time: 2026-02-01T10:00:00Z
updated_at: 2026-02-01T11:30:00Z
---
# Body
"""
        )
        self.assertIsNotNone(job)
        assert job is not None
        self.assertEqual(job.id, "job-42")
        self.assertEqual(job.title, "Wire the cache")
        self.assertEqual(job.status, "running")
        self.assertEqual(job.type, "chat")
        self.assertEqual(job.worktree, "feature-cache")
        self.assertEqual(job.started_at, datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(job.updated_at, datetime(2026, 2, 1, 11, 30, tzinfo=timezone.utc))

    def test_defaults_and_title_fallback(self) -> None:
        job = parse_job_text("---\ntitle: Only a title\n---\n")
        assert job is not None
        self.assertEqual(job.id, "Only a title")
        self.assertEqual(job.status, "pending")
        self.assertEqual(job.type, "oneshot")
        self.assertIsNone(job.started_at)

    def test_updated_at_backs_missing_start_time(self) -> None:
        job = parse_job_text("---\nid: a\nupdated_at: 2026-03-04T05:06:07+00:00\n---\n")
        assert job is not None
        self.assertEqual(job.started_at, datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc))

    def test_not_a_job_without_id_or_title(self) -> None:
        self.assertIsNone(parse_job_text("---\nstatus: running\n---\n"))
        self.assertIsNone(parse_job_text("# Just notes\n\nstatus: running\n"))
        self.assertIsNone(parse_job_text("---\nid: never-closed\n"))

    def test_indented_keys_are_not_top_level(self) -> None:
        job = parse_job_text(
            """---
id: nested
details:
  status: completed
  type: agent
---
"""
        )
        assert job is not None
        self.assertEqual(job.status, "pending")
        self.assertEqual(job.type, "oneshot")

    def test_invalid_yaml_falls_back_to_line_scan(self) -> None:
        job = parse_job_text(
            """---
id: plan-7
title: Fix: the thing: again
status: "running"
  type: agent
---
"""
        )
        assert job is not None
        self.assertEqual(job.id, "plan-7")
        self.assertEqual(job.title, "Fix: the thing: again")
        self.assertEqual(job.status, "running")
        self.assertEqual(job.type, "oneshot")

    def test_quoted_values_are_unquoted(self) -> None:
        job = parse_job_text('---\nid: "q-1"\nstatus: \'completed\'\n---\n')
        assert job is not None
        self.assertEqual(job.id, "q-1")
        self.assertEqual(job.status, "completed")

    def test_split_frontmatter_reports_closing_line(self) -> None:
        block, closing = split_frontmatter("\n---\nid: x\n---\nbody\n")
        self.assertEqual(block, ["id: x"])
        self.assertEqual(closing, 3)

    def test_candidate_filter(self) -> None:
        self.assertTrue(is_candidate_job_file(Path("/p/01-setup.md")))
        self.assertFalse(is_candidate_job_file(Path("/p/spec.md")))
        self.assertFalse(is_candidate_job_file(Path("/p/README.md")))
        self.assertFalse(is_candidate_job_file(Path("/p/01-setup.md.lock")))
        self.assertFalse(is_candidate_job_file(Path("/p/notes.txt")))

    def test_parse_job_file_reads_disk(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "job.md"
            path.write_text("---\nid: disk\n---\n", encoding="utf-8")
            job = parse_job_file(path)
            assert job is not None
            self.assertEqual(job.id, "disk")
            with self.assertRaises(OSError):
                parse_job_file(Path(tmpdir) / "missing.md")


if __name__ == "__main__":
    unittest.main()
