import unittest
from datetime import datetime, timezone

import aiosqlite

from agentwatch.db.repositories.sessions import SqliteSessionRepository
from agentwatch.db.sqlite_migrations import run_migrations
from agentwatch.models import Session

T0 = datetime(2026, 2, 16, 8, 0, tzinfo=timezone.utc)
T1 = datetime(2026, 2, 16, 9, 0, tzinfo=timezone.utc)


class SessionRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteSessionRepository(self.db)

        await self.repo.upsert(
            Session(
                id="S-main",
                type="claude_code",
                status="running",
                pid=100,
                repo="proj",
                branch="main",
                started_at=T0,
                last_activity=T1,
                provider="claude",
                is_worktree=True,
            )
        )
        await self.repo.upsert(Session(id="S-old", status="completed", started_at=T0, last_activity=T0))

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_migrations_are_idempotent(self) -> None:
        await run_migrations(self.db)
        async with self.db.execute("SELECT COUNT(*) FROM schema_version") as cur:
            row = await cur.fetchone()
        self.assertEqual(row[0], 1)

    async def test_round_trip_preserves_fields(self) -> None:
        session = await self.repo.get_by_id("S-main")
        assert session is not None
        self.assertEqual(session.status, "running")
        self.assertEqual(session.pid, 100)
        self.assertEqual(session.started_at, T0)
        self.assertEqual(session.last_activity, T1)
        self.assertTrue(session.is_worktree)
        self.assertFalse(session.is_ecosystem)
        self.assertEqual(session.source, "archive")
        self.assertIsNone(await self.repo.get_by_id("missing"))

    async def test_upsert_replaces_existing_row(self) -> None:
        await self.repo.upsert(Session(id="S-main", status="idle", pid=101))
        session = await self.repo.get_by_id("S-main")
        assert session is not None
        self.assertEqual(session.status, "idle")
        self.assertEqual(session.pid, 101)

    async def test_list_all_orders_by_activity(self) -> None:
        self.assertEqual([s.id for s in await self.repo.list_all()], ["S-main", "S-old"])

    async def test_update_status_sets_ended_at_for_final_states(self) -> None:
        self.assertTrue(await self.repo.update_status("S-main", "interrupted"))
        session = await self.repo.get_by_id("S-main")
        assert session is not None
        self.assertEqual(session.status, "interrupted")
        self.assertIsNotNone(session.ended_at)

        await self.repo.update_status("S-main", "idle")
        session = await self.repo.get_by_id("S-main")
        assert session is not None
        self.assertIsNone(session.ended_at)
        self.assertFalse(await self.repo.update_status("missing", "completed"))

    async def test_list_by_status(self) -> None:
        running = await self.repo.list_by_status(["running", "idle"])
        self.assertEqual([s.id for s in running], ["S-main"])
        self.assertEqual(await self.repo.list_by_status([]), [])

    async def test_archive_soft_deletes(self) -> None:
        self.assertEqual(await self.repo.archive(["S-old", "missing"]), 1)
        self.assertEqual([s.id for s in await self.repo.list_all()], ["S-main"])
        self.assertIsNotNone(await self.repo.get_by_id("S-old"))
        self.assertEqual(await self.repo.archive([]), 0)


if __name__ == "__main__":
    unittest.main()
