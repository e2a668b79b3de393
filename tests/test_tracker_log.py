from __future__ import annotations

import unittest
from unittest.mock import MagicMock

from courtside_node.db.memory import InMemoryTrackerLogRepository
from courtside_node.entities.stats import StatEvent
from courtside_node.errors import StorageUnavailable
from courtside_node.services.tracker_log import TrackerActivityLog, stat_action


class TestStatAction(unittest.TestCase):
    def test_labels(self):
        self.assertEqual(stat_action(StatEvent(match_id="m1", player_id="p1", stat_name="aces")), "Add aces")
        self.assertEqual(
            stat_action(StatEvent(match_id="m1", player_id="p1", stat_name="aces", value=-1)), "Remove aces",
        )


class TestTrackerActivityLog(unittest.IsolatedAsyncioTestCase):
    async def test_record_stat_and_find(self):
        repository = InMemoryTrackerLogRepository()
        log = TrackerActivityLog(repository)
        event = StatEvent(match_id="m1", player_id="p1", stat_name="digs", set_number=2, position=4)

        entry = await log.record_stat("Aces", event)

        self.assertEqual(entry.action, "Add digs")
        self.assertEqual(entry.set_number, 2)
        self.assertEqual(entry.details["position"], 4)
        self.assertEqual([e.id for e in await log.find(team_name="Aces")], [entry.id])

    async def test_write_failure_is_logged_not_raised(self):
        repository = MagicMock()
        repository.save.side_effect = RuntimeError("disk full")
        log = TrackerActivityLog(repository)

        with self.assertLogs("courtside_node.services.tracker_log", level="WARNING"):
            entry = await log.record("Aces", "Login")
        self.assertIsNone(entry)

    async def test_find_clamps_limit(self):
        repository = MagicMock()
        repository.find.return_value = []
        log = TrackerActivityLog(repository)

        await log.find(limit=5000, offset=-3)

        kwargs = repository.find.call_args.kwargs
        self.assertEqual((kwargs["limit"], kwargs["offset"]), (1000, 0))

    async def test_find_storage_failure_propagates(self):
        repository = MagicMock()
        repository.find.side_effect = StorageUnavailable("find tracker logs failed")
        with self.assertRaises(StorageUnavailable):
            await TrackerActivityLog(repository).find()


if __name__ == "__main__":
    unittest.main()
