from __future__ import annotations

import unittest
from unittest.mock import patch

from courtside_node.db.memory import (
    InMemoryAdminRepository,
    InMemoryMatchRepository,
    InMemoryStatEventRepository,
    InMemoryTrackerLogRepository,
    InMemoryUnlockAuditRepository,
)
from courtside_node.entities.match import AdminCredential, Match, MatchStatus
from courtside_node.entities.stats import StatEvent
from courtside_node.errors import (
    InvalidCredentials, InvalidTransition, MatchLocked, NotFound, StorageUnavailable, ValidationError,
)
from courtside_node.services.admin_auth import AdminRegistry, hash_password
from courtside_node.services.match_lock import MatchLockService
from courtside_node.services.stat_log import StatEventLog
from courtside_node.services.tracker_log import TrackerActivityLog


class TestMatchLockService(unittest.IsolatedAsyncioTestCase):
    @classmethod
    def setUpClass(cls):
        cls.password_hash = hash_password("s3cret")

    def setUp(self):
        self.matches = InMemoryMatchRepository([
            Match(id="m1", court_number=1, team_a="t1", team_b="t2", tracker_team="t3"),
            Match(id="m2", court_number=2, team_a="t3", team_b="t4", tracker_team="t1"),
        ])
        self.unlocks = InMemoryUnlockAuditRepository()
        self.tracker_logs = InMemoryTrackerLogRepository()
        admins = InMemoryAdminRepository([AdminCredential("ref", self.password_hash)])
        self.service = MatchLockService(
            self.matches, self.unlocks, AdminRegistry(admins), TrackerActivityLog(self.tracker_logs),
        )
        self.log = StatEventLog(InMemoryStatEventRepository(self.matches), self.matches)

    async def _complete(self, match_id: str = "m1") -> None:
        await self.service.start(match_id)
        await self.service.complete(match_id)

    async def test_lifecycle_transitions(self):
        match = await self.service.start("m1")
        self.assertEqual(match.status, MatchStatus.ACTIVE)
        match = await self.service.complete("m1")
        self.assertEqual(match.status, MatchStatus.COMPLETED)
        self.assertTrue(match.is_locked)

    async def test_invalid_transitions(self):
        with self.assertRaises(InvalidTransition):
            await self.service.complete("m1")
        await self.service.start("m1")
        with self.assertRaises(InvalidTransition):
            await self.service.start("m1")
        with self.assertRaises(InvalidTransition):
            await self.service.unlock("m1", "ref", "s3cret")

    async def test_unknown_match(self):
        with self.assertRaises(NotFound):
            await self.service.get_match("nope")
        with self.assertRaises(NotFound):
            await self.service.start("nope")

    async def test_completed_match_rejects_events_score_and_set(self):
        await self._complete()
        with self.assertRaises(MatchLocked):
            await self.log.append(StatEvent(match_id="m1", player_id="p1", stat_name="aces"))
        with self.assertRaises(MatchLocked):
            await self.service.update_score("m1", 10, 8)
        with self.assertRaises(MatchLocked):
            await self.service.advance_set("m1")

    async def test_unlock_with_valid_credentials(self):
        await self._complete()
        match = await self.service.unlock("m1", "ref", "s3cret")

        self.assertEqual(match.status, MatchStatus.ACTIVE)
        self.assertEqual(len(self.unlocks.records), 1)
        record = self.unlocks.records[0]
        self.assertEqual((record.match_id, record.unlocked_by), ("m1", "ref"))
        self.assertEqual(self.tracker_logs.entries[0].action, "Admin Match Unlock")

        position = await self.log.append(StatEvent(match_id="m1", player_id="p1", stat_name="aces"))
        self.assertEqual(position, 1)

        await self.service.complete("m1")
        self.assertTrue((await self.service.get_match("m1")).is_locked)

    async def test_unlock_with_bad_credentials_changes_nothing(self):
        await self._complete()
        for username, password in [("ref", "wrong"), ("nobody", "s3cret"), ("", "")]:
            with self.subTest(username=username):
                with self.assertRaises(InvalidCredentials):
                    await self.service.unlock("m1", username, password)
        self.assertEqual((await self.service.get_match("m1")).status, MatchStatus.COMPLETED)
        self.assertEqual(self.unlocks.records, [])

    async def test_failed_audit_write_restores_lock(self):
        await self._complete()
        with patch.object(self.unlocks, "save", side_effect=RuntimeError("disk full")):
            with self.assertRaises(StorageUnavailable):
                await self.service.unlock("m1", "ref", "s3cret")
        self.assertEqual((await self.service.get_match("m1")).status, MatchStatus.COMPLETED)

    async def test_update_score_and_advance_set(self):
        await self.service.start("m1")
        match = await self.service.update_score("m1", 25, 23)
        self.assertEqual((match.score_a, match.score_b), (25, 23))
        match = await self.service.advance_set("m1")
        self.assertEqual(match.current_set, 2)

    async def test_negative_score_rejected(self):
        await self.service.start("m1")
        with self.assertRaises(ValidationError):
            await self.service.update_score("m1", -1, 0)

    async def test_reads_always_permitted(self):
        await self._complete()
        self.assertEqual((await self.service.get_match("m1")).id, "m1")
        matches = await self.service.list_matches(tracker_team="t1")
        self.assertEqual([m.id for m in matches], ["m2"])
        matches = await self.service.list_matches(court_number=1)
        self.assertEqual([m.id for m in matches], ["m1"])
        self.assertEqual(await self.service.list_unlocks("m1"), [])


if __name__ == "__main__":
    unittest.main()
