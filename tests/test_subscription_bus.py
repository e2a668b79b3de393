from __future__ import annotations

import asyncio
import unittest
from dataclasses import replace
from unittest.mock import patch

from courtside_node.db.memory import InMemoryMatchRepository, InMemoryStatEventRepository
from courtside_node.entities.match import Match, MatchStatus
from courtside_node.entities.stats import PlayerStats, StatEvent
from courtside_node.services.subscriptions import SubscriptionBus, Topic
from courtside_node.services.stat_log import StatEventLog


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


class TestSubscriptionBus(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.matches = InMemoryMatchRepository([
            Match(id="m1", court_number=1, team_a="t1", team_b="t2", status=MatchStatus.ACTIVE),
            Match(id="m2", court_number=2, team_a="t3", team_b="t4", status=MatchStatus.ACTIVE),
        ])
        self.events = InMemoryStatEventRepository(self.matches)
        self.bus = SubscriptionBus(self.events)
        self.log = StatEventLog(self.events, self.matches, publisher=self.bus)

    async def asyncTearDown(self):
        self.bus.close_all()

    async def _append(self, player: str, stat: str, value: int = 1, set_number: int = 1, match: str = "m1"):
        return await self.log.append(StatEvent(
            match_id=match, player_id=player, stat_name=stat, value=value, set_number=set_number,
        ))

    async def test_initial_snapshot_delivered_before_subscribe_returns(self):
        await self._append("p1", "spikes")
        received: list[PlayerStats] = []

        await self.bus.subscribe(Topic("m1", "p1"), received.append)

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0]["spikes"], 1)

    async def test_initial_snapshot_for_empty_log_is_all_zero(self):
        received: list[PlayerStats] = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)
        self.assertEqual(len(received), 1)
        self.assertTrue(all(value == 0 for value in received[0].values()))

    async def test_one_full_snapshot_per_relevant_append(self):
        received: list[PlayerStats] = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)

        await self._append("p1", "spikes")
        await self._append("p2", "spikes")
        await self._append("p1", "spikes")
        await _wait_until(lambda: len(received) == 3)
        await _settle()

        self.assertEqual(len(received), 3)
        self.assertEqual([s["spikes"] for s in received], [0, 1, 2])

    async def test_match_topic_delivers_match_stats(self):
        received = []
        await self.bus.subscribe(Topic("m1"), received.append)
        await self._append("p1", "aces")
        await self._append("p2", "digs")
        await _wait_until(lambda: len(received) == 3)

        latest = received[-1]
        self.assertEqual(set(latest), {"p1", "p2"})
        self.assertEqual(latest["p1"]["aces"], 1)
        self.assertEqual(latest["p2"]["digs"], 1)

    async def test_set_filter(self):
        received: list[PlayerStats] = []
        await self.bus.subscribe(Topic("m1", "p1", set_number=2), received.append)
        await self._append("p1", "blocks", set_number=1)
        await self._append("p1", "blocks", set_number=2)
        await _wait_until(lambda: len(received) == 2)
        await _settle()

        self.assertEqual(len(received), 2)
        self.assertEqual(received[-1]["blocks"], 1)
        self.assertEqual(received[-1].set_number, 2)

    async def test_other_match_events_are_not_delivered(self):
        received = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)
        await self._append("p1", "aces", match="m2")
        await _settle()
        self.assertEqual(len(received), 1)

    async def test_same_topic_and_callback_returns_existing_handle(self):
        received = []
        first = await self.bus.subscribe(Topic("m1", "p1"), received.append)
        second = await self.bus.subscribe(Topic("m1", "p1"), received.append)

        self.assertIs(first, second)
        self.assertEqual(len(received), 1)
        self.assertEqual(self.bus.subscription_count("m1"), 1)

        await self._append("p1", "aces")
        await _wait_until(lambda: len(received) == 2)
        await _settle()
        self.assertEqual(len(received), 2)

    async def test_close_prevents_queued_delivery(self):
        received = []
        handle = await self.bus.subscribe(Topic("m1", "p1"), received.append)
        await self._append("p1", "aces")
        handle.close()
        await _settle()

        self.assertEqual(len(received), 1)
        self.assertTrue(handle.closed)
        self.assertEqual(self.bus.subscription_count(), 0)

    async def test_handle_is_callable_and_a_context_manager(self):
        received = []
        handle = await self.bus.subscribe(Topic("m1", "p1"), received.append)
        handle()
        self.assertTrue(handle.closed)

        async with await self.bus.subscribe(Topic("m1", "p2"), received.append) as scoped:
            self.assertFalse(scoped.closed)
        self.assertTrue(scoped.closed)

        with await self.bus.subscribe(Topic("m1", "p3"), received.append) as sync_scoped:
            pass
        self.assertTrue(sync_scoped.closed)

    async def test_duplicate_publish_produces_no_extra_notification(self):
        received = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)
        await self._append("p1", "aces")
        await _wait_until(lambda: len(received) == 2)

        stored = (await self.log.read("m1").to_list())[0]
        self.bus.publish(stored)
        self.bus.publish(stored)
        await _settle()

        self.assertEqual(len(received), 2)
        self.assertEqual(received[-1]["aces"], 1)

    async def test_out_of_order_publish_notifies_once_per_append(self):
        received: list[PlayerStats] = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)

        first = self.events.append_event(StatEvent(match_id="m1", player_id="p1", stat_name="aces"))
        second = self.events.append_event(StatEvent(match_id="m1", player_id="p1", stat_name="aces"))
        self.bus.publish(second)
        self.bus.publish(first)

        await _wait_until(lambda: len(received) == 3)
        await asyncio.sleep(self.bus.gap_timeout_seconds * 2)

        self.assertEqual([s["aces"] for s in received], [0, 1, 2])

    async def test_held_event_is_recovered_from_log_when_gap_stays_open(self):
        received: list[PlayerStats] = []
        bus = SubscriptionBus(self.events, gap_timeout_seconds=0.05)
        self.addAsyncCleanup(self._close, bus)
        await bus.subscribe(Topic("m1", "p1"), received.append)

        self.events.append_event(StatEvent(match_id="m1", player_id="p1", stat_name="digs"))
        second = self.events.append_event(StatEvent(match_id="m1", player_id="p1", stat_name="digs"))
        bus.publish(second)

        await _wait_until(lambda: len(received) == 2)
        self.assertEqual(received[-1]["digs"], 2)
        self.assertEqual(bus.subscription_count(), 1)

    @staticmethod
    async def _close(bus: SubscriptionBus) -> None:
        bus.close_all()

    async def test_gap_triggers_full_recompute(self):
        received = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)

        # Appended straight to the store: the bus never sees positions 1 and 2.
        for _ in range(3):
            self.events.append_event(StatEvent(match_id="m1", player_id="p1", stat_name="digs"))
        latest = (await self.log.read("m1").to_list())[-1]
        self.bus.publish(latest)

        await _wait_until(lambda: len(received) == 2)
        self.assertEqual(received[-1]["digs"], 3)

    async def test_failed_recompute_goes_to_on_error_not_zero_snapshot(self):
        received = []
        errors = []
        await self._append("p1", "digs")
        await self.bus.subscribe(Topic("m1", "p1"), received.append, on_error=errors.append)

        stored = self.events.append_event(StatEvent(match_id="m1", player_id="p1", stat_name="digs"))
        self.events.append_event(StatEvent(match_id="m1", player_id="p1", stat_name="digs"))
        gap_event = replace(stored, position=3)
        with patch.object(self.events, "read_events", side_effect=RuntimeError("db down")):
            self.bus.publish(gap_event)
            await _wait_until(lambda: len(errors) == 1)

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0]["digs"], 1)

    async def test_callback_failure_does_not_affect_other_subscribers(self):
        good = []

        def bad(_snapshot):
            raise RuntimeError("boom")

        with self.assertLogs("courtside_node.services.subscriptions", level="ERROR"):
            await self.bus.subscribe(Topic("m1", "p1"), bad)
        await self.bus.subscribe(Topic("m1", "p1"), good.append)

        await self._append("p1", "aces")
        await _wait_until(lambda: len(good) == 2)
        self.assertEqual(good[-1]["aces"], 1)

    async def test_async_callbacks_are_awaited(self):
        received = []

        async def callback(snapshot):
            await asyncio.sleep(0)
            received.append(snapshot)

        await self.bus.subscribe(Topic("m1", "p1"), callback)
        await self._append("p1", "tips")
        await _wait_until(lambda: len(received) == 2)
        self.assertEqual(received[-1]["tips"], 1)

    async def test_publish_from_another_thread(self):
        received = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)
        stored = await asyncio.to_thread(
            self.events.append_event, StatEvent(match_id="m1", player_id="p1", stat_name="aces"),
        )
        await asyncio.to_thread(self.bus.publish, stored)
        await _wait_until(lambda: len(received) == 2)
        self.assertEqual(received[-1]["aces"], 1)

    async def test_per_subscriber_order_matches_append_order(self):
        received: list[PlayerStats] = []
        await self.bus.subscribe(Topic("m1", "p1"), received.append)
        for _ in range(10):
            await self._append("p1", "spikes")
        await _wait_until(lambda: len(received) == 11)
        self.assertEqual([s["spikes"] for s in received], list(range(11)))


if __name__ == "__main__":
    unittest.main()
