from __future__ import annotations

import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from courtside_node.entities.downtime import DEFAULT_MAINTENANCE_MESSAGE, DowntimeConfig
from courtside_node.errors import NetworkTimeout, StorageUnavailable, ValidationError
from courtside_node.services.downtime import (
    FileDowntimeStore,
    HttpDowntimeSource,
    LocalDowntimeSource,
    parse_max_age,
)
from courtside_node.services.maintenance import is_blocked

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestFileDowntimeStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "data" / "downtime.json"
        self.store = FileDowntimeStore(self.path)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_is_inactive_default(self):
        self.assertEqual(self.store.load(), DowntimeConfig())

    def test_schedule_future_window_blocks_only_inside_the_window(self):
        config = self.store.schedule(NOW + timedelta(hours=1), NOW + timedelta(hours=3), "upgrade", now=NOW)
        self.assertTrue(config.active)
        self.assertEqual(self.store.load(), config)

        self.assertFalse(is_blocked(config, NOW))
        self.assertTrue(is_blocked(config, NOW + timedelta(hours=2)))
        self.assertFalse(is_blocked(config, NOW + timedelta(hours=4)))

    def test_schedule_started_window_is_active(self):
        config = self.store.schedule(NOW - timedelta(minutes=1), NOW + timedelta(hours=1), "upgrade", now=NOW)
        self.assertTrue(config.active)
        self.assertTrue(is_blocked(config, NOW))

    def test_schedule_reads_naive_times_as_utc(self):
        config = self.store.schedule(
            datetime(2026, 5, 1, 13, 0), datetime(2026, 5, 1, 14, 0), "upgrade", now=NOW,
        )
        self.assertEqual(config.start, NOW + timedelta(hours=1))
        self.assertEqual(config.end.tzinfo, timezone.utc)
        self.assertTrue(is_blocked(config, NOW + timedelta(minutes=90)))

        with self.assertRaises(ValidationError):
            self.store.schedule(datetime(2026, 5, 1, 14, 0), NOW + timedelta(hours=1), "upgrade", now=NOW)

    def test_schedule_rejects_inverted_window(self):
        with self.assertRaises(ValidationError):
            self.store.schedule(NOW, NOW, "upgrade", now=NOW)
        with self.assertRaises(ValidationError):
            self.store.schedule(NOW, NOW + timedelta(hours=1), "", now=NOW)

    def test_start_now_uses_default_message(self):
        config = self.store.start_now(now=NOW)
        self.assertTrue(config.active)
        self.assertEqual(config.start, NOW)
        self.assertIsNone(config.end)
        self.assertEqual(config.message, DEFAULT_MAINTENANCE_MESSAGE)

    def test_end_now_resets(self):
        self.store.start_now("brb", now=NOW)
        self.assertEqual(self.store.end_now(), DowntimeConfig())
        self.assertFalse(self.store.load().active)

    def test_set_override_keeps_window(self):
        self.store.start_now("brb", now=NOW)
        config = self.store.set_override(True)
        self.assertTrue(config.overridden_by_admin)
        self.assertTrue(config.active)
        self.assertEqual(config.message, "brb")

    def test_file_uses_client_field_names(self):
        self.store.start_now("brb", now=NOW)
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(
            set(payload), {"active", "start", "end", "message", "overriddenByAdmin"},
        )

    def test_corrupt_file_is_storage_error(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(StorageUnavailable):
            self.store.load()


class TestLocalDowntimeSource(unittest.IsolatedAsyncioTestCase):
    async def test_fetch_reads_store(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = FileDowntimeStore(Path(tmp) / "downtime.json")
            store.start_now("brb", now=NOW)
            config, max_age = await LocalDowntimeSource(store).fetch()
        self.assertTrue(config.active)
        self.assertIsNone(max_age)


class TestParseMaxAge(unittest.TestCase):
    def test_values(self):
        self.assertEqual(parse_max_age("public, max-age=30"), 30.0)
        self.assertEqual(parse_max_age("max-age=5"), 5.0)
        self.assertIsNone(parse_max_age("no-store"))
        self.assertIsNone(parse_max_age(None))
        self.assertIsNone(parse_max_age("s-maxage=10"))


class TestHttpDowntimeSource(unittest.IsolatedAsyncioTestCase):
    def _response(self, payload, cache_control="public, max-age=30"):
        response = MagicMock()
        response.json.return_value = payload
        response.headers = {"Cache-Control": cache_control}
        response.raise_for_status.return_value = None
        return response

    @patch("courtside_node.services.downtime.requests.get")
    async def test_fetch_parses_config_and_max_age(self, mock_get):
        mock_get.return_value = self._response({
            "active": True,
            "start": "2026-05-01T12:00:00Z",
            "end": None,
            "message": "upgrade",
        })
        source = HttpDowntimeSource("http://node/downtime", timeout_seconds=2)

        config, max_age = await source.fetch()

        mock_get.assert_called_once_with("http://node/downtime", timeout=2)
        self.assertTrue(config.active)
        self.assertEqual(config.start, NOW)
        self.assertEqual(config.message, "upgrade")
        self.assertEqual(max_age, 30.0)

    @patch("courtside_node.services.downtime.requests.get")
    async def test_timeout_maps_to_network_timeout(self, mock_get):
        mock_get.side_effect = requests.Timeout("slow")
        with self.assertRaises(NetworkTimeout):
            await HttpDowntimeSource("http://node/downtime").fetch()

    @patch("courtside_node.services.downtime.requests.get")
    async def test_http_error_maps_to_storage_unavailable(self, mock_get):
        response = self._response({})
        response.raise_for_status.side_effect = requests.HTTPError("502")
        mock_get.return_value = response
        with self.assertRaises(StorageUnavailable):
            await HttpDowntimeSource("http://node/downtime").fetch()

    @patch("courtside_node.services.downtime.requests.get")
    async def test_non_object_payload_rejected(self, mock_get):
        mock_get.return_value = self._response([1, 2])
        with self.assertRaises(StorageUnavailable):
            await HttpDowntimeSource("http://node/downtime").fetch()


if __name__ == "__main__":
    unittest.main()
