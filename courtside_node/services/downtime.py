"""Downtime store and the sources the maintenance cache refreshes from."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import requests

from courtside_node.entities.downtime import DEFAULT_MAINTENANCE_MESSAGE, DowntimeConfig, parse_time
from courtside_node.errors import NetworkTimeout, StorageUnavailable, ValidationError

logger = logging.getLogger(__name__)

_MAX_AGE = re.compile(r"(?:^|,)\s*max-age\s*=\s*(\d+)", re.IGNORECASE)


def parse_max_age(cache_control: str | None) -> float | None:
    if not cache_control:
        return None
    match = _MAX_AGE.search(cache_control)
    return float(match.group(1)) if match else None


class DowntimeSource(Protocol):
    async def fetch(self) -> tuple[DowntimeConfig, float | None]:
        """Return the current config and an optional max-age hint in seconds."""
        ...


class FileDowntimeStore:
    """Authoritative downtime config kept as a small JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> DowntimeConfig:
        with self._lock:
            if not self.path.exists():
                return DowntimeConfig()
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise StorageUnavailable(f"cannot read downtime file {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StorageUnavailable(f"downtime file {self.path} does not hold an object")
        return DowntimeConfig.from_payload(payload)

    def save(self, config: DowntimeConfig) -> DowntimeConfig:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            try:
                tmp.write_text(json.dumps(config.as_dict(), indent=2), encoding="utf-8")
                os.replace(tmp, self.path)
            except OSError as exc:
                raise StorageUnavailable(f"cannot write downtime file {self.path}: {exc}") from exc
        return config

    def schedule(
        self, start: datetime, end: datetime, message: str, now: datetime | None = None,
    ) -> DowntimeConfig:
        """Store a window that blocks clients from `start` to `end`.

        The window is armed immediately (`active=True`); `covers()` keeps it
        from blocking before `start`. Naive datetimes are read as UTC.
        """
        start, end = parse_time(start), parse_time(end)
        if not message or start is None or end is None:
            raise ValidationError("start time, end time, and message are required")
        if end <= start:
            raise ValidationError("end time must be after start time")
        now = parse_time(now) or datetime.now(timezone.utc)
        config = DowntimeConfig(active=True, start=start, end=end, message=message)
        logger.info(
            "downtime scheduled %s -> %s (%s)",
            start.isoformat(), end.isoformat(), "in progress" if now >= start else "upcoming",
        )
        return self.save(config)

    def start_now(self, message: str | None = None, now: datetime | None = None) -> DowntimeConfig:
        config = DowntimeConfig(
            active=True,
            start=parse_time(now) or datetime.now(timezone.utc),
            end=None,
            message=message or DEFAULT_MAINTENANCE_MESSAGE,
        )
        logger.info("downtime started")
        return self.save(config)

    def end_now(self) -> DowntimeConfig:
        logger.info("downtime ended")
        return self.save(DowntimeConfig())

    def set_override(self, overridden: bool) -> DowntimeConfig:
        current = self.load()
        config = DowntimeConfig(
            active=current.active,
            start=current.start,
            end=current.end,
            message=current.message,
            overridden_by_admin=overridden,
        )
        logger.info("downtime admin override %s", "enabled" if overridden else "disabled")
        return self.save(config)


class LocalDowntimeSource:
    def __init__(self, store: FileDowntimeStore, max_age_seconds: float | None = None):
        self.store = store
        self.max_age_seconds = max_age_seconds

    async def fetch(self) -> tuple[DowntimeConfig, float | None]:
        config = await asyncio.to_thread(self.store.load)
        return config, self.max_age_seconds


class HttpDowntimeSource:
    """Reads DowntimeConfig JSON from another node's `/downtime` endpoint."""

    def __init__(self, url: str, timeout_seconds: float = 5.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def fetch(self) -> tuple[DowntimeConfig, float | None]:
        return await asyncio.to_thread(self._fetch_sync)

    def _fetch_sync(self) -> tuple[DowntimeConfig, float | None]:
        try:
            response = requests.get(self.url, timeout=self.timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as exc:
            raise NetworkTimeout(f"downtime source {self.url} timed out") from exc
        except (requests.RequestException, ValueError) as exc:
            raise StorageUnavailable(f"downtime source {self.url} failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise StorageUnavailable(f"downtime source {self.url} returned {type(payload).__name__}")
        return DowntimeConfig.from_payload(payload), parse_max_age(response.headers.get("Cache-Control"))
