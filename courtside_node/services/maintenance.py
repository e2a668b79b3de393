"""Maintenance gate backed by a TTL-cached downtime flag."""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable

from courtside_node.entities.downtime import DEFAULT_MAINTENANCE_MESSAGE, DowntimeConfig, GateDecision
from courtside_node.services.downtime import DowntimeSource

logger = logging.getLogger(__name__)


def is_blocked(config: DowntimeConfig, now: datetime) -> bool:
    if config.overridden_by_admin:
        return False
    return config.active and config.covers(now)


class DowntimeCache:
    """Last known DowntimeConfig, refreshed from `source` at most once per window.

    The window is `ttl_seconds`, or the source's max-age hint when it sends one.
    Refreshes are single-flight and capped at `timeout_seconds`; a failed or
    timed-out refresh keeps the previous value and still closes the window.
    """

    def __init__(
        self,
        source: DowntimeSource,
        ttl_seconds: float = 30.0,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._value = DowntimeConfig()
        self._expires_at: float | None = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def value(self) -> DowntimeConfig:
        return self._value

    def is_fresh(self) -> bool:
        return self._expires_at is not None and self.clock() < self._expires_at

    def invalidate(self) -> None:
        self._expires_at = None

    async def get(self) -> DowntimeConfig:
        if self.is_fresh():
            return self._value
        async with self._lock:
            # Another caller may have refreshed while we waited.
            if not self.is_fresh():
                await self._refresh()
        return self._value

    async def _refresh(self) -> None:
        started = self.clock()
        window = self.ttl_seconds
        self.refresh_count += 1
        try:
            config, max_age = await asyncio.wait_for(self.source.fetch(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "downtime refresh timed out after %.1fs; keeping previous value", self.timeout_seconds,
            )
        except Exception as exc:
            logger.warning("downtime refresh failed; keeping previous value: %s", exc)
        else:
            self._value = config
            if max_age is not None:
                window = max_age
        finally:
            self._expires_at = started + window


class MaintenanceGate:
    def __init__(self, cache: DowntimeCache, now: Callable[[], datetime] | None = None):
        self.cache = cache
        self.now = now or (lambda: datetime.now(timezone.utc))

    async def check(self, now: datetime | None = None) -> GateDecision:
        config = await self.cache.get()
        if not is_blocked(config, now or self.now()):
            return GateDecision(blocked=False)
        return GateDecision(blocked=True, message=config.message or DEFAULT_MAINTENANCE_MESSAGE)
