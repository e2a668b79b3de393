"""Cross-process fan-out of appended stat events over PostgreSQL NOTIFY."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable

from courtside_node.db.pg_notify import DEFAULT_CHANNEL, decode_event, listen, notify_event
from courtside_node.entities.stats import StatEvent
from courtside_node.services.stat_log import EventPublisher

logger = logging.getLogger(__name__)


class StatEventNotifier:
    def __init__(self, channel: str = DEFAULT_CHANNEL, send: Callable[..., Any] = notify_event):
        self.channel = channel
        self._send = send

    async def __call__(self, event: StatEvent) -> None:
        await asyncio.to_thread(self._send, event, self.channel)


async def relay_notifications(
    bus: EventPublisher,
    channel: str = DEFAULT_CHANNEL,
    source: Callable[..., AsyncIterator[tuple[str, str]]] = listen,
    retry_seconds: float | None = 5.0,
) -> None:
    """Publish every event NOTIFY'd on `channel` to the local bus.

    Runs until cancelled, reconnecting after `retry_seconds` when the listener
    fails or ends. With `retry_seconds=None` it returns after one pass.
    """
    while True:
        logger.info("relaying stat events from channel %s", channel)
        try:
            async for _channel, payload in source(channel):
                try:
                    event = decode_event(payload)
                except ValueError as exc:
                    logger.warning("skipping malformed stat event notification: %s", exc)
                    continue
                bus.publish(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("stat event relay error: %s", exc)

        if retry_seconds is None:
            return
        await asyncio.sleep(retry_seconds)
