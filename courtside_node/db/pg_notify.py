"""PostgreSQL LISTEN/NOTIFY helpers for cross-process stat event fan-out.

Usage:
    # publish an appended event
    from courtside_node.db.pg_notify import notify_event
    notify_event(stored_event)

    # subscribe (async)
    from courtside_node.db.pg_notify import decode_event, listen
    async for channel, payload in listen("stat_events"):
        handle(decode_event(payload))

Payloads are the compact JSON form of `StatEvent.to_payload()`; PostgreSQL
caps a NOTIFY payload below 8000 bytes.
"""
from __future__ import annotations

import asyncio
import json
import logging
import select as _select
from typing import Any, AsyncIterator

import psycopg2
from courtside_node.db.session import database_url
from courtside_node.entities.stats import StatEvent

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "stat_events"
MAX_PAYLOAD_BYTES = 8000


def notify(channel: str = DEFAULT_CHANNEL, payload: str = "", connection: Any = None) -> None:
    """Send a NOTIFY on the given channel with an optional payload string."""
    own_conn = connection is None
    if own_conn:
        connection = _raw_connection()
    try:
        connection.autocommit = True
        with connection.cursor() as cur:
            if payload:
                cur.execute("SELECT pg_notify(%s, %s)", (channel, payload))
            else:
                cur.execute(f"NOTIFY {channel}")
    finally:
        if own_conn:
            connection.close()


def encode_event(event: StatEvent) -> str:
    payload = json.dumps(event.to_payload(), separators=(",", ":"))
    if len(payload.encode("utf-8")) >= MAX_PAYLOAD_BYTES:
        raise ValueError(f"stat event {event.id} payload exceeds the NOTIFY limit")
    return payload


def decode_event(payload: str) -> StatEvent:
    """Parse a NOTIFY payload back into a StatEvent; raises ValueError when malformed."""
    try:
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        return StatEvent.from_payload(data)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"missing or invalid field: {exc}") from exc


def notify_event(event: StatEvent, channel: str = DEFAULT_CHANNEL, connection: Any = None) -> None:
    notify(channel, encode_event(event), connection=connection)


async def listen(*channels: str, timeout: float | None = None) -> AsyncIterator[tuple[str, str]]:
    """Async generator that yields (channel, payload) tuples as notifications arrive.

    Runs until cancelled. `timeout` bounds each poll cycle (seconds).
    """
    if not channels:
        channels = (DEFAULT_CHANNEL,)

    conn = _raw_connection()
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            for ch in channels:
                cur.execute(f"LISTEN {ch}")

        loop = asyncio.get_running_loop()
        while True:
            notified = await loop.run_in_executor(
                None, _poll_notify, conn, timeout if timeout is not None else 30.0,
            )
            if notified:
                while conn.notifies:
                    n = conn.notifies.pop(0)
                    yield (n.channel, n.payload or "")
    finally:
        conn.close()


def _poll_notify(conn: Any, timeout: float) -> bool:
    """Synchronous poll; runs in an executor thread."""
    if _select.select([conn], [], [], timeout) == ([], [], []):
        return False  # timeout
    conn.poll()
    return bool(conn.notifies)


def _raw_connection():
    """Create a raw psycopg2 connection from the same DB URL."""
    url = database_url()
    dsn = url.replace("+psycopg2", "")
    return psycopg2.connect(dsn)
