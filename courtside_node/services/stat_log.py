"""Stat event log service: validated, lock-aware appends and lazy ordered reads."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from courtside_node.entities.stats import StatEvent, is_known_stat
from courtside_node.errors import CourtsideError, MatchLocked, NotFound, StorageUnavailable, ValidationError
from courtside_node.services.interfaces.match_repository import MatchRepository
from courtside_node.services.interfaces.stat_event_repository import StatEventRepository

LogPosition = int


class EventPublisher(Protocol):
    def publish(self, event: StatEvent) -> None: ...


class EventStream:
    """Lazy, restartable ordered view over one match's log.

    Nothing is fetched until iteration starts; every iteration re-reads the
    store page by page, so a second pass sees events appended since the first.
    """

    def __init__(
        self,
        repository: StatEventRepository,
        match_id: str,
        *,
        player_id: str | None = None,
        set_number: int | None = None,
        page_size: int = 500,
    ):
        self._repository = repository
        self.match_id = match_id
        self.player_id = player_id
        self.set_number = set_number
        self.page_size = max(1, page_size)

    async def __aiter__(self) -> AsyncIterator[StatEvent]:
        after: int | None = None
        while True:
            page = await call_storage(
                "read stat events",
                self._repository.read_events,
                self.match_id,
                player_id=self.player_id,
                set_number=self.set_number,
                after_position=after,
                limit=self.page_size,
            )
            for event in page:
                yield event
            if len(page) < self.page_size:
                return
            after = page[-1].position

    async def to_list(self) -> list[StatEvent]:
        return [event async for event in self]


async def call_storage(action: str, func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except CourtsideError:
        raise
    except Exception as exc:
        raise StorageUnavailable(f"{action} failed: {exc}") from exc


class StatEventLog:
    def __init__(
        self,
        event_repository: StatEventRepository,
        match_repository: MatchRepository,
        publisher: EventPublisher | None = None,
        notifier: Callable[[StatEvent], Awaitable[None]] | None = None,
        page_size: int = 500,
    ):
        self.event_repository = event_repository
        self.match_repository = match_repository
        self.publisher = publisher
        self.notifier = notifier
        self.page_size = page_size
        self.logger = logging.getLogger(__name__)

    async def append(self, event: StatEvent) -> LogPosition:
        self._validate(event)

        match = await call_storage("get match", self.match_repository.get_match, event.match_id)
        if match is None:
            raise ValidationError(f"unknown match {event.match_id}")
        if match.is_locked:
            raise MatchLocked(event.match_id)

        try:
            stored = await call_storage("append stat event", self.event_repository.append_event, event)
        except NotFound as exc:
            raise ValidationError(str(exc)) from exc

        self.logger.info(
            "appended %s=%+d for player %s (match=%s set=%d position=%d)",
            stored.stat_name, stored.value, stored.player_id,
            stored.match_id, stored.set_number, stored.position,
        )
        await self._fan_out(stored)
        return stored.position

    async def correct(self, match_id: str, event_id: str) -> LogPosition:
        """Append the compensating event for `event_id` (same stat, negated value)."""
        original = await call_storage(
            "get stat event", self.event_repository.get_event, match_id, event_id,
        )
        if original is None:
            raise NotFound(f"stat event {event_id} not found in match {match_id}")
        compensating = replace(
            original,
            id=None,
            position=None,
            value=-original.value,
            corrects=original.id,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.append(compensating)

    def read(
        self, match_id: str, *, player_id: str | None = None, set_number: int | None = None,
    ) -> EventStream:
        return EventStream(
            self.event_repository,
            match_id,
            player_id=player_id,
            set_number=set_number,
            page_size=self.page_size,
        )

    @staticmethod
    def _validate(event: StatEvent) -> None:
        if not is_known_stat(event.stat_name):
            raise ValidationError(f"unknown stat name {event.stat_name!r}")
        if isinstance(event.value, bool) or not isinstance(event.value, int):
            raise ValidationError(f"stat value must be an integer, got {event.value!r}")
        if isinstance(event.set_number, bool) or not isinstance(event.set_number, int) or event.set_number < 1:
            raise ValidationError(f"set must be an integer >= 1, got {event.set_number!r}")
        if not event.player_id:
            raise ValidationError("player id is required")

    async def _fan_out(self, event: StatEvent) -> None:
        # The append is durable at this point; delivery problems must not undo it.
        if self.publisher is not None:
            self.publisher.publish(event)
        if self.notifier is not None:
            try:
                await self.notifier(event)
            except Exception as exc:
                self.logger.warning("stat event notification failed for match %s: %s", event.match_id, exc)
