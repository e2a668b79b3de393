"""Tracker activity log: a best-effort audit trail of what trackers and admins did."""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from courtside_node.entities.match import TrackerLogEntry
from courtside_node.entities.stats import StatEvent
from courtside_node.services.interfaces.tracker_log_repository import TrackerLogRepository
from courtside_node.services.stat_log import call_storage

logger = logging.getLogger(__name__)


def stat_action(event: StatEvent) -> str:
    """Label such as `Add spikes` or `Remove spikes`, matching the tracker buttons."""
    verb = "Add" if event.value >= 0 else "Remove"
    return f"{verb} {event.stat_name}"


class TrackerActivityLog:
    def __init__(self, repository: TrackerLogRepository):
        self.repository = repository

    async def record(
        self,
        team_name: str,
        action: str,
        *,
        match_id: str | None = None,
        set_number: int | None = None,
        player_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> TrackerLogEntry | None:
        entry = TrackerLogEntry(
            id=uuid.uuid4().hex,
            team_name=team_name,
            action=action,
            match_id=match_id,
            set_number=set_number,
            player_id=player_id,
            details=dict(details or {}),
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await asyncio.to_thread(self.repository.save, entry)
        except Exception as exc:
            logger.warning("tracker log write failed (%s by %s): %s", action, team_name, exc)
            return None
        return entry

    async def record_stat(self, team_name: str, event: StatEvent) -> TrackerLogEntry | None:
        return await self.record(
            team_name,
            stat_action(event),
            match_id=event.match_id,
            set_number=event.set_number,
            player_id=event.player_id,
            details={"statName": event.stat_name, "value": event.value, "position": event.position},
        )

    async def find(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        team_name: str | None = None,
        action: str | None = None,
        search: str | None = None,
    ) -> list[TrackerLogEntry]:
        return await call_storage(
            "find tracker logs",
            self.repository.find,
            limit=max(1, min(limit, 1000)),
            offset=max(0, offset),
            team_name=team_name,
            action=action,
            search=search,
        )
