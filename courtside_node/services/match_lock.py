"""Match lifecycle: scheduled -> active -> completed, and the admin unlock back to active."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from courtside_node.entities.match import Match, MatchStatus, UnlockRecord
from courtside_node.errors import NotFound, StorageUnavailable, ValidationError
from courtside_node.services.admin_auth import AdminRegistry
from courtside_node.services.interfaces.admin_repository import UnlockAuditRepository
from courtside_node.services.interfaces.match_repository import MatchRepository
from courtside_node.services.stat_log import call_storage
from courtside_node.services.tracker_log import TrackerActivityLog


class MatchLockService:
    def __init__(
        self,
        match_repository: MatchRepository,
        unlock_repository: UnlockAuditRepository,
        admin_registry: AdminRegistry,
        tracker_log: TrackerActivityLog | None = None,
    ):
        self.match_repository = match_repository
        self.unlock_repository = unlock_repository
        self.admin_registry = admin_registry
        self.tracker_log = tracker_log
        self.logger = logging.getLogger(__name__)

    # ── reads ──

    async def get_match(self, match_id: str) -> Match:
        match = await call_storage("get match", self.match_repository.get_match, match_id)
        if match is None:
            raise NotFound(f"match {match_id} not found")
        return match

    async def list_matches(
        self, *, court_number: int | None = None, tracker_team: str | None = None,
    ) -> list[Match]:
        return await call_storage(
            "list matches", self.match_repository.list_matches,
            court_number=court_number, tracker_team=tracker_team,
        )

    async def list_unlocks(self, match_id: str | None = None) -> list[UnlockRecord]:
        return await call_storage("list unlocks", self.unlock_repository.find, match_id=match_id)

    # ── transitions ──

    async def start(self, match_id: str) -> Match:
        match = await self._transition(match_id, MatchStatus.SCHEDULED, MatchStatus.ACTIVE)
        self.logger.info("match %s started", match_id)
        return match

    async def complete(self, match_id: str) -> Match:
        match = await self._transition(match_id, MatchStatus.ACTIVE, MatchStatus.COMPLETED)
        self.logger.info("match %s completed and locked", match_id)
        return match

    async def unlock(self, match_id: str, username: str, password: str) -> Match:
        """Admin-credentialed completed -> active. Writes an UnlockRecord on success."""
        await self.admin_registry.verify_admin_credentials(username, password)

        match = await self._transition(match_id, MatchStatus.COMPLETED, MatchStatus.ACTIVE)
        record = UnlockRecord(
            id=uuid.uuid4().hex,
            match_id=match_id,
            unlocked_by=username,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await call_storage("save unlock record", self.unlock_repository.save, record)
        except StorageUnavailable:
            # No unaudited unlocks: put the lock back before surfacing the failure.
            await call_storage(
                "restore match lock", self.match_repository.set_status,
                match_id, MatchStatus.COMPLETED, expected=MatchStatus.ACTIVE,
            )
            self.logger.error("unlock of match %s rolled back: audit write failed", match_id)
            raise

        self.logger.info("match %s unlocked by %s", match_id, username)
        if self.tracker_log is not None:
            await self.tracker_log.record(
                team_name=username,
                action="Admin Match Unlock",
                match_id=match_id,
                details={"unlockedBy": username},
            )
        return match

    async def update_score(self, match_id: str, score_a: int, score_b: int) -> Match:
        for score in (score_a, score_b):
            if isinstance(score, bool) or not isinstance(score, int) or score < 0:
                raise ValidationError(f"scores must be non-negative integers, got {score!r}")
        return await call_storage(
            "update score", self.match_repository.update_score, match_id, score_a, score_b,
        )

    async def advance_set(self, match_id: str) -> Match:
        match = await call_storage("advance set", self.match_repository.advance_set, match_id)
        self.logger.info("match %s moved to set %d", match_id, match.current_set)
        return match

    async def _transition(self, match_id: str, current: MatchStatus, target: MatchStatus) -> Match:
        return await call_storage(
            f"set status {target}", self.match_repository.set_status,
            match_id, target, expected=current,
        )
