"""In-memory repositories for local runs (STORAGE_BACKEND=memory) and tests."""
from __future__ import annotations

import threading
import uuid
from dataclasses import replace

from courtside_node.entities.match import (
    AdminCredential, Match, MatchStatus, Team, TrackerLogEntry, UnlockRecord,
)
from courtside_node.entities.stats import StatEvent
from courtside_node.errors import InvalidTransition, MatchLocked, NotFound
from courtside_node.services.interfaces.admin_repository import (
    AdminRepository, UnlockAuditRepository,
)
from courtside_node.services.interfaces.match_repository import MatchRepository
from courtside_node.services.interfaces.stat_event_repository import StatEventRepository
from courtside_node.services.interfaces.team_repository import TeamRepository
from courtside_node.services.interfaces.tracker_log_repository import TrackerLogRepository


class InMemoryMatchRepository(MatchRepository):
    def __init__(self, matches: list[Match] | None = None):
        self.lock = threading.RLock()
        self._storage: dict[str, Match] = {}
        for match in matches or []:
            self.save(match)

    def get_match(self, match_id: str) -> Match | None:
        with self.lock:
            match = self._storage.get(match_id)
            return replace(match) if match else None

    def list_matches(
        self, *, court_number: int | None = None, tracker_team: str | None = None,
    ) -> list[Match]:
        with self.lock:
            matches = [replace(m) for m in self._storage.values()]
        if court_number is not None:
            matches = [m for m in matches if m.court_number == court_number]
        if tracker_team is not None:
            matches = [m for m in matches if m.tracker_team == tracker_team]
        return sorted(matches, key=lambda m: (m.court_number, m.start_time is None, m.start_time or 0))

    def save(self, match: Match) -> None:
        with self.lock:
            self._storage[match.id] = replace(match)

    def set_status(
        self, match_id: str, status: MatchStatus, *, expected: MatchStatus | None = None,
    ) -> Match:
        with self.lock:
            match = self._require(match_id)
            if expected is not None and match.status != expected:
                raise InvalidTransition(match_id, match.status, status)
            match.status = MatchStatus(status)
            return replace(match)

    def update_score(self, match_id: str, score_a: int, score_b: int) -> Match:
        with self.lock:
            match = self._require(match_id)
            if match.is_locked:
                raise MatchLocked(match_id)
            match.score_a = score_a
            match.score_b = score_b
            return replace(match)

    def advance_set(self, match_id: str) -> Match:
        with self.lock:
            match = self._require(match_id)
            if match.is_locked:
                raise MatchLocked(match_id)
            match.current_set += 1
            return replace(match)

    def _require(self, match_id: str) -> Match:
        match = self._storage.get(match_id)
        if match is None:
            raise NotFound(f"match {match_id} not found")
        return match


class InMemoryStatEventRepository(StatEventRepository):
    def __init__(self, match_repository: InMemoryMatchRepository):
        self._matches = match_repository
        self._events: dict[str, list[StatEvent]] = {}

    def append_event(self, event: StatEvent) -> StatEvent:
        # Share the match lock so a concurrent complete() cannot interleave.
        with self._matches.lock:
            match = self._matches.get_match(event.match_id)
            if match is None:
                raise NotFound(f"match {event.match_id} not found")
            if match.is_locked:
                raise MatchLocked(event.match_id)
            log = self._events.setdefault(event.match_id, [])
            stored = replace(event, id=event.id or uuid.uuid4().hex, position=len(log) + 1)
            log.append(stored)
            return stored

    def read_events(
        self,
        match_id: str,
        *,
        player_id: str | None = None,
        set_number: int | None = None,
        after_position: int | None = None,
        limit: int | None = None,
    ) -> list[StatEvent]:
        with self._matches.lock:
            results = list(self._events.get(match_id, []))
        if player_id is not None:
            results = [e for e in results if e.player_id == player_id]
        if set_number is not None:
            results = [e for e in results if e.set_number == set_number]
        if after_position is not None:
            results = [e for e in results if e.position > after_position]
        if limit is not None:
            results = results[:max(1, int(limit))]
        return results

    def get_event(self, match_id: str, event_id: str) -> StatEvent | None:
        with self._matches.lock:
            for event in self._events.get(match_id, []):
                if event.id == event_id:
                    return event
        return None


class InMemoryTeamRepository(TeamRepository):
    def __init__(self, teams: list[Team] | None = None):
        self._storage: dict[str, Team] = {team.id: team for team in teams or []}

    def get_team(self, team_id: str) -> Team | None:
        return self._storage.get(team_id)

    def list_teams(self) -> list[Team]:
        return sorted(self._storage.values(), key=lambda t: t.team_name)

    def save(self, team: Team) -> None:
        self._storage[team.id] = team


class InMemoryAdminRepository(AdminRepository):
    def __init__(self, credentials: list[AdminCredential] | None = None):
        self._storage: dict[str, AdminCredential] = {c.username: c for c in credentials or []}

    def get(self, username: str) -> AdminCredential | None:
        return self._storage.get(username)

    def list_usernames(self) -> list[str]:
        return sorted(self._storage)

    def save(self, credential: AdminCredential) -> None:
        self._storage[credential.username] = credential


class InMemoryUnlockAuditRepository(UnlockAuditRepository):
    def __init__(self):
        self.records: list[UnlockRecord] = []

    def save(self, record: UnlockRecord) -> None:
        self.records.append(record)

    def find(self, *, match_id: str | None = None) -> list[UnlockRecord]:
        if match_id is None:
            return list(self.records)
        return [r for r in self.records if r.match_id == match_id]


class InMemoryTrackerLogRepository(TrackerLogRepository):
    def __init__(self):
        self.entries: list[TrackerLogEntry] = []

    def save(self, entry: TrackerLogEntry) -> None:
        self.entries.append(entry)

    def find(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        team_name: str | None = None,
        action: str | None = None,
        search: str | None = None,
    ) -> list[TrackerLogEntry]:
        results = sorted(self.entries, key=lambda e: e.timestamp, reverse=True)
        if team_name is not None:
            results = [e for e in results if e.team_name == team_name]
        if action is not None:
            results = [e for e in results if e.action == action]
        if search:
            needle = search.lower()
            results = [
                e for e in results
                if needle in e.team_name.lower() or needle in e.action.lower()
            ]
        return results[offset:offset + limit]
