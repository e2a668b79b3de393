from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class MatchStatus(StrEnum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class Match:
    id: str
    court_number: int
    team_a: str                       # team id
    team_b: str                       # team id
    tracker_team: str | None = None   # team id recording stats for this match
    start_time: datetime | None = None
    score_a: int = 0
    score_b: int = 0
    current_set: int = 1
    status: MatchStatus = MatchStatus.SCHEDULED

    @property
    def is_locked(self) -> bool:
        return self.status == MatchStatus.COMPLETED

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "courtNumber": self.court_number,
            "teamA": self.team_a,
            "teamB": self.team_b,
            "trackerTeam": self.tracker_team,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "scoreA": self.score_a,
            "scoreB": self.score_b,
            "currentSet": self.current_set,
            "status": self.status.value,
        }


@dataclass
class Team:
    id: str
    team_name: str
    players: list[str] = field(default_factory=list)  # ordered, may repeat across teams
    team_color: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "teamName": self.team_name,
            "players": list(self.players),
            "teamColor": self.team_color,
        }


@dataclass(frozen=True)
class AdminCredential:
    username: str
    password_hash: str


@dataclass(frozen=True)
class UnlockRecord:
    """Audit entry written for every successful admin unlock."""
    id: str
    match_id: str
    unlocked_by: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "matchId": self.match_id,
            "unlockedBy": self.unlocked_by,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class TrackerLogEntry:
    id: str
    team_name: str
    action: str
    match_id: str | None = None
    set_number: int | None = None
    player_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "teamName": self.team_name,
            "action": self.action,
            "matchId": self.match_id,
            "set": self.set_number,
            "playerId": self.player_id,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
        }
