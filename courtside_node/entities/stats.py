from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Iterator, Mapping


class StatKind(StrEnum):
    """Wire-stable stat categories. Values are the client-visible keys."""
    ACES = "aces"
    SERVE_ERRORS = "serveErrors"
    SPIKES = "spikes"
    SPIKE_ERRORS = "spikeErrors"
    DIGS = "digs"
    BLOCKS = "blocks"
    NET_TOUCHES = "netTouches"
    TIPS = "tips"
    DUMPS = "dumps"
    FOOT_FAULTS = "footFaults"
    REACHES = "reaches"
    CARRIES = "carries"
    POINTS = "points"
    OUT_OF_BOUNDS = "outOfBounds"
    FAULTS = "faults"
    NEUTRAL_BLOCKS = "neutralBlocks"


POINT_KINDS: frozenset[StatKind] = frozenset({
    StatKind.ACES, StatKind.SPIKES, StatKind.BLOCKS, StatKind.TIPS,
    StatKind.DUMPS, StatKind.DIGS, StatKind.POINTS,
})

FAULT_KINDS: frozenset[StatKind] = frozenset({
    StatKind.SERVE_ERRORS, StatKind.SPIKE_ERRORS, StatKind.NET_TOUCHES,
    StatKind.FOOT_FAULTS, StatKind.REACHES, StatKind.CARRIES,
    StatKind.OUT_OF_BOUNDS, StatKind.FAULTS,
})

_KNOWN = {kind.value for kind in StatKind}


def is_known_stat(name: str) -> bool:
    return name in _KNOWN


@dataclass(frozen=True)
class StatEvent:
    """One tracked action. Immutable; corrections are new events with a signed value."""
    match_id: str
    player_id: str
    stat_name: str
    value: int = 1
    set_number: int = 1
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str | None = None
    position: int | None = None      # per-match log position, assigned by the store
    corrects: str | None = None      # id of the event this one offsets

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "matchId": self.match_id,
            "playerId": self.player_id,
            "statName": self.stat_name,
            "value": self.value,
            "set": self.set_number,
            "timestamp": self.timestamp.isoformat(),
            "position": self.position,
            "corrects": self.corrects,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StatEvent":
        timestamp = payload.get("timestamp")
        return cls(
            id=payload.get("id"),
            match_id=str(payload["matchId"]),
            player_id=str(payload["playerId"]),
            stat_name=str(payload["statName"]),
            value=int(payload["value"]),
            set_number=int(payload.get("set", 1)),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc),
            position=payload.get("position"),
            corrects=payload.get("corrects"),
        )


@dataclass
class PlayerStats(Mapping[str, int]):
    """Per-player counters for one set (or all sets when set_number is None).

    Always fully populated: every StatKind has an entry.
    """
    match_id: str
    player_id: str
    set_number: int | None = None
    counts: dict[str, int] = field(default_factory=lambda: {k.value: 0 for k in StatKind})

    def __getitem__(self, key: str) -> int:
        return self.counts.get(str(key), 0)

    def __contains__(self, key: object) -> bool:
        return key in self.counts

    def __iter__(self) -> Iterator[str]:
        return iter(self.counts)

    def __len__(self) -> int:
        return len(self.counts)

    @property
    def total_points(self) -> int:
        return sum(self[k] for k in POINT_KINDS)

    @property
    def total_faults(self) -> int:
        return sum(self[k] for k in FAULT_KINDS)

    def as_dict(self) -> dict[str, Any]:
        return {
            "matchId": self.match_id,
            "playerId": self.player_id,
            "set": self.set_number,
            "stats": dict(self.counts),
            "totalPoints": self.total_points,
            "totalFaults": self.total_faults,
        }


MatchStats = dict[str, PlayerStats]
