"""Aggregation engine: PlayerStats are a pure projection of the stat event log."""
from __future__ import annotations

from collections import defaultdict
from enum import StrEnum
from typing import Iterable

from courtside_node.entities.stats import (
    FAULT_KINDS, POINT_KINDS, MatchStats, PlayerStats, StatEvent, StatKind, is_known_stat,
)


class NegativePolicy(StrEnum):
    """What to do with a counter whose compensating events push it below zero.

    Under ALLOW a negative display-only counter (`neutralBlocks`) can make
    `total_points + total_faults` exceed the sum of all counters; CLAMP keeps
    every counter non-negative, so the totals never exceed that sum.
    """
    ALLOW = "allow"
    CLAMP = "clamp"


def empty_counts() -> dict[str, int]:
    return {kind.value: 0 for kind in StatKind}


def _finish(counts: dict[str, int], policy: NegativePolicy) -> dict[str, int]:
    # Clamp the final sums only; clamping per step would make the result order-dependent.
    if policy == NegativePolicy.CLAMP:
        return {name: max(0, value) for name, value in counts.items()}
    return counts


def aggregate(
    events: Iterable[StatEvent],
    player_id: str,
    set_number: int | None = None,
    *,
    match_id: str = "",
    policy: NegativePolicy = NegativePolicy.ALLOW,
) -> PlayerStats:
    counts = empty_counts()
    for event in events:
        if event.player_id != player_id:
            continue
        if set_number is not None and event.set_number != set_number:
            continue
        if not is_known_stat(event.stat_name):
            continue
        counts[event.stat_name] += event.value
        match_id = match_id or event.match_id
    return PlayerStats(
        match_id=match_id,
        player_id=player_id,
        set_number=set_number,
        counts=_finish(counts, NegativePolicy(policy)),
    )


def aggregate_match(
    events: Iterable[StatEvent],
    set_number: int | None = None,
    *,
    match_id: str = "",
    policy: NegativePolicy = NegativePolicy.ALLOW,
) -> MatchStats:
    by_player: dict[str, list[StatEvent]] = defaultdict(list)
    for event in events:
        by_player[event.player_id].append(event)
    return {
        player_id: aggregate(
            player_events, player_id, set_number, match_id=match_id, policy=policy,
        )
        for player_id, player_events in by_player.items()
    }


def total_points(stats: PlayerStats) -> int:
    return sum(stats[kind] for kind in POINT_KINDS)


def total_faults(stats: PlayerStats) -> int:
    return sum(stats[kind] for kind in FAULT_KINDS)


class RunningAggregate:
    """Incrementally maintained counters for one player, or for every player in a match.

    `snapshot()` is always equal to `aggregate()` over the events applied so far.
    """

    def __init__(
        self,
        match_id: str,
        player_id: str | None = None,
        set_number: int | None = None,
        policy: NegativePolicy = NegativePolicy.ALLOW,
    ):
        self.match_id = match_id
        self.player_id = player_id
        self.set_number = set_number
        self.policy = NegativePolicy(policy)
        self._counts: dict[str, dict[str, int]] = {}
        if player_id is not None:
            self._counts[player_id] = empty_counts()

    def is_relevant(self, event: StatEvent) -> bool:
        if event.match_id != self.match_id:
            return False
        if self.player_id is not None and event.player_id != self.player_id:
            return False
        if self.set_number is not None and event.set_number != self.set_number:
            return False
        return True

    def apply(self, event: StatEvent) -> bool:
        """Fold one event in. Returns False when the event does not affect this aggregate."""
        if not self.is_relevant(event):
            return False
        counts = self._counts.setdefault(event.player_id, empty_counts())
        if is_known_stat(event.stat_name):
            counts[event.stat_name] += event.value
        return True

    def reset(self, events: Iterable[StatEvent]) -> None:
        self._counts = {}
        if self.player_id is not None:
            self._counts[self.player_id] = empty_counts()
        for event in events:
            self.apply(event)

    def player_snapshot(self, player_id: str) -> PlayerStats:
        counts = self._counts.get(player_id) or empty_counts()
        return PlayerStats(
            match_id=self.match_id,
            player_id=player_id,
            set_number=self.set_number,
            counts=_finish(dict(counts), self.policy),
        )

    def snapshot(self) -> PlayerStats | MatchStats:
        if self.player_id is not None:
            return self.player_snapshot(self.player_id)
        return {player_id: self.player_snapshot(player_id) for player_id in self._counts}
