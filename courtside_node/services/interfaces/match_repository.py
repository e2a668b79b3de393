from __future__ import annotations

from abc import ABC, abstractmethod

from courtside_node.entities.match import Match, MatchStatus


class MatchRepository(ABC):
    @abstractmethod
    def get_match(self, match_id: str) -> Match | None:
        raise NotImplementedError

    @abstractmethod
    def list_matches(
        self, *, court_number: int | None = None, tracker_team: str | None = None,
    ) -> list[Match]:
        raise NotImplementedError

    @abstractmethod
    def save(self, match: Match) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_status(
        self, match_id: str, status: MatchStatus, *, expected: MatchStatus | None = None,
    ) -> Match:
        """Compare-and-set the status. Raises InvalidTransition when the
        stored status differs from `expected`, NotFound for unknown ids."""
        raise NotImplementedError

    @abstractmethod
    def update_score(self, match_id: str, score_a: int, score_b: int) -> Match:
        """Raises MatchLocked when the match is completed."""
        raise NotImplementedError

    @abstractmethod
    def advance_set(self, match_id: str) -> Match:
        """Raises MatchLocked when the match is completed."""
        raise NotImplementedError
