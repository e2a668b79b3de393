from __future__ import annotations

from abc import ABC, abstractmethod

from courtside_node.entities.match import Team


class TeamRepository(ABC):
    @abstractmethod
    def get_team(self, team_id: str) -> Team | None:
        raise NotImplementedError

    @abstractmethod
    def list_teams(self) -> list[Team]:
        raise NotImplementedError

    @abstractmethod
    def save(self, team: Team) -> None:
        raise NotImplementedError
