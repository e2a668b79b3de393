from __future__ import annotations

from abc import ABC, abstractmethod

from courtside_node.entities.match import TrackerLogEntry


class TrackerLogRepository(ABC):
    @abstractmethod
    def save(self, entry: TrackerLogEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def find(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        team_name: str | None = None,
        action: str | None = None,
        search: str | None = None,
    ) -> list[TrackerLogEntry]:
        raise NotImplementedError
