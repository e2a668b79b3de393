from __future__ import annotations

from abc import ABC, abstractmethod

from courtside_node.entities.stats import StatEvent


class StatEventRepository(ABC):
    """Append-only per-match event store.

    Implementations serialize appends per match and re-check the match lock
    under that serialization, so a completed match never gains an event.
    """

    @abstractmethod
    def append_event(self, event: StatEvent) -> StatEvent:
        """Store the event and return it with `id` and `position` assigned.

        Raises MatchLocked, NotFound (unknown match) or StorageUnavailable.
        """
        raise NotImplementedError

    @abstractmethod
    def read_events(
        self,
        match_id: str,
        *,
        player_id: str | None = None,
        set_number: int | None = None,
        after_position: int | None = None,
        limit: int | None = None,
    ) -> list[StatEvent]:
        raise NotImplementedError

    @abstractmethod
    def get_event(self, match_id: str, event_id: str) -> StatEvent | None:
        raise NotImplementedError
