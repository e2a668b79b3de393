from __future__ import annotations

from abc import ABC, abstractmethod

from courtside_node.entities.match import AdminCredential, UnlockRecord


class AdminRepository(ABC):
    @abstractmethod
    def get(self, username: str) -> AdminCredential | None:
        raise NotImplementedError

    @abstractmethod
    def list_usernames(self) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def save(self, credential: AdminCredential) -> None:
        raise NotImplementedError


class UnlockAuditRepository(ABC):
    @abstractmethod
    def save(self, record: UnlockRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def find(self, *, match_id: str | None = None) -> list[UnlockRecord]:
        raise NotImplementedError
