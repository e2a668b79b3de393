"""Domain errors raised by the core services.

The API worker maps each class to an HTTP status; callers inside the node
catch the specific class they can act on and let the rest propagate.
"""
from __future__ import annotations


class CourtsideError(Exception):
    """Base class for every domain error."""


class ValidationError(CourtsideError):
    """Malformed event, score or credential input. Never retried."""


class NotFound(CourtsideError):
    pass


class MatchLocked(CourtsideError):
    """The match is completed; an admin unlock is required before editing."""

    def __init__(self, match_id: str):
        super().__init__(f"match {match_id} is completed; request an admin unlock to edit it")
        self.match_id = match_id


class InvalidTransition(CourtsideError):
    def __init__(self, match_id: str, current: str, target: str):
        super().__init__(f"match {match_id} cannot move from {current} to {target}")
        self.match_id = match_id
        self.current = current
        self.target = target


class InvalidCredentials(CourtsideError):
    def __init__(self, username: str):
        super().__init__("invalid admin credentials")
        self.username = username


class StorageUnavailable(CourtsideError):
    """Transient storage failure. The caller may retry with backoff."""


class NetworkTimeout(StorageUnavailable):
    pass
