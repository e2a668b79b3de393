from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

DEFAULT_MAINTENANCE_MESSAGE = "The site is temporarily under maintenance. Please check back later."


def parse_time(value: Any) -> datetime | None:
    """ISO string or datetime to an aware datetime; naive values are read as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DowntimeConfig:
    """Declared maintenance window. Absent bounds are open-ended."""
    active: bool = False
    start: datetime | None = None
    end: datetime | None = None
    message: str = ""
    overridden_by_admin: bool = False

    def covers(self, now: datetime) -> bool:
        if self.start is not None and now < self.start:
            return False
        if self.end is not None and now > self.end:
            return False
        return True

    def as_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "message": self.message,
            "overriddenByAdmin": self.overridden_by_admin,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DowntimeConfig":
        return cls(
            active=bool(payload.get("active", False)),
            start=parse_time(payload.get("start")),
            end=parse_time(payload.get("end")),
            message=str(payload.get("message") or ""),
            overridden_by_admin=bool(payload.get("overriddenByAdmin", False)),
        )


@dataclass(frozen=True)
class GateDecision:
    blocked: bool
    message: str = ""
