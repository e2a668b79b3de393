from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class StatEventIn(BaseModel):
    """Body of `POST /matches/{match_id}/events`. Field names follow the tracker client."""

    playerId: str = Field(min_length=1)
    statName: str = Field(min_length=1)
    value: StrictInt = 1
    set: StrictInt = 1
    trackerTeam: str | None = None

    model_config = ConfigDict(extra="ignore")


class CorrectionIn(BaseModel):
    trackerTeam: str | None = None


class AdminCredentialsIn(BaseModel):
    username: str
    password: str


class UnlockRequest(AdminCredentialsIn):
    pass


class ScoreUpdate(BaseModel):
    scoreA: StrictInt
    scoreB: StrictInt


class PasswordUpdateRequest(AdminCredentialsIn):
    newPassword: str = Field(min_length=1)


class ScheduleDowntimeRequest(AdminCredentialsIn):
    start: datetime
    end: datetime
    message: str


class StartDowntimeRequest(AdminCredentialsIn):
    message: str | None = None


class DowntimeOverrideRequest(AdminCredentialsIn):
    overridden: bool = True


class TrackerLogIn(BaseModel):
    teamName: str = Field(min_length=1)
    action: str = Field(min_length=1)
    matchId: str | None = None
    set: int | None = None
    playerId: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")
