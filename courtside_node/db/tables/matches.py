"""Match, team, admin and unlock audit tables."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

JSON_VARIANT = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TeamRow(SQLModel, table=True):
    __tablename__ = "teams"

    id: str = Field(primary_key=True)
    team_name: str = Field(index=True)
    team_color: Optional[str] = None

    players_jsonb: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_VARIANT),
    )


class MatchRow(SQLModel, table=True):
    __tablename__ = "matches"

    id: str = Field(primary_key=True)
    court_number: int = Field(index=True)
    team_a: str
    team_b: str
    tracker_team: Optional[str] = Field(default=None, index=True)
    start_time: Optional[datetime] = Field(default=None, index=True)

    score_a: int = 0
    score_b: int = 0
    current_set: int = 1
    status: str = Field(default="scheduled", index=True)

    updated_at: datetime = Field(default_factory=utc_now)


class AdminUserRow(SQLModel, table=True):
    __tablename__ = "admin_users"

    username: str = Field(primary_key=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utc_now)


class UnlockAuditRow(SQLModel, table=True):
    __tablename__ = "match_unlocks"

    id: str = Field(primary_key=True)
    match_id: str = Field(index=True)
    unlocked_by: str
    unlocked_at: datetime = Field(default_factory=utc_now, index=True)
