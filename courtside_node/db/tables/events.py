"""Stat event log and tracker activity tables."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Column, Index
from sqlmodel import Field, SQLModel

from courtside_node.db.tables.matches import JSON_VARIANT, utc_now


class StatEventRow(SQLModel, table=True):
    __tablename__ = "stat_events"

    id: str = Field(primary_key=True)

    match_id: str = Field(index=True)
    position: int
    player_id: str = Field(index=True)
    stat_name: str
    value: int
    set_number: int = Field(index=True)
    corrects: Optional[str] = None

    recorded_at: datetime = Field(default_factory=utc_now, index=True)

    __table_args__ = (
        Index("uq_stat_events_match_position", "match_id", "position", unique=True),
    )


class TrackerLogRow(SQLModel, table=True):
    __tablename__ = "tracker_logs"

    id: str = Field(primary_key=True)
    team_name: str = Field(index=True)
    action: str = Field(index=True)
    match_id: Optional[str] = Field(default=None, index=True)
    set_number: Optional[int] = None
    player_id: Optional[str] = None

    details_jsonb: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON_VARIANT),
    )

    logged_at: datetime = Field(default_factory=utc_now, index=True)
