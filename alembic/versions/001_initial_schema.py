"""initial schema: matches, teams, stat event log, audit tables

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Teams & matches ──
    op.create_table(
        "teams",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_name", sa.String(), nullable=False),
        sa.Column("team_color", sa.String(), nullable=True),
        sa.Column("players_jsonb", postgresql.JSONB(), server_default="[]"),
    )
    op.create_index("ix_teams_team_name", "teams", ["team_name"])

    op.create_table(
        "matches",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("court_number", sa.Integer(), nullable=False),
        sa.Column("team_a", sa.String(), nullable=False),
        sa.Column("team_b", sa.String(), nullable=False),
        sa.Column("tracker_team", sa.String(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("score_a", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("score_b", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_set", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("score_a >= 0 AND score_b >= 0", name="ck_matches_scores_non_negative"),
        sa.CheckConstraint("current_set >= 1", name="ck_matches_current_set_positive"),
    )
    op.create_index("ix_matches_court_number", "matches", ["court_number"])
    op.create_index("ix_matches_tracker_team", "matches", ["tracker_team"])
    op.create_index("ix_matches_start_time", "matches", ["start_time"])
    op.create_index("ix_matches_status", "matches", ["status"])

    # ── Stat event log (append-only) ──
    op.create_table(
        "stat_events",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("stat_name", sa.String(), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("set_number", sa.Integer(), nullable=False),
        sa.Column("corrects", sa.String(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_stat_events_match_id", "stat_events", ["match_id"])
    op.create_index("ix_stat_events_player_id", "stat_events", ["player_id"])
    op.create_index("ix_stat_events_set_number", "stat_events", ["set_number"])
    op.create_index("ix_stat_events_recorded_at", "stat_events", ["recorded_at"])
    op.create_index(
        "uq_stat_events_match_position", "stat_events", ["match_id", "position"], unique=True,
    )

    # ── Admins & audit ──
    op.create_table(
        "admin_users",
        sa.Column("username", sa.String(), primary_key=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "match_unlocks",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_id", sa.String(), nullable=False),
        sa.Column("unlocked_by", sa.String(), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_match_unlocks_match_id", "match_unlocks", ["match_id"])
    op.create_index("ix_match_unlocks_unlocked_at", "match_unlocks", ["unlocked_at"])

    op.create_table(
        "tracker_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_name", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("match_id", sa.String(), nullable=True),
        sa.Column("set_number", sa.Integer(), nullable=True),
        sa.Column("player_id", sa.String(), nullable=True),
        sa.Column("details_jsonb", postgresql.JSONB(), server_default="{}"),
        sa.Column("logged_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tracker_logs_team_name", "tracker_logs", ["team_name"])
    op.create_index("ix_tracker_logs_action", "tracker_logs", ["action"])
    op.create_index("ix_tracker_logs_match_id", "tracker_logs", ["match_id"])
    op.create_index("ix_tracker_logs_logged_at", "tracker_logs", ["logged_at"])


def downgrade() -> None:
    for table in (
        "tracker_logs", "match_unlocks", "admin_users", "stat_events", "matches", "teams",
    ):
        op.drop_table(table)
