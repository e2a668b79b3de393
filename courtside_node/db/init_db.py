from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlmodel import SQLModel

from courtside_node.db.repositories import DBAdminRepository, DBMatchRepository, DBTeamRepository
from courtside_node.db.session import create_session, engine
from courtside_node.db.tables import *  # noqa: F401,F403
from courtside_node.entities.match import Match, MatchStatus, Team
from courtside_node.services.admin_auth import AdminRegistry


def tables_to_reset() -> list[str]:
    return [
        "stat_events",
        "tracker_logs",
        "match_unlocks",
        "matches",
        "teams",
        "admin_users",
        "alembic_version",
    ]


def load_seed_data() -> dict[str, Any]:
    """Teams and matches to load on first boot, from `SEED_DATA_PATH` (JSON object)."""
    path = os.getenv("SEED_DATA_PATH")
    if not path:
        return {"teams": [], "matches": []}

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("SEED_DATA_PATH must point to a JSON object with 'teams' and 'matches'")
    return payload


def _team_from_seed(item: dict[str, Any]) -> Team:
    return Team(
        id=str(item["id"]),
        team_name=str(item["teamName"]),
        players=[str(p) for p in item.get("players", [])],
        team_color=item.get("teamColor"),
    )


def _match_from_seed(item: dict[str, Any]) -> Match:
    start_time = item.get("startTime")
    return Match(
        id=str(item["id"]),
        court_number=int(item["courtNumber"]),
        team_a=str(item["teamA"]),
        team_b=str(item["teamB"]),
        tracker_team=item.get("trackerTeam"),
        start_time=datetime.fromisoformat(start_time) if start_time else None,
        status=MatchStatus(item.get("status", "scheduled")),
    )


# ---------------------------------------------------------------------------
# Alembic migrations directory resolution
# ---------------------------------------------------------------------------

def _find_alembic_dir() -> Path | None:
    """Locate the Alembic migrations directory.

    Checks ``ALEMBIC_DIR`` first, then the repo-root ``alembic/`` next to the
    package. Returns ``None`` when neither exists (e.g. a pip-installed wheel);
    callers fall back to ``SQLModel.metadata.create_all()``.
    """
    def _is_valid(p: Path) -> bool:
        return p.is_dir() and (p / "env.py").exists() and (p / "versions").is_dir()

    env_dir = os.getenv("ALEMBIC_DIR")
    if env_dir and _is_valid(Path(env_dir)):
        return Path(env_dir)

    repo_dir = Path(__file__).resolve().parent.parent.parent / "alembic"
    if _is_valid(repo_dir):
        return repo_dir

    return None


def _run_alembic_upgrade(alembic_dir: Path | None = None) -> None:
    if alembic_dir is None:
        alembic_dir = _find_alembic_dir()
    if alembic_dir is None:
        raise FileNotFoundError(
            "Alembic migrations directory not found. "
            "Set ALEMBIC_DIR or ensure the alembic/ directory is alongside the package."
        )

    from alembic.config import Config
    from alembic import command

    # Appends hold row locks on matches; don't let DDL wait on them forever.
    with engine.connect() as conn:
        conn.execute(text("SET lock_timeout = '30s'"))
        conn.commit()

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(alembic_dir))
    alembic_cfg.set_main_option("sqlalchemy.url", str(engine.url))
    command.upgrade(alembic_cfg, "head")


def seed(session_factory=create_session) -> None:
    """Insert seed teams/matches that don't exist yet and register ADMIN_USERS."""
    data = load_seed_data()
    teams = DBTeamRepository(session_factory)
    matches = DBMatchRepository(session_factory)
    for item in data.get("teams", []):
        team = _team_from_seed(item)
        if teams.get_team(team.id) is None:
            teams.save(team)
    for item in data.get("matches", []):
        match = _match_from_seed(item)
        if matches.get_match(match.id) is None:
            matches.save(match)

    created = AdminRegistry(DBAdminRepository(session_factory)).seed(os.getenv("ADMIN_USERS", ""))
    print(f"➡️  Seeded {len(data.get('teams', []))} teams, {len(data.get('matches', []))} matches, {created} new admins")


def migrate() -> None:
    """Run Alembic migrations and seed reference data. Safe on every boot; never drops data."""
    alembic_dir = _find_alembic_dir()
    if alembic_dir is not None:
        print(f"➡️  Running Alembic migrations from {alembic_dir} ...")
        try:
            _run_alembic_upgrade(alembic_dir)
        except Exception as exc:
            print(f"⚠️  Alembic migration failed ({exc}), falling back to create_all...")
            SQLModel.metadata.create_all(engine)
    else:
        print("➡️  No Alembic migrations directory found, using SQLModel create_all...")
        SQLModel.metadata.create_all(engine)

    seed()
    print("✅ Database migration complete.")


def reset_db() -> None:
    """Drop all tables and recreate from scratch. Destroys all data."""
    print("⚠️  Dropping all tables...")
    with engine.begin() as conn:
        for table in tables_to_reset():
            conn.execute(text(f"DROP TABLE IF EXISTS {table} CASCADE"))

    migrate()
    print("✅ Database reset complete.")


def auto_migrate() -> None:
    """Bring the schema to head; used by the API worker on boot."""
    from sqlalchemy import inspect as sa_inspect

    try:
        inspector = sa_inspect(engine)
        if not inspector.has_table("stat_events"):
            migrate()
        else:
            _run_alembic_upgrade()
    except Exception as exc:
        print(f"⚠️  auto_migrate: {exc}")


if __name__ == "__main__":
    import sys

    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(line_buffering=True)

    if "--reset" in sys.argv:
        reset_db()
    else:
        migrate()

    sys.exit(0)
