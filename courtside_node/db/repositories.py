from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from courtside_node.entities.match import (
    AdminCredential, Match, MatchStatus, Team, TrackerLogEntry, UnlockRecord,
)
from courtside_node.entities.stats import StatEvent
from courtside_node.errors import InvalidTransition, MatchLocked, NotFound, StorageUnavailable
from courtside_node.db.tables import (
    AdminUserRow, MatchRow, StatEventRow, TeamRow, TrackerLogRow, UnlockAuditRow,
)
from courtside_node.services.interfaces.admin_repository import (
    AdminRepository, UnlockAuditRepository,
)
from courtside_node.services.interfaces.match_repository import MatchRepository
from courtside_node.services.interfaces.stat_event_repository import StatEventRepository
from courtside_node.services.interfaces.team_repository import TeamRepository
from courtside_node.services.interfaces.tracker_log_repository import TrackerLogRepository

SessionFactory = Callable[[], Session]


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything we store is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _DBRepository:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"{action} failed: {exc}") from exc


class DBStatEventRepository(_DBRepository, StatEventRepository):
    def append_event(self, event: StatEvent) -> StatEvent:
        with self._session("append stat event") as session:
            # Row lock on the match serializes appends and status changes per match.
            match_row = session.exec(
                select(MatchRow).where(MatchRow.id == event.match_id).with_for_update()
            ).first()
            if match_row is None:
                raise NotFound(f"match {event.match_id} not found")
            if match_row.status == MatchStatus.COMPLETED:
                raise MatchLocked(event.match_id)

            last = session.exec(
                select(func.max(StatEventRow.position)).where(StatEventRow.match_id == event.match_id)
            ).one()
            row = StatEventRow(
                id=event.id or uuid.uuid4().hex,
                match_id=event.match_id,
                position=(last or 0) + 1,
                player_id=event.player_id,
                stat_name=event.stat_name,
                value=event.value,
                set_number=event.set_number,
                corrects=event.corrects,
                recorded_at=event.timestamp,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._row_to_domain(row)

    def read_events(
        self,
        match_id: str,
        *,
        player_id: str | None = None,
        set_number: int | None = None,
        after_position: int | None = None,
        limit: int | None = None,
    ) -> list[StatEvent]:
        stmt = (
            select(StatEventRow)
            .where(StatEventRow.match_id == match_id)
            .order_by(StatEventRow.position.asc())
        )
        if player_id is not None:
            stmt = stmt.where(StatEventRow.player_id == player_id)
        if set_number is not None:
            stmt = stmt.where(StatEventRow.set_number == set_number)
        if after_position is not None:
            stmt = stmt.where(StatEventRow.position > after_position)
        if limit is not None:
            stmt = stmt.limit(max(1, int(limit)))
        with self._session("read stat events") as session:
            rows = session.exec(stmt).all()
            return [self._row_to_domain(row) for row in rows]

    def get_event(self, match_id: str, event_id: str) -> StatEvent | None:
        with self._session("get stat event") as session:
            row = session.get(StatEventRow, event_id)
            if row is None or row.match_id != match_id:
                return None
            return self._row_to_domain(row)

    @staticmethod
    def _row_to_domain(row: StatEventRow) -> StatEvent:
        return StatEvent(
            id=row.id,
            match_id=row.match_id,
            player_id=row.player_id,
            stat_name=row.stat_name,
            value=row.value,
            set_number=row.set_number,
            timestamp=_aware(row.recorded_at),
            position=row.position,
            corrects=row.corrects,
        )


class DBMatchRepository(_DBRepository, MatchRepository):
    def get_match(self, match_id: str) -> Match | None:
        with self._session("get match") as session:
            row = session.get(MatchRow, match_id)
            return self._row_to_domain(row) if row else None

    def list_matches(
        self, *, court_number: int | None = None, tracker_team: str | None = None,
    ) -> list[Match]:
        stmt = select(MatchRow).order_by(MatchRow.court_number.asc(), MatchRow.start_time.asc())
        if court_number is not None:
            stmt = stmt.where(MatchRow.court_number == court_number)
        if tracker_team is not None:
            stmt = stmt.where(MatchRow.tracker_team == tracker_team)
        with self._session("list matches") as session:
            return [self._row_to_domain(row) for row in session.exec(stmt).all()]

    def save(self, match: Match) -> None:
        row = self._domain_to_row(match)
        with self._session("save match") as session:
            existing = session.get(MatchRow, match.id)
            if existing is None:
                session.add(row)
            else:
                existing.court_number = row.court_number
                existing.team_a = row.team_a
                existing.team_b = row.team_b
                existing.tracker_team = row.tracker_team
                existing.start_time = row.start_time
                existing.score_a = row.score_a
                existing.score_b = row.score_b
                existing.current_set = row.current_set
                existing.status = row.status
                existing.updated_at = datetime.now(timezone.utc)
            session.commit()

    def set_status(
        self, match_id: str, status: MatchStatus, *, expected: MatchStatus | None = None,
    ) -> Match:
        with self._session("set match status") as session:
            row = self._lock_row(session, match_id)
            if expected is not None and row.status != expected:
                raise InvalidTransition(match_id, row.status, status)
            row.status = status.value
            return self._commit(session, row)

    def update_score(self, match_id: str, score_a: int, score_b: int) -> Match:
        with self._session("update match score") as session:
            row = self._lock_row(session, match_id)
            if row.status == MatchStatus.COMPLETED:
                raise MatchLocked(match_id)
            row.score_a = score_a
            row.score_b = score_b
            return self._commit(session, row)

    def advance_set(self, match_id: str) -> Match:
        with self._session("advance match set") as session:
            row = self._lock_row(session, match_id)
            if row.status == MatchStatus.COMPLETED:
                raise MatchLocked(match_id)
            row.current_set += 1
            return self._commit(session, row)

    @staticmethod
    def _lock_row(session: Session, match_id: str) -> MatchRow:
        row = session.exec(
            select(MatchRow).where(MatchRow.id == match_id).with_for_update()
        ).first()
        if row is None:
            raise NotFound(f"match {match_id} not found")
        return row

    def _commit(self, session: Session, row: MatchRow) -> Match:
        row.updated_at = datetime.now(timezone.utc)
        session.add(row)
        session.commit()
        session.refresh(row)
        return self._row_to_domain(row)

    @staticmethod
    def _row_to_domain(row: MatchRow) -> Match:
        return Match(
            id=row.id,
            court_number=row.court_number,
            team_a=row.team_a,
            team_b=row.team_b,
            tracker_team=row.tracker_team,
            start_time=_aware(row.start_time),
            score_a=row.score_a,
            score_b=row.score_b,
            current_set=row.current_set,
            status=MatchStatus(row.status),
        )

    @staticmethod
    def _domain_to_row(match: Match) -> MatchRow:
        return MatchRow(
            id=match.id,
            court_number=match.court_number,
            team_a=match.team_a,
            team_b=match.team_b,
            tracker_team=match.tracker_team,
            start_time=match.start_time,
            score_a=match.score_a,
            score_b=match.score_b,
            current_set=match.current_set,
            status=match.status.value,
        )


class DBTeamRepository(_DBRepository, TeamRepository):
    def get_team(self, team_id: str) -> Team | None:
        with self._session("get team") as session:
            row = session.get(TeamRow, team_id)
            return self._row_to_domain(row) if row else None

    def list_teams(self) -> list[Team]:
        with self._session("list teams") as session:
            rows = session.exec(select(TeamRow).order_by(TeamRow.team_name.asc())).all()
            return [self._row_to_domain(row) for row in rows]

    def save(self, team: Team) -> None:
        with self._session("save team") as session:
            existing = session.get(TeamRow, team.id)
            if existing is None:
                session.add(TeamRow(
                    id=team.id,
                    team_name=team.team_name,
                    team_color=team.team_color,
                    players_jsonb=list(team.players),
                ))
            else:
                existing.team_name = team.team_name
                existing.team_color = team.team_color
                existing.players_jsonb = list(team.players)
            session.commit()

    @staticmethod
    def _row_to_domain(row: TeamRow) -> Team:
        return Team(
            id=row.id,
            team_name=row.team_name,
            players=list(row.players_jsonb or []),
            team_color=row.team_color,
        )


class DBAdminRepository(_DBRepository, AdminRepository):
    def get(self, username: str) -> AdminCredential | None:
        with self._session("get admin") as session:
            row = session.get(AdminUserRow, username)
            if row is None:
                return None
            return AdminCredential(username=row.username, password_hash=row.password_hash)

    def list_usernames(self) -> list[str]:
        with self._session("list admins") as session:
            rows = session.exec(select(AdminUserRow).order_by(AdminUserRow.username.asc())).all()
            return [row.username for row in rows]

    def save(self, credential: AdminCredential) -> None:
        with self._session("save admin") as session:
            existing = session.get(AdminUserRow, credential.username)
            if existing is None:
                session.add(AdminUserRow(
                    username=credential.username, password_hash=credential.password_hash,
                ))
            else:
                existing.password_hash = credential.password_hash
            session.commit()


class DBUnlockAuditRepository(_DBRepository, UnlockAuditRepository):
    def save(self, record: UnlockRecord) -> None:
        with self._session("save unlock record") as session:
            session.add(UnlockAuditRow(
                id=record.id,
                match_id=record.match_id,
                unlocked_by=record.unlocked_by,
                unlocked_at=record.timestamp,
            ))
            session.commit()

    def find(self, *, match_id: str | None = None) -> list[UnlockRecord]:
        stmt = select(UnlockAuditRow).order_by(UnlockAuditRow.unlocked_at.asc())
        if match_id is not None:
            stmt = stmt.where(UnlockAuditRow.match_id == match_id)
        with self._session("find unlock records") as session:
            return [
                UnlockRecord(
                    id=row.id,
                    match_id=row.match_id,
                    unlocked_by=row.unlocked_by,
                    timestamp=_aware(row.unlocked_at),
                )
                for row in session.exec(stmt).all()
            ]


class DBTrackerLogRepository(_DBRepository, TrackerLogRepository):
    def save(self, entry: TrackerLogEntry) -> None:
        with self._session("save tracker log") as session:
            session.add(TrackerLogRow(
                id=entry.id,
                team_name=entry.team_name,
                action=entry.action,
                match_id=entry.match_id,
                set_number=entry.set_number,
                player_id=entry.player_id,
                details_jsonb=dict(entry.details),
                logged_at=entry.timestamp,
            ))
            session.commit()

    def find(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        team_name: str | None = None,
        action: str | None = None,
        search: str | None = None,
    ) -> list[TrackerLogEntry]:
        stmt = select(TrackerLogRow).order_by(TrackerLogRow.logged_at.desc())
        if team_name is not None:
            stmt = stmt.where(TrackerLogRow.team_name == team_name)
        if action is not None:
            stmt = stmt.where(TrackerLogRow.action == action)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                TrackerLogRow.team_name.ilike(pattern),
                TrackerLogRow.action.ilike(pattern),
            ))
        stmt = stmt.offset(max(0, int(offset))).limit(max(1, int(limit)))
        with self._session("find tracker logs") as session:
            return [
                TrackerLogEntry(
                    id=row.id,
                    team_name=row.team_name,
                    action=row.action,
                    match_id=row.match_id,
                    set_number=row.set_number,
                    player_id=row.player_id,
                    details=row.details_jsonb or {},
                    timestamp=_aware(row.logged_at),
                )
                for row in session.exec(stmt).all()
            ]
