from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, replace
from typing import Any

import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from courtside_node.config.runtime import RuntimeSettings
from courtside_node.entities.downtime import DowntimeConfig
from courtside_node.entities.stats import PlayerStats, StatEvent
from courtside_node.errors import (
    CourtsideError, InvalidCredentials, InvalidTransition, MatchLocked, NotFound,
    StorageUnavailable, ValidationError,
)
from courtside_node.middleware.maintenance import configure_maintenance
from courtside_node.schemas import (
    AdminCredentialsIn, CorrectionIn, DowntimeOverrideRequest, PasswordUpdateRequest,
    ScheduleDowntimeRequest, ScoreUpdate, StartDowntimeRequest, StatEventIn, TrackerLogIn,
    UnlockRequest,
)
from courtside_node.services.admin_auth import AdminRegistry
from courtside_node.services.aggregation import NegativePolicy, aggregate, aggregate_match
from courtside_node.services.downtime import (
    DowntimeSource, FileDowntimeStore, HttpDowntimeSource, LocalDowntimeSource,
)
from courtside_node.services.interfaces.team_repository import TeamRepository
from courtside_node.services.maintenance import DowntimeCache, MaintenanceGate
from courtside_node.services.match_lock import MatchLockService
from courtside_node.services.stat_log import StatEventLog, call_storage
from courtside_node.services.subscriptions import Snapshot, SubscriptionBus, Topic
from courtside_node.services.tracker_log import TrackerActivityLog

logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[CourtsideError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (MatchLocked, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (InvalidCredentials, status.HTTP_401_UNAUTHORIZED),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]

DOWNTIME_CACHE_CONTROL = "public, max-age=30"
WS_TRY_AGAIN_LATER = 1013


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        force=True,
    )


@dataclass
class Services:
    settings: RuntimeSettings
    event_log: StatEventLog
    bus: SubscriptionBus
    match_lock: MatchLockService
    admin_registry: AdminRegistry
    team_repository: TeamRepository
    tracker_log: TrackerActivityLog
    downtime_store: FileDowntimeStore
    downtime_cache: DowntimeCache
    gate: MaintenanceGate
    policy: NegativePolicy = NegativePolicy.ALLOW


def build_services(settings: RuntimeSettings | None = None, **repositories: Any) -> Services:
    """Wire the node. `STORAGE_BACKEND=memory` keeps everything in-process;
    keyword repositories override the ones the backend would create."""
    settings = settings or RuntimeSettings.from_env()
    policy = NegativePolicy(settings.negative_stat_policy)
    notifier = None

    if settings.storage_backend == "memory":
        from courtside_node.db.memory import (
            InMemoryAdminRepository, InMemoryMatchRepository, InMemoryStatEventRepository,
            InMemoryTeamRepository, InMemoryTrackerLogRepository, InMemoryUnlockAuditRepository,
        )
        match_repository = repositories.get("match_repository") or InMemoryMatchRepository()
        defaults = {
            "match_repository": match_repository,
            "event_repository": InMemoryStatEventRepository(match_repository),
            "team_repository": InMemoryTeamRepository(),
            "admin_repository": InMemoryAdminRepository(),
            "unlock_repository": InMemoryUnlockAuditRepository(),
            "tracker_log_repository": InMemoryTrackerLogRepository(),
        }
    else:
        from courtside_node.db import (
            DBAdminRepository, DBMatchRepository, DBStatEventRepository, DBTeamRepository,
            DBTrackerLogRepository, DBUnlockAuditRepository, create_session,
        )
        from courtside_node.services.fanout import StatEventNotifier
        defaults = {
            "match_repository": DBMatchRepository(create_session),
            "event_repository": DBStatEventRepository(create_session),
            "team_repository": DBTeamRepository(create_session),
            "admin_repository": DBAdminRepository(create_session),
            "unlock_repository": DBUnlockAuditRepository(create_session),
            "tracker_log_repository": DBTrackerLogRepository(create_session),
        }
        notifier = StatEventNotifier(settings.stat_events_channel)
    repos = {**defaults, **repositories}

    bus = SubscriptionBus(repos["event_repository"], policy=policy, page_size=settings.event_page_size)
    tracker_log = TrackerActivityLog(repos["tracker_log_repository"])
    admin_registry = AdminRegistry(repos["admin_repository"])
    if settings.admin_users:
        admin_registry.seed(settings.admin_users)

    downtime_store = FileDowntimeStore(settings.downtime_file_path)
    source: DowntimeSource
    if settings.downtime_source_url:
        source = HttpDowntimeSource(
            settings.downtime_source_url, timeout_seconds=settings.downtime_refresh_timeout_seconds,
        )
    else:
        source = LocalDowntimeSource(downtime_store)
    downtime_cache = DowntimeCache(
        source,
        ttl_seconds=settings.downtime_cache_ttl_seconds,
        timeout_seconds=settings.downtime_refresh_timeout_seconds,
    )

    return Services(
        settings=settings,
        event_log=StatEventLog(
            repos["event_repository"],
            repos["match_repository"],
            publisher=bus,
            notifier=notifier,
            page_size=settings.event_page_size,
        ),
        bus=bus,
        match_lock=MatchLockService(
            repos["match_repository"], repos["unlock_repository"], admin_registry, tracker_log,
        ),
        admin_registry=admin_registry,
        team_repository=repos["team_repository"],
        tracker_log=tracker_log,
        downtime_store=downtime_store,
        downtime_cache=downtime_cache,
        gate=MaintenanceGate(downtime_cache),
        policy=policy,
    )


def snapshot_payload(snapshot: Snapshot, match_id: str, set_number: int | None) -> dict[str, Any]:
    if isinstance(snapshot, PlayerStats):
        return snapshot.as_dict()
    return {
        "matchId": match_id,
        "set": set_number,
        "players": {player_id: stats.as_dict() for player_id, stats in snapshot.items()},
    }


def create_app(services: Services) -> FastAPI:
    settings = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay: asyncio.Task | None = None
        if settings.storage_backend != "memory":
            from courtside_node.services.fanout import relay_notifications
            relay = asyncio.create_task(
                relay_notifications(services.bus, settings.stat_events_channel),
                name="stat-event-relay",
            )
        try:
            yield
        finally:
            services.bus.close_all()
            if relay is not None:
                relay.cancel()
                with suppress(asyncio.CancelledError):
                    await relay

    app = FastAPI(title="Courtside Node API", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    configure_maintenance(app, services.gate, settings.maintenance_exempt_prefixes)

    @app.exception_handler(CourtsideError)
    async def courtside_error_handler(request: Request, exc: CourtsideError) -> JSONResponse:
        for error_type, status_code in _ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        content: dict[str, Any] = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, MatchLocked):
            content["matchId"] = exc.match_id
            content["unlockRequired"] = True
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=content)

    async def require_admin(credentials: AdminCredentialsIn) -> None:
        await services.admin_registry.verify_admin_credentials(credentials.username, credentials.password)

    async def load_events(match_id: str, set_number: int | None = None) -> list[StatEvent]:
        await services.match_lock.get_match(match_id)
        return await services.event_log.read(match_id, set_number=set_number).to_list()

    # ── health & reference data ──

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/teams")
    async def list_teams() -> list[dict[str, Any]]:
        teams = await call_storage("list teams", services.team_repository.list_teams)
        return [team.as_dict() for team in teams]

    @app.get("/teams/{team_id}")
    async def get_team(team_id: str) -> dict[str, Any]:
        team = await call_storage("get team", services.team_repository.get_team, team_id)
        if team is None:
            raise NotFound(f"team {team_id} not found")
        return team.as_dict()

    # ── matches & lifecycle ──

    @app.get("/matches")
    async def list_matches(
        court: int | None = Query(default=None),
        tracker_team: str | None = Query(default=None, alias="trackerTeam"),
    ) -> list[dict[str, Any]]:
        matches = await services.match_lock.list_matches(court_number=court, tracker_team=tracker_team)
        return [match.as_dict() for match in matches]

    @app.get("/matches/{match_id}")
    async def get_match(match_id: str) -> dict[str, Any]:
        return (await services.match_lock.get_match(match_id)).as_dict()

    @app.post("/matches/{match_id}/start")
    async def start_match(match_id: str) -> dict[str, Any]:
        return (await services.match_lock.start(match_id)).as_dict()

    @app.post("/matches/{match_id}/complete")
    async def complete_match(match_id: str) -> dict[str, Any]:
        return (await services.match_lock.complete(match_id)).as_dict()

    @app.post("/matches/{match_id}/unlock")
    async def unlock_match(match_id: str, body: UnlockRequest) -> dict[str, Any]:
        match = await services.match_lock.unlock(match_id, body.username, body.password)
        return match.as_dict()

    @app.get("/matches/{match_id}/unlocks")
    async def list_unlocks(match_id: str) -> list[dict[str, Any]]:
        return [record.as_dict() for record in await services.match_lock.list_unlocks(match_id)]

    @app.post("/matches/{match_id}/score")
    async def update_score(match_id: str, body: ScoreUpdate) -> dict[str, Any]:
        match = await services.match_lock.update_score(match_id, body.scoreA, body.scoreB)
        return match.as_dict()

    @app.post("/matches/{match_id}/advance-set")
    async def advance_set(match_id: str) -> dict[str, Any]:
        return (await services.match_lock.advance_set(match_id)).as_dict()

    # ── stat events ──

    @app.post("/matches/{match_id}/events", status_code=status.HTTP_201_CREATED)
    async def append_event(match_id: str, body: StatEventIn) -> dict[str, Any]:
        event = StatEvent(
            match_id=match_id,
            player_id=body.playerId,
            stat_name=body.statName,
            value=body.value,
            set_number=body.set,
        )
        position = await services.event_log.append(event)
        if body.trackerTeam:
            await services.tracker_log.record_stat(body.trackerTeam, replace(event, position=position))
        return {"matchId": match_id, "position": position}

    @app.post("/matches/{match_id}/events/{event_id}/correct", status_code=status.HTTP_201_CREATED)
    async def correct_event(match_id: str, event_id: str, body: CorrectionIn | None = None) -> dict[str, Any]:
        position = await services.event_log.correct(match_id, event_id)
        if body is not None and body.trackerTeam:
            await services.tracker_log.record(
                body.trackerTeam, "Correct stat", match_id=match_id, details={"corrects": event_id},
            )
        return {"matchId": match_id, "position": position, "corrects": event_id}

    @app.get("/matches/{match_id}/events")
    async def read_events(
        match_id: str,
        player_id: str | None = Query(default=None, alias="playerId"),
        set_number: int | None = Query(default=None, alias="set", ge=1),
    ) -> list[dict[str, Any]]:
        await services.match_lock.get_match(match_id)
        stream = services.event_log.read(match_id, player_id=player_id, set_number=set_number)
        return [event.to_payload() async for event in stream]

    # ── stats ──

    @app.get("/matches/{match_id}/stats")
    async def match_stats(
        match_id: str, set_number: int | None = Query(default=None, alias="set", ge=1),
    ) -> dict[str, Any]:
        events = await load_events(match_id, set_number)
        stats = aggregate_match(events, set_number, match_id=match_id, policy=services.policy)
        return snapshot_payload(stats, match_id, set_number)

    @app.get("/matches/{match_id}/players/{player_id}/stats")
    async def player_stats(
        match_id: str,
        player_id: str,
        set_number: int | None = Query(default=None, alias="set", ge=1),
    ) -> dict[str, Any]:
        events = await load_events(match_id, set_number)
        stats = aggregate(events, player_id, set_number, match_id=match_id, policy=services.policy)
        return stats.as_dict()

    @app.websocket("/ws/matches/{match_id}")
    async def live_stats(
        websocket: WebSocket,
        match_id: str,
        player_id: str | None = Query(default=None, alias="playerId"),
        set_number: int | None = Query(default=None, alias="set"),
    ) -> None:
        await websocket.accept()
        # BaseHTTPMiddleware never sees websocket scopes.
        decision = await services.gate.check()
        if decision.blocked:
            await websocket.send_json({"detail": decision.message, "maintenance": True})
            await websocket.close(code=WS_TRY_AGAIN_LATER)
            return

        outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        async def push(snapshot: Snapshot) -> None:
            await outbox.put(snapshot_payload(snapshot, match_id, set_number))

        def on_error(exc: Exception) -> None:
            outbox.put_nowait({"error": str(exc)})

        try:
            await services.match_lock.get_match(match_id)
            subscription = await services.bus.subscribe(
                Topic(match_id, player_id, set_number), push, on_error,
            )
        except CourtsideError as exc:
            await websocket.send_json({"error": str(exc)})
            await websocket.close(code=1011)
            return

        async def pump() -> None:
            while True:
                await websocket.send_json(await outbox.get())

        sender = asyncio.create_task(pump())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            subscription.close()
            sender.cancel()
            with suppress(asyncio.CancelledError):
                await sender

    # ── admin ──

    @app.get("/admin/usernames")
    async def admin_usernames() -> list[str]:
        return await call_storage("list admins", services.admin_registry.list_admin_usernames)

    @app.post("/admin/verify")
    async def verify_admin(body: AdminCredentialsIn) -> dict[str, Any]:
        credential = await services.admin_registry.verify_admin_credentials(body.username, body.password)
        return {"username": credential.username, "verified": True}

    @app.post("/admin/update-password")
    async def update_admin_password(body: PasswordUpdateRequest) -> dict[str, Any]:
        credential = await services.admin_registry.update_password(
            body.username, body.password, body.newPassword,
        )
        return {"username": credential.username, "updated": True}

    # ── downtime & maintenance ──

    async def save_downtime(write, *args: Any) -> dict[str, Any]:
        config: DowntimeConfig = await asyncio.to_thread(write, *args)
        services.downtime_cache.invalidate()
        return {"downtime": config.as_dict()}

    @app.get("/downtime")
    async def get_downtime() -> JSONResponse:
        config = await asyncio.to_thread(services.downtime_store.load)
        return JSONResponse(
            content=config.as_dict(), headers={"Cache-Control": DOWNTIME_CACHE_CONTROL},
        )

    @app.post("/downtime/schedule")
    async def schedule_downtime(body: ScheduleDowntimeRequest) -> dict[str, Any]:
        await require_admin(body)
        return await save_downtime(services.downtime_store.schedule, body.start, body.end, body.message)

    @app.post("/downtime/start")
    async def start_downtime(body: StartDowntimeRequest) -> dict[str, Any]:
        await require_admin(body)
        return await save_downtime(services.downtime_store.start_now, body.message)

    @app.post("/downtime/end")
    async def end_downtime(body: AdminCredentialsIn) -> dict[str, Any]:
        await require_admin(body)
        return await save_downtime(services.downtime_store.end_now)

    @app.post("/downtime/override")
    async def override_downtime(body: DowntimeOverrideRequest) -> dict[str, Any]:
        await require_admin(body)
        return await save_downtime(services.downtime_store.set_override, body.overridden)

    @app.get("/maintenance")
    async def maintenance_status() -> dict[str, Any]:
        decision = await services.gate.check()
        return {"blocked": decision.blocked, "message": decision.message}

    # ── tracker activity ──

    @app.post("/tracker-logs", status_code=status.HTTP_201_CREATED)
    async def add_tracker_log(body: TrackerLogIn) -> dict[str, Any]:
        entry = await services.tracker_log.record(
            body.teamName,
            body.action,
            match_id=body.matchId,
            set_number=body.set,
            player_id=body.playerId,
            details=body.details,
        )
        return {"recorded": entry is not None, "id": entry.id if entry else None}

    @app.get("/tracker-logs")
    async def tracker_logs(
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
        team_name: str | None = Query(default=None, alias="teamName"),
        action: str | None = Query(default=None),
        search: str | None = Query(default=None),
    ) -> list[dict[str, Any]]:
        entries = await services.tracker_log.find(
            limit=limit, offset=offset, team_name=team_name, action=action, search=search,
        )
        return [entry.as_dict() for entry in entries]

    return app


def main() -> None:
    configure_logging()
    settings = RuntimeSettings.from_env()
    logger.info("api worker bootstrap (storage=%s)", settings.storage_backend)

    if settings.storage_backend != "memory":
        from courtside_node.db.init_db import auto_migrate
        auto_migrate()

    app = create_app(build_services(settings))
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
