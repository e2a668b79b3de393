from .pg_notify import notify, listen
from .repositories import (
    DBAdminRepository, DBMatchRepository, DBStatEventRepository, DBTeamRepository,
    DBTrackerLogRepository, DBUnlockAuditRepository,
)
from .session import engine, create_session, database_url
