from courtside_node.db.tables.events import StatEventRow, TrackerLogRow
from courtside_node.db.tables.matches import AdminUserRow, MatchRow, TeamRow, UnlockAuditRow

__all__ = [
    "StatEventRow", "TrackerLogRow",
    "AdminUserRow", "MatchRow", "TeamRow", "UnlockAuditRow",
]
