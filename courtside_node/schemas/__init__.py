from courtside_node.schemas.payload_contracts import (
    AdminCredentialsIn,
    CorrectionIn,
    DowntimeOverrideRequest,
    PasswordUpdateRequest,
    ScheduleDowntimeRequest,
    ScoreUpdate,
    StartDowntimeRequest,
    StatEventIn,
    TrackerLogIn,
    UnlockRequest,
)

__all__ = [
    "AdminCredentialsIn",
    "CorrectionIn",
    "DowntimeOverrideRequest",
    "PasswordUpdateRequest",
    "ScheduleDowntimeRequest",
    "ScoreUpdate",
    "StartDowntimeRequest",
    "StatEventIn",
    "TrackerLogIn",
    "UnlockRequest",
]
