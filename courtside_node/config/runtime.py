from __future__ import annotations

from dataclasses import dataclass
import os

_DEFAULT_EXEMPT_PREFIXES = "/healthz,/downtime,/maintenance,/docs,/redoc,/openapi.json"


@dataclass(frozen=True)
class RuntimeSettings:
    storage_backend: str
    downtime_file_path: str
    downtime_source_url: str
    downtime_cache_ttl_seconds: float
    downtime_refresh_timeout_seconds: float
    negative_stat_policy: str
    event_page_size: int
    stat_events_channel: str
    api_host: str
    api_port: int
    admin_users: str
    maintenance_exempt_prefixes: tuple[str, ...]

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            storage_backend=os.getenv("STORAGE_BACKEND", "postgres").strip().lower(),
            downtime_file_path=os.getenv("DOWNTIME_FILE_PATH", "data/downtime.json"),
            downtime_source_url=os.getenv("DOWNTIME_SOURCE_URL", "").strip(),
            downtime_cache_ttl_seconds=float(os.getenv("DOWNTIME_CACHE_TTL_SECONDS", "30")),
            downtime_refresh_timeout_seconds=float(os.getenv("DOWNTIME_REFRESH_TIMEOUT_SECONDS", "5")),
            negative_stat_policy=os.getenv("NEGATIVE_STAT_POLICY", "allow").strip().lower(),
            event_page_size=int(os.getenv("EVENT_PAGE_SIZE", "500")),
            stat_events_channel=os.getenv("STAT_EVENTS_CHANNEL", "stat_events"),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "8000")),
            admin_users=os.getenv("ADMIN_USERS", ""),
            maintenance_exempt_prefixes=_parse_prefixes(
                os.getenv("MAINTENANCE_EXEMPT_PREFIXES", "") or _DEFAULT_EXEMPT_PREFIXES
            ),
        )


def _parse_prefixes(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())
