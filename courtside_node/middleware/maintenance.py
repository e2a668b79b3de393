"""Maintenance gate middleware for the API worker.

Every HTTP request consults the MaintenanceGate. During a downtime window
non-exempt requests get `503` with the maintenance message; exempt prefixes
(health, the downtime endpoints themselves, docs) always pass so admins can
end the window.

Configuration via environment variables:

- `MAINTENANCE_EXEMPT_PREFIXES`: comma-separated path prefixes that are never gated.
  Default: `/healthz,/downtime,/maintenance,/docs,/redoc,/openapi.json`
"""
from __future__ import annotations

import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from courtside_node.services.maintenance import MaintenanceGate

logger = logging.getLogger(__name__)


class MaintenanceMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, gate: MaintenanceGate, exempt_prefixes: tuple[str, ...] = ()):
        super().__init__(app)
        self.gate = gate
        self.exempt_prefixes = exempt_prefixes

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if self._is_exempt(path):
            return await call_next(request)

        decision = await self.gate.check()
        if decision.blocked:
            logger.debug("maintenance window active; rejecting %s %s", request.method, path)
            return JSONResponse(
                status_code=503,
                content={"detail": decision.message, "maintenance": True},
                headers={"Retry-After": "30"},
            )
        return await call_next(request)

    def _is_exempt(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self.exempt_prefixes)


def configure_maintenance(app, gate: MaintenanceGate, exempt_prefixes: tuple[str, ...]) -> None:
    app.add_middleware(MaintenanceMiddleware, gate=gate, exempt_prefixes=exempt_prefixes)
    logger.info("maintenance gate enabled (%d exempt prefixes)", len(exempt_prefixes))
