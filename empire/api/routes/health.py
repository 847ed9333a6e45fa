"""
Health check endpoints. Also the fallback route table.

- GET /api/status: liveness + startup mode
- GET /api/health: liveness + uptime
- GET /health    : plain-text probe for load balancers

These handlers read only the ServerState attached to the app, so they keep
working when the database, business routes and asset layers are all down.
"""

import time

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from empire.api.schemas import HealthResponse, StatusResponse
from empire.utils import utc_timestamp

router = APIRouter(tags=["health"])

_PROCESS_START = time.time()


def _server_state(request: Request):
    return getattr(request.app.state, "server_state", None)


@router.get("/api/status", response_model=StatusResponse)
async def status(request: Request):
    """Liveness with the startup mode (normal, emergency-startup, fallback)."""
    state = _server_state(request)
    return StatusResponse(
        timestamp=utc_timestamp(),
        mode=state.mode if state is not None else "unknown",
    )


@router.get("/api/health", response_model=HealthResponse)
async def health(request: Request):
    """Liveness plus uptime. Returns 200 whenever the process can answer."""
    state = _server_state(request)
    if state is None:
        return HealthResponse(
            timestamp=utc_timestamp(),
            uptime=time.time() - _PROCESS_START,
            mode="unknown",
        )
    return HealthResponse(
        timestamp=utc_timestamp(),
        uptime=round(state.uptime_seconds, 3),
        mode=state.mode,
        degraded=state.degraded,
    )


@router.get("/health", response_class=PlainTextResponse)
async def plain_health():
    return "OK"
