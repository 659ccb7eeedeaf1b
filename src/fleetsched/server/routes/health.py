"""Health check routes."""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness: the process is serving requests."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness: the database answers and the dispatcher loop is running."""
    dispatcher = request.app.state.dispatcher
    database_ok = await request.app.state.database.ping()
    ready = database_ok and dispatcher.is_running

    last_tick = dispatcher.last_tick
    body: dict[str, Any] = {
        "status": "ready" if ready else "not_ready",
        "database": "ok" if database_ok else "unavailable",
        "dispatcher": {
            "running": dispatcher.is_running,
            "state": dispatcher.state.value,
            "inflight": dispatcher.inflight_count,
            "last_tick": last_tick.isoformat() if last_tick else None,
        },
    }
    return JSONResponse(body, status_code=200 if ready else 503)
