# attendance_engine/routes/health.py
"""
Liveness and readiness checks.

/readyz reports the engine, its record store and the sync backlog. Failed or
abandoned sync items are reported but never make the service unready;
they wait for an operator, not a restart.
"""

import time
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from attendance_engine.infrastructure.observability.logging import SERVICE_NAME
from attendance_engine.services.engine import AttendanceEngine
from attendance_engine.services.infrastructure.redis_client import FastRedisClient

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Process is up; no dependency checks."""
    return {"status": "ok", "service": SERVICE_NAME}


async def _check_store(redis_client: FastRedisClient | None) -> dict[str, Any]:
    if redis_client is None:
        return {"ok": True, "backend": "memory"}

    started = time.perf_counter()
    ok = await redis_client.ping()
    return {
        "ok": ok,
        "backend": "redis",
        "latency_ms": round((time.perf_counter() - started) * 1000, 1),
    }


async def _check_sync_queue(engine: AttendanceEngine) -> dict[str, Any]:
    try:
        status = await engine.queue_status()
    except Exception as e:
        return {"ok": False, "error": f"{type(e).__name__}: {e}"}
    return {
        "ok": True,
        "total": status.total,
        "failed": status.failed,
        "abandoned": status.abandoned,
    }


@router.get("/readyz")
async def readyz(request: Request):
    engine: AttendanceEngine | None = getattr(request.app.state, "engine", None)
    checks: dict[str, dict[str, Any]] = {"engine": {"ok": engine is not None}}
    checks["store"] = await _check_store(getattr(request.app.state, "redis", None))
    if engine is not None:
        checks["sync_queue"] = await _check_sync_queue(engine)

    ready = all(check["ok"] for check in checks.values())
    body = {"status": "ready" if ready else "not_ready", "checks": checks}
    return JSONResponse(status_code=200 if ready else 503, content=body)
