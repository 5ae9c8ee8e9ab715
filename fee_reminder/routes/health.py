"""
Health check endpoints: liveness, and readiness across the database pool,
Redis and the WhatsApp session registry.
"""

import time

from fastapi import APIRouter

from fee_reminder.db.pool import db_health_check
from fee_reminder.infrastructure.observability.logging import log_health_check
from fee_reminder.jobs.reminder_job import get_reminder_job_status
from fee_reminder.services.push_channel import push_channel
from fee_reminder.services.redis_client import fast_redis
from fee_reminder.services.whatsapp.registry import session_registry

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "fee-reminder"}


@router.get("/readyz")
async def readyz():
    checks = {}
    overall_ok = True

    # 1) Redis
    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": bool(redis_ok), "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 3) WhatsApp sessions are informational; zero sessions is a normal state
    checks["whatsapp"] = {
        "ok": True,
        "sessions": len(session_registry),
        "ready_sessions": len(session_registry.ready_user_ids()),
        "push_connections": push_channel.connection_count(),
    }
    checks["reminder_job"] = get_reminder_job_status()

    for name in ("redis", "database"):
        log_health_check(
            name, checks[name]["ok"], checks[name].get("latency_ms", 0.0), checks[name].get("error")
        )

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
