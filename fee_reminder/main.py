"""
Fee reminder API: dashboard auth, student uploads, WhatsApp pairing over the
push channel, reminder campaigns and the daily reminder job.
"""

import asyncio
import contextlib
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from fee_reminder.config import settings
from fee_reminder.db.pool import db_pool
from fee_reminder.infrastructure.observability.logging import get_logger, setup_logging
from fee_reminder.jobs.reminder_job import start_reminder_scheduler
from fee_reminder.middleware.request_context import RequestContextMiddleware
from fee_reminder.routes import auth, health, push, reminder_config, students, whatsapp
from fee_reminder.services.redis_client import fast_redis
from fee_reminder.services.whatsapp.registry import session_registry

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    scheduler_task = None
    if settings.REMINDER_SCHEDULER_ENABLED:
        scheduler_task = asyncio.create_task(start_reminder_scheduler(), name="reminder-scheduler")

    yield

    logger.info("Application shutting down")
    shutdown_errors = []

    if scheduler_task is not None:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task

    # Browsers first: they are the most expensive thing to leak
    try:
        closed = await session_registry.disconnect_all()
        logger.info("WhatsApp sessions closed", count=closed)
    except Exception as e:
        logger.error("Error closing WhatsApp sessions", error=str(e))
        shutdown_errors.append(f"WhatsApp: {e}")

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Fee Reminder",
    description="Student fee reminders delivered over WhatsApp",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(students.router)
app.include_router(reminder_config.router)
app.include_router(whatsapp.router)
app.include_router(push.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
