"""
Failed-login throttling backed by Redis counters.

Counts failures per (username, client IP) in a fixed window. Fails open:
when Redis is unreachable the counters read as zero and logins proceed.
"""

from fee_reminder.config import settings
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.services.redis_client import fast_redis

logger = get_logger(__name__)


def _key(username: str, ip_address: str | None) -> str:
    return f"login_failures:{username.strip().lower()}:{ip_address or 'unknown'}"


async def is_locked_out(username: str, ip_address: str | None) -> bool:
    if not settings.RATE_LIMIT_ENABLED:
        return False

    value = await fast_redis.get(_key(username, ip_address))
    try:
        failures = int(value) if value else 0
    except ValueError:
        failures = 0
    return failures >= settings.LOGIN_MAX_ATTEMPTS


async def record_failure(username: str, ip_address: str | None) -> int:
    if not settings.RATE_LIMIT_ENABLED:
        return 0

    failures = await fast_redis.incr_with_ttl(
        _key(username, ip_address), ttl_s=settings.LOGIN_LOCKOUT_SECONDS
    )
    if failures and failures >= settings.LOGIN_MAX_ATTEMPTS:
        logger.warning("Login locked out", ip_address=ip_address, failures=failures)
    return failures or 0


async def reset(username: str, ip_address: str | None) -> None:
    if settings.RATE_LIMIT_ENABLED:
        await fast_redis.delete(_key(username, ip_address))
