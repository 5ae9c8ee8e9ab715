"""
RequestContext Middleware - Adds request tracking to all requests.

Adds to request.state:
- request_id: UUID for request tracing (echoed as X-Request-ID)
- ip_address: Client IP address, used by login throttling
- user_agent: Client user agent string
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from fee_reminder.config import settings
from fee_reminder.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        logger.debug(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            ip_address=request.state.ip_address,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def client_ip(request: Request) -> str | None:
    """
    Client address, honoring X-Forwarded-For only from trusted proxies.

    Keeps callers from spoofing their IP to dodge login throttling.
    """
    direct_ip = request.client.host if request.client else None
    if not settings.TRUST_X_FORWARDED_FOR or direct_ip not in settings.TRUSTED_PROXY_IPS:
        return direct_ip

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        # "client, proxy1, proxy2": first entry is the original client
        return forwarded_for.split(",")[0].strip()
    return direct_ip
