"""
HTTP API authentication middleware.

Identity is established by the trusted gateway in front of this service,
which forwards ``X-User-Id`` and ``X-User-Role``. Internal routes used by
other platform services require the shared ``X-Service-Token``.
"""
import hmac
import logging
from typing import Callable

from aiohttp import web

from app.config import settings
from core.exceptions import AdminOnlyError, AuthenticationRequiredError

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"admin", "super_admin"})

PUBLIC_PREFIXES = (
    "/health",
    "/api/referrals/track/",
    "/api/referrals/signup",
)
INTERNAL_PREFIX = "/api/internal/"
ADMIN_PREFIX = "/api/referrals/admin/"
USER_PREFIX = "/api/referrals/"


def verify_service_token(received: str | None) -> bool:
    """Constant-time comparison against the configured service token."""
    if not settings.service_token or not received:
        return False
    return hmac.compare_digest(received.encode(), settings.service_token.encode())


@web.middleware
async def auth_middleware(request: web.Request, handler: Callable):
    """Attach ``user_id``/``user_role`` to the request and enforce route access."""
    path = request.path

    if path.startswith(PUBLIC_PREFIXES):
        return await handler(request)

    if path.startswith(INTERNAL_PREFIX):
        if not verify_service_token(request.headers.get("X-Service-Token")):
            logger.warning(f"Internal API access with invalid service token: {path}")
            raise AuthenticationRequiredError("Valid service token required")
        return await handler(request)

    if not path.startswith(USER_PREFIX):
        return await handler(request)

    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        raise AuthenticationRequiredError()
    role = (request.headers.get("X-User-Role") or "user").strip().lower()

    if path.startswith(ADMIN_PREFIX) and role not in ADMIN_ROLES:
        logger.warning(f"Non-admin access attempt to {path} by user {user_id}")
        raise AdminOnlyError()

    request["user_id"] = user_id
    request["user_role"] = role
    return await handler(request)
