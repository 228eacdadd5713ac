"""
Rate Limiting for the Campus Portal API
=======================================
Implements rate limiting using slowapi (Redis backend when REDIS_URL is set,
process memory otherwise).

This is coarse per-client request limiting for the API surface. It is
independent from the access guard, which blocks whole browsing sessions.

Special endpoints have their own limits:
- /admin/backup/*: BACKUP_RATE_LIMIT (exports read every collection)
- /guard/activity: GUARD_ACTIVITY_RATE_LIMIT
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse

from portal.core.config import settings
from portal.core.logging_config import logger


def get_client_identifier(request: Request) -> str:
    """
    Get rate limit key for the caller.

    Priority:
    1. Guard session (set by the access guard middleware)
    2. Admin email header (admin tooling)
    3. IP address
    """
    session_id = getattr(request.state, "guard_session", None)
    if session_id:
        return f"session:{session_id}"

    admin_email = request.headers.get("X-Admin-Email")
    if admin_email:
        return f"admin:{admin_email.lower()}"

    return f"ip:{get_remote_address(request)}"


def get_storage_uri() -> str:
    """Storage URL for the limiter counters"""
    return settings.REDIS_URL or "memory://"


# Create limiter instance
limiter = Limiter(
    key_func=get_client_identifier,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute"],
    storage_uri=get_storage_uri(),
    strategy="fixed-window",
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """
    Custom handler for rate limit exceeded errors.

    Returns a JSON response with a Retry-After header.
    """
    retry_after = exc.detail.split(":")[-1].strip() if exc.detail else "60"

    logger.warning(
        f"[RateLimit] Exceeded for {get_client_identifier(request)}: {exc.detail}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please slow down.",
            "detail": str(exc.detail),
            "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
        },
        headers={
            "Retry-After": retry_after if retry_after.isdigit() else "60",
            "X-RateLimit-Limit": str(settings.RATE_LIMIT_PER_MINUTE),
        }
    )


# Pre-configured rate limiters
def backup_rate_limit():
    """Rate limit for backup export/restore"""
    return limiter.limit(settings.BACKUP_RATE_LIMIT, key_func=get_client_identifier)


def guard_activity_rate_limit():
    """Rate limit for interaction reports from the browser"""
    return limiter.limit(settings.GUARD_ACTIVITY_RATE_LIMIT, key_func=get_client_identifier)
