"""
Access Guard Middleware

Wraps every site route in the per-session access guard:
- Issues/reads the ``portal_guard_sid`` cookie that identifies a browser session
- Treats a GET for an HTML page as a "page has just loaded" signal
- Answers with the block screen (429) or the maintenance notice (503),
  as HTML for browsers and JSON for API clients
- Fails open when the guard itself errors, unless the session already
  carries a block
"""

import re
from typing import Callable, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response
from starlette.types import ASGIApp

from portal.core.config import settings
from portal.core.logging_config import logger, set_session_id
from portal.services.guard import GuardDecision, GuardOutcome, new_session_id
from portal.services.guard.screens import render_blocked, render_maintenance


# Never guarded: probes, docs, assets, and the status endpoint itself
GUARD_EXEMPT_PREFIXES: Tuple[str, ...] = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/static/",
    "/favicon.ico",
    f"/api/{settings.API_VERSION}/guard/status",
)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


def is_exempt(path: str) -> bool:
    return path.startswith(GUARD_EXEMPT_PREFIXES)


def wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "") and not request.url.path.startswith("/api/")


def is_page_load(request: Request) -> bool:
    """A browser navigation: GET for an HTML document outside the API"""
    return request.method == "GET" and wants_html(request)


class AccessGuardMiddleware(BaseHTTPMiddleware):
    """Runs the session's AccessGuard in front of every guarded route"""

    def __init__(self, app: ASGIApp, cookie_name: str = settings.GUARD_SESSION_COOKIE):
        super().__init__(app)
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        registry = getattr(request.app.state, "guard_registry", None)

        if not settings.GUARD_ENABLED or registry is None or is_exempt(path):
            return await call_next(request)

        session_id = request.cookies.get(self.cookie_name)
        issue_cookie = not session_id or not SESSION_ID_PATTERN.match(session_id)
        if issue_cookie:
            session_id = new_session_id()

        request.state.guard_session = session_id
        set_session_id(session_id)

        decision = await self._decide(registry, session_id, request)

        if decision is not None and not decision.allowed:
            response = self._deny(request, decision)
        else:
            response = await call_next(request)

        if issue_cookie:
            response.set_cookie(
                self.cookie_name,
                session_id,
                max_age=settings.GUARD_CACHE_TTL_SECONDS,
                httponly=True,
                samesite="lax",
                secure=settings.ENVIRONMENT == "production",
            )
        return response

    async def _decide(self, registry, session_id: str, request: Request) -> Optional[GuardDecision]:
        guard = None
        try:
            guard = await registry.get_or_create(session_id)
            if is_page_load(request):
                return await guard.on_page_load(request.url.path)
            return await guard.decide(request.url.path)
        except Exception as e:
            logger.log_error_with_context(e, context="access guard", guard_session=session_id)
            if guard is not None and guard.block is not None:
                return GuardDecision(
                    GuardOutcome.BLOCKED,
                    reason=guard.block.reason.value,
                    message=guard.block.message,
                    remaining_seconds=guard.remaining_seconds,
                )
            return None

    def _deny(self, request: Request, decision: GuardDecision) -> Response:
        headers = {"Cache-Control": "no-store"}

        if decision.outcome == GuardOutcome.MAINTENANCE:
            if wants_html(request):
                return HTMLResponse(render_maintenance(), status_code=503, headers=headers)
            return JSONResponse(
                status_code=503,
                content={
                    "success": False,
                    "error": {
                        "code": "MAINTENANCE",
                        "message": "System Upgrade in progress",
                        "details": decision.to_dict(),
                    },
                },
                headers=headers,
            )

        headers["Retry-After"] = str(max(1, decision.remaining_seconds))
        if wants_html(request):
            return HTMLResponse(render_blocked(decision), status_code=429, headers=headers)
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": {
                    "code": "ACCESS_BLOCKED",
                    "message": decision.message or "Access Denied",
                    "details": decision.to_dict(),
                },
            },
            headers=headers,
        )
