"""
Public guard endpoints used by the page script.

- POST /guard/activity: report a batch of clicks/keystrokes
- GET  /guard/status:   current decision for this browser session
"""
from fastapi import APIRouter, Depends, Request

from portal.api.dependencies import get_guard_registry
from portal.core.config import settings
from portal.core.rate_limiter import guard_activity_rate_limit
from portal.schemas.security import ActivityReport, ActivityResponse, GuardDecisionResponse
from portal.services.guard import GuardSessionRegistry, GuardOutcome
from portal.services.guard.access_guard import is_admin_path

router = APIRouter()


@router.post("/activity", response_model=ActivityResponse)
@guard_activity_rate_limit()
async def report_activity(
    request: Request,
    report: ActivityReport,
    registry: GuardSessionRegistry = Depends(get_guard_registry),
):
    """Count interaction events against the session's interaction-rate rule"""
    session_id = getattr(request.state, "guard_session", None)
    if not session_id:
        # Guard middleware disabled: nothing to count against
        return ActivityResponse(
            accepted=0,
            blocked=False,
            decision=GuardDecisionResponse(outcome=GuardOutcome.CHILDREN.value),
        )

    guard = await registry.get_or_create(session_id)
    tripped = await guard.record_actions(report.events)
    decision = await guard.decide(request.url.path)

    return ActivityResponse(
        accepted=report.events,
        blocked=tripped or decision.outcome == GuardOutcome.BLOCKED,
        decision=GuardDecisionResponse(**decision.to_dict()),
    )


@router.get("/status", response_model=GuardDecisionResponse)
async def guard_status(
    request: Request,
    path: str = "/",
    registry: GuardSessionRegistry = Depends(get_guard_registry),
):
    """What the guard would render for ``path`` in this session (no page load is counted)"""
    session_id = request.cookies.get(settings.GUARD_SESSION_COOKIE)
    guard = registry.get(session_id) if session_id and session_id in registry else None

    if guard is None:
        policy = registry.policy_provider.current()
        if policy.maintenance_mode and not is_admin_path(path):
            return GuardDecisionResponse(outcome=GuardOutcome.MAINTENANCE.value)
        return GuardDecisionResponse(outcome=GuardOutcome.CHILDREN.value)

    decision = await guard.decide(path)
    return GuardDecisionResponse(**decision.to_dict())
