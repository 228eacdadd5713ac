"""
Admin security rules endpoints.

The policy lives in ``settings/security``; saving it here pushes the change to
every live guard through the policy provider.
"""
from fastapi import APIRouter, Depends, Request

from portal.api.dependencies import (
    get_activity_logger,
    get_current_admin,
    get_guard_registry,
    get_policy_provider,
)
from portal.core.logging_config import logger
from portal.schemas.security import (
    GuardSessionInfo,
    GuardSessionList,
    MigrationModeUpdate,
    SecurityPolicyResponse,
    SecurityPolicyUpdate,
    SessionBlockRequest,
)
from portal.services.activity_logger import ActivityLogger, ActivityType
from portal.services.guard import BlockReason, GuardSessionRegistry, PolicyProvider

router = APIRouter()


@router.get("/policy", response_model=SecurityPolicyResponse)
async def get_policy(
    provider: PolicyProvider = Depends(get_policy_provider),
    current_admin: str = Depends(get_current_admin),
):
    """Current security policy"""
    return SecurityPolicyResponse(**provider.current().to_dict())


@router.put("/policy", response_model=SecurityPolicyResponse)
async def update_policy(
    update: SecurityPolicyUpdate,
    request: Request,
    provider: PolicyProvider = Depends(get_policy_provider),
    activity: ActivityLogger = Depends(get_activity_logger),
    current_admin: str = Depends(get_current_admin),
):
    """Save the security rules (thresholds are range-checked before writing)"""
    changes = update.model_dump(exclude_none=True)
    previous = provider.current()
    policy = await provider.save(previous.updated(**changes))

    logger.info(f"[Security] Policy updated by {current_admin}: {changes}")
    await activity.log(
        ActivityType.SECURITY_TOGGLE,
        target="settings/security",
        admin_email=current_admin,
        details="Updated security rules",
        metadata={"changes": changes, "active": policy.active, "maintenanceMode": policy.maintenance_mode},
        user_agent=request.headers.get("user-agent", ""),
    )
    return SecurityPolicyResponse(**policy.to_dict())


@router.patch("/migration-mode", response_model=SecurityPolicyResponse)
async def set_migration_mode(
    update: MigrationModeUpdate,
    request: Request,
    provider: PolicyProvider = Depends(get_policy_provider),
    activity: ActivityLogger = Depends(get_activity_logger),
    current_admin: str = Depends(get_current_admin),
):
    """Toggle the migration flag stored next to the policy"""
    policy = await provider.set_migration_mode(update.enabled)

    await activity.log(
        ActivityType.SECURITY_TOGGLE,
        target="settings/security",
        admin_email=current_admin,
        details=f"Migration mode {'enabled' if update.enabled else 'disabled'}",
        metadata={"migrationMode": update.enabled},
        user_agent=request.headers.get("user-agent", ""),
    )
    return SecurityPolicyResponse(**policy.to_dict())


# ==================== Guard sessions ====================

@router.get("/sessions", response_model=GuardSessionList)
async def list_sessions(
    registry: GuardSessionRegistry = Depends(get_guard_registry),
    current_admin: str = Depends(get_current_admin),
):
    """Live guard sessions and their block state"""
    sessions = []
    for session_id in registry.session_ids():
        guard = registry.get(session_id)
        sessions.append(GuardSessionInfo(
            session_id=session_id,
            blocked=guard.is_blocked,
            reason=guard.block.reason.value if guard.block else None,
            remaining_seconds=guard.remaining_seconds,
            last_seen=guard.last_seen,
        ))

    return GuardSessionList(
        total=len(sessions),
        sessions=sessions,
        policy=registry.policy_provider.current().to_dict(),
    )


@router.post("/sessions/{session_id}/block", response_model=GuardSessionInfo)
async def block_session(
    session_id: str,
    body: SessionBlockRequest,
    request: Request,
    registry: GuardSessionRegistry = Depends(get_guard_registry),
    activity: ActivityLogger = Depends(get_activity_logger),
    current_admin: str = Depends(get_current_admin),
):
    """Block a live session for the policy's block duration (or the given one)"""
    guard = registry.get(session_id)
    duration = body.duration_minutes * 60 if body.duration_minutes else None
    block = await guard.trigger_block(BlockReason.EXTERNAL, message=body.message, duration_seconds=duration)

    await activity.log(
        ActivityType.SECURITY_TOGGLE,
        target=f"guard_session/{session_id}",
        admin_email=current_admin,
        details="Blocked guard session",
        metadata={"expiresAt": block.expires_at, "message": block.message},
        user_agent=request.headers.get("user-agent", ""),
    )
    return GuardSessionInfo(
        session_id=session_id,
        blocked=True,
        reason=block.reason.value,
        remaining_seconds=guard.remaining_seconds,
        last_seen=guard.last_seen,
    )


@router.delete("/sessions/{session_id}/block", response_model=GuardSessionInfo)
async def unblock_session(
    session_id: str,
    request: Request,
    registry: GuardSessionRegistry = Depends(get_guard_registry),
    activity: ActivityLogger = Depends(get_activity_logger),
    current_admin: str = Depends(get_current_admin),
):
    """Lift a session's block"""
    guard = registry.get(session_id)
    cleared = await guard.clear_block(cause=f"admin:{current_admin}")

    if cleared:
        await activity.log(
            ActivityType.SECURITY_TOGGLE,
            target=f"guard_session/{session_id}",
            admin_email=current_admin,
            details="Unblocked guard session",
            user_agent=request.headers.get("user-agent", ""),
        )
    return GuardSessionInfo(
        session_id=session_id,
        blocked=False,
        remaining_seconds=0,
        last_seen=guard.last_seen,
    )
