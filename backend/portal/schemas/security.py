"""
Schemas for the guard and admin security endpoints.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


# ==================== Guard Schemas ====================

class ActivityReport(BaseModel):
    """Batch of clicks/keystrokes counted by the page script"""
    events: int = Field(1, ge=0, le=10000)


class GuardDecisionResponse(BaseModel):
    """What the guard would render for this session right now"""
    outcome: str
    reason: Optional[str] = None
    message: Optional[str] = None
    remaining_seconds: Optional[int] = None
    countdown: Optional[str] = None


class ActivityResponse(BaseModel):
    accepted: int
    blocked: bool
    decision: GuardDecisionResponse


# ==================== Policy Schemas ====================

class SecurityPolicyResponse(BaseModel):
    """Security policy as shown on the admin security rules screen"""
    active: bool
    max_refreshes: int
    refresh_window_seconds: int
    block_duration_minutes: int
    enable_refresh_check: bool
    enable_rate_limit: bool
    maintenance_mode: bool
    migration_mode: bool


class SecurityPolicyUpdate(BaseModel):
    """Partial update; omitted fields keep their current value"""
    active: Optional[bool] = None
    max_refreshes: Optional[int] = None
    refresh_window_seconds: Optional[int] = None
    block_duration_minutes: Optional[int] = None
    enable_refresh_check: Optional[bool] = None
    enable_rate_limit: Optional[bool] = None
    maintenance_mode: Optional[bool] = None


class MigrationModeUpdate(BaseModel):
    enabled: bool


# ==================== Session Schemas ====================

class SessionBlockRequest(BaseModel):
    """Operator-issued block for one guard session"""
    message: Optional[str] = Field(None, max_length=500)
    duration_minutes: Optional[int] = Field(None, ge=1, le=1440)


class GuardSessionInfo(BaseModel):
    session_id: str
    blocked: bool
    reason: Optional[str] = None
    remaining_seconds: int = 0
    last_seen: float


class GuardSessionList(BaseModel):
    total: int
    sessions: List[GuardSessionInfo]
    policy: Dict[str, Any]
