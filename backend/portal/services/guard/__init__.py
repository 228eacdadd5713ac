from portal.services.guard.access_guard import (
    AccessGuard,
    GuardDecision,
    GuardOutcome,
    ACTION_LIMIT,
    ACTION_RESET_INTERVAL_SECONDS,
)
from portal.services.guard.policy import (
    SecurityPolicy,
    PolicyProvider,
    StaticPolicyProvider,
    StorePolicyProvider,
    DEFAULT_POLICY,
)
from portal.services.guard.registry import GuardSessionRegistry, new_session_id
from portal.services.guard.state import (
    ActivityWindow,
    BlockReason,
    BlockState,
    GuardCache,
    MemoryGuardCache,
    RedisGuardCache,
)

__all__ = [
    "AccessGuard",
    "GuardDecision",
    "GuardOutcome",
    "ACTION_LIMIT",
    "ACTION_RESET_INTERVAL_SECONDS",
    "SecurityPolicy",
    "PolicyProvider",
    "StaticPolicyProvider",
    "StorePolicyProvider",
    "DEFAULT_POLICY",
    "GuardSessionRegistry",
    "new_session_id",
    "ActivityWindow",
    "BlockReason",
    "BlockState",
    "GuardCache",
    "MemoryGuardCache",
    "RedisGuardCache",
]
