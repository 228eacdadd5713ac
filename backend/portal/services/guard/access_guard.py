"""
Access Guard - per-session lockout for abusive browsing

One AccessGuard exists per browser session. It answers a single question for
every request: render the page, show the block screen, or show the
maintenance notice.

Rules (evaluated only while the policy is active):
- Reload rate: more than ``max_refreshes`` page loads inside
  ``refresh_window_seconds`` blocks the session for ``block_duration_minutes``.
- Interaction rate: more than 50 clicks/keystrokes between two resets of the
  action counter blocks the session. The counter resets every 30 seconds.
  Both numbers are fixed and are not part of the policy.

While blocked a countdown ticks once per second; at zero the block is lifted.
Turning the policy off lifts every block immediately. Maintenance mode is
checked before anything else and applies to every non-admin route.

Everything is keyed by the session cookie. Dropping the cookie resets the
session, so this is an advisory gate and not an authoritative one.
"""

import asyncio
import inspect
import time
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from portal.core.config import settings
from portal.core.logging_config import logger
from portal.services.guard.policy import PolicyProvider, SecurityPolicy
from portal.services.guard.state import (
    ActivityWindow,
    BlockReason,
    BlockState,
    GuardCache,
    format_remaining,
)

# Fixed thresholds for the interaction-rate rule
ACTION_LIMIT = 50
ACTION_RESET_INTERVAL_SECONDS = 30
COUNTDOWN_INTERVAL_SECONDS = 1


class GuardOutcome(str, Enum):
    CHILDREN = "children"
    BLOCKED = "blocked"
    MAINTENANCE = "maintenance"


@dataclass
class GuardDecision:
    outcome: GuardOutcome
    reason: Optional[str] = None
    message: Optional[str] = None
    remaining_seconds: int = 0

    @property
    def allowed(self) -> bool:
        return self.outcome == GuardOutcome.CHILDREN

    @property
    def countdown(self) -> str:
        return format_remaining(self.remaining_seconds)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"outcome": self.outcome.value}
        if self.outcome == GuardOutcome.BLOCKED:
            data.update({
                "reason": self.reason,
                "message": self.message,
                "remaining_seconds": self.remaining_seconds,
                "countdown": self.countdown,
            })
        return data


def default_admin_prefixes() -> Tuple[str, ...]:
    prefix = settings.ADMIN_PATH_PREFIX
    return (prefix, f"/api/{settings.API_VERSION}{prefix}")


def is_admin_path(path: str, prefixes: Optional[Iterable[str]] = None) -> bool:
    """Segment-wise prefix match, so "/administration" is not an admin route"""
    for prefix in (default_admin_prefixes() if prefixes is None else prefixes):
        if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
            return True
    return False


class AccessGuard:
    """Block/unblock state machine for one session"""

    BLOCK_KEY = "security_block"
    REFRESH_LOG_KEY = "security_refresh_log"

    action_reset_interval: float = ACTION_RESET_INTERVAL_SECONDS
    countdown_interval: float = COUNTDOWN_INTERVAL_SECONDS

    def __init__(
        self,
        session_id: str,
        policy_provider: PolicyProvider,
        cache: GuardCache,
        clock: Callable[[], float] = time.time,
        admin_prefixes: Optional[Iterable[str]] = None,
    ):
        self.session_id = session_id
        self.policy_provider = policy_provider
        self.cache = cache
        self.clock = clock
        self.admin_prefixes = tuple(admin_prefixes) if admin_prefixes is not None else default_admin_prefixes()

        self.window = ActivityWindow()
        self.block: Optional[BlockState] = None
        self.remaining_seconds = 0
        self.last_seen = clock()

        self._lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []

    # ==================== Properties ====================

    @property
    def policy(self) -> SecurityPolicy:
        return self.policy_provider.current()

    @property
    def is_blocked(self) -> bool:
        return self.block is not None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def touch(self) -> None:
        self.last_seen = self.clock()

    def is_admin_path(self, path: str) -> bool:
        return is_admin_path(path, self.admin_prefixes)

    # ==================== Lifecycle signals ====================

    async def load(self) -> None:
        """Restore persisted block and reload log (a fresh page load of this session)"""
        async with self._lock:
            await self._restore(self.clock())

    async def on_page_load(self, path: str = "/") -> GuardDecision:
        """
        Handle a "page has just loaded" signal for ``path``.

        A persisted, unexpired block is honoured as-is and no detection runs.
        Pages replaced by the maintenance notice are not counted either.
        Otherwise the reload is recorded and the reload-rate rule evaluated.
        """
        policy = self.policy
        if policy.maintenance_mode and not self.is_admin_path(path):
            return GuardDecision(GuardOutcome.MAINTENANCE)

        async with self._lock:
            now = self.clock()
            self.last_seen = now
            await self._restore(now)

            if not policy.active:
                if self.block is not None:
                    await self._clear_block("policy-inactive")
                return GuardDecision(GuardOutcome.CHILDREN)

            if self.block is None and policy.enable_refresh_check:
                count = self.window.record_reload(now, policy.refresh_window_seconds)
                await self.cache.set(self.REFRESH_LOG_KEY, self.window.reload_timestamps)
                if count > policy.max_refreshes:
                    await self._trigger_block(BlockReason.RELOAD_RATE, now=now)

        return await self.decide(path)

    async def record_actions(self, count: int = 1) -> bool:
        """Count clicks/keystrokes; returns True when this call tripped a block"""
        async with self._lock:
            self.last_seen = self.clock()
            policy = self.policy
            if not policy.active or not policy.enable_rate_limit:
                return False
            if self.block is not None:
                # Never re-trip while already blocked
                return False

            self.window.action_count += max(0, int(count))
            if self.window.action_count > ACTION_LIMIT:
                await self._trigger_block(BlockReason.INTERACTION_RATE)
                return True
            return False

    async def trigger_block(
        self,
        reason: BlockReason = BlockReason.EXTERNAL,
        message: Optional[str] = None,
        duration_seconds: Optional[int] = None,
    ) -> BlockState:
        """Block this session from outside the detection rules"""
        async with self._lock:
            return await self._trigger_block(reason, message=message, duration_seconds=duration_seconds)

    async def clear_block(self, cause: str = "manual") -> bool:
        async with self._lock:
            if self.block is None:
                return False
            await self._clear_block(cause)
            return True

    async def on_policy_change(self, policy: SecurityPolicy) -> None:
        """Policy push from the provider; deactivation lifts any block"""
        if not policy.active:
            async with self._lock:
                if self.block is not None:
                    await self._clear_block("policy-inactive")

    # ==================== Decision ====================

    async def decide(self, path: str = "/") -> GuardDecision:
        """What to render for ``path`` right now"""
        policy = self.policy
        if policy.maintenance_mode and not self.is_admin_path(path):
            return GuardDecision(GuardOutcome.MAINTENANCE)

        async with self._lock:
            if self.block is None:
                return GuardDecision(GuardOutcome.CHILDREN)

            if not policy.active:
                await self._clear_block("policy-inactive")
                return GuardDecision(GuardOutcome.CHILDREN)

            if self.block.expired(self.clock()):
                await self._clear_block("expired")
                return GuardDecision(GuardOutcome.CHILDREN)

            return GuardDecision(
                GuardOutcome.BLOCKED,
                reason=self.block.reason.value,
                message=self.block.message,
                remaining_seconds=self.remaining_seconds,
            )

    # ==================== Timers ====================

    def reset_actions(self) -> None:
        self.window.action_count = 0

    async def countdown_tick(self) -> None:
        async with self._lock:
            if self.block is None:
                return
            if not self.policy.active:
                await self._clear_block("policy-inactive")
                return
            self.remaining_seconds = max(0, self.remaining_seconds - 1)
            if self.remaining_seconds <= 0 or self.block.expired(self.clock()):
                await self._clear_block("expired")

    def start(self) -> None:
        """Start the action-reset and countdown tasks (idempotent)"""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._every(self.action_reset_interval, self.reset_actions),
                name=f"guard-reset-{self.session_id}",
            ),
            asyncio.create_task(
                self._every(self.countdown_interval, self.countdown_tick),
                name=f"guard-countdown-{self.session_id}",
            ),
        ]

    async def aclose(self) -> None:
        """Cancel both timers and wait for them to finish"""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    async def __aenter__(self) -> "AccessGuard":
        await self.load()
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _every(self, interval: float, fn: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.log_error_with_context(e, context=f"guard timer {self.session_id}")

    # ==================== Internals (lock held) ====================

    async def _restore(self, now: float) -> None:
        stored = await self.cache.get(self.BLOCK_KEY)
        if stored:
            block = BlockState.from_dict(stored)
            if block is not None and not block.expired(now):
                if self.block is None or self.block.expires_at != block.expires_at:
                    self.block = block
                    self.remaining_seconds = block.remaining_seconds(now)
            else:
                await self.cache.delete(self.BLOCK_KEY)
                if self.block is not None:
                    self._drop_block()
        elif self.block is not None:
            # Removed from the cache by another worker or an operator
            self._drop_block()

        timestamps = await self.cache.get(self.REFRESH_LOG_KEY)
        if isinstance(timestamps, list):
            self.window.reload_timestamps = [float(t) for t in timestamps if isinstance(t, (int, float))]

    async def _trigger_block(
        self,
        reason: BlockReason,
        message: Optional[str] = None,
        duration_seconds: Optional[int] = None,
        now: Optional[float] = None,
    ) -> BlockState:
        now = self.clock() if now is None else now
        duration = duration_seconds or self.policy.block_duration_seconds
        block = BlockState(reason=reason, expires_at=now + duration, message=message or "")
        self.block = block
        self.remaining_seconds = int(duration)
        await self.cache.set(self.BLOCK_KEY, block.to_dict())
        logger.log_guard_event(
            "blocked", self.session_id, reason=block.reason.value,
            expires_at=block.expires_at, duration_seconds=duration,
        )
        return block

    async def _clear_block(self, cause: str) -> None:
        reason = self.block.reason.value if self.block else None
        self._drop_block()
        await self.cache.delete(self.BLOCK_KEY)
        logger.log_guard_event("unblocked", self.session_id, reason=reason, cause=cause)

    def _drop_block(self) -> None:
        self.block = None
        self.remaining_seconds = 0
