"""
Guard Session Registry - live AccessGuard instances, one per session

- Creates and loads a guard the first time a session id is seen
- Starts each guard's timers and closes them when the session goes idle
- Forwards policy changes to every live guard
- Closes everything on shutdown
"""

import asyncio
import secrets
import time
from contextlib import suppress
from typing import Callable, Dict, List, Optional

from portal.core.config import settings
from portal.core.exceptions import SessionNotFoundError
from portal.core.logging_config import logger
from portal.services.guard.access_guard import AccessGuard
from portal.services.guard.policy import PolicyProvider, SecurityPolicy
from portal.services.guard.state import GuardCache, NamespacedCache


def new_session_id() -> str:
    """Opaque, unguessable session id for the guard cookie"""
    return secrets.token_urlsafe(24)


class GuardSessionRegistry:
    """Owns every live AccessGuard and their background tasks"""

    def __init__(
        self,
        policy_provider: PolicyProvider,
        cache: GuardCache,
        idle_seconds: int = settings.GUARD_SESSION_IDLE_SECONDS,
        sweep_interval: float = settings.GUARD_SWEEP_INTERVAL_SECONDS,
        key_prefix: str = settings.GUARD_CACHE_PREFIX,
        clock: Callable[[], float] = time.time,
        start_timers: bool = True,
    ):
        self.policy_provider = policy_provider
        self.cache = cache
        self.idle_seconds = idle_seconds
        self.sweep_interval = sweep_interval
        self.key_prefix = key_prefix
        self.clock = clock
        self.start_timers = start_timers

        self._guards: Dict[str, AccessGuard] = {}
        self._creating: Dict[str, asyncio.Lock] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self._remove_listener: Optional[Callable[[], None]] = None

    def __len__(self) -> int:
        return len(self._guards)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._guards

    def session_ids(self) -> List[str]:
        return list(self._guards)

    # ==================== Sessions ====================

    def cache_for(self, session_id: str) -> NamespacedCache:
        return NamespacedCache(self.cache, f"{self.key_prefix}{session_id}:")

    async def get_or_create(self, session_id: str) -> AccessGuard:
        guard = self._guards.get(session_id)
        if guard is not None:
            guard.touch()
            return guard

        lock = self._creating.setdefault(session_id, asyncio.Lock())
        async with lock:
            guard = self._guards.get(session_id)
            if guard is None:
                guard = AccessGuard(
                    session_id,
                    self.policy_provider,
                    self.cache_for(session_id),
                    clock=self.clock,
                )
                await guard.load()
                if self.start_timers:
                    guard.start()
                self._guards[session_id] = guard
                logger.debug(f"[GuardRegistry] Session {session_id} opened ({len(self._guards)} live)")
        self._creating.pop(session_id, None)
        return guard

    def get(self, session_id: str) -> AccessGuard:
        guard = self._guards.get(session_id)
        if guard is None:
            raise SessionNotFoundError(session_id)
        return guard

    async def close_session(self, session_id: str, forget: bool = False) -> bool:
        """
        Stop a session's guard. With ``forget`` the reload log is dropped too;
        a persisted block is always kept so a returning session stays blocked.
        """
        guard = self._guards.pop(session_id, None)
        if guard is None:
            return False
        await guard.aclose()
        if forget and not guard.is_blocked:
            await guard.cache.delete(AccessGuard.REFRESH_LOG_KEY)
        logger.debug(f"[GuardRegistry] Session {session_id} closed")
        return True

    async def sweep_idle(self) -> int:
        """Close guards that have not seen a request for ``idle_seconds``"""
        cutoff = self.clock() - self.idle_seconds
        idle = [sid for sid, guard in self._guards.items() if guard.last_seen < cutoff]
        for session_id in idle:
            await self.close_session(session_id, forget=True)
        purged = await self.cache.purge_expired()
        if purged:
            logger.debug(f"[GuardRegistry] Purged {purged} expired cache entries")
        if idle:
            logger.info(f"[GuardRegistry] Closed {len(idle)} idle sessions ({len(self._guards)} live)")
        return len(idle)

    # ==================== Policy fan-out ====================

    async def _on_policy_change(self, policy: SecurityPolicy) -> None:
        for guard in list(self._guards.values()):
            await guard.on_policy_change(policy)

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        if self._remove_listener is None:
            self._remove_listener = self.policy_provider.add_listener(self._on_policy_change)
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="guard-registry-sweeper")
        logger.info(
            f"[GuardRegistry] Started (idle timeout: {self.idle_seconds}s, sweep: {self.sweep_interval}s)"
        )

    async def stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

        if self._sweeper is not None:
            self._sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        for session_id in list(self._guards):
            await self.close_session(session_id)
        logger.info("[GuardRegistry] Stopped, all sessions closed")

    async def __aenter__(self) -> "GuardSessionRegistry":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep_idle()
            except Exception as e:
                logger.log_error_with_context(e, context="guard registry sweep")
