"""
Unit Tests for the guard session registry
Tests for: per-session guards, idle eviction, policy fan-out, shutdown
"""
import pytest

from portal.core.exceptions import SessionNotFoundError
from portal.services.guard import (
    GuardOutcome,
    GuardSessionRegistry,
    MemoryGuardCache,
    SecurityPolicy,
    StaticPolicyProvider,
    new_session_id,
)


@pytest.fixture
async def static_registry(clock):
    provider = StaticPolicyProvider(SecurityPolicy(active=True))
    registry = GuardSessionRegistry(
        provider, MemoryGuardCache(clock=clock), idle_seconds=600, clock=clock, start_timers=False
    )
    await registry.start()
    yield registry
    await registry.stop()


class TestSessionIds:
    """Test cookie session ids"""

    def test_ids_are_unique_and_url_safe(self):
        """Test generated ids are opaque cookie values"""
        ids = {new_session_id() for _ in range(100)}

        assert len(ids) == 100
        assert all(len(i) >= 16 and all(c.isalnum() or c in "-_" for c in i) for i in ids)


class TestGuardSessionRegistry:
    """Test the registry of live guards"""

    @pytest.mark.asyncio
    async def test_get_or_create_reuses_guard(self, static_registry):
        """Test one guard per session id"""
        first = await static_registry.get_or_create("a" * 20)
        again = await static_registry.get_or_create("a" * 20)

        assert first is again
        assert len(static_registry) == 1
        assert "a" * 20 in static_registry

    @pytest.mark.asyncio
    async def test_sessions_have_separate_state(self, static_registry):
        """Test a block in one session does not leak into another"""
        one = await static_registry.get_or_create("one" * 6)
        two = await static_registry.get_or_create("two" * 6)

        await one.trigger_block(duration_seconds=60)

        assert (await one.decide("/")).outcome == GuardOutcome.BLOCKED
        assert (await two.decide("/")).outcome == GuardOutcome.CHILDREN

    @pytest.mark.asyncio
    async def test_get_unknown_session(self, static_registry):
        """Test looking up a session that is not live"""
        with pytest.raises(SessionNotFoundError):
            static_registry.get("missing-session-id")

    @pytest.mark.asyncio
    async def test_recreated_guard_restores_block(self, static_registry):
        """Test closing and reopening a session keeps its persisted block"""
        guard = await static_registry.get_or_create("s" * 20)
        await guard.trigger_block(duration_seconds=120)

        await static_registry.close_session("s" * 20)
        reopened = await static_registry.get_or_create("s" * 20)

        assert reopened is not guard
        assert reopened.is_blocked

    @pytest.mark.asyncio
    async def test_sweep_closes_idle_sessions(self, static_registry, clock):
        """Test sessions without requests for idle_seconds are closed"""
        await static_registry.get_or_create("idle" * 5)
        clock.advance(300)
        await static_registry.get_or_create("busy" * 5)

        clock.advance(301)
        closed = await static_registry.sweep_idle()

        assert closed == 1
        assert static_registry.session_ids() == ["busy" * 5]

    @pytest.mark.asyncio
    async def test_touch_keeps_session_alive(self, static_registry, clock):
        """Test a request resets the idle timer"""
        await static_registry.get_or_create("x" * 20)
        clock.advance(500)
        await static_registry.get_or_create("x" * 20)
        clock.advance(500)

        assert await static_registry.sweep_idle() == 0

    @pytest.mark.asyncio
    async def test_policy_deactivation_fans_out(self, static_registry):
        """Test turning the policy off unblocks every live session"""
        guards = [await static_registry.get_or_create(f"session-{i:012d}") for i in range(3)]
        for guard in guards:
            await guard.trigger_block(duration_seconds=600)

        await static_registry.policy_provider.set(SecurityPolicy(active=False))

        assert not any(guard.is_blocked for guard in guards)

    @pytest.mark.asyncio
    async def test_stop_closes_all_sessions(self, clock):
        """Test shutdown cancels every guard's timers"""
        registry = GuardSessionRegistry(
            StaticPolicyProvider(SecurityPolicy(active=True)), MemoryGuardCache(clock=clock), clock=clock
        )
        async with registry:
            guard = await registry.get_or_create("t" * 20)
            assert guard.running

        assert len(registry) == 0
        assert guard.running is False

    @pytest.mark.asyncio
    async def test_store_policy_change_reaches_guards(self, registry, set_policy):
        """Test a settings/security write propagates through the provider"""
        await set_policy(active=True)
        guard = await registry.get_or_create("w" * 20)
        await guard.trigger_block(duration_seconds=600)

        await set_policy(active=False)

        assert guard.is_blocked is False


class TestSweepReleasesState:
    """Idle sessions must not leave guard state behind"""

    @pytest.mark.asyncio
    async def test_sweep_forgets_reload_logs(self, static_registry, clock):
        """Test cookieless visitors do not pile up cache entries"""
        for _ in range(50):
            guard = await static_registry.get_or_create(new_session_id())
            await guard.on_page_load("/")
        assert len(static_registry.cache) == 50

        clock.advance(601)
        closed = await static_registry.sweep_idle()

        assert closed == 50
        assert len(static_registry) == 0
        assert len(static_registry.cache) == 0

    @pytest.mark.asyncio
    async def test_sweep_keeps_persisted_block(self, static_registry, clock):
        """Test a blocked session is still blocked when it comes back"""
        guard = await static_registry.get_or_create("b" * 20)
        await guard.trigger_block(duration_seconds=3600)

        clock.advance(601)
        await static_registry.sweep_idle()
        returning = await static_registry.get_or_create("b" * 20)

        assert returning is not guard
        assert (await returning.decide("/")).outcome == GuardOutcome.BLOCKED

    @pytest.mark.asyncio
    async def test_sweep_purges_expired_entries(self, clock):
        """Test TTL-expired entries are dropped even if never read again"""
        cache = MemoryGuardCache(ttl_seconds=60, clock=clock)
        registry = GuardSessionRegistry(
            StaticPolicyProvider(SecurityPolicy(active=True)), cache, clock=clock, start_timers=False
        )
        await cache.set("guard:orphan:security_refresh_log", [clock()])

        clock.advance(61)
        await registry.sweep_idle()

        assert len(cache) == 0
