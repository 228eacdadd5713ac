"""
Security policy for the access guard.

The policy is the ``settings/security`` document, edited from the admin
security rules screen:

    {"isActive": true,
     "migrationMode": false,
     "config": {"maxRefreshes": 5, "refreshWindow": 15, "blockDuration": 30,
                "enableRefreshCheck": true, "enableRateLimit": true,
                "maintenanceMode": false}}

``PolicyProvider`` is what the guard depends on; ``StorePolicyProvider`` keeps
it in sync with the document store and falls back to the last cached value,
then to defaults, whenever the store cannot be read.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from portal.core.exceptions import InvalidPolicyError, PolicyUnavailableError
from portal.core.logging_config import logger

POLICY_COLLECTION = "settings"
POLICY_DOCUMENT_ID = "security"

# Bounds enforced by the admin form
MAX_REFRESHES_RANGE = (3, 50)
REFRESH_WINDOW_RANGE = (5, 60)
BLOCK_DURATION_RANGE = (1, 1440)

DEFAULT_BLOCK_DURATION_MINUTES = 30


@dataclass(frozen=True)
class SecurityPolicy:
    active: bool = False
    max_refreshes: int = 5
    refresh_window_seconds: int = 15
    block_duration_minutes: int = DEFAULT_BLOCK_DURATION_MINUTES
    enable_refresh_check: bool = True
    enable_rate_limit: bool = True
    maintenance_mode: bool = False
    migration_mode: bool = False

    @property
    def block_duration_seconds(self) -> int:
        return (self.block_duration_minutes or DEFAULT_BLOCK_DURATION_MINUTES) * 60

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]],
                      base: Optional["SecurityPolicy"] = None) -> "SecurityPolicy":
        """Build a policy from the stored document, keeping ``base`` for missing keys"""
        base = base or cls()
        if not data:
            return base
        config = data.get("config") or {}

        def _int(key: str, current: int) -> int:
            value = config.get(key)
            try:
                return int(value) if value is not None else current
            except (TypeError, ValueError):
                return current

        return cls(
            active=bool(data.get("isActive", base.active)),
            max_refreshes=_int("maxRefreshes", base.max_refreshes),
            refresh_window_seconds=_int("refreshWindow", base.refresh_window_seconds),
            block_duration_minutes=_int("blockDuration", base.block_duration_minutes) or DEFAULT_BLOCK_DURATION_MINUTES,
            enable_refresh_check=bool(config.get("enableRefreshCheck", base.enable_refresh_check)),
            enable_rate_limit=bool(config.get("enableRateLimit", base.enable_rate_limit)),
            maintenance_mode=bool(config.get("maintenanceMode", base.maintenance_mode)),
            migration_mode=bool(data.get("migrationMode", base.migration_mode)),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "isActive": self.active,
            "migrationMode": self.migration_mode,
            "config": {
                "maxRefreshes": self.max_refreshes,
                "refreshWindow": self.refresh_window_seconds,
                "blockDuration": self.block_duration_minutes,
                "enableRefreshCheck": self.enable_refresh_check,
                "enableRateLimit": self.enable_rate_limit,
                "maintenanceMode": self.maintenance_mode,
            },
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def updated(self, **changes: Any) -> "SecurityPolicy":
        return replace(self, **changes)

    def validate(self) -> "SecurityPolicy":
        """Raise InvalidPolicyError when a threshold is outside the allowed range"""
        checks = (
            ("max_refreshes", self.max_refreshes, MAX_REFRESHES_RANGE),
            ("refresh_window_seconds", self.refresh_window_seconds, REFRESH_WINDOW_RANGE),
            ("block_duration_minutes", self.block_duration_minutes, BLOCK_DURATION_RANGE),
        )
        for name, value, (low, high) in checks:
            if not low <= value <= high:
                raise InvalidPolicyError(f"{name} must be between {low} and {high}", field=name)
        return self


DEFAULT_POLICY = SecurityPolicy()

PolicyListener = Callable[[SecurityPolicy], Union[None, Awaitable[None]]]


class PolicyProvider(ABC):
    """Source of the current security policy, pushed to listeners on change"""

    def __init__(self):
        self._listeners: List[PolicyListener] = []

    @abstractmethod
    def current(self) -> SecurityPolicy:
        ...

    def add_listener(self, listener: PolicyListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def _publish(self, policy: SecurityPolicy) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(policy)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[Policy] Listener failed: {e}", exc_info=True)


class StaticPolicyProvider(PolicyProvider):
    """Fixed policy, replaced explicitly (tests, single-node setups)"""

    def __init__(self, policy: SecurityPolicy = DEFAULT_POLICY):
        super().__init__()
        self._policy = policy

    def current(self) -> SecurityPolicy:
        return self._policy

    async def set(self, policy: SecurityPolicy) -> None:
        self._policy = policy
        await self._publish(policy)

    async def save(self, policy: SecurityPolicy) -> SecurityPolicy:
        await self.set(policy.validate())
        return policy

    async def set_migration_mode(self, enabled: bool) -> SecurityPolicy:
        await self.set(self._policy.updated(migration_mode=enabled))
        return self._policy


class StorePolicyProvider(PolicyProvider):
    """
    Keeps the policy in sync with ``settings/security`` in the document store.

    Order of preference for ``current()``:
    1. The last value pushed by the store subscription
    2. The value mirrored in the policy cache (survives restarts)
    3. DEFAULT_POLICY
    """

    CACHE_KEY = "security_settings_cache"

    def __init__(self, store, cache=None):
        super().__init__()
        self.store = store
        self.cache = cache
        self._policy: SecurityPolicy = DEFAULT_POLICY
        self._unsubscribe: Optional[Callable[[], None]] = None

    def current(self) -> SecurityPolicy:
        return self._policy

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    async def start(self) -> None:
        if self.started:
            return
        await self._load_cached()
        try:
            self._unsubscribe = await self.store.subscribe(
                POLICY_COLLECTION, POLICY_DOCUMENT_ID, self._on_snapshot
            )
        except Exception as e:
            # PolicyUnavailable: keep enforcing whatever we had
            error = PolicyUnavailableError(f"Security policy subscription failed: {e}")
            logger.warning(f"[Policy] {error.message}; using cached/default policy")
            return
        logger.info(f"[Policy] Subscribed to {POLICY_COLLECTION}/{POLICY_DOCUMENT_ID}")

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("[Policy] Subscription released")

    async def __aenter__(self) -> "StorePolicyProvider":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def save(self, policy: SecurityPolicy) -> SecurityPolicy:
        """Validate and write the policy (merged into the existing document)"""
        policy.validate()
        await self.store.merge(POLICY_COLLECTION, POLICY_DOCUMENT_ID, policy.to_document())
        if not self.started:
            await self._on_snapshot(policy.to_document())
        return policy

    async def set_migration_mode(self, enabled: bool) -> SecurityPolicy:
        await self.store.merge(POLICY_COLLECTION, POLICY_DOCUMENT_ID, {"migrationMode": enabled})
        if not self.started:
            await self._on_snapshot({**self._policy.to_document(), "migrationMode": enabled})
        return self._policy

    async def _on_snapshot(self, data: Optional[Dict[str, Any]]) -> None:
        if data is None:
            # Document absent: nothing configured yet, keep cached/defaults
            return
        policy = SecurityPolicy.from_document(data, base=self._policy)
        changed = policy != self._policy
        self._policy = policy
        if self.cache is not None:
            await self.cache.set(self.CACHE_KEY, policy.to_document())
        if changed:
            logger.info(
                f"[Policy] Updated: active={policy.active} maintenance={policy.maintenance_mode} "
                f"refreshes={policy.max_refreshes}/{policy.refresh_window_seconds}s "
                f"block={policy.block_duration_minutes}m"
            )
            await self._publish(policy)

    async def _load_cached(self) -> None:
        if self.cache is None:
            return
        cached = await self.cache.get(self.CACHE_KEY)
        if cached:
            self._policy = SecurityPolicy.from_document(cached)
            logger.info("[Policy] Restored last known policy from cache")
