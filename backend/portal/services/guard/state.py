"""
Per-session guard state and the cache it is persisted in.

A guard session is the server-side twin of one browser profile: everything in
here is keyed by the session cookie, so a client that drops the cookie starts
over with empty counters and no block.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from portal.core.config import settings
from portal.core.redis_client import RedisClient


class BlockReason(str, Enum):
    RELOAD_RATE = "reload-rate"
    INTERACTION_RATE = "interaction-rate"
    EXTERNAL = "external"


BLOCK_MESSAGES = {
    BlockReason.RELOAD_RATE: "High Rate Traffic (Rapid Refreshing) Detected",
    BlockReason.INTERACTION_RATE: "High Rate Traffic / Spamming Detected",
    BlockReason.EXTERNAL: "Access to this site has been suspended by an administrator",
}


@dataclass
class BlockState:
    reason: BlockReason
    expires_at: float
    message: str = ""

    def __post_init__(self):
        self.reason = BlockReason(self.reason)
        if not self.message:
            self.message = BLOCK_MESSAGES[self.reason]

    def remaining_seconds(self, now: float) -> int:
        remaining = self.expires_at - now
        if remaining <= 0:
            return 0
        # Whole seconds, rounded up
        return int(-(-remaining // 1))

    def expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason.value, "expiresAt": self.expires_at, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["BlockState"]:
        try:
            return cls(
                reason=BlockReason(data["reason"]),
                expires_at=float(data["expiresAt"]),
                message=data.get("message") or "",
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass
class ActivityWindow:
    reload_timestamps: List[float] = field(default_factory=list)
    action_count: int = 0

    def prune(self, now: float, window_seconds: int) -> None:
        self.reload_timestamps = [t for t in self.reload_timestamps if now - t < window_seconds]

    def record_reload(self, now: float, window_seconds: int) -> int:
        self.prune(now, window_seconds)
        self.reload_timestamps.append(now)
        return len(self.reload_timestamps)


def format_remaining(seconds: int) -> str:
    """Countdown label shown on the block screen, e.g. ``29m 59s``"""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}m {seconds % 60}s"


# ==================== Session cache ====================

class GuardCache(ABC):
    """Key-value store holding one session's guard state (JSON values)"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def purge_expired(self) -> int:
        """Drop expired entries; backends with native TTLs have nothing to do"""
        return 0


class MemoryGuardCache(GuardCache):
    """Process-local cache; entries expire after ``ttl_seconds`` like the Redis ones"""

    def __init__(self, ttl_seconds: Optional[int] = None, clock=time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and self.clock() >= expires:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: Any) -> None:
        expires = self.clock() + self.ttl_seconds if self.ttl_seconds else None
        self._data[key] = (value, expires)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def purge_expired(self) -> int:
        now = self.clock()
        expired = [key for key, (_, expires) in self._data.items() if expires is not None and now >= expires]
        for key in expired:
            del self._data[key]
        return len(expired)

    def namespace(self, prefix: str) -> "NamespacedCache":
        return NamespacedCache(self, prefix)

    def __len__(self) -> int:
        return len(self._data)


class RedisGuardCache(GuardCache):
    """Cache backed by Redis, values stored as JSON with a TTL"""

    def __init__(self, client: RedisClient, ttl_seconds: int = settings.GUARD_CACHE_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        return await self.client.get_json(key)

    async def set(self, key: str, value: Any) -> None:
        await self.client.set_json(key, value, expire=self.ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    def namespace(self, prefix: str) -> "NamespacedCache":
        return NamespacedCache(self, prefix)


class NamespacedCache(GuardCache):
    """View of a backing cache where every key is prefixed (one per session)"""

    def __init__(self, backing: GuardCache, prefix: str):
        self.backing = backing
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await self.backing.get(self._key(key))

    async def set(self, key: str, value: Any) -> None:
        await self.backing.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self.backing.delete(self._key(key))
