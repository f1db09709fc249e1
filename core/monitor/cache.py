import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from core.redis_manager import RedisManager, redis_manager

logger = logging.getLogger("QueueMonitor.Cache")


class Cache:
    """
    Read-through cache for expensive aggregate lookups.

    Values live in Redis when it is connected and in a process-local
    dictionary otherwise. Cached values must be JSON serializable.
    """

    def __init__(
        self,
        redis: Optional[RedisManager] = None,
        key_prefix: str = "queue_monitor",
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis if redis is not None else redis_manager
        self.key_prefix = key_prefix
        self.clock = clock

        # In-memory fallback storage: key -> (expires_at, value)
        self._memory_cache: Dict[str, Tuple[float, Any]] = {}

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        full_key = self._key(key)
        if self.redis.is_enabled():
            return await self.redis.get_json(full_key)

        entry = self._memory_cache.get(full_key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self.clock():
            del self._memory_cache[full_key]
            return None
        return value

    async def set(self, key: str, value: Any, duration: int) -> None:
        full_key = self._key(key)
        if self.redis.is_enabled():
            await self.redis.set_json(full_key, value, ex=duration)
            return

        self._memory_cache[full_key] = (self.clock() + duration, value)
        self._cleanup()

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[Any]], duration: int) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Cache key, prefixed before use
            factory: Coroutine function producing the value
            duration: Seconds to keep the value
        """
        value = await self.get(key)
        if value is not None:
            logger.debug(f"Cache hit for '{key}'")
            return value

        value = await factory()
        await self.set(key, value, duration)
        return value

    async def delete(self, key: str) -> None:
        full_key = self._key(key)
        if self.redis.is_enabled():
            await self.redis.delete(full_key)
        self._memory_cache.pop(full_key, None)

    def _cleanup(self) -> None:
        now = self.clock()
        expired = [key for key, (expires_at, _) in self._memory_cache.items() if expires_at <= now]
        for key in expired:
            del self._memory_cache[key]
