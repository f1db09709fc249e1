import json
import logging
import os
from typing import Any, Optional

import redis.asyncio as redis


class RedisManager:
    """
    Redis connection manager for the queue monitor.
    Holds one pooled async client and offers the few JSON operations the
    aggregate cache needs. Every operation degrades to a miss when Redis is
    disabled or unreachable.
    """

    _instance: Optional['RedisManager'] = None
    _redis_pool: Optional[redis.ConnectionPool] = None
    _redis_client: Optional[redis.Redis] = None

    def __new__(cls) -> 'RedisManager':
        """Singleton pattern to ensure one Redis manager instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize Redis manager."""
        if hasattr(self, '_initialized'):
            return

        self.logger = logging.getLogger("QueueMonitor.Redis")
        self.enabled = os.getenv("ENABLE_REDIS", "false").lower() == "true"
        self.host = os.getenv("REDIS_HOST", "localhost")
        self.port = int(os.getenv("REDIS_PORT", "6379"))
        self.db = int(os.getenv("REDIS_DB", "0"))
        self.password = os.getenv("REDIS_PASSWORD", None)
        self.username = os.getenv("REDIS_USERNAME", None)
        self.max_connections = int(os.getenv("REDIS_MAX_CONNECTIONS", "10"))
        self.socket_timeout = float(os.getenv("REDIS_SOCKET_TIMEOUT", "5.0"))
        self.socket_connect_timeout = float(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5.0"))

        self._initialized = True

        if self.enabled:
            self.logger.info(f"Redis cache enabled - connecting to {self.host}:{self.port}")
        else:
            self.logger.info("Redis cache is disabled")

    async def initialize(self) -> bool:
        """
        Initialize Redis connection pool.

        Returns:
            bool: True if connection successful, False otherwise
        """
        if not self.enabled:
            return False

        try:
            self._redis_pool = redis.ConnectionPool(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                username=self.username,
                max_connections=self.max_connections,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_connect_timeout,
                decode_responses=True,
                health_check_interval=30
            )
            self._redis_client = redis.Redis(connection_pool=self._redis_pool)

            await self._redis_client.ping()
            self.logger.info("Successfully connected to Redis")
            return True

        except Exception as e:
            self.logger.error(f"Failed to connect to Redis: {e}")
            self.enabled = False
            return False

    async def disconnect(self):
        """Close Redis connections."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None

        if self._redis_pool:
            await self._redis_pool.aclose()
            self._redis_pool = None

        self.logger.info("Redis connections closed")

    def is_enabled(self) -> bool:
        """Check if Redis is enabled and connected."""
        return self.enabled and self._redis_client is not None

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get and deserialize a JSON value.

        Args:
            key: Redis key

        Returns:
            Deserialized value or None if missing, undecodable or on error
        """
        if not self.is_enabled():
            return None

        try:
            value = await self._redis_client.get(key)
        except Exception as e:
            self.logger.error(f"Redis GET error for key '{key}': {e}")
            return None

        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            self.logger.error(f"JSON decode error for key '{key}': {e}")
            return None

    async def set_json(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        """
        Serialize and store a JSON value.

        Args:
            key: Redis key
            value: Value to serialize
            ex: Expire time in seconds

        Returns:
            True if successful, False otherwise
        """
        if not self.is_enabled():
            return False

        try:
            result = await self._redis_client.set(key, json.dumps(value), ex=ex)
            return bool(result)
        except (TypeError, ValueError) as e:
            self.logger.error(f"JSON encode error for key '{key}': {e}")
            return False
        except Exception as e:
            self.logger.error(f"Redis SET error for key '{key}': {e}")
            return False

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        if not self.is_enabled():
            return 0

        try:
            return await self._redis_client.delete(*keys)
        except Exception as e:
            self.logger.error(f"Redis DELETE error for keys {keys}: {e}")
            return 0


# Global Redis manager instance
redis_manager = RedisManager()
