# Generic Redis-backed state management base class

import json
import redis.asyncio as redis
from typing import Optional, Dict, Any, List
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from core.config.settings import Settings
from core.utils.exceptions import RedisError


class BaseStateManager(ABC):
    """
    Base class for Redis-backed state management with namespace support.

    Provides common patterns for Redis operations including:
    - Connection management with automatic initialization
    - Prefixed key generation so several deployments can share one Redis
    - Consistent error handling with structured exceptions
    """

    def __init__(self, settings: Settings, redis_client=None):
        self.settings = settings
        self.redis_client = redis_client
        self.namespace = settings.redis.key_prefix

    async def initialize(self, namespace: str = None):
        """Initialize Redis client connection with optional namespace"""
        try:
            if not self.redis_client:
                self.redis_client = redis.from_url(self.settings.redis.url, decode_responses=True)
            if namespace:
                self.namespace = namespace
        except Exception as e:
            raise RedisError(f"Failed to initialize Redis connection: {e}", operation="initialize")

    def _get_key(self, key_type: str, identifier: str) -> str:
        """
        Generate standardized Redis key with namespace support.

        Args:
            key_type: Type of data being stored (e.g., 'state', 'health')
            identifier: Unique identifier for the specific item
        """
        base_key = f"{self._get_service_prefix()}:{key_type}:{identifier}"
        if self.namespace:
            return f"{self.namespace}:{base_key}"
        return base_key

    @abstractmethod
    def _get_service_prefix(self) -> str:
        """Return the service-specific prefix for Redis keys (e.g., 'rate_limit')"""
        pass

    async def _ensure_client(self):
        if not self.redis_client:
            await self.initialize()

    async def _get_json_value(self, key: str) -> Optional[Dict[str, Any]]:
        """Get and deserialize a JSON value from Redis"""
        try:
            await self._ensure_client()
            value = await self.redis_client.get(key)
        except Exception as e:
            raise RedisError(f"Failed to get key {key}: {e}", operation="get", key=key)
        if not value:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError) as e:
            raise RedisError(f"Failed to deserialize JSON for key {key}: {e}", operation="get_json", key=key)

    async def _set_json_value(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None):
        """Set a JSON-serialized value in Redis with optional TTL"""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise RedisError(f"Failed to serialize JSON for key {key}: {e}", operation="set_json", key=key)
        try:
            await self._ensure_client()
            if ttl:
                await self.redis_client.set(key, payload, ex=ttl)
            else:
                await self.redis_client.set(key, payload)
        except Exception as e:
            raise RedisError(f"Failed to set key {key}: {e}", operation="set", key=key)

    async def _delete_key(self, key: str) -> bool:
        """Delete a key from Redis"""
        try:
            await self._ensure_client()
            result = await self.redis_client.delete(key)
            return result > 0
        except Exception as e:
            raise RedisError(f"Failed to delete key {key}: {e}", operation="delete", key=key)

    async def _scan_keys(self, pattern: str) -> List[str]:
        """Collect keys matching a pattern without blocking Redis (SCAN, not KEYS)"""
        try:
            await self._ensure_client()
            return [key async for key in self.redis_client.scan_iter(match=pattern)]
        except Exception as e:
            raise RedisError(f"Failed to scan keys by pattern {pattern}: {e}", operation="scan")

    async def close(self):
        """Close Redis connection"""
        try:
            if self.redis_client:
                await self.redis_client.aclose()
        except Exception as e:
            raise RedisError(f"Failed to close Redis connection: {e}", operation="close")

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on Redis connection"""
        try:
            await self._ensure_client()
            await self.redis_client.ping()
            return {
                "redis_connected": True,
                "namespace": self.namespace,
                "service_prefix": self._get_service_prefix(),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        except Exception as e:
            return {
                "redis_connected": False,
                "error": str(e),
                "namespace": self.namespace,
                "service_prefix": self._get_service_prefix(),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }


class DocumentStateManager(BaseStateManager):
    """
    Document state manager for storing one JSON document per identifier.

    Suitable for:
    - Per-key rate limit windows
    - Per-authorization connection health records
    """

    key_type = "doc"

    def __init__(self, service_prefix: str, settings: Settings, redis_client=None):
        super().__init__(settings, redis_client)
        self.service_prefix = service_prefix

    def _get_service_prefix(self) -> str:
        return self.service_prefix

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_json_value(self._get_key(self.key_type, document_id))

    async def save_document(self, document_id: str, document: Dict[str, Any], ttl: Optional[int] = None):
        await self._set_json_value(self._get_key(self.key_type, document_id), document, ttl)

    async def delete_document(self, document_id: str) -> bool:
        return await self._delete_key(self._get_key(self.key_type, document_id))

    async def list_document_ids(self) -> List[str]:
        prefix = self._get_key(self.key_type, "")
        keys = await self._scan_keys(f"{prefix}*")
        keys = [key.decode() if isinstance(key, bytes) else key for key in keys]
        return [key[len(prefix):] for key in keys]
