"""
Keyed state stores for rate-limit windows and connection health.

In-memory stores serve a single process and tests; Redis stores share state
between instances so limits and health are not fragmented per process.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from core.config.settings import Settings
from core.utils.state_manager import DocumentStateManager
from .models import ConnectionHealth, RateLimitState


class RateLimitStore(ABC):

    @abstractmethod
    async def get(self, key: str) -> Optional[RateLimitState]:
        ...

    @abstractmethod
    async def set(self, key: str, state: RateLimitState) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self) -> List[str]:
        ...


class ConnectionHealthStore(ABC):

    @abstractmethod
    async def get(self, brokerage_auth_id: str) -> Optional[ConnectionHealth]:
        ...

    @abstractmethod
    async def set(self, health: ConnectionHealth) -> None:
        ...

    @abstractmethod
    async def delete(self, brokerage_auth_id: str) -> None:
        ...


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self):
        self._states: Dict[str, RateLimitState] = {}

    async def get(self, key: str) -> Optional[RateLimitState]:
        state = self._states.get(key)
        return state.model_copy() if state else None

    async def set(self, key: str, state: RateLimitState) -> None:
        self._states[key] = state.model_copy()

    async def delete(self, key: str) -> None:
        self._states.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._states)


class InMemoryConnectionHealthStore(ConnectionHealthStore):
    def __init__(self):
        self._health: Dict[str, ConnectionHealth] = {}

    async def get(self, brokerage_auth_id: str) -> Optional[ConnectionHealth]:
        health = self._health.get(brokerage_auth_id)
        return health.model_copy() if health else None

    async def set(self, health: ConnectionHealth) -> None:
        self._health[health.brokerage_auth_id] = health.model_copy()

    async def delete(self, brokerage_auth_id: str) -> None:
        self._health.pop(brokerage_auth_id, None)


class RedisRateLimitStore(RateLimitStore):
    """Rate-limit windows as JSON documents; Redis TTL backs up the sweep."""

    def __init__(self, settings: Settings, redis_client=None):
        self._documents = DocumentStateManager("rate_limit", settings, redis_client)
        # Two windows plus the longest backoff is the most a live state needs
        self._ttl = int(settings.rate_limit.window_seconds * 2 + settings.rate_limit.max_delay_seconds) + 1
        self._window = settings.rate_limit.window_seconds

    async def get(self, key: str) -> Optional[RateLimitState]:
        document = await self._documents.get_document(key)
        return RateLimitState.model_validate(document) if document else None

    async def set(self, key: str, state: RateLimitState) -> None:
        ttl = self._ttl
        if state.retry_after_at > state.last_request_at:
            # Keep the document until a long provider Retry-After has passed
            ttl = max(ttl, math.ceil(state.retry_after_at - state.last_request_at + self._window))
        await self._documents.save_document(key, state.model_dump(mode="json"), ttl=ttl)

    async def delete(self, key: str) -> None:
        await self._documents.delete_document(key)

    async def keys(self) -> List[str]:
        return await self._documents.list_document_ids()

    async def close(self):
        await self._documents.close()


class RedisConnectionHealthStore(ConnectionHealthStore):
    def __init__(self, settings: Settings, redis_client=None):
        self._documents = DocumentStateManager("connection_health", settings, redis_client)

    async def get(self, brokerage_auth_id: str) -> Optional[ConnectionHealth]:
        document = await self._documents.get_document(brokerage_auth_id)
        return ConnectionHealth.model_validate(document) if document else None

    async def set(self, health: ConnectionHealth) -> None:
        await self._documents.save_document(health.brokerage_auth_id, health.model_dump(mode="json"))

    async def delete(self, brokerage_auth_id: str) -> None:
        await self._documents.delete_document(brokerage_auth_id)

    async def close(self):
        await self._documents.close()
