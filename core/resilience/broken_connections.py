"""
Broken connection detection and repair actions for brokerage authorizations.

A provider reports a revoked or expired authorization through several
channels (HTTP status, error code, free-text message). Any one of them marks
the connection broken; the caller then gets a repair prompt instead of a raw
provider error.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol, TypeVar, runtime_checkable
from urllib.parse import urlencode

from core.config.settings import RepairSettings
from core.logging import get_logger
from core.utils.exceptions import BrokenConnectionError, ProviderError
from .models import (
    ConnectionHealth,
    ConnectionRecord,
    ConnectionState,
    RepairAction,
    RepairInfo,
)
from .provider_errors import as_provider_error
from .stores import ConnectionHealthStore, InMemoryConnectionHealthStore

T = TypeVar("T")

# HTTP status codes that indicate broken connections
BROKEN_CONNECTION_STATUSES = frozenset({
    401,  # Unauthorized - expired tokens
    403,  # Forbidden - invalid credentials
    410,  # Gone - account closed or deactivated
    423,  # Locked - account locked/suspended
})

BROKEN_CONNECTION_ERROR_CODES = frozenset({
    "BROKERAGE_AUTHORIZATION_DISABLED",
    "BROKERAGE_AUTHORIZATION_DELETED",
    "INVALID_CREDENTIALS",
    "EXPIRED_CREDENTIALS",
    "ACCOUNT_DISABLED",
    "ACCOUNT_SUSPENDED",
    "REAUTH_REQUIRED",
    "CONNECTION_LOST",
    "TOKEN_EXPIRED",
})

BROKEN_MESSAGE_PATTERNS = (
    "authorization disabled",
    "authorization deleted",
    "invalid credentials",
    "expired credentials",
    "account disabled",
    "account suspended",
    "reauth required",
    "token expired",
    "connection lost",
)

REAUTH_ERROR_CODES = frozenset({"INVALID_CREDENTIALS", "EXPIRED_CREDENTIALS", "TOKEN_EXPIRED", "REAUTH_REQUIRED"})
CONTACT_SUPPORT_ERROR_CODES = frozenset({"BROKERAGE_AUTHORIZATION_DISABLED", "ACCOUNT_DISABLED", "ACCOUNT_SUSPENDED"})
RECONNECT_ERROR_CODES = frozenset({"BROKERAGE_AUTHORIZATION_DELETED"})


@runtime_checkable
class ConnectionDirectory(Protocol):
    """Read access to brokerage connection metadata (owned by storage)."""

    async def get_connection_by_authorization(self, brokerage_auth_id: str) -> Optional[ConnectionRecord]:
        ...

    async def get_connections(self, user_id: str) -> List[ConnectionRecord]:
        ...


def is_broken_connection(error: ProviderError) -> bool:
    """Check if a provider error indicates a broken connection."""
    if error.status is not None and error.status in BROKEN_CONNECTION_STATUSES:
        return True

    if error.code and error.code in BROKEN_CONNECTION_ERROR_CODES:
        return True

    message = (error.message or "").lower()
    return any(pattern in message for pattern in BROKEN_MESSAGE_PATTERNS)


def get_repair_action(error_code: Optional[str] = None, http_status: Optional[int] = None) -> RepairAction:
    """Pick the repair a user must perform; the provider code outranks the status."""
    if error_code:
        if error_code in REAUTH_ERROR_CODES:
            return RepairAction.REAUTH
        if error_code in CONTACT_SUPPORT_ERROR_CODES:
            return RepairAction.CONTACT_SUPPORT
        if error_code in RECONNECT_ERROR_CODES:
            return RepairAction.RECONNECT

    if http_status in (401, 403):
        return RepairAction.REAUTH
    if http_status == 410:
        return RepairAction.RECONNECT
    if http_status == 423:
        return RepairAction.CONTACT_SUPPORT

    return RepairAction.REAUTH


def get_repair_url(repair_action: RepairAction, brokerage_auth_id: str, brokerage_name: str,
                   base_url: str) -> str:
    base_url = base_url.rstrip("/")
    if repair_action == RepairAction.REAUTH:
        query = urlencode({"auth": brokerage_auth_id, "brokerage": brokerage_name})
        return f"{base_url}/accounts/reconnect?{query}"
    if repair_action == RepairAction.RECONNECT:
        return f"{base_url}/accounts/connect?{urlencode({'brokerage': brokerage_name})}"
    query = urlencode({"issue": "broken_connection", "auth": brokerage_auth_id})
    return f"{base_url}/support?{query}"


def _truncate(message: Optional[str], limit: int = 100) -> Optional[str]:
    if message is None or len(message) <= limit:
        return message
    return message[:limit] + "..."


class BrokenConnectionHandler:
    """Marks brokerage connections broken and builds repair prompts."""

    def __init__(self, settings: RepairSettings, connections: ConnectionDirectory,
                 health_store: Optional[ConnectionHealthStore] = None):
        self.settings = settings
        self.connections = connections
        self.health_store = health_store or InMemoryConnectionHealthStore()
        self.logger = get_logger(__name__, component="broken_connections")

    async def mark_connection_broken(self, brokerage_auth_id: str, error_code: Optional[str] = None,
                                     error_message: Optional[str] = None,
                                     http_status: Optional[int] = None) -> None:
        """Record the connection as broken; store failures are logged, not raised."""
        now = datetime.now(timezone.utc)
        try:
            health = await self.health_store.get(brokerage_auth_id)
            if health is not None and health.is_broken:
                health.last_failed_at = now
            else:
                health = ConnectionHealth(
                    brokerage_auth_id=brokerage_auth_id,
                    state=ConnectionState.BROKEN,
                    last_error_code=error_code,
                    last_error_message=error_message,
                    last_failed_at=now,
                    repair_action=get_repair_action(error_code, http_status),
                )
            await self.health_store.set(health)
            self.logger.info(
                "Marked connection as broken",
                brokerage_auth_id=brokerage_auth_id,
                error_code=error_code,
                error_message=_truncate(error_message),
            )
        except Exception as e:
            self.logger.error(
                "Failed to mark connection as broken",
                brokerage_auth_id=brokerage_auth_id,
                error_code=error_code,
                store_error=str(e),
            )

    async def mark_connection_healthy(self, brokerage_auth_id: str) -> None:
        """Clear a broken mark after the user repaired the connection."""
        await self.health_store.set(ConnectionHealth(brokerage_auth_id=brokerage_auth_id))
        self.logger.info("Connection marked healthy", brokerage_auth_id=brokerage_auth_id)

    async def get_connection_health(self, brokerage_auth_id: str) -> ConnectionHealth:
        health = await self.health_store.get(brokerage_auth_id)
        return health or ConnectionHealth(brokerage_auth_id=brokerage_auth_id)

    async def get_broken_connections(self, user_id: str) -> List[RepairInfo]:
        """List the user's broken connections with their stored repair prompts."""
        broken: List[RepairInfo] = []
        for connection in await self.connections.get_connections(user_id):
            health = await self.health_store.get(connection.brokerage_auth_id)
            if health is None or not health.is_broken:
                continue
            repair_action = health.repair_action or RepairAction.REAUTH
            broken.append(RepairInfo(
                connection_id=connection.connection_id,
                brokerage_auth_id=connection.brokerage_auth_id,
                brokerage_name=connection.brokerage_name,
                user_id=connection.user_id,
                error_code=health.last_error_code,
                error_message=health.last_error_message,
                last_failed_at=health.last_failed_at or datetime.now(timezone.utc),
                repair_action=repair_action,
                repair_url=get_repair_url(repair_action, connection.brokerage_auth_id,
                                          connection.brokerage_name, self.settings.base_url),
            ))
        return broken

    async def handle_broken_connection(self, error: BaseException, brokerage_auth_id: str,
                                       context: str) -> Optional[RepairInfo]:
        """Classify a failed provider call; return repair info when it is a broken connection."""
        provider_error = as_provider_error(error)
        if not is_broken_connection(provider_error):
            return None

        self.logger.warning(
            "Detected broken connection",
            context=context,
            brokerage_auth_id=brokerage_auth_id,
            error_code=provider_error.code,
            http_status=provider_error.status,
            error_message=_truncate(provider_error.message),
        )

        await self.mark_connection_broken(
            brokerage_auth_id,
            provider_error.code,
            provider_error.message,
            provider_error.status,
        )

        connection = await self.connections.get_connection_by_authorization(brokerage_auth_id)
        if connection is None:
            self.logger.warning("Connection not found for repair info", brokerage_auth_id=brokerage_auth_id)
            return None

        repair_action = get_repair_action(provider_error.code, provider_error.status)
        return RepairInfo(
            connection_id=connection.connection_id,
            brokerage_auth_id=connection.brokerage_auth_id,
            brokerage_name=connection.brokerage_name,
            user_id=connection.user_id,
            error_code=provider_error.code,
            error_message=provider_error.message,
            last_failed_at=datetime.now(timezone.utc),
            repair_action=repair_action,
            repair_url=get_repair_url(repair_action, connection.brokerage_auth_id,
                                      connection.brokerage_name, self.settings.base_url),
        )

    async def snaptrade_api_call(self, op: Callable[[], Awaitable[T]], brokerage_auth_id: str,
                                 context: str) -> T:
        """Invoke a provider call, turning broken-connection failures into repair prompts."""
        try:
            return await op()
        except Exception as e:
            repair_info = await self.handle_broken_connection(e, brokerage_auth_id, context)
            if repair_info is not None:
                raise BrokenConnectionError(
                    str(getattr(e, "message", None) or e),
                    repair_info=repair_info,
                    original_error=e,
                ) from e
            raise
