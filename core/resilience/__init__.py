"""Resilience layer for third-party brokerage API calls."""

from .broken_connections import (
    BrokenConnectionHandler,
    ConnectionDirectory,
    get_repair_action,
    get_repair_url,
    is_broken_connection,
)
from .models import (
    ApiError,
    ConnectionHealth,
    ConnectionRecord,
    ConnectionState,
    RateLimitDecision,
    RateLimitState,
    RepairAction,
    RepairInfo,
)
from .provider_errors import as_provider_error, normalize_provider_error
from .rate_limiter import RateLimitManager, rate_limit_key
from .resilient_client import ResilientProviderClient

__all__ = [
    "ApiError",
    "BrokenConnectionHandler",
    "ConnectionDirectory",
    "ConnectionHealth",
    "ConnectionRecord",
    "ConnectionState",
    "RateLimitDecision",
    "RateLimitManager",
    "RateLimitState",
    "RepairAction",
    "RepairInfo",
    "ResilientProviderClient",
    "as_provider_error",
    "get_repair_action",
    "get_repair_url",
    "is_broken_connection",
    "normalize_provider_error",
    "rate_limit_key",
]
