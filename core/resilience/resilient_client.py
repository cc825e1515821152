"""
Single entry point for provider calls: rate limiting outside, broken-connection
classification inside.
"""

from typing import Awaitable, Callable, Optional, TypeVar

from core.logging import get_logger
from core.utils.exceptions import (
    BrokenConnectionError,
    ProviderRateLimitedError,
    create_error_context,
)
from .broken_connections import BrokenConnectionHandler
from .rate_limiter import RateLimitManager

T = TypeVar("T")


class ResilientProviderClient:
    """Wraps every provider call with the rate limiter and the connection classifier.

    A 429 is not a broken connection, so it passes through the classifier
    unchanged and is retried by the limiter. Broken connections surface as
    ``BrokenConnectionError`` and are never retried.
    """

    def __init__(self, rate_limiter: RateLimitManager, connection_handler: BrokenConnectionHandler):
        self.rate_limiter = rate_limiter
        self.connection_handler = connection_handler
        self.logger = get_logger(__name__, component="provider_errors")

    async def call(self, op: Callable[[], Awaitable[T]], rate_limit_key: str,
                   brokerage_auth_id: Optional[str] = None, context: str = "",
                   max_retries: Optional[int] = None) -> T:
        async def guarded() -> T:
            if brokerage_auth_id is None:
                return await op()
            return await self.connection_handler.snaptrade_api_call(op, brokerage_auth_id, context)

        try:
            return await self.rate_limiter.fetch_with_rate_limit(rate_limit_key, guarded, max_retries)
        except (BrokenConnectionError, ProviderRateLimitedError):
            raise
        except Exception as e:
            self.logger.error(
                "Provider call failed",
                **create_error_context(e, context or "provider_call",
                                       {"rate_limit_key": rate_limit_key,
                                        "brokerage_auth_id": brokerage_auth_id}),
            )
            raise
