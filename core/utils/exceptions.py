# Structured exception hierarchy for the trade router

from typing import Dict, Any, Optional, Mapping
from datetime import datetime, timezone


class TradeRouterException(Exception):
    """Base exception for all trade router specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)


class TransientError(TradeRouterException):
    """Base class for transient errors that may be retried with backoff"""

    def __init__(self, message: str, retry_count: int = 0, max_retries: int = 3,
                 details: Optional[Dict[str, Any]] = None, correlation_id: Optional[str] = None):
        super().__init__(message, details, correlation_id)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.retryable = retry_count < max_retries


class PermanentError(TradeRouterException):
    """Base class for errors that must never be retried blindly"""
    pass


# Provider Errors
class ProviderError(TradeRouterException):
    """Normalized failure raised at the provider HTTP-client boundary.

    Carries only what the classifiers need: HTTP status, provider error code,
    message and response headers.
    """

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None,
                 headers: Optional[Mapping[str, str]] = None, request_id: Optional[str] = None,
                 provider: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
        self.code = code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.request_id = request_id or self.headers.get("x-request-id")
        self.provider = provider

    @property
    def retry_after(self) -> Optional[str]:
        return self.headers.get("retry-after")

    @property
    def rate_limit_remaining(self) -> Optional[str]:
        return self.headers.get("x-ratelimit-remaining")

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    def __repr__(self) -> str:
        return f"ProviderError(status={self.status!r}, code={self.code!r}, message={self.message!r})"


class ProviderRateLimitedError(TransientError):
    """Provider kept answering 429 after every allowed retry"""

    def __init__(self, message: str, rate_limit_key: str, retry_after_seconds: int,
                 original_error: Optional[Exception] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.rate_limit_key = rate_limit_key
        self.retry_after_seconds = retry_after_seconds
        self.original_error = original_error


class BrokenConnectionError(PermanentError):
    """Provider call failed because the brokerage authorization is broken.

    ``repair_info`` tells the caller which repair action to offer and where.
    """

    is_broken_connection = True

    def __init__(self, message: str, repair_info: Any, original_error: Optional[Exception] = None,
                 **kwargs):
        super().__init__(message, **kwargs)
        self.repair_info = repair_info
        self.original_error = original_error


# Routing and Execution Errors
class RoutingIncompatibilityError(PermanentError):
    """No connected (or requested) brokerage can trade the asset"""

    def __init__(self, message: str, symbol: str, brokerage_id: Optional[str] = None,
                 **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol
        self.brokerage_id = brokerage_id


class FundsUnavailableError(PermanentError):
    """Wallet rejected the funds hold for a trade"""

    def __init__(self, message: str, required_amount: float, available_amount: float,
                 user_id: str, **kwargs):
        super().__init__(message, **kwargs)
        self.required_amount = required_amount
        self.available_amount = available_amount
        self.user_id = user_id


# Infrastructure Errors
class InfrastructureError(TransientError):
    """Base class for infrastructure failures"""
    pass


class RedisError(InfrastructureError):
    """Redis connection or operation failures"""

    def __init__(self, message: str, operation: str, key: Optional[str] = None,
                 **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.key = key


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error should be retried

    Only rate-limited provider failures are retried automatically.
    """
    if isinstance(error, ProviderError):
        return error.is_rate_limited
    if isinstance(error, TransientError):
        return error.retryable
    return False


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, TradeRouterException):
        if error.correlation_id:
            context["correlation_id"] = error.correlation_id
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, ProviderError):
            context["http_status"] = error.status
            context["provider_code"] = error.code
            if error.request_id:
                context["request_id"] = error.request_id

        if isinstance(error, ProviderRateLimitedError):
            context["retry_after_seconds"] = error.retry_after_seconds

        if isinstance(error, BrokenConnectionError):
            context["is_broken_connection"] = True

        if isinstance(error, RoutingIncompatibilityError):
            context["symbol"] = error.symbol
            if error.brokerage_id:
                context["brokerage_id"] = error.brokerage_id

    if additional_context:
        context.update(additional_context)

    return context
