"""
Provider error normalization.

HTTP clients for each brokerage raise whatever their SDK raises. Everything
downstream (rate limiter, broken-connection classifier, user-facing error
codes) works on the single ``ProviderError`` value type produced here.
"""

from typing import Any, Mapping, Optional

from core.logging import get_logger
from core.utils.exceptions import ProviderError
from .models import ApiError

NETWORK_ERROR_CODES = {"ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND", "ECONNRESET"}


def _lookup(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def as_provider_error(error: BaseException) -> ProviderError:
    """Coerce an arbitrary client exception into a ``ProviderError``.

    Understands the shapes SDK clients commonly raise: a ``response`` object
    with ``status``/``status_code``, ``data``/``body`` and ``headers``, or
    ``status``/``code``/``headers`` directly on the exception.
    """
    if isinstance(error, ProviderError):
        return error

    response = getattr(error, "response", None)
    body = _lookup(response, "data") or _lookup(response, "body") or getattr(error, "body", None)

    status = (
        _as_int(_lookup(response, "status"))
        or _as_int(_lookup(response, "status_code"))
        or _as_int(getattr(error, "status", None))
        or _as_int(getattr(error, "status_code", None))
    )
    code = _lookup(body, "code") or getattr(error, "code", None)
    message = _lookup(body, "message") or str(error) or type(error).__name__
    headers = _lookup(response, "headers") or getattr(error, "headers", None) or {}

    provider_error = ProviderError(
        str(message),
        status=status,
        code=str(code) if code is not None else None,
        headers=dict(headers),
    )
    provider_error.__cause__ = error
    return provider_error


def normalize_provider_error(error: BaseException, context: Optional[str] = None) -> ApiError:
    """Map a provider failure to an actionable UI error code."""
    provider_error = as_provider_error(error)
    status = provider_error.status or 500
    code = provider_error.code
    raw_message = provider_error.message or "Unknown error"
    lowered = raw_message.lower()

    get_logger(__name__, component="provider_errors").debug(
        "Normalizing provider error",
        http_status=status,
        provider_code=code,
        provider_message=raw_message[:100],
        request_id=provider_error.request_id,
        context=context,
    )

    if (status == 428 or code == "USER_NOT_REGISTERED"
            or "user not registered" in lowered or "register user" in lowered):
        return ApiError(code="NOT_REGISTERED",
                        message="Please finish your brokerage registration to continue",
                        request_id=provider_error.request_id)

    if (status == 409 or code in ("USER_MISMATCH", "SNAPTRADE_USER_MISMATCH")
            or "user mismatch" in lowered or "different user" in lowered):
        return ApiError(code="USER_MISMATCH",
                        message="Your brokerage connection needs to be reset. Please reconnect your account",
                        request_id=provider_error.request_id)

    if (status == 401 or code in ("1076", "SIGNATURE_INVALID", "INVALID_SIGNATURE")
            or "signature" in lowered or "unable to verify" in lowered):
        return ApiError(code="SIGNATURE_INVALID",
                        message="Authentication configuration error. Please contact support",
                        request_id=provider_error.request_id)

    if (status == 429 or code in ("RATE_LIMITED", "TOO_MANY_REQUESTS")
            or "rate limit" in lowered or "too many requests" in lowered):
        return ApiError(code="RATE_LIMITED",
                        message="Please try again in a moment. Too many requests",
                        request_id=provider_error.request_id)

    if (code in ("BROKERAGE_AUTHORIZATION_DISABLED", "CONNECTION_DISABLED", "AUTHORIZATION_DISABLED")
            or "authorization disabled" in lowered or "connection disabled" in lowered):
        return ApiError(code="CONNECTION_DISABLED",
                        message="Your brokerage connection has been disabled. Please reconnect",
                        request_id=provider_error.request_id)

    if code in NETWORK_ERROR_CODES:
        return ApiError(code="NETWORK_ERROR",
                        message="Network connection error. Please check your internet connection",
                        request_id=provider_error.request_id)

    if status >= 500:
        return ApiError(code="SERVER_ERROR",
                        message="Server error occurred. Please try again later",
                        request_id=provider_error.request_id)

    if 400 <= status < 500:
        return ApiError(code="CLIENT_ERROR",
                        message=raw_message or "Request error. Please check your input",
                        request_id=provider_error.request_id)

    return ApiError(code="UNKNOWN", message=raw_message, request_id=provider_error.request_id)


def is_registration_required(error: BaseException) -> bool:
    return normalize_provider_error(error).code == "NOT_REGISTERED"


def is_user_mismatch(error: BaseException) -> bool:
    return normalize_provider_error(error).code == "USER_MISMATCH"


def is_signature_invalid(error: BaseException) -> bool:
    return normalize_provider_error(error).code == "SIGNATURE_INVALID"


def is_rate_limited(error: BaseException) -> bool:
    return normalize_provider_error(error).code == "RATE_LIMITED"


def is_connection_disabled(error: BaseException) -> bool:
    return normalize_provider_error(error).code == "CONNECTION_DISABLED"
