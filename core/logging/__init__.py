# Structured logging with multi-channel support
from typing import Optional, Dict, Any
import structlog

from core.config.settings import Settings
from .channels import LogChannel
from .enhanced_logging import (
    configure_enhanced_logging,
    reset_enhanced_logging,
    get_enhanced_logger,
    get_channel_logger,
    get_logging_statistics,
    get_trading_logger_safe,
    get_resilience_logger_safe,
    get_audit_logger_safe,
    get_error_logger_safe,
)


def configure_logging(settings: Settings) -> None:
    """Configure logging for the process; later calls are no-ops."""
    configure_enhanced_logging(settings)


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return get_enhanced_logger(name, component)


def bind_broker_context(logger: structlog.BoundLogger, brokerage_id: str,
                        user_id: Optional[str] = None) -> structlog.BoundLogger:
    """Bind brokerage context consistently to a logger."""
    ctx: Dict[str, Any] = {"brokerage_id": brokerage_id}
    if user_id:
        ctx["user_id"] = user_id
    return logger.bind(**ctx)


def get_statistics() -> Dict[str, Any]:
    """Get logging system statistics."""
    return get_logging_statistics()


__all__ = [
    "LogChannel",
    "configure_logging",
    "reset_enhanced_logging",
    "get_logger",
    "get_channel_logger",
    "bind_broker_context",
    "get_statistics",
    "get_trading_logger_safe",
    "get_resilience_logger_safe",
    "get_audit_logger_safe",
    "get_error_logger_safe",
]
