# Structured logging with multi-channel support
import sys
import logging
import logging.handlers
from typing import Dict, Optional, Any
import structlog

from core.config.settings import Settings
from .channels import (
    LogChannel,
    get_channel_for_component,
    get_channel_config,
    create_log_directory_structure,
    get_channel_statistics
)

# Global logger manager instance
_logger_manager: Optional['EnhancedLoggerManager'] = None


class ChannelFilter(logging.Filter):
    """Route records to a channel handler only if their event carries that channel.

    Records are produced by structlog and reach handlers with the event dict as
    ``record.msg`` (see ``ProcessorFormatter.wrap_for_formatter``).
    """

    def __init__(self, expected_channel: str):
        super().__init__()
        self.expected_channel = expected_channel

    def filter(self, record: logging.LogRecord) -> bool:
        event = record.msg if isinstance(record.msg, dict) else {}
        return event.get("channel") == self.expected_channel


class EnhancedLoggerManager:
    """Logging manager with per-channel rotating files and configurable formats."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.channel_handlers: Dict[LogChannel, logging.Handler] = {}
        self.console_handler: Optional[logging.Handler] = None
        self.configured_loggers: Dict[str, structlog.BoundLogger] = {}

        self._setup_logging()

    def _setup_logging(self) -> None:
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, self.settings.logging.level.upper()))

        if self.settings.logging.console_enabled:
            self._setup_console_logging()

        if self.settings.logging.file_enabled:
            create_log_directory_structure(self.settings.logs_dir)
            self._setup_multi_channel_logging()

        self._configure_structlog()

    def _renderer(self):
        if self.settings.logging.json_format:
            return structlog.processors.JSONRenderer()
        return structlog.processors.KeyValueRenderer(key_order=["event", "level", "timestamp"])

    def _formatter(self) -> logging.Formatter:
        foreign_chain = [
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
        ]
        return structlog.stdlib.ProcessorFormatter(
            processor=self._renderer(),
            foreign_pre_chain=foreign_chain,
        )

    def _setup_console_logging(self) -> None:
        root_logger = logging.getLogger()

        # Reuse an existing stdout handler instead of stacking a second one
        for handler in root_logger.handlers:
            if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) == sys.stdout:
                handler.setFormatter(self._formatter())
                self.console_handler = handler
                return

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, self.settings.logging.level.upper()))
        console_handler.setFormatter(self._formatter())
        root_logger.addHandler(console_handler)
        self.console_handler = console_handler

    def _setup_multi_channel_logging(self) -> None:
        root_logger = logging.getLogger()
        for channel in LogChannel:
            config = get_channel_config(channel)
            handler = self._create_channel_handler(channel, config)
            self.channel_handlers[channel] = handler
            root_logger.addHandler(handler)

    def _channel_level(self, channel: LogChannel, default: str) -> str:
        overrides = {
            LogChannel.TRADING: self.settings.logging.trading_level,
            LogChannel.RESILIENCE: self.settings.logging.resilience_level,
        }
        return overrides.get(channel, default)

    def _create_channel_handler(self, channel: LogChannel, config) -> logging.Handler:
        """Create a file handler for a specific channel."""
        handler = logging.handlers.RotatingFileHandler(
            filename=config.get_file_path(self.settings.logs_dir),
            maxBytes=self.settings.logging.file_max_bytes,
            backupCount=config.backup_count or self.settings.logging.file_backup_count,
            encoding="utf-8"
        )
        handler.setLevel(getattr(logging, self._channel_level(channel, config.level).upper()))
        handler.setFormatter(self._formatter())

        # The error file takes every ERROR+ record regardless of channel
        if channel != LogChannel.ERROR:
            handler.addFilter(ChannelFilter(expected_channel=channel.value))
        return handler

    def _configure_structlog(self) -> None:
        """Configure structlog with appropriate processors."""

        def add_standard_context(logger, name, event_dict):
            """Bind standard context fields once from settings."""
            event_dict.setdefault('env', self.settings.environment.value)
            event_dict.setdefault('service', self.settings.app_name)
            event_dict.setdefault('version', self.settings.version)
            return event_dict

        keys_to_redact = {k.lower() for k in self.settings.logging.redact_keys}

        def redact_sensitive(logger, name, event_dict):
            """Redact sensitive fields from event dict recursively."""

            def _redact(obj):
                if isinstance(obj, dict):
                    out = {}
                    for k, v in obj.items():
                        if isinstance(k, str) and k.lower() in keys_to_redact:
                            out[k] = '[REDACTED]'
                        else:
                            out[k] = _redact(v)
                    return out
                if isinstance(obj, list):
                    return [_redact(v) for v in obj]
                return obj

            return _redact(event_dict)

        processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            add_standard_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            redact_sensitive,
            # Defer final rendering to handlers via ProcessorFormatter
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]

        structlog.configure(
            processors=processors,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str, component: Optional[str] = None) -> structlog.BoundLogger:
        """Get a structured logger for a component."""
        cache_key = f"{name}:{component}"
        if cache_key in self.configured_loggers:
            return self.configured_loggers[cache_key]

        logger = structlog.get_logger(name)
        if component:
            channel = get_channel_for_component(component)
            logger = logger.bind(component=component, channel=channel.value)

        self.configured_loggers[cache_key] = logger
        return logger

    def get_channel_logger(self, name: str, channel: LogChannel) -> structlog.BoundLogger:
        return structlog.get_logger(name).bind(channel=channel.value)

    def get_statistics(self) -> Dict[str, Any]:
        stats = {
            "total_loggers": len(self.configured_loggers),
            "file_logging_enabled": self.settings.logging.file_enabled,
            "console_logging_enabled": self.settings.logging.console_enabled,
            "json_format": self.settings.logging.json_format,
            "logs_directory": self.settings.logs_dir,
        }
        stats.update(get_channel_statistics())
        stats["attached_channels"] = [ch.value for ch in self.channel_handlers]
        return stats


def configure_enhanced_logging(settings: Settings) -> None:
    """Configure the logging system once per process."""
    global _logger_manager

    if _logger_manager is not None:
        return

    _logger_manager = EnhancedLoggerManager(settings)


def reset_enhanced_logging() -> None:
    """Detach channel handlers so logging can be configured again (tests)."""
    global _logger_manager

    if _logger_manager is None:
        return
    root_logger = logging.getLogger()
    for handler in _logger_manager.channel_handlers.values():
        root_logger.removeHandler(handler)
        handler.close()
    if _logger_manager.console_handler is not None:
        root_logger.removeHandler(_logger_manager.console_handler)
    _logger_manager = None
    structlog.reset_defaults()


def get_enhanced_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    if _logger_manager is None:
        # Unconfigured: structlog defaults, still bound with component context
        logger = structlog.get_logger(name)
        if component:
            logger = logger.bind(
                component=component,
                channel=get_channel_for_component(component).value,
            )
        return logger

    return _logger_manager.get_logger(name, component)


def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    """Get a logger for a specific channel."""
    if _logger_manager is None:
        return structlog.get_logger(name).bind(channel=channel.value)

    return _logger_manager.get_channel_logger(name, channel)


def get_logging_statistics() -> Dict[str, Any]:
    if _logger_manager is None:
        return {"error": "Logger manager not initialized"}
    return _logger_manager.get_statistics()


def get_trading_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.TRADING)


def get_resilience_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.RESILIENCE)


def get_audit_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.AUDIT)


def get_error_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.ERROR)
