"""
Logging channels for the trade router.

Every record is tagged with a channel. With file logging enabled each channel
writes to its own rotating file under ``logs_dir``; ``error.log`` additionally
collects ERROR records from all channels.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pathlib import Path
from dataclasses import dataclass


class LogChannel(str, Enum):
    APPLICATION = "application"
    TRADING = "trading"          # Routing, execution, positions
    RESILIENCE = "resilience"    # Rate limits, broken connections, Redis
    AUDIT = "audit"              # Fund holds and releases
    ERROR = "error"


@dataclass(frozen=True)
class ChannelConfig:
    filename: str
    level: str = "INFO"
    # None falls back to LoggingSettings.file_backup_count
    backup_count: Optional[int] = None

    def get_file_path(self, logs_dir: str) -> Path:
        return Path(logs_dir) / self.filename


CHANNEL_CONFIGS: Dict[LogChannel, ChannelConfig] = {
    LogChannel.APPLICATION: ChannelConfig("application.log"),
    LogChannel.TRADING: ChannelConfig("trading.log", backup_count=20),
    LogChannel.RESILIENCE: ChannelConfig("resilience.log"),
    LogChannel.AUDIT: ChannelConfig("audit.log", backup_count=50),
    LogChannel.ERROR: ChannelConfig("error.log", level="ERROR", backup_count=20),
}

COMPONENT_CHANNELS: Dict[str, LogChannel] = {
    "trading_engine": LogChannel.TRADING,
    "brokerage_router": LogChannel.TRADING,
    "trade_orchestrator": LogChannel.TRADING,
    "paper_trader": LogChannel.TRADING,
    "portfolio_manager": LogChannel.TRADING,
    "rate_limiter": LogChannel.RESILIENCE,
    "broken_connections": LogChannel.RESILIENCE,
    "provider_errors": LogChannel.RESILIENCE,
    "redis": LogChannel.RESILIENCE,
    "wallet": LogChannel.AUDIT,
    "audit": LogChannel.AUDIT,
}


def get_channel_for_component(component: str) -> LogChannel:
    """Map a component name to its channel; unknown components log to APPLICATION."""
    return COMPONENT_CHANNELS.get(component, LogChannel.APPLICATION)


def get_channel_config(channel: LogChannel) -> ChannelConfig:
    return CHANNEL_CONFIGS[channel]


def create_log_directory_structure(logs_dir: str) -> None:
    Path(logs_dir).mkdir(parents=True, exist_ok=True)


def get_channel_statistics() -> Dict[str, Any]:
    return {
        "total_channels": len(LogChannel),
        "channels": {
            channel.value: {
                "filename": config.filename,
                "level": config.level,
                "backup_count": config.backup_count,
            }
            for channel, config in CHANNEL_CONFIGS.items()
        },
    }
