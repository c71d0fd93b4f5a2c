"""
Trade Bridge Utilities
"""

from .config_loader import (
    ConfigManager,
    BridgeConfig,
    SafetyConfig,
    TrailingStopConfig,
    TrailLevel,
    LedgerConfig,
    LoggingConfig,
    ExecutionMode,
    TradingMode,
    TrailingMode,
    spot_only_config,
    futures_config,
    live_config,
    LIVE_CONFIRMATION_TOKEN,
    CLOSE_ALL_CONFIRMATION_TOKEN
)
from .logger import setup_logging, get_logger, mask_value, SecretRedactionFilter

__all__ = [
    "ConfigManager",
    "BridgeConfig",
    "SafetyConfig",
    "TrailingStopConfig",
    "TrailLevel",
    "LedgerConfig",
    "LoggingConfig",
    "ExecutionMode",
    "TradingMode",
    "TrailingMode",
    "spot_only_config",
    "futures_config",
    "live_config",
    "LIVE_CONFIRMATION_TOKEN",
    "CLOSE_ALL_CONFIRMATION_TOKEN",
    "setup_logging",
    "get_logger",
    "mask_value",
    "SecretRedactionFilter"
]
