"""
Configuration loader and manager

Typed configuration containers with explicit defaults. Each container
validates itself once at construction; changes go through
dataclasses.replace so the validation runs again.
"""

import os
import yaml
from typing import Dict, Any, Optional
from dataclasses import dataclass, fields, replace
from enum import Enum
import logging

from ..errors import ConfigError

logger = logging.getLogger(__name__)


LIVE_CONFIRMATION_TOKEN = "I_UNDERSTAND_THIS_USES_REAL_MONEY"
CLOSE_ALL_CONFIRMATION_TOKEN = "CLOSE_ALL_NOW"

MIN_LIVE_RECONCILE_INTERVAL_MS = 30000


class ExecutionMode(Enum):
    """Execution fidelity, from logging intent to placing real orders"""
    LOG_ONLY = "log_only"
    PAPER_MIRROR = "paper_mirror"
    REAL_MONEY = "real_money"

    @classmethod
    def parse(cls, value: Any) -> "ExecutionMode":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            "dry_run": cls.LOG_ONLY,
            "shadow": cls.PAPER_MIRROR,
            "live": cls.REAL_MONEY,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ConfigError(f"Unknown execution mode: {value}")


class TradingMode(Enum):
    """Market type"""
    SPOT = "spot"
    FUTURES = "futures"

    @classmethod
    def parse(cls, value: Any) -> "TradingMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown trading mode: {value}")


class TrailingMode(Enum):
    """Trailing stop strategy"""
    NATIVE = "native"
    MANUAL = "manual"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value: Any) -> "TrailingMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown trailing mode: {value}")


@dataclass(frozen=True)
class BridgeConfig:
    """Execution bridge safety limits"""
    mode: ExecutionMode = ExecutionMode.LOG_ONLY
    trading_mode: TradingMode = TradingMode.FUTURES
    long_only: bool = False
    max_concurrent_positions: int = 5
    max_daily_trades: int = 50
    max_position_size_usd: float = 100.0
    max_total_exposure_usd: float = 500.0
    max_loss_per_day_usd: float = 100.0
    reconcile_interval_ms: int = 60000
    auto_close_orphans: bool = False

    def __post_init__(self):
        object.__setattr__(self, "mode", ExecutionMode.parse(self.mode))
        object.__setattr__(self, "trading_mode", TradingMode.parse(self.trading_mode))

        # Spot markets cannot be shorted
        if self.trading_mode == TradingMode.SPOT and not self.long_only:
            object.__setattr__(self, "long_only", True)

        for name in ("max_concurrent_positions", "max_daily_trades"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

        for name in ("max_position_size_usd", "max_total_exposure_usd", "max_loss_per_day_usd"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be positive, got {value!r}")

        if self.max_position_size_usd > self.max_total_exposure_usd:
            raise ConfigError(
                f"max_position_size_usd ({self.max_position_size_usd}) exceeds "
                f"max_total_exposure_usd ({self.max_total_exposure_usd})"
            )

        if not isinstance(self.reconcile_interval_ms, int) or self.reconcile_interval_ms < 0:
            raise ConfigError(f"reconcile_interval_ms must be >= 0, got {self.reconcile_interval_ms!r}")

    @property
    def is_live(self) -> bool:
        return self.mode == ExecutionMode.REAL_MONEY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "trading_mode": self.trading_mode.value,
            "long_only": self.long_only,
            "max_concurrent_positions": self.max_concurrent_positions,
            "max_daily_trades": self.max_daily_trades,
            "max_position_size_usd": self.max_position_size_usd,
            "max_total_exposure_usd": self.max_total_exposure_usd,
            "max_loss_per_day_usd": self.max_loss_per_day_usd,
            "reconcile_interval_ms": self.reconcile_interval_ms,
            "auto_close_orphans": self.auto_close_orphans,
        }


RECONFIGURABLE_FIELDS = frozenset(BridgeConfig().to_dict().keys())


def spot_only_config(balance: float, **overrides) -> BridgeConfig:
    """Conservative spot config sized from account balance"""
    params = dict(
        trading_mode=TradingMode.SPOT,
        long_only=True,
        max_position_size_usd=balance * 0.25,
        max_total_exposure_usd=balance * 0.8,
        max_loss_per_day_usd=balance * 0.1,
    )
    params.update(overrides)
    return BridgeConfig(**params)


def futures_config(**overrides) -> BridgeConfig:
    """Futures config with default limits"""
    params = dict(trading_mode=TradingMode.FUTURES)
    params.update(overrides)
    return BridgeConfig(**params)


def live_config(base: Optional[BridgeConfig] = None, **overrides) -> BridgeConfig:
    """
    Real-money config

    The reconcile interval is floored at 30s and orphans are never closed
    automatically, whatever the base says.
    """
    config = replace(base or BridgeConfig(), **overrides) if overrides else (base or BridgeConfig())
    return replace(
        config,
        mode=ExecutionMode.REAL_MONEY,
        reconcile_interval_ms=max(config.reconcile_interval_ms, MIN_LIVE_RECONCILE_INTERVAL_MS),
        auto_close_orphans=False,
    )


@dataclass(frozen=True)
class SafetyConfig:
    """Exchange-side pre-trade limits"""
    live_trading_enabled: bool = False
    max_position_size_usdt: float = 100.0
    max_total_exposure_usdt: float = 500.0
    max_leverage: int = 20
    blacklisted_symbols: tuple = ()
    emergency_stop: bool = False
    cancel_min_interval: float = 0.5
    request_timeout: float = 10.0

    def __post_init__(self):
        object.__setattr__(
            self, "blacklisted_symbols",
            tuple(s.strip().upper() for s in self.blacklisted_symbols if s and s.strip())
        )
        if self.max_leverage < 1:
            raise ConfigError(f"max_leverage must be >= 1, got {self.max_leverage}")
        if self.max_position_size_usdt <= 0 or self.max_total_exposure_usdt <= 0:
            raise ConfigError("Position size and exposure caps must be positive")
        if self.cancel_min_interval < 0:
            raise ConfigError("cancel_min_interval must be >= 0")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")


@dataclass(frozen=True)
class TrailLevel:
    """Manual trailing level: once ROI reaches trigger, stop sits at stop ROI"""
    trigger_roi_percent: float
    stop_roi_percent: float


DEFAULT_TRAIL_LEVELS = (
    TrailLevel(10.0, 0.0),     # Breakeven at +10% ROI
    TrailLevel(20.0, 10.0),
    TrailLevel(30.0, 20.0),
    TrailLevel(40.0, 30.0),
    TrailLevel(50.0, 40.0),
)


@dataclass(frozen=True)
class TrailingStopConfig:
    """Trailing stop configuration for all three modes"""
    mode: TrailingMode = TrailingMode.MANUAL
    initial_stop_roi_percent: float = -20.0

    # Native
    activation_percent: float = 10.0
    callback_percent: float = 5.0
    price_type: str = "last"  # last, fair or index

    # Manual
    levels: tuple = DEFAULT_TRAIL_LEVELS
    poll_interval_seconds: float = 5.0
    # Stops younger than this are never reported as externally closed
    close_grace_seconds: float = 90.0

    # Hybrid
    use_native_execution: bool = True
    fallback_to_manual: bool = True

    def __post_init__(self):
        object.__setattr__(self, "mode", TrailingMode.parse(self.mode))
        levels = tuple(
            lvl if isinstance(lvl, TrailLevel) else TrailLevel(
                float(lvl["trigger_roi_percent"]), float(lvl["stop_roi_percent"])
            )
            for lvl in self.levels
        )
        object.__setattr__(self, "levels", tuple(sorted(levels, key=lambda l: l.trigger_roi_percent)))

        if self.price_type not in ("last", "fair", "index"):
            raise ConfigError(f"Unknown trailing price type: {self.price_type}")
        if self.callback_percent <= 0:
            raise ConfigError("callback_percent must be positive")
        if self.poll_interval_seconds <= 0:
            raise ConfigError("poll_interval_seconds must be positive")
        if self.close_grace_seconds < 0:
            raise ConfigError("close_grace_seconds cannot be negative")
        if self.initial_stop_roi_percent >= 0:
            raise ConfigError("initial_stop_roi_percent must be negative")
        for lvl in self.levels:
            if lvl.stop_roi_percent >= lvl.trigger_roi_percent:
                raise ConfigError(
                    f"Trail level stop ({lvl.stop_roi_percent}) must sit below its trigger ({lvl.trigger_roi_percent})"
                )


@dataclass(frozen=True)
class LedgerConfig:
    """Paper ledger configuration"""
    initial_balance: float = 1000.0
    max_positions: int = 5
    initial_stop_percent: float = 2.0        # Price %, used when a signal has no stop
    default_trail_trigger_percent: float = 10.0  # ROI % that activates the ledger trail
    trail_step_percent: float = 3.0          # ROI % given back from the peak
    use_trailing_stop: bool = True
    use_take_profit: bool = True

    def __post_init__(self):
        if self.initial_balance <= 0:
            raise ConfigError("initial_balance must be positive")
        if self.max_positions < 1:
            raise ConfigError("max_positions must be >= 1")
        if self.initial_stop_percent <= 0 or self.trail_step_percent <= 0:
            raise ConfigError("initial_stop_percent and trail_step_percent must be positive")


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = "logs/bridge.log"
    max_size_mb: int = 100
    backup_count: int = 5


def _build(cls, cfg: Dict[str, Any], section: str):
    """Build a config dataclass, rejecting keys it does not declare"""
    known = {f.name for f in fields(cls)}
    unknown = set(cfg) - known
    if unknown:
        raise ConfigError(f"Unknown {section} settings: {sorted(unknown)}")
    return cls(**cfg)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"Environment variable {name} must be numeric")


class ConfigManager:
    """Manages bridge configuration"""

    def __init__(self, config_path: str = None, raw_config: Optional[Dict] = None):
        if raw_config is not None:
            self.config_path = config_path
            self._raw_config = raw_config
        else:
            self.config_path = config_path or self._find_config()
            self._raw_config: Dict = {}
            self._load_config()

    def _find_config(self) -> str:
        """Find configuration file"""
        possible_paths = [
            "config/settings.yaml",
            "../config/settings.yaml",
            "settings.yaml",
            os.path.expanduser("~/.trade_bridge/settings.yaml")
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return "config/settings.yaml"

    def _load_config(self) -> None:
        """Load configuration from file"""
        if not os.path.exists(self.config_path):
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            self._raw_config = {}
            return

        try:
            with open(self.config_path, 'r') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}")

        if not isinstance(loaded, dict):
            raise ConfigError(f"Config root must be a mapping: {self.config_path}")

        self._raw_config = loaded
        logger.info(f"Loaded configuration from {self.config_path}")

    def _resolve_env_vars(self, value: Any) -> Any:
        """Resolve environment variables in config values"""
        if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
            env_var = value[2:-1]
            return os.getenv(env_var, "")
        return value

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigError(f"Config section '{name}' must be a mapping")
        return {k: self._resolve_env_vars(v) for k, v in cfg.items()}

    @property
    def api_key(self) -> str:
        """Get API key"""
        creds = self._raw_config.get("credentials", {})
        return self._resolve_env_vars(creds.get("api_key", "${MEXC_API_KEY}"))

    @property
    def api_secret(self) -> str:
        """Get API secret"""
        creds = self._raw_config.get("credentials", {})
        return self._resolve_env_vars(creds.get("api_secret", "${MEXC_API_SECRET}"))

    @property
    def base_url(self) -> str:
        return self._section("exchange").get("base_url", "https://contract.mexc.com")

    @property
    def bridge(self) -> BridgeConfig:
        """Get bridge configuration"""
        cfg = self._section("bridge")
        unknown = set(cfg) - RECONFIGURABLE_FIELDS
        if unknown:
            raise ConfigError(f"Unknown bridge settings: {sorted(unknown)}")

        config = BridgeConfig(**cfg)
        if config.is_live:
            config = live_config(config)
        return config

    @property
    def safety(self) -> SafetyConfig:
        """Get exchange safety limits. Environment variables override the file."""
        cfg = self._section("safety")

        blacklist = cfg.get("blacklisted_symbols", [])
        env_blacklist = os.getenv("BLACKLISTED_SYMBOLS")
        if env_blacklist:
            blacklist = env_blacklist.split(",")
        elif isinstance(blacklist, str):
            blacklist = blacklist.split(",")

        return SafetyConfig(
            live_trading_enabled=_env_bool("LIVE_TRADING_ENABLED", bool(cfg.get("live_trading_enabled", False))),
            max_position_size_usdt=_env_float("MAX_POSITION_SIZE_USDT", float(cfg.get("max_position_size_usdt", 100.0))),
            max_total_exposure_usdt=_env_float("MAX_TOTAL_EXPOSURE_USDT", float(cfg.get("max_total_exposure_usdt", 500.0))),
            max_leverage=int(_env_float("MAX_LEVERAGE", float(cfg.get("max_leverage", 20)))),
            blacklisted_symbols=tuple(blacklist),
            emergency_stop=_env_bool("EMERGENCY_STOP", bool(cfg.get("emergency_stop", False))),
            cancel_min_interval=float(cfg.get("cancel_min_interval", 0.5)),
            request_timeout=float(cfg.get("request_timeout", 10.0)),
        )

    @property
    def trailing(self) -> TrailingStopConfig:
        """Get trailing stop configuration"""
        cfg = self._section("trailing")
        levels = cfg.pop("levels", None)
        if levels is not None:
            cfg["levels"] = tuple(levels)
        return _build(TrailingStopConfig, cfg, "trailing")

    @property
    def ledger(self) -> LedgerConfig:
        """Get paper ledger configuration"""
        return _build(LedgerConfig, self._section("ledger"), "ledger")

    @property
    def logging(self) -> LoggingConfig:
        """Get logging configuration"""
        return _build(LoggingConfig, self._section("logging"), "logging")

    def update(self, section: str, key: str, value: Any) -> None:
        """Update a configuration value"""
        if section not in self._raw_config:
            self._raw_config[section] = {}
        self._raw_config[section][key] = value
