"""
Configuration Tests.

Covers:
- Dataclass validation and mode parsing
- Config factories (spot, futures, live)
- ConfigManager sections, env resolution and overrides
- YAML loading
"""

from dataclasses import replace

import pytest

from trade_bridge.errors import ConfigError
from trade_bridge.utils.config_loader import (
    BridgeConfig,
    ConfigManager,
    ExecutionMode,
    LedgerConfig,
    SafetyConfig,
    TrailLevel,
    TrailingMode,
    TrailingStopConfig,
    TradingMode,
    futures_config,
    live_config,
    spot_only_config,
)


class TestBridgeConfig:
    """BridgeConfig validation."""

    def test_defaults(self):
        config = BridgeConfig()

        assert config.mode == ExecutionMode.LOG_ONLY
        assert config.trading_mode == TradingMode.FUTURES
        assert not config.is_live

    @pytest.mark.parametrize("value,expected", [
        ("log_only", ExecutionMode.LOG_ONLY),
        ("SHADOW", ExecutionMode.PAPER_MIRROR),
        ("live", ExecutionMode.REAL_MONEY),
        (ExecutionMode.REAL_MONEY, ExecutionMode.REAL_MONEY),
    ])
    def test_mode_parsing(self, value, expected):
        assert BridgeConfig(mode=value).mode == expected

    def test_unknown_mode(self):
        with pytest.raises(ConfigError):
            BridgeConfig(mode="yolo")

    def test_spot_forces_long_only(self):
        assert BridgeConfig(trading_mode="spot").long_only

    @pytest.mark.parametrize("overrides", [
        {"max_concurrent_positions": 0},
        {"max_daily_trades": True},
        {"max_position_size_usd": -1},
        {"max_loss_per_day_usd": 0},
        {"max_position_size_usd": 600.0, "max_total_exposure_usd": 500.0},
        {"reconcile_interval_ms": -1},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigError):
            BridgeConfig(**overrides)

    def test_replace_revalidates(self):
        with pytest.raises(ConfigError):
            replace(BridgeConfig(), max_daily_trades=0)


class TestFactories:
    """Preset configurations."""

    def test_spot_only_sized_from_balance(self):
        config = spot_only_config(1000.0)

        assert config.trading_mode == TradingMode.SPOT
        assert config.long_only
        assert config.max_position_size_usd == pytest.approx(250.0)
        assert config.max_total_exposure_usd == pytest.approx(800.0)
        assert config.max_loss_per_day_usd == pytest.approx(100.0)

    def test_futures_overrides(self):
        config = futures_config(max_daily_trades=7)

        assert config.trading_mode == TradingMode.FUTURES
        assert config.max_daily_trades == 7

    def test_live_config_floors_reconcile_interval(self):
        config = live_config(reconcile_interval_ms=1000, auto_close_orphans=True)

        assert config.mode == ExecutionMode.REAL_MONEY
        assert config.reconcile_interval_ms == 30000
        assert not config.auto_close_orphans

    def test_live_config_keeps_slower_interval(self):
        base = BridgeConfig(reconcile_interval_ms=120000, long_only=True)

        config = live_config(base)

        assert config.reconcile_interval_ms == 120000
        assert config.long_only


class TestOtherConfigs:
    """Safety, trailing and ledger containers."""

    def test_blacklist_normalized(self):
        safety = SafetyConfig(blacklisted_symbols=(" btc_usdt ", "", "ETH_USDT"))

        assert safety.blacklisted_symbols == ("BTC_USDT", "ETH_USDT")

    def test_safety_rejects_bad_leverage(self):
        with pytest.raises(ConfigError):
            SafetyConfig(max_leverage=0)

    def test_trail_levels_from_dicts_are_sorted(self):
        config = TrailingStopConfig(levels=[
            {"trigger_roi_percent": 20, "stop_roi_percent": 10},
            {"trigger_roi_percent": 10, "stop_roi_percent": 0},
        ])

        assert config.levels == (TrailLevel(10.0, 0.0), TrailLevel(20.0, 10.0))

    @pytest.mark.parametrize("overrides", [
        {"price_type": "mark"},
        {"callback_percent": 0},
        {"close_grace_seconds": -1},
        {"initial_stop_roi_percent": 5.0},
        {"levels": (TrailLevel(10.0, 10.0),)},
        {"mode": "sideways"},
    ])
    def test_trailing_validation(self, overrides):
        with pytest.raises(ConfigError):
            TrailingStopConfig(**overrides)

    def test_ledger_validation(self):
        with pytest.raises(ConfigError):
            LedgerConfig(max_positions=0)


class TestConfigManager:
    """Sections, env vars and file loading."""

    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(str(tmp_path / "missing.yaml"))

        assert manager.bridge == BridgeConfig()
        assert manager.trailing.mode == TrailingMode.MANUAL
        assert manager.base_url == "https://contract.mexc.com"

    def test_credentials_resolve_from_env(self, monkeypatch):
        monkeypatch.setenv("MEXC_API_KEY", "key-from-env")
        monkeypatch.setenv("MEXC_API_SECRET", "secret-from-env")

        manager = ConfigManager(raw_config={})

        assert manager.api_key == "key-from-env"
        assert manager.api_secret == "secret-from-env"

    def test_missing_env_resolves_to_empty(self, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        manager = ConfigManager(raw_config={"credentials": {"api_key": "${NOT_SET_ANYWHERE}"}})

        assert manager.api_key == ""

    def test_live_bridge_section_is_clamped(self):
        manager = ConfigManager(raw_config={
            "bridge": {"mode": "real_money", "reconcile_interval_ms": 5000, "auto_close_orphans": True}
        })

        config = manager.bridge

        assert config.is_live
        assert config.reconcile_interval_ms == 30000
        assert not config.auto_close_orphans

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigError):
            ConfigManager(raw_config={"bridge": {"max_leverage": 50}}).bridge
        with pytest.raises(ConfigError):
            ConfigManager(raw_config={"ledger": {"balance": 5}}).ledger

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError):
            ConfigManager(raw_config={"bridge": ["log_only"]}).bridge

    def test_safety_env_overrides(self, monkeypatch):
        monkeypatch.setenv("LIVE_TRADING_ENABLED", "true")
        monkeypatch.setenv("MAX_LEVERAGE", "5")
        monkeypatch.setenv("BLACKLISTED_SYMBOLS", "doge_usdt,pepe_usdt")
        manager = ConfigManager(raw_config={"safety": {"live_trading_enabled": False, "max_leverage": 20}})

        safety = manager.safety

        assert safety.live_trading_enabled
        assert safety.max_leverage == 5
        assert safety.blacklisted_symbols == ("DOGE_USDT", "PEPE_USDT")

    def test_non_numeric_env_override(self, monkeypatch):
        monkeypatch.setenv("MAX_POSITION_SIZE_USDT", "lots")

        with pytest.raises(ConfigError):
            ConfigManager(raw_config={}).safety

    def test_update(self):
        manager = ConfigManager(raw_config={})

        manager.update("bridge", "long_only", True)

        assert manager.bridge.long_only

    def test_load_yaml(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LIVE_TRADING_ENABLED", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text(
            "bridge:\n"
            "  mode: paper_mirror\n"
            "  max_daily_trades: 12\n"
            "trailing:\n"
            "  mode: hybrid\n"
            "  levels:\n"
            "    - {trigger_roi_percent: 15, stop_roi_percent: 5}\n"
            "logging:\n"
            "  level: DEBUG\n"
            "  file: null\n"
        )

        manager = ConfigManager(str(path))

        assert manager.bridge.mode == ExecutionMode.PAPER_MIRROR
        assert manager.bridge.max_daily_trades == 12
        assert manager.trailing.mode == TrailingMode.HYBRID
        assert manager.trailing.levels == (TrailLevel(15.0, 5.0),)
        assert manager.logging.level == "DEBUG"
        assert manager.logging.file is None

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("bridge: [unclosed\n")

        with pytest.raises(ConfigError):
            ConfigManager(str(path))

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            ConfigManager(str(path))
