"""
YAML configuration loader for the trading service.

Loads exchange, automation and trading settings from a YAML file; any key
left out falls back to engine.shared.defaults.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml

from .shared.defaults import (
    CANDLE_UNIT_MINUTES, CANDLE_WINDOW, MARKET_TIMEZONE,
    MIN_ORDER_AMOUNT, TICK_INTERVAL_SECONDS,
)
from .broker.upbit_client import DEFAULT_BASE_URL


@dataclass(frozen=True)
class EngineConfig:
    """Runtime configuration of the trading service."""
    # Exchange
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 10.0

    # Automation
    tick_seconds: float = TICK_INTERVAL_SECONDS
    candle_unit_minutes: int = CANDLE_UNIT_MINUTES
    candle_count: int = CANDLE_WINDOW
    state_path: Path = Path("data/state/bot_settings.json")
    trade_log_path: Path = Path("data/state/trade_log.json")
    log_path: Optional[Path] = None
    timezone: str = MARKET_TIMEZONE

    # Trading
    min_order_amount: float = MIN_ORDER_AMOUNT


def load_engine_config(yaml_path: Union[str, Path]) -> EngineConfig:
    """
    Load service configuration from YAML file.

    Args:
        yaml_path: Path to YAML configuration file

    Returns:
        EngineConfig object

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If YAML is invalid or a value is out of range
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, 'r') as f:
        config_dict = yaml.safe_load(f)

    if not config_dict:
        raise ValueError(f"Empty config file: {yaml_path}")
    if not isinstance(config_dict, dict):
        raise ValueError(f"Config file must contain a mapping: {yaml_path}")

    exchange = config_dict.get('exchange', {}) or {}
    automation = config_dict.get('automation', {}) or {}
    trading = config_dict.get('trading', {}) or {}

    defaults = EngineConfig()
    log_path = automation.get('log_path')

    config = EngineConfig(
        base_url=exchange.get('base_url', defaults.base_url),
        timeout_seconds=float(exchange.get('timeout_seconds', defaults.timeout_seconds)),

        tick_seconds=float(automation.get('tick_seconds', defaults.tick_seconds)),
        candle_unit_minutes=int(automation.get('candle_unit_minutes', defaults.candle_unit_minutes)),
        candle_count=int(automation.get('candle_count', defaults.candle_count)),
        state_path=Path(automation.get('state_path', defaults.state_path)),
        trade_log_path=Path(automation.get('trade_log_path', defaults.trade_log_path)),
        log_path=Path(log_path) if log_path else None,
        timezone=automation.get('timezone', defaults.timezone),

        min_order_amount=float(trading.get('min_order_amount', defaults.min_order_amount)),
    )

    validate_engine_config(config)
    return config


def validate_engine_config(config: EngineConfig) -> None:
    """Raise ValueError for values the service cannot run with."""
    if config.timeout_seconds <= 0:
        raise ValueError(f"exchange.timeout_seconds must be > 0, got {config.timeout_seconds}")
    if config.tick_seconds <= 0:
        raise ValueError(f"automation.tick_seconds must be > 0, got {config.tick_seconds}")
    if config.candle_count < 1:
        raise ValueError(f"automation.candle_count must be >= 1, got {config.candle_count}")
    if config.min_order_amount < MIN_ORDER_AMOUNT:
        raise ValueError(
            f"trading.min_order_amount must be >= {MIN_ORDER_AMOUNT} (exchange minimum), "
            f"got {config.min_order_amount}"
        )
