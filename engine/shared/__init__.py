"""
Shared types and defaults for the strategy engine.

This module provides:
- The data model (candles, settings, trading state, signals, trade log entries)
- Centralized default values for all strategy and exchange parameters
"""
from .types import (
    SignalType, OrderSide, StrategyKind,
    Candle, Credentials, BotSettings, MarketState, TradingState,
    StateDelta, Signal, Evaluation, TradeLogEntry, split_market, to_utc,
)
from .defaults import (
    MIN_ORDER_AMOUNT, DEFAULT_FEE_RATE, SLIPPAGE_MARGIN,
    DEFAULT_MARKET, TICK_INTERVAL_SECONDS, CANDLE_WINDOW,
    STRATEGY_COOLDOWNS, STRATEGY_DEFAULT_THRESHOLDS,
)

__all__ = [
    'SignalType', 'OrderSide', 'StrategyKind',
    'Candle', 'Credentials', 'BotSettings', 'MarketState', 'TradingState',
    'StateDelta', 'Signal', 'Evaluation', 'TradeLogEntry', 'split_market', 'to_utc',
    'MIN_ORDER_AMOUNT', 'DEFAULT_FEE_RATE', 'SLIPPAGE_MARGIN',
    'DEFAULT_MARKET', 'TICK_INTERVAL_SECONDS', 'CANDLE_WINDOW',
    'STRATEGY_COOLDOWNS', 'STRATEGY_DEFAULT_THRESHOLDS',
]
