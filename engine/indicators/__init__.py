"""
Indicator calculation module.

Provides all technical indicators used by the strategies:
RSI, SMA, EMA, MACD, Bollinger Bands, Stochastic and ATR.

All indicators are pure, deterministic functions over price or candle sequences.
"""
from .technical import (
    MACDValues,
    BollingerBands,
    StochasticValues,
    closes,
    candles_to_frame,
    rsi,
    sma,
    ema,
    ema_series,
    macd,
    bollinger_bands,
    stochastic,
    true_ranges,
    atr,
    atr_pct,
)

__all__ = [
    'MACDValues',
    'BollingerBands',
    'StochasticValues',
    'closes',
    'candles_to_frame',
    'rsi',
    'sma',
    'ema',
    'ema_series',
    'macd',
    'bollinger_bands',
    'stochastic',
    'true_ranges',
    'atr',
    'atr_pct',
]
