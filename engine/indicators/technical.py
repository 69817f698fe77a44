"""
Technical indicators used by the strategy evaluator.

Provides RSI, SMA, EMA, MACD, Bollinger Bands, Stochastic %K/%D and ATR as
pure functions over price lists or candle sequences. Every function returns
the value for the most recent sample and falls back to a neutral value when
the history is too short, so callers never have to special-case warm-up.

The live trader and the backtest simulator both call these functions with
the same candle windows; results must stay bit-identical between the two.
"""
from dataclasses import dataclass
from typing import List, Sequence, Union

import numpy as np
import pandas as pd

from ..shared.types import Candle
from ..shared.defaults import (
    RSI_PERIOD,
    MACD_FAST, MACD_SLOW, MACD_SIGNAL,
    BOLLINGER_PERIOD, BOLLINGER_STD_DEV,
    STOCHASTIC_PERIOD, STOCHASTIC_SMOOTH_K, STOCHASTIC_SMOOTH_D,
    ATR_PERIOD,
)

PriceInput = Union[Sequence[float], pd.Series, np.ndarray]


@dataclass(frozen=True)
class MACDValues:
    """MACD line, signal line and histogram at the latest sample."""
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    """Bollinger bands at the latest sample."""
    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class StochasticValues:
    """Stochastic oscillator (%K smoothed, %D) at the latest sample."""
    k: float
    d: float


def _as_array(prices: PriceInput) -> np.ndarray:
    if isinstance(prices, pd.Series):
        return prices.to_numpy(dtype=float)
    return np.asarray(prices, dtype=float)


def closes(candles: Sequence[Candle]) -> List[float]:
    """Close prices of a candle sequence, oldest first."""
    return [c.close for c in candles]


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Convert candles to an OHLCV DataFrame indexed by timestamp."""
    if not candles:
        return pd.DataFrame(columns=['Open', 'High', 'Low', 'Close', 'Volume'])
    return pd.DataFrame(
        {
            'Open': [c.open for c in candles],
            'High': [c.high for c in candles],
            'Low': [c.low for c in candles],
            'Close': [c.close for c in candles],
            'Volume': [c.volume for c in candles],
        },
        index=pd.DatetimeIndex([c.timestamp for c in candles], name='timestamp'),
    )


def rsi(prices: PriceInput, period: int = RSI_PERIOD) -> float:
    """
    Relative Strength Index over the last `period` price changes.

    RSI = 100 - (100 / (1 + RS)), RS = average gain / average loss, using
    simple averages. Returns 50 with fewer than period + 1 samples and 100
    when there were no losses.
    """
    values = _as_array(prices)
    if len(values) < period + 1:
        return 50.0

    deltas = np.diff(values[-(period + 1):])
    avg_gain = float(np.where(deltas > 0, deltas, 0.0).sum()) / period
    avg_loss = float(np.where(deltas < 0, -deltas, 0.0).sum()) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def sma(prices: PriceInput, period: int) -> float:
    """Arithmetic mean of the last `period` values (last value if history is short)."""
    values = _as_array(prices)
    if len(values) == 0:
        return 0.0
    if len(values) < period:
        return float(values[-1])
    return float(values[-period:].mean())


def ema_series(prices: PriceInput, period: int) -> pd.Series:
    """Recursive EMA (alpha = 2 / (period + 1)) seeded with the first price."""
    series = pd.Series(_as_array(prices))
    return series.ewm(span=period, adjust=False).mean()


def ema(prices: PriceInput, period: int) -> float:
    """Latest EMA value, 0 on empty input."""
    if len(_as_array(prices)) == 0:
        return 0.0
    return float(ema_series(prices, period).iloc[-1])


def macd(
    prices: PriceInput,
    short_period: int = MACD_FAST,
    long_period: int = MACD_SLOW,
    signal_period: int = MACD_SIGNAL,
) -> MACDValues:
    """
    MACD (Moving Average Convergence Divergence).

    Returns zeros while the history is shorter than long_period + signal_period.
    """
    values = _as_array(prices)
    if len(values) < long_period + signal_period:
        return MACDValues(0.0, 0.0, 0.0)

    macd_line = ema_series(values, short_period) - ema_series(values, long_period)
    signal_line = macd_line.ewm(span=signal_period, adjust=False).mean()
    histogram = macd_line - signal_line
    return MACDValues(
        macd=float(macd_line.iloc[-1]),
        signal=float(signal_line.iloc[-1]),
        histogram=float(histogram.iloc[-1]),
    )


def bollinger_bands(
    prices: PriceInput,
    period: int = BOLLINGER_PERIOD,
    std_dev: float = BOLLINGER_STD_DEV,
) -> BollingerBands:
    """Bollinger bands (population std); all bands collapse to the SMA on short history."""
    values = _as_array(prices)
    middle = sma(values, period)
    if len(values) < period:
        return BollingerBands(middle, middle, middle)

    sigma = float(values[-period:].std(ddof=0))
    return BollingerBands(
        upper=middle + std_dev * sigma,
        middle=middle,
        lower=middle - std_dev * sigma,
    )


def stochastic(
    candles: Sequence[Candle],
    period: int = STOCHASTIC_PERIOD,
    smooth_k: int = STOCHASTIC_SMOOTH_K,
    smooth_d: int = STOCHASTIC_SMOOTH_D,
) -> StochasticValues:
    """
    Stochastic oscillator.

    Raw %K = (close - lowest low) / (highest high - lowest low) * 100 over a
    rolling window, smoothed by an SMA of smooth_k; %D is the SMA of smoothed
    %K over smooth_d. A flat window counts as 50.
    """
    if len(candles) < period + smooth_k + smooth_d - 2:
        return StochasticValues(50.0, 50.0)

    frame = candles_to_frame(candles)
    lowest = frame['Low'].rolling(period).min()
    highest = frame['High'].rolling(period).max()
    price_range = highest - lowest

    raw_k = ((frame['Close'] - lowest) / price_range.replace(0, np.nan) * 100).fillna(50.0)
    raw_k = raw_k.where(lowest.notna())
    k_line = raw_k.rolling(smooth_k).mean()
    d_line = k_line.rolling(smooth_d).mean()
    return StochasticValues(k=float(k_line.iloc[-1]), d=float(d_line.iloc[-1]))


def true_ranges(candles: Sequence[Candle]) -> List[float]:
    """True range per candle; the first candle has no previous close and uses high - low."""
    ranges = []
    prev_close = None
    for c in candles:
        if prev_close is None:
            ranges.append(c.high - c.low)
        else:
            ranges.append(max(c.high - c.low, abs(c.high - prev_close), abs(c.low - prev_close)))
        prev_close = c.close
    return ranges


def atr(candles: Sequence[Candle], period: int = ATR_PERIOD) -> float:
    """Average True Range over the last `period` samples."""
    ranges = true_ranges(candles)
    if not ranges:
        return 0.0
    window = ranges[-period:]
    return float(sum(window) / len(window))


def atr_pct(candles: Sequence[Candle], period: int = ATR_PERIOD) -> float:
    """ATR as a fraction of the latest close."""
    if not candles or candles[-1].close <= 0:
        return 0.0
    return atr(candles, period) / candles[-1].close
