"""
Tests for technical indicators (RSI, SMA, EMA, MACD, Bollinger, Stochastic, ATR).
"""
import math

import numpy as np
import pandas as pd
import pytest

from engine.indicators.technical import (
    atr,
    atr_pct,
    bollinger_bands,
    candles_to_frame,
    closes,
    ema,
    ema_series,
    macd,
    rsi,
    sma,
    stochastic,
    true_ranges,
)
from engine.shared.types import Candle


@pytest.fixture
def sample_prices():
    """Deterministic noisy uptrend."""
    rng = np.random.default_rng(7)
    return list(100 + np.arange(100) * 0.5 + rng.normal(0, 2, 100))


class TestRSI:
    """Test RSI calculation."""

    def test_rsi_range(self, sample_prices):
        """RSI should be between 0 and 100."""
        for end in range(15, len(sample_prices)):
            value = rsi(sample_prices[:end])
            assert 0 <= value <= 100

    def test_short_history_is_neutral(self):
        """Fewer than period + 1 samples returns 50."""
        assert rsi([100 - i for i in range(14)]) == 50.0
        assert rsi([]) == 50.0

    def test_no_losses_is_100(self):
        assert rsi([100 + i for i in range(15)]) == 100.0

    def test_only_losses_is_0(self):
        assert rsi([100 - i for i in range(15)]) == 0.0

    def test_balanced_moves_is_50(self):
        prices = [100 + (i % 2) for i in range(15)]
        assert rsi(prices) == pytest.approx(50.0)

    def test_uses_only_last_period_deltas(self):
        """A large old move outside the window does not change the result."""
        tail = [100 + (i % 2) for i in range(15)]
        assert rsi([10.0] + tail) == pytest.approx(rsi(tail))

    def test_accepts_series(self, sample_prices):
        assert rsi(pd.Series(sample_prices)) == rsi(sample_prices)


class TestSMA:
    """Test simple moving average."""

    def test_mean_of_last_period(self):
        assert sma([1, 2, 3, 4, 5], 3) == pytest.approx(4.0)

    def test_short_history_returns_last_value(self):
        assert sma([7.0, 9.0], 5) == 9.0

    def test_empty(self):
        assert sma([], 3) == 0.0


class TestEMA:
    """Test exponential moving average."""

    def test_seeded_with_first_price(self):
        assert ema_series([10, 20], 3).iloc[0] == 10
        # alpha = 2 / (3 + 1) = 0.5
        assert ema([10, 20], 3) == pytest.approx(15.0)

    def test_constant_prices(self):
        assert ema([42.0] * 30, 12) == pytest.approx(42.0)

    def test_empty(self):
        assert ema([], 12) == 0.0

    def test_deterministic(self, sample_prices):
        assert ema(sample_prices, 20) == ema(list(sample_prices), 20)


class TestMACD:
    """Test MACD."""

    def test_zeros_on_short_history(self):
        values = macd(list(range(34)))
        assert (values.macd, values.signal, values.histogram) == (0.0, 0.0, 0.0)

    def test_uptrend_positive(self):
        values = macd([100 + i for i in range(60)])
        assert values.macd > 0
        assert values.histogram == pytest.approx(values.macd - values.signal)

    def test_constant_prices_zero(self):
        values = macd([50.0] * 40)
        assert values.macd == pytest.approx(0.0)
        assert values.signal == pytest.approx(0.0)


class TestBollinger:
    """Test Bollinger bands."""

    def test_collapse_on_short_history(self):
        bands = bollinger_bands([1, 2, 3], period=20)
        assert bands.upper == bands.middle == bands.lower == 3

    def test_population_std(self):
        prices = list(range(1, 21))
        bands = bollinger_bands(prices, period=20, std_dev=2)
        sigma = math.sqrt((20 ** 2 - 1) / 12)
        assert bands.middle == pytest.approx(10.5)
        assert bands.upper == pytest.approx(10.5 + 2 * sigma)
        assert bands.lower == pytest.approx(10.5 - 2 * sigma)
        assert bands.width == pytest.approx(4 * sigma)

    def test_constant_prices_zero_width(self):
        assert bollinger_bands([100.0] * 25).width == 0.0


class TestStochastic:
    """Test stochastic oscillator."""

    def test_short_history_is_neutral(self, make_candles):
        values = stochastic(make_candles([100] * 10))
        assert (values.k, values.d) == (50.0, 50.0)

    def test_flat_range_is_50(self, make_candles):
        values = stochastic(make_candles([100] * 20))
        assert values.k == pytest.approx(50.0)
        assert values.d == pytest.approx(50.0)

    def test_closing_at_high(self):
        stamps = pd.date_range("2024-01-01", periods=20, freq="1min", tz="UTC")
        candles = [Candle(ts, i, i + 1, i, i + 1) for i, ts in enumerate(stamps)]
        values = stochastic(candles)
        assert values.k == pytest.approx(100.0)
        assert values.d == pytest.approx(100.0)


class TestATR:
    """Test average true range."""

    def test_constant_spread(self, make_candles):
        candles = make_candles([100] * 20, spread=1.0)
        assert atr(candles) == pytest.approx(2.0)
        assert atr_pct(candles) == pytest.approx(0.02)

    def test_gap_uses_previous_close(self):
        stamps = pd.date_range("2024-01-01", periods=2, freq="1min", tz="UTC")
        candles = [
            Candle(stamps[0], 10, 11, 9, 10),
            Candle(stamps[1], 14, 15, 13, 14),
        ]
        assert true_ranges(candles) == [2, 5]

    def test_empty(self):
        assert atr([]) == 0.0
        assert atr_pct([]) == 0.0


class TestHelpers:

    def test_closes_and_frame(self, make_candles):
        candles = make_candles([1, 2, 3])
        assert closes(candles) == [1.0, 2.0, 3.0]
        frame = candles_to_frame(candles)
        assert list(frame.columns) == ['Open', 'High', 'Low', 'Close', 'Volume']
        assert frame['Close'].tolist() == [1.0, 2.0, 3.0]
        assert candles_to_frame([]).empty
