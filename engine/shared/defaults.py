"""
Centralized default values for the strategy engine.

This is the SINGLE SOURCE OF TRUTH for trading constants and strategy
parameter defaults. All modules should import from here to ensure the live
path and the backtest path use identical numbers.
"""

# Exchange constraints (Upbit KRW market)
MIN_ORDER_AMOUNT = 5000  # Minimum order value in KRW; smaller orders are never submitted
DEFAULT_FEE_RATE = 0.0005  # 0.05% per side
SLIPPAGE_MARGIN = 0.0005  # Added on top of the round-trip fee

# Per-user settings defaults
DEFAULT_MARKET = "KRW-BTC"
DEFAULT_STRATEGY = "percent"
DEFAULT_BUY_THRESHOLD = 0.5  # Percent
DEFAULT_SELL_THRESHOLD = 0.5  # Percent
DEFAULT_TARGET_AMOUNT = 10000  # KRW per buy
DEFAULT_STOP_LOSS_PERCENT = 5.0
DEFAULT_TAKE_PROFIT_PERCENT = 10.0

# Live loop
TICK_INTERVAL_SECONDS = 10
CANDLE_UNIT_MINUTES = 1
CANDLE_WINDOW = 200  # Candles per evaluation, live and backtest alike
MARKET_TIMEZONE = "Asia/Seoul"

# RSI
RSI_PERIOD = 14
RSI_OVERSOLD = 30
RSI_OVERBOUGHT = 70

# Moving average crossover
MA_SHORT_PERIOD = 5
MA_LONG_PERIOD = 20
MA_LOOKBACK_CANDLES = 60

# MACD
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9

# Bollinger bands
BOLLINGER_PERIOD = 20
BOLLINGER_STD_DEV = 2.0

# Stochastic oscillator
STOCHASTIC_PERIOD = 14
STOCHASTIC_SMOOTH_K = 3
STOCHASTIC_SMOOTH_D = 3

# ATR
ATR_PERIOD = 14

# Dollar-cost averaging
DCA_INTERVAL_SECONDS = 3600
DCA_AVERAGE_WINDOW = 10  # Candles in the reference average
DCA_MAX_PREMIUM = 0.0045  # Skip the buy while price is >0.45% above the average

# Grid
GRID_SELL_FRACTION_PER_LEVEL = 0.25  # 25% of holdings per level crossed

# Minimum seconds between two trades of one (user, market) state
STRATEGY_COOLDOWNS = {
    "percent": 30,
    "grid": 30,
    "dca": DCA_INTERVAL_SECONDS,
    "rsi": 60,
    "ma": 300,
    "bollinger": 300,
}

# (buy_threshold, sell_threshold) applied when a user switches strategy
# without sending thresholds of their own
STRATEGY_DEFAULT_THRESHOLDS = {
    "percent": (DEFAULT_BUY_THRESHOLD, DEFAULT_SELL_THRESHOLD),
    "grid": (DEFAULT_BUY_THRESHOLD, DEFAULT_SELL_THRESHOLD),
    "dca": (DEFAULT_BUY_THRESHOLD, DEFAULT_SELL_THRESHOLD),
    "rsi": (float(RSI_OVERSOLD), float(RSI_OVERBOUGHT)),
    "ma": (DEFAULT_BUY_THRESHOLD, DEFAULT_SELL_THRESHOLD),
    "bollinger": (DEFAULT_BUY_THRESHOLD, DEFAULT_SELL_THRESHOLD),
}

# Backtesting
BACKTEST_INITIAL_CAPITAL = 1_000_000  # KRW
BACKTEST_CANDLE_UNIT_MINUTES = 60
BACKTEST_MAX_DAYS = 365

# Statistics
PROFIT_FACTOR_SENTINEL = 999.0  # Reported when there are profits but no losses
TRADE_LOG_PAGE_SIZE = 50
