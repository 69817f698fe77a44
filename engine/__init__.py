"""
Strategy execution engine for automated KRW-market crypto trading.

Provides unified interfaces for:
- Indicator calculations (RSI, SMA, EMA, MACD, Bollinger, Stochastic, ATR)
- Fee-aware thresholds and portfolio allocation
- Strategy evaluation (percent, grid, DCA, RSI, MA crossover, Bollinger)
- The live execution loop against the exchange
- Backtesting and trade-log statistics
"""
