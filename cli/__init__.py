"""
CLI entry points.

Provides command-line interfaces for:
- The automated trading service (auto_trade)
- Strategy backtests (backtest)
"""
