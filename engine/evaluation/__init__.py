"""
Evaluation module.

Backtesting of strategies on historical candles and statistics over the
trade log.
"""
from .backtest import BacktestSimulator, calculate_max_drawdown
from .backtest_types import BacktestResult, BacktestTrade
from .statistics import (
    OpenLot,
    ProfitBucket,
    RoundTrip,
    StatisticsReport,
    compute_statistics,
    match_round_trips,
    open_lots,
    unrealized_pnl,
)

__all__ = [
    'BacktestSimulator',
    'BacktestResult',
    'BacktestTrade',
    'calculate_max_drawdown',
    'OpenLot',
    'ProfitBucket',
    'RoundTrip',
    'StatisticsReport',
    'compute_statistics',
    'match_round_trips',
    'open_lots',
    'unrealized_pnl',
]
