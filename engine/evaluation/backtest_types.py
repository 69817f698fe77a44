"""
Backtest types: simulated round trips and the simulation result.

Kept apart from backtest.py so callers (service, CLI) can import the result
types without pulling in the simulator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd


@dataclass
class BacktestTrade:
    """One simulated round trip (buy, then sell or end-of-data close)."""
    entry_timestamp: pd.Timestamp
    entry_price: float
    volume: float  # Coin units bought
    cost_basis: float  # KRW spent, excluding the entry fee
    entry_reason: str

    # Filled when the position closes
    exit_timestamp: Optional[pd.Timestamp] = None
    exit_price: Optional[float] = None
    exit_reason: str = ""  # Reason code of the sell signal, or "end"
    fees: float = 0.0  # Entry + exit fees
    profit: float = 0.0  # Net of fees, in KRW

    @property
    def is_open(self) -> bool:
        return self.exit_timestamp is None

    @property
    def profit_pct(self) -> float:
        return (self.profit / self.cost_basis * 100) if self.cost_basis > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_time": self.entry_timestamp.isoformat(),
            "entry_price": self.entry_price,
            "exit_time": self.exit_timestamp.isoformat() if self.exit_timestamp is not None else None,
            "exit_price": self.exit_price,
            "volume": self.volume,
            "cost_basis": self.cost_basis,
            "fees": self.fees,
            "profit": self.profit,
            "profit_pct": self.profit_pct,
            "entry_reason": self.entry_reason,
            "exit_reason": self.exit_reason,
        }


@dataclass
class BacktestResult:
    """Results from a backtest run."""
    market: str
    strategy: str
    initial_capital: float
    final_balance: float

    total_trades: int
    win_trades: int
    loss_trades: int
    win_rate: float  # Percent of closed trades with profit > 0

    total_profit: float
    total_profit_pct: float
    max_drawdown: float  # Percent from peak equity

    trades: List[BacktestTrade] = field(default_factory=list)
    candles_evaluated: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market": self.market,
            "strategy": self.strategy,
            "initial_capital": self.initial_capital,
            "final_balance": self.final_balance,
            "total_trades": self.total_trades,
            "win_trades": self.win_trades,
            "loss_trades": self.loss_trades,
            "win_rate": self.win_rate,
            "total_profit": self.total_profit,
            "total_profit_pct": self.total_profit_pct,
            "max_drawdown": self.max_drawdown,
            "candles_evaluated": self.candles_evaluated,
            "trades": [t.to_dict() for t in self.trades],
        }
