"""
Shared types for the strategy engine.

This module consolidates the data model used across indicators, strategies,
the live trader and the backtest simulator so that both execution paths
operate on exactly the same structures.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

import pandas as pd

from .defaults import (
    DEFAULT_MARKET, DEFAULT_STRATEGY,
    DEFAULT_BUY_THRESHOLD, DEFAULT_SELL_THRESHOLD, DEFAULT_TARGET_AMOUNT,
    DEFAULT_FEE_RATE, DEFAULT_STOP_LOSS_PERCENT, DEFAULT_TAKE_PROFIT_PERCENT,
)


class SignalType(Enum):
    """Type of trading signal."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class OrderSide(Enum):
    """Exchange order side (Upbit naming)."""
    BID = "bid"
    ASK = "ask"


class StrategyKind(Enum):
    """Closed set of supported strategies."""
    PERCENT = "percent"
    GRID = "grid"
    DCA = "dca"
    RSI = "rsi"
    MA = "ma"
    BOLLINGER = "bollinger"

    @classmethod
    def parse(cls, name: str) -> "StrategyKind":
        """Resolve a strategy name, raising ValueError for unknown names."""
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValueError(f"Unknown strategy '{name}' (expected one of: {valid})") from None


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Sequences of candles are ordered oldest -> newest."""
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class Credentials:
    """Exchange API key pair."""
    access_key: str
    secret_key: str

    @property
    def is_complete(self) -> bool:
        return bool(self.access_key) and bool(self.secret_key)


@dataclass(frozen=True)
class BotSettings:
    """
    Per-user bot configuration as persisted by the settings store.

    Thresholds are in percent for percent/grid/dca/ma/bollinger and in RSI
    units for the rsi strategy.
    """
    user_id: str
    is_active: bool = False
    market: str = DEFAULT_MARKET
    strategy: str = DEFAULT_STRATEGY
    buy_threshold: float = DEFAULT_BUY_THRESHOLD
    sell_threshold: float = DEFAULT_SELL_THRESHOLD
    target_amount: float = DEFAULT_TARGET_AMOUNT
    fee_rate: float = DEFAULT_FEE_RATE
    stop_loss_percent: float = DEFAULT_STOP_LOSS_PERCENT
    take_profit_percent: float = DEFAULT_TAKE_PROFIT_PERCENT
    portfolio_markets: Tuple[str, ...] = ()
    portfolio_allocations: Tuple[float, ...] = ()
    access_key: str = ""
    secret_key: str = ""

    @property
    def credentials(self) -> Credentials:
        return Credentials(self.access_key, self.secret_key)

    @property
    def has_credentials(self) -> bool:
        return self.credentials.is_complete


@dataclass(frozen=True)
class MarketState:
    """Trading state persisted per (user, market)."""
    reference_price: Optional[float] = None
    last_trade_time: Optional[datetime] = None


@dataclass(frozen=True)
class TradingState:
    """
    Immutable snapshot of everything a strategy needs for one market.

    Built fresh for each (user, market) pair on every tick, so evaluating one
    market can never leak state into another.
    """
    market: str
    strategy: StrategyKind
    buy_threshold: float
    sell_threshold: float
    target_amount: float
    fee_rate: float = DEFAULT_FEE_RATE
    reference_price: Optional[float] = None
    last_trade_time: Optional[datetime] = None
    stop_loss_percent: float = DEFAULT_STOP_LOSS_PERCENT
    take_profit_percent: float = DEFAULT_TAKE_PROFIT_PERCENT
    portfolio_markets: Tuple[str, ...] = ()
    portfolio_allocations: Tuple[float, ...] = ()

    @property
    def awaiting_reference(self) -> bool:
        return not self.reference_price

    @classmethod
    def from_settings(
        cls,
        settings: BotSettings,
        market: str,
        amount: float,
        market_state: Optional[MarketState] = None,
    ) -> "TradingState":
        market_state = market_state or MarketState()
        return cls(
            market=market,
            strategy=StrategyKind.parse(settings.strategy),
            buy_threshold=float(settings.buy_threshold),
            sell_threshold=float(settings.sell_threshold),
            target_amount=float(amount),
            fee_rate=float(settings.fee_rate),
            reference_price=market_state.reference_price,
            last_trade_time=market_state.last_trade_time,
            stop_loss_percent=float(settings.stop_loss_percent),
            take_profit_percent=float(settings.take_profit_percent),
            portfolio_markets=tuple(settings.portfolio_markets),
            portfolio_allocations=tuple(settings.portfolio_allocations),
        )


@dataclass(frozen=True)
class StateDelta:
    """Fields of a MarketState to overwrite; None means unchanged."""
    reference_price: Optional[float] = None
    last_trade_time: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.reference_price is None and self.last_trade_time is None

    def apply(self, state: TradingState) -> TradingState:
        """Return a copy of state with this delta applied."""
        changes = {}
        if self.reference_price is not None:
            changes["reference_price"] = self.reference_price
        if self.last_trade_time is not None:
            changes["last_trade_time"] = self.last_trade_time
        return replace(state, **changes) if changes else state


@dataclass(frozen=True)
class Signal:
    """
    Evaluator output.

    size is a KRW amount for BUY, a coin volume for SELL and 0 for HOLD.
    """
    action: SignalType
    size: float = 0.0
    reason: str = ""
    detail: str = ""

    @property
    def is_trade(self) -> bool:
        return self.action != SignalType.HOLD

    @classmethod
    def hold(cls, reason: str, detail: str = "") -> "Signal":
        return cls(SignalType.HOLD, 0.0, reason, detail)


@dataclass(frozen=True)
class Evaluation:
    """A signal plus the state changes it implies."""
    signal: Signal
    delta: StateDelta = field(default_factory=StateDelta)  # Persist regardless of execution
    on_execute: StateDelta = field(default_factory=StateDelta)  # Persist after a successful order


@dataclass(frozen=True)
class TradeLogEntry:
    """One executed (or attempted) order. Append-only."""
    user_id: str
    market: str
    side: str  # "bid" or "ask"
    price: float
    volume: float
    fee_paid: float = 0.0
    status: str = "success"  # "success" or "failed"
    message: str = ""
    timestamp: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


def split_market(market: str) -> Tuple[str, str]:
    """Split 'KRW-BTC' into ('KRW', 'BTC')."""
    quote, _, base = market.partition("-")
    if not base:
        raise ValueError(f"Invalid market code '{market}' (expected e.g. KRW-BTC)")
    return quote, base


def to_utc(moment: datetime) -> datetime:
    """Normalize a datetime to tz-aware UTC; naive values are taken as UTC."""
    stamp = pd.Timestamp(moment)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC").to_pydatetime()
    return stamp.tz_convert("UTC").to_pydatetime()
