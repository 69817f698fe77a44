"""
Trade log statistics: FIFO round-trip matching, win/loss metrics and profit
bucketed by day, week and month.

Pure reductions over TradeLogEntry lists; nothing here writes anywhere.
"""
from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import pytz

from ..shared.types import OrderSide, TradeLogEntry, to_utc
from ..shared.defaults import MARKET_TIMEZONE, PROFIT_FACTOR_SENTINEL


logger = logging.getLogger(__name__)

_EPSILON = 1e-12
_UNKNOWN_TIME = datetime.min.replace(tzinfo=pytz.utc)


@dataclass(frozen=True)
class RoundTrip:
    """A matched buy lot and sell of the same volume."""
    user_id: str
    market: str
    volume: float
    buy_price: float
    sell_price: float
    fees: float
    profit: float  # Net of the proportional buy and sell fees
    buy_time: Optional[datetime] = None
    sell_time: Optional[datetime] = None

    @property
    def profit_pct(self) -> float:
        cost = self.buy_price * self.volume
        return (self.profit / cost * 100) if cost > 0 else 0.0


@dataclass(frozen=True)
class OpenLot:
    """Bought volume not yet matched by a sell."""
    user_id: str
    market: str
    price: float
    volume: float
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ProfitBucket:
    period: str
    profit: float
    trades: int


@dataclass
class StatisticsReport:
    """Realized trading statistics of a trade log."""
    total_trades: int = 0
    win_trades: int = 0
    loss_trades: int = 0
    win_rate: float = 0.0  # Percent
    total_profit: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0  # Positive number
    avg_win: float = 0.0
    avg_loss: float = 0.0  # Negative number (or 0)
    profit_factor: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    daily: List[ProfitBucket] = field(default_factory=list)
    weekly: List[ProfitBucket] = field(default_factory=list)
    monthly: List[ProfitBucket] = field(default_factory=list)


@dataclass
class _Lot:
    price: float
    volume: float
    fee_per_unit: float
    timestamp: Optional[datetime]


def _chronological(entries: Iterable[TradeLogEntry]) -> List[TradeLogEntry]:
    """Successful entries ordered by time, then id (log order for ties)."""
    ok = [e for e in entries if e.succeeded and e.volume > 0]
    return sorted(ok, key=lambda e: (to_utc(e.timestamp) if e.timestamp is not None else _UNKNOWN_TIME, e.id or 0))


def _match(entries: Iterable[TradeLogEntry]) -> Tuple[List[RoundTrip], Dict[Tuple[str, str], Deque[_Lot]]]:
    books: Dict[Tuple[str, str], Deque[_Lot]] = defaultdict(deque)
    trips: List[RoundTrip] = []

    for entry in _chronological(entries):
        key = (entry.user_id, entry.market)
        fee_per_unit = entry.fee_paid / entry.volume

        if entry.side == OrderSide.BID.value:
            books[key].append(_Lot(entry.price, entry.volume, fee_per_unit, entry.timestamp))
            continue

        remaining = entry.volume
        lots = books[key]
        while remaining > _EPSILON and lots:
            lot = lots[0]
            matched = min(remaining, lot.volume)
            fees = (lot.fee_per_unit + fee_per_unit) * matched
            trips.append(RoundTrip(
                user_id=entry.user_id,
                market=entry.market,
                volume=matched,
                buy_price=lot.price,
                sell_price=entry.price,
                fees=fees,
                profit=(entry.price - lot.price) * matched - fees,
                buy_time=lot.timestamp,
                sell_time=entry.timestamp,
            ))
            lot.volume -= matched
            remaining -= matched
            if lot.volume <= _EPSILON:
                lots.popleft()

        if remaining > _EPSILON:
            # Coins bought outside the log (or before it started)
            logger.debug(f"{entry.user_id}/{entry.market}: {remaining:.8f} sold without a matching buy")

    return trips, books


def match_round_trips(entries: Iterable[TradeLogEntry]) -> List[RoundTrip]:
    """
    FIFO-match successful bids to asks per (user, market).

    A sell larger than the oldest lot consumes several lots; a partial sell
    splits a lot. Failed entries are ignored.
    """
    trips, _ = _match(entries)
    return trips


def open_lots(entries: Iterable[TradeLogEntry]) -> List[OpenLot]:
    """Buy volume still unmatched after FIFO matching, oldest first per market."""
    _, books = _match(entries)
    return [
        OpenLot(user_id, market, lot.price, lot.volume, lot.timestamp)
        for (user_id, market), lots in books.items()
        for lot in lots
        if lot.volume > _EPSILON
    ]


def unrealized_pnl(entries: Iterable[TradeLogEntry], prices: Dict[str, float]) -> float:
    """Mark open lots to the given market prices; markets without a price are skipped."""
    return sum(
        (prices[lot.market] - lot.price) * lot.volume
        for lot in open_lots(entries)
        if lot.market in prices
    )


def _buckets(trips: List[RoundTrip], freq: str, timezone: str) -> List[ProfitBucket]:
    timed = [t for t in trips if t.sell_time is not None]
    if not timed:
        return []

    df = pd.DataFrame({
        "time": pd.to_datetime([t.sell_time for t in timed], utc=True),
        "profit": [t.profit for t in timed],
    })
    local = df["time"].dt.tz_convert(timezone).dt.tz_localize(None)
    df["period"] = local.dt.to_period(freq)

    grouped = df.groupby("period")["profit"].agg(["sum", "count"]).sort_index()
    return [
        ProfitBucket(period=str(period), profit=float(row["sum"]), trades=int(row["count"]))
        for period, row in grouped.iterrows()
    ]


def compute_statistics(
    entries: Iterable[TradeLogEntry],
    timezone: str = MARKET_TIMEZONE,
) -> StatisticsReport:
    """
    Compute realized statistics from a trade log.

    Args:
        entries: Trade log entries (any order; failed entries are ignored)
        timezone: Timezone that defines day/week/month boundaries

    Returns:
        StatisticsReport; every round trip counts as one trade
    """
    trips = match_round_trips(entries)
    if not trips:
        return StatisticsReport()

    profits = [t.profit for t in trips]
    wins = [p for p in profits if p > 0]
    losses = [p for p in profits if p <= 0]
    gross_profit = sum(wins)
    gross_loss = -sum(losses)

    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    elif gross_profit > 0:
        profit_factor = PROFIT_FACTOR_SENTINEL
    else:
        profit_factor = 0.0

    return StatisticsReport(
        total_trades=len(trips),
        win_trades=len(wins),
        loss_trades=len(losses),
        win_rate=len(wins) / len(trips) * 100,
        total_profit=sum(profits),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        avg_win=(gross_profit / len(wins)) if wins else 0.0,
        avg_loss=(sum(losses) / len(losses)) if losses else 0.0,
        profit_factor=profit_factor,
        best_trade=max(profits),
        worst_trade=min(profits),
        daily=_buckets(trips, "D", timezone),
        weekly=_buckets(trips, "W", timezone),
        monthly=_buckets(trips, "M", timezone),
    )
