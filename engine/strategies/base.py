"""
Building blocks shared by all strategy policies.

A policy receives an immutable TradingState snapshot and a MarketContext and
returns an Evaluation. The helpers here apply the balance and minimum-order
gates so every policy sizes buys and sells the same way.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..shared.types import (
    Candle, Evaluation, Signal, SignalType, StateDelta, TradingState,
)
from ..shared.defaults import MIN_ORDER_AMOUNT
from ..trading.fees import FeeModel


@dataclass(frozen=True)
class MarketContext:
    """Market data and balances observed for one market at one point in time."""
    price: float
    now: datetime
    candles: Sequence[Candle] = field(default_factory=tuple)
    krw_balance: float = 0.0
    coin_balance: float = 0.0
    avg_buy_price: float = 0.0
    min_order_amount: float = MIN_ORDER_AMOUNT  # Smallest order the account may send (KRW)

    @property
    def holding_value(self) -> float:
        return self.coin_balance * self.price


class StrategyPolicy(Protocol):
    """Protocol for one strategy's buy/sell decision."""

    def evaluate(
        self,
        state: TradingState,
        context: MarketContext,
        fees: FeeModel,
    ) -> Evaluation:
        """
        Decide for one market.

        Args:
            state: Snapshot of the (user, market) state; reference price is set
            context: Current price, candles and balances
            fees: Fee model of the account

        Returns:
            Evaluation with the signal and the state changes to persist
        """
        ...


def price_change(state: TradingState, price: float) -> float:
    """Relative move of price against the reference price (fraction)."""
    return (price - state.reference_price) / state.reference_price


def buy(
    context: MarketContext,
    amount: float,
    reason: str,
    detail: str = "",
    reference_price: Optional[float] = None,
) -> Evaluation:
    """BUY for `amount` KRW if it clears the minimum order and the KRW balance covers it."""
    min_order_amount = context.min_order_amount
    if amount < min_order_amount:
        return Evaluation(Signal.hold(
            "below_minimum_order",
            f"buy amount {amount:.0f} below minimum {min_order_amount:.0f}",
        ))
    if context.krw_balance < amount:
        return Evaluation(Signal.hold(
            "insufficient_balance",
            f"KRW balance {context.krw_balance:.0f} < {amount:.0f} ({reason})",
        ))
    return Evaluation(
        signal=Signal(SignalType.BUY, amount, reason, detail),
        on_execute=StateDelta(reference_price=reference_price, last_trade_time=context.now),
    )


def sell(
    context: MarketContext,
    volume: float,
    reason: str,
    detail: str = "",
    reference_price: Optional[float] = None,
) -> Evaluation:
    """SELL `volume` coins if the holdings are worth at least the minimum order."""
    min_order_amount = context.min_order_amount
    volume = min(volume, context.coin_balance)
    if volume <= 0 or context.holding_value < min_order_amount:
        return Evaluation(Signal.hold(
            "insufficient_holdings",
            f"holdings worth {context.holding_value:.0f} ({reason})",
        ))
    if volume * context.price < min_order_amount:
        return Evaluation(Signal.hold(
            "below_minimum_order",
            f"sell value {volume * context.price:.0f} below minimum {min_order_amount:.0f}",
        ))
    return Evaluation(
        signal=Signal(SignalType.SELL, volume, reason, detail),
        on_execute=StateDelta(reference_price=reference_price, last_trade_time=context.now),
    )
