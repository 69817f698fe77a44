"""
Strategy evaluator: the single decision function used by the live trader
and the backtest simulator.

Pipeline per (user, market):
1. AWAITING_REFERENCE: the first evaluation only records the reference price
2. Cooldown since the last trade (strategy-specific)
3. Stop-loss / take-profit against the average buy price
4. The strategy policy
"""
import logging
from datetime import datetime
from typing import Dict, Optional, Union

from ..shared.types import (
    Evaluation, Signal, StateDelta, StrategyKind, TradingState, to_utc,
)
from ..shared.defaults import STRATEGY_COOLDOWNS
from ..trading.fees import FeeModel
from .base import MarketContext, StrategyPolicy, sell
from .policies import (
    PercentPolicy, GridPolicy, DcaPolicy, RsiPolicy,
    MovingAverageCrossPolicy, BollingerPolicy,
)


logger = logging.getLogger(__name__)


POLICIES: Dict[StrategyKind, StrategyPolicy] = {
    StrategyKind.PERCENT: PercentPolicy(),
    StrategyKind.GRID: GridPolicy(),
    StrategyKind.DCA: DcaPolicy(),
    StrategyKind.RSI: RsiPolicy(),
    StrategyKind.MA: MovingAverageCrossPolicy(),
    StrategyKind.BOLLINGER: BollingerPolicy(),
}


def cooldown_seconds(kind: StrategyKind) -> int:
    return STRATEGY_COOLDOWNS[kind.value]


def cooldown_remaining(kind: StrategyKind, last_trade_time: Optional[datetime], now: datetime) -> float:
    """Seconds left before the next trade is allowed (0 when none is pending)."""
    if last_trade_time is None:
        return 0.0
    elapsed = (to_utc(now) - to_utc(last_trade_time)).total_seconds()
    return max(0.0, cooldown_seconds(kind) - elapsed)


def check_risk_exit(state: TradingState, context: MarketContext) -> Optional[Evaluation]:
    """
    Stop-loss / take-profit on the whole holding.

    Only applies when the average buy price is known and the holding is worth
    at least the minimum order. A percentage of 0 disables that exit.
    """
    avg = context.avg_buy_price
    if avg <= 0 or context.holding_value < context.min_order_amount:
        return None

    change_pct = (context.price - avg) / avg * 100
    detail = f"{change_pct:+.2f}% vs avg buy {avg:,.0f}"
    if state.stop_loss_percent > 0 and change_pct <= -state.stop_loss_percent:
        return sell(context, context.coin_balance, "stop_loss", detail, reference_price=context.price)
    if state.take_profit_percent > 0 and change_pct >= state.take_profit_percent:
        return sell(context, context.coin_balance, "take_profit", detail, reference_price=context.price)
    return None


def evaluate(
    kind: Union[StrategyKind, str],
    state: TradingState,
    context: MarketContext,
    fee_model: Optional[FeeModel] = None,
) -> Evaluation:
    """
    Evaluate one strategy for one market.

    Args:
        kind: Strategy to apply
        state: Immutable snapshot of the (user, market) trading state
        context: Current price, candle window and balances
        fee_model: Fee model (default: built from state.fee_rate)

    Returns:
        Evaluation; the input state is never modified
    """
    if not isinstance(kind, StrategyKind):
        kind = StrategyKind.parse(kind)
    fees = fee_model or FeeModel(state.fee_rate)

    if context.price <= 0:
        return Evaluation(Signal.hold("price_unavailable"))

    if state.awaiting_reference:
        logger.debug(f"{state.market}: reference price initialized at {context.price:,.0f}")
        return Evaluation(
            signal=Signal.hold("reference_initialized", f"reference {context.price:,.0f}"),
            delta=StateDelta(reference_price=context.price),
        )

    remaining = cooldown_remaining(kind, state.last_trade_time, context.now)
    if remaining > 0:
        return Evaluation(Signal.hold("cooldown", f"{remaining:.0f}s remaining"))

    risk_exit = check_risk_exit(state, context)
    if risk_exit is not None and risk_exit.signal.is_trade:
        return risk_exit

    return POLICIES[kind].evaluate(state, context, fees)
