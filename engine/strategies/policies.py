"""
Strategy policies, one class per StrategyKind.

Each policy only decides direction and size; the reference-price gate,
cooldown and risk exits are applied by the evaluator before a policy runs.
New strategies are added by writing a policy and registering it in
evaluator.POLICIES.
"""
import math

from ..shared.types import Evaluation, Signal, TradingState
from ..shared.defaults import (
    RSI_PERIOD,
    MA_SHORT_PERIOD, MA_LONG_PERIOD, MA_LOOKBACK_CANDLES,
    BOLLINGER_PERIOD, BOLLINGER_STD_DEV,
    DCA_AVERAGE_WINDOW, DCA_MAX_PREMIUM,
    GRID_SELL_FRACTION_PER_LEVEL,
)
from ..indicators.technical import closes, rsi, sma, bollinger_bands
from ..trading.fees import FeeModel
from .base import MarketContext, buy, sell, price_change

# Absorbs float error when a move is an exact multiple of the grid step
_LEVEL_EPSILON = 1e-9


class PercentPolicy:
    """Buy after a drop, sell after a rise, both measured from the reference price."""

    def evaluate(self, state: TradingState, context: MarketContext, fees: FeeModel) -> Evaluation:
        change = price_change(state, context.price)
        buy_threshold = fees.effective_threshold(state.buy_threshold)
        sell_threshold = fees.effective_threshold(state.sell_threshold)
        detail = f"change {change * 100:+.2f}% vs ref {state.reference_price:,.0f}"

        if change <= -buy_threshold:
            return buy(context, state.target_amount, "percent_drop", detail, reference_price=context.price)
        if change >= sell_threshold:
            return sell(context, context.coin_balance, "percent_rise", detail, reference_price=context.price)
        return Evaluation(Signal.hold("within_threshold", detail))


class GridPolicy:
    """
    Trade one step per grid level crossed.

    Buy size scales with the number of levels; sells release 25% of holdings
    per level (capped at 100%). The reference price moves by exactly the
    levels consumed so any remaining offset carries into the next cycle.
    """

    def evaluate(self, state: TradingState, context: MarketContext, fees: FeeModel) -> Evaluation:
        change = price_change(state, context.price)
        ref = state.reference_price

        if change < 0:
            step = fees.effective_threshold(state.buy_threshold)
            levels = math.floor(-change / step + _LEVEL_EPSILON)
            if levels >= 1:
                detail = f"{levels} level(s) down, step {step * 100:.2f}%"
                return buy(
                    context,
                    levels * state.target_amount,
                    "grid_down",
                    detail,
                    reference_price=ref * (1 - levels * step),
                )
        elif change > 0:
            step = fees.effective_threshold(state.sell_threshold)
            levels = math.floor(change / step + _LEVEL_EPSILON)
            if levels >= 1:
                fraction = min(levels * GRID_SELL_FRACTION_PER_LEVEL, 1.0)
                detail = f"{levels} level(s) up, selling {fraction * 100:.0f}% of holdings"
                return sell(
                    context,
                    context.coin_balance * fraction,
                    "grid_up",
                    detail,
                    reference_price=ref * (1 + levels * step),
                )
        return Evaluation(Signal.hold("within_grid", f"change {change * 100:+.2f}%"))


class DcaPolicy:
    """Fixed-amount periodic buy, deferred while price trades above its recent average."""

    def evaluate(self, state: TradingState, context: MarketContext, fees: FeeModel) -> Evaluation:
        prices = closes(context.candles)
        average = sma(prices, DCA_AVERAGE_WINDOW) if prices else context.price
        limit = average * (1 + DCA_MAX_PREMIUM)
        if context.price > limit:
            return Evaluation(Signal.hold(
                "dca_deferred",
                f"price {context.price:,.0f} above {DCA_AVERAGE_WINDOW}-candle average {average:,.0f} + "
                f"{DCA_MAX_PREMIUM * 100:.2f}%",
            ))
        return buy(context, state.target_amount, "dca_interval", f"average {average:,.0f}")


class RsiPolicy:
    """Buy oversold, sell overbought. The fee is reported, not used as a gate."""

    def evaluate(self, state: TradingState, context: MarketContext, fees: FeeModel) -> Evaluation:
        value = rsi(closes(context.candles), RSI_PERIOD)
        detail = f"RSI {value:.1f}, est. fee {fees.fee(state.target_amount):,.1f}"

        if value < state.buy_threshold:
            return buy(context, state.target_amount, "rsi_oversold", detail)
        if value > state.sell_threshold:
            return sell(context, context.coin_balance, "rsi_overbought", detail)
        return Evaluation(Signal.hold("rsi_neutral", detail))


class MovingAverageCrossPolicy:
    """Golden cross buys, death cross sells (SMA short/long over recent closes)."""

    def evaluate(self, state: TradingState, context: MarketContext, fees: FeeModel) -> Evaluation:
        prices = closes(context.candles)[-MA_LOOKBACK_CANDLES:]
        if len(prices) < MA_LONG_PERIOD + 1:
            return Evaluation(Signal.hold("insufficient_history", f"{len(prices)} candles"))

        short_ma = sma(prices, MA_SHORT_PERIOD)
        long_ma = sma(prices, MA_LONG_PERIOD)
        prev_short = sma(prices[:-1], MA_SHORT_PERIOD)
        prev_long = sma(prices[:-1], MA_LONG_PERIOD)
        detail = f"MA{MA_SHORT_PERIOD} {short_ma:,.1f} / MA{MA_LONG_PERIOD} {long_ma:,.1f}"

        if prev_short <= prev_long and short_ma > long_ma:
            return buy(context, state.target_amount, "golden_cross", detail)
        if prev_short >= prev_long and short_ma < long_ma:
            return sell(context, context.coin_balance, "death_cross", detail)
        return Evaluation(Signal.hold("no_cross", detail))


class BollingerPolicy:
    """Mean reversion at the bands, suppressed while the band is too narrow to pay the fees."""

    def evaluate(self, state: TradingState, context: MarketContext, fees: FeeModel) -> Evaluation:
        prices = closes(context.candles)
        if len(prices) < BOLLINGER_PERIOD:
            return Evaluation(Signal.hold("insufficient_history", f"{len(prices)} candles"))

        bands = bollinger_bands(prices, BOLLINGER_PERIOD, BOLLINGER_STD_DEV)
        relative_width = bands.width / bands.middle if bands.middle > 0 else 0.0
        detail = f"bands {bands.lower:,.0f} / {bands.middle:,.0f} / {bands.upper:,.0f}"

        if relative_width < 2 * fees.buffer:
            return Evaluation(Signal.hold(
                "band_too_narrow",
                f"width {relative_width * 100:.3f}% < {2 * fees.buffer * 100:.3f}%",
            ))
        if context.price <= bands.lower:
            return buy(context, state.target_amount, "lower_band", detail)
        if context.price >= bands.upper:
            return sell(context, context.coin_balance, "upper_band", detail)
        return Evaluation(Signal.hold("inside_bands", detail))
