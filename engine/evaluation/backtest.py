"""
Backtest simulator.

Replays a historical candle series through the same evaluate() call the live
trader uses, against a synthetic single-position ledger instead of the
exchange. Never touches the trade log.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..shared.types import Candle, SignalType, StrategyKind, TradingState
from ..shared.defaults import (
    BACKTEST_INITIAL_CAPITAL, CANDLE_WINDOW, DEFAULT_FEE_RATE, DEFAULT_MARKET,
    DEFAULT_STOP_LOSS_PERCENT, DEFAULT_TAKE_PROFIT_PERCENT, DEFAULT_TARGET_AMOUNT,
    MIN_ORDER_AMOUNT, STRATEGY_DEFAULT_THRESHOLDS,
)
from ..strategies import MarketContext, evaluate
from ..trading.fees import FeeModel
from .backtest_types import BacktestResult, BacktestTrade


logger = logging.getLogger(__name__)

BACKTEST_PARAMS = (
    "buy_threshold",
    "sell_threshold",
    "target_amount",
    "fee_rate",
    "stop_loss_percent",
    "take_profit_percent",
)


def build_backtest_state(
    kind: StrategyKind,
    market: str,
    params: Optional[Dict[str, Any]] = None,
    fee_rate: float = DEFAULT_FEE_RATE,
) -> TradingState:
    """Initial (AWAITING_REFERENCE) state for a backtest run."""
    params = dict(params or {})
    unknown = set(params) - set(BACKTEST_PARAMS)
    if unknown:
        raise ValueError(f"Unknown backtest parameter(s): {', '.join(sorted(unknown))}")

    buy_default, sell_default = STRATEGY_DEFAULT_THRESHOLDS[kind.value]
    return TradingState(
        market=market,
        strategy=kind,
        buy_threshold=float(params.get("buy_threshold", buy_default)),
        sell_threshold=float(params.get("sell_threshold", sell_default)),
        target_amount=float(params.get("target_amount", DEFAULT_TARGET_AMOUNT)),
        fee_rate=float(params.get("fee_rate", fee_rate)),
        stop_loss_percent=float(params.get("stop_loss_percent", DEFAULT_STOP_LOSS_PERCENT)),
        take_profit_percent=float(params.get("take_profit_percent", DEFAULT_TAKE_PROFIT_PERCENT)),
    )


def calculate_max_drawdown(equity_curve: Sequence[float]) -> float:
    """Maximum drawdown from the running peak, in percent."""
    if not equity_curve:
        return 0.0

    peak = equity_curve[0]
    max_drawdown = 0.0

    for value in equity_curve:
        if value > peak:
            peak = value

        if peak > 0:
            drawdown = ((peak - value) / peak) * 100
            if drawdown > max_drawdown:
                max_drawdown = drawdown

    return max_drawdown


class BacktestSimulator:
    """
    Simulates a strategy over historical candles with a single-position ledger.

    - BUY opens the position (only when flat), paying the fee on top of the amount
    - SELL closes the whole position (only when open), fee deducted from proceeds
    - on_execute state changes are applied only when a simulated trade happens
    - An open position is closed at the last close with exit reason "end"
    """

    def __init__(
        self,
        initial_capital: float = BACKTEST_INITIAL_CAPITAL,
        fee_rate: float = DEFAULT_FEE_RATE,
        window: int = CANDLE_WINDOW,
        min_order_amount: float = MIN_ORDER_AMOUNT,
    ):
        """
        Initialize backtest simulator.

        Args:
            initial_capital: Starting KRW balance (default: 1,000,000)
            fee_rate: Fee rate per side unless overridden by params
            window: Trailing candles handed to the strategy on each step
            min_order_amount: Smallest simulated order in KRW
        """
        if initial_capital <= 0:
            raise ValueError(f"initial_capital must be > 0, got {initial_capital}")
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        self.initial_capital = float(initial_capital)
        self.fee_rate = fee_rate
        self.window = window
        self.min_order_amount = min_order_amount

    def run(
        self,
        candles: Sequence[Candle],
        strategy: Union[StrategyKind, str],
        params: Optional[Dict[str, Any]] = None,
        market: str = DEFAULT_MARKET,
    ) -> BacktestResult:
        """
        Replay candles (oldest first) through the strategy.

        Args:
            candles: Historical candles ordered oldest -> newest
            strategy: Strategy kind or name
            params: Overrides for thresholds, target amount, fee rate, stop-loss and take-profit
            market: Market code used for the state and the result

        Returns:
            BacktestResult; identical inputs always give identical results
        """
        kind = strategy if isinstance(strategy, StrategyKind) else StrategyKind.parse(strategy)
        state = build_backtest_state(kind, market, params, self.fee_rate)
        fee_model = FeeModel(state.fee_rate)

        cash = self.initial_capital
        position: Optional[BacktestTrade] = None
        trades: List[BacktestTrade] = []
        equity_curve: List[float] = []

        for i, candle in enumerate(candles):
            price = candle.close
            context = MarketContext(
                price=price,
                now=candle.timestamp.to_pydatetime(),
                candles=tuple(candles[max(0, i + 1 - self.window):i + 1]),
                # Leave room for the entry fee so a full-cash buy is still affordable
                krw_balance=cash / (1 + fee_model.fee_rate),
                coin_balance=position.volume if position else 0.0,
                avg_buy_price=position.entry_price if position else 0.0,
                min_order_amount=self.min_order_amount,
            )

            evaluation = evaluate(kind, state, context, fee_model)
            state = evaluation.delta.apply(state)
            signal = evaluation.signal

            if signal.action == SignalType.BUY and position is None:
                amount = min(signal.size, context.krw_balance)
                if amount >= self.min_order_amount:
                    entry_fee = fee_model.fee(amount)
                    cash -= amount + entry_fee
                    position = BacktestTrade(
                        entry_timestamp=candle.timestamp,
                        entry_price=price,
                        volume=amount / price,
                        cost_basis=amount,
                        entry_reason=signal.reason,
                        fees=entry_fee,
                    )
                    state = evaluation.on_execute.apply(state)
                    logger.debug(f"{candle.timestamp}: BUY {amount:,.0f} at {price:,.0f} ({signal.reason})")

            elif signal.action == SignalType.SELL and position is not None:
                cash += self._close(position, candle, signal.reason, fee_model)
                trades.append(position)
                position = None
                state = evaluation.on_execute.apply(state)
                logger.debug(f"{candle.timestamp}: SELL at {price:,.0f} ({signal.reason})")

            holding = position.volume * price if position else 0.0
            equity_curve.append(cash + holding)

        if position is not None:
            cash += self._close(position, candles[-1], "end", fee_model)
            trades.append(position)
            equity_curve.append(cash)

        return self._build_result(market, kind, cash, trades, equity_curve, len(candles))

    @staticmethod
    def _close(position: BacktestTrade, candle: Candle, reason: str, fee_model: FeeModel) -> float:
        """Close the position at the candle's close; returns the KRW credited."""
        proceeds = position.volume * candle.close
        exit_fee = fee_model.fee(proceeds)
        entry_fee = position.fees
        position.exit_timestamp = candle.timestamp
        position.exit_price = candle.close
        position.exit_reason = reason
        position.fees = entry_fee + exit_fee
        position.profit = proceeds - exit_fee - position.cost_basis - entry_fee
        return proceeds - exit_fee

    def _build_result(
        self,
        market: str,
        kind: StrategyKind,
        final_balance: float,
        trades: List[BacktestTrade],
        equity_curve: List[float],
        candles_evaluated: int,
    ) -> BacktestResult:
        wins = [t for t in trades if t.profit > 0]
        losses = [t for t in trades if t.profit <= 0]
        total_profit = final_balance - self.initial_capital

        result = BacktestResult(
            market=market,
            strategy=kind.value,
            initial_capital=self.initial_capital,
            final_balance=final_balance,
            total_trades=len(trades),
            win_trades=len(wins),
            loss_trades=len(losses),
            win_rate=(len(wins) / len(trades) * 100) if trades else 0.0,
            total_profit=total_profit,
            total_profit_pct=total_profit / self.initial_capital * 100,
            max_drawdown=calculate_max_drawdown([self.initial_capital] + equity_curve),
            trades=trades,
            candles_evaluated=candles_evaluated,
        )
        logger.info(
            f"Backtest {kind.value} on {market}: {result.total_trades} trades, "
            f"win rate {result.win_rate:.1f}%, profit {result.total_profit:,.0f} KRW "
            f"({result.total_profit_pct:+.2f}%), max drawdown {result.max_drawdown:.2f}%"
        )
        return result
