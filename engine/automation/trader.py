"""
Automated trader that evaluates every active user's markets and places orders.

One call to run_cycle() is one scheduler tick. Users and their markets are
processed sequentially; a failure for one user is logged and never aborts
the tick for the others.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from ..shared.types import (
    BotSettings, OrderSide, Signal, SignalType, StateDelta, StrategyKind,
    TradeLogEntry, TradingState, split_market,
)
from ..shared.defaults import CANDLE_UNIT_MINUTES, CANDLE_WINDOW
from ..broker.gateway import Balance, ExchangeGateway, OrderResult, find_balance
from ..strategies import MarketContext, evaluate
from ..trading.allocator import Allocation, PortfolioAllocator
from ..trading.fees import FeeModel
from .state import SettingsStore, TradeLogStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one (user, market) evaluation in a tick."""
    user_id: str
    market: Optional[str]
    status: str  # "placed", "failed", "hold", "skipped" or "error"
    reason: str
    signal: Optional[Signal] = None


class AutomatedTrader:
    """
    Automated trading orchestrator.

    Responsibilities:
    - Load active settings from the settings store
    - Resolve each user's portfolio plan
    - Evaluate the strategy for every (user, market) on an independent snapshot
    - Place orders via the exchange gateway
    - Write one trade log entry per order attempt and persist state changes
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        settings_store: SettingsStore,
        trade_log: TradeLogStore,
        allocator: Optional[PortfolioAllocator] = None,
        candle_unit_minutes: int = CANDLE_UNIT_MINUTES,
        candle_count: int = CANDLE_WINDOW,
        dry_run: bool = False,
    ):
        """
        Initialize automated trader.

        Args:
            gateway: Exchange gateway (market data, balances, orders)
            settings_store: Store for settings and per-market state
            trade_log: Append-only trade log
            allocator: Portfolio allocator (default: PortfolioAllocator())
            candle_unit_minutes: Candle size fed to the strategies
            candle_count: Candles fetched per evaluation
            dry_run: Evaluate and log decisions but never place orders
        """
        self.gateway = gateway
        self.settings_store = settings_store
        self.trade_log = trade_log
        self.allocator = allocator or PortfolioAllocator()
        self.candle_unit_minutes = candle_unit_minutes
        self.candle_count = candle_count
        self.dry_run = dry_run

    def run_cycle(self, now: Optional[datetime] = None) -> List[CycleResult]:
        """
        Run one tick over all active users.

        Args:
            now: Tick time (default: current UTC time)

        Returns:
            One CycleResult per evaluated market (or per skipped/failed user)
        """
        now = now or datetime.now(timezone.utc)
        results: List[CycleResult] = []

        active = self.settings_store.get_active_states()
        logger.debug(f"Tick at {now.isoformat()}: {len(active)} active user(s)")

        for settings in active:
            try:
                results.extend(self.process_user(settings, now))
            except Exception as e:
                logger.exception(f"Error processing user {settings.user_id}: {e}")
                results.append(CycleResult(settings.user_id, None, "error", f"Exception: {e}"))

        placed = sum(1 for r in results if r.status == "placed")
        if placed:
            logger.info(f"Tick complete: {placed} order(s) placed across {len(active)} user(s)")
        return results

    def process_user(self, settings: BotSettings, now: datetime) -> List[CycleResult]:
        """Evaluate every market of one user's portfolio plan."""
        user_id = settings.user_id

        if not settings.has_credentials:
            logger.warning(f"Skipping {user_id}: API keys not configured")
            return [CycleResult(user_id, None, "skipped", "missing_credentials")]

        try:
            kind = StrategyKind.parse(settings.strategy)
        except ValueError as e:
            logger.warning(f"Skipping {user_id}: {e}")
            return [CycleResult(user_id, None, "skipped", "invalid_strategy")]

        plan = self.allocator.plan_for(settings)
        if not plan:
            logger.warning(f"Skipping {user_id}: no market clears the minimum order size")
            return [CycleResult(user_id, None, "skipped", "below_minimum_order")]

        balances = self.gateway.get_accounts(settings.credentials)
        if balances is None:
            logger.warning(f"Skipping {user_id}: balances unavailable")
            return [CycleResult(user_id, None, "skipped", "balance_unavailable")]

        results = []
        for allocation in plan:
            result = self.process_market(settings, kind, allocation, balances, now)
            results.append(result)
            if result.status == "placed":
                balances = self.gateway.get_accounts(settings.credentials) or balances
        return results

    def process_market(
        self,
        settings: BotSettings,
        kind: StrategyKind,
        allocation: Allocation,
        balances: List[Balance],
        now: datetime,
    ) -> CycleResult:
        """Evaluate and, if signalled, trade one market for one user."""
        user_id, market = settings.user_id, allocation.market
        quote, base = split_market(market)

        # Fresh snapshot per market; nothing is shared between markets of one tick
        market_state = self.settings_store.get_market_state(user_id, market)
        state = TradingState.from_settings(settings, market, allocation.amount, market_state)

        price = self.gateway.get_ticker(market)
        if price is None:
            return CycleResult(user_id, market, "skipped", "price_unavailable")
        candles = self.gateway.get_candles(market, self.candle_unit_minutes, self.candle_count)

        krw = find_balance(balances, quote)
        coin = find_balance(balances, base)
        context = MarketContext(
            price=price,
            now=now,
            candles=tuple(candles),
            krw_balance=krw.balance if krw else 0.0,
            coin_balance=coin.balance if coin else 0.0,
            avg_buy_price=coin.avg_buy_price if coin else 0.0,
            min_order_amount=self.allocator.min_order_amount,
        )

        fee_model = FeeModel(state.fee_rate)
        evaluation = evaluate(kind, state, context, fee_model)
        if not evaluation.delta.is_empty:
            self.settings_store.update_market_state(user_id, market, evaluation.delta)

        signal = evaluation.signal
        if not signal.is_trade:
            logger.debug(f"{user_id}/{market}: hold ({signal.reason}) {signal.detail}")
            return CycleResult(user_id, market, "hold", signal.reason, signal)

        if self.dry_run:
            logger.info(
                f"DRY RUN {user_id}/{market}: would {signal.action.value} {signal.size:,.8g} "
                f"({signal.reason}) {signal.detail}"
            )
            return CycleResult(user_id, market, "hold", f"dry_run:{signal.reason}", signal)

        result = self.execute_signal(settings, market, signal, price, evaluation.on_execute, fee_model, now)
        if not result.success:
            return CycleResult(user_id, market, "failed", result.message, signal)
        return CycleResult(user_id, market, "placed", signal.reason, signal)

    def execute_signal(
        self,
        settings: BotSettings,
        market: str,
        signal: Signal,
        price: float,
        on_execute: StateDelta,
        fee_model: FeeModel,
        now: datetime,
    ) -> OrderResult:
        """
        Place the order for a BUY/SELL signal, log it and persist state on success.

        Buys are sent as KRW-amount market orders, sells as volume market orders.
        """
        user_id = settings.user_id
        if signal.action == SignalType.BUY:
            side, ord_type = OrderSide.BID, "price"
            # Estimated at the quoted price; the filled volume is not fetched back
            volume = signal.size / price
            fee_paid = fee_model.fee(signal.size)
        else:
            side, ord_type = OrderSide.ASK, "market"
            volume = signal.size
            fee_paid = fee_model.fee(signal.size * price)

        logger.info(
            f"{user_id}/{market}: placing {side.value} {ord_type}={signal.size:,.8g} at ~{price:,.0f} "
            f"({signal.reason}) {signal.detail}"
        )
        result = self.gateway.place_order(settings.credentials, market, side, ord_type, signal.size)

        message = f"{signal.reason}: {signal.detail}".strip(": ")
        if not result.success:
            message = f"{message} | {result.message}" if message else result.message

        self.trade_log.append(TradeLogEntry(
            user_id=user_id,
            market=market,
            side=side.value,
            price=price,
            volume=volume,
            fee_paid=fee_paid if result.success else 0.0,
            status="success" if result.success else "failed",
            message=message,
            timestamp=now,
        ))

        if not result.success:
            logger.error(f"{user_id}/{market}: order failed: {result.message}")
            return result

        self.settings_store.update_market_state(user_id, market, on_execute)
        logger.info(f"{user_id}/{market}: order placed (uuid={result.order_id})")
        return result
