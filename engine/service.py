"""
Trading service: the operations exposed to a front end.

Wraps the stores, the exchange gateway, the backtest simulator and the
statistics aggregator behind one object. Settings are validated here before
anything is persisted or sent to the exchange.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from .shared.types import (
    BotSettings, OrderSide, StrategyKind, TradeLogEntry, split_market,
)
from .shared.defaults import (
    BACKTEST_CANDLE_UNIT_MINUTES, BACKTEST_MAX_DAYS, MIN_ORDER_AMOUNT,
    STRATEGY_DEFAULT_THRESHOLDS, TRADE_LOG_PAGE_SIZE,
)
from .broker.gateway import ExchangeGateway, OrderResult, VerifyResult, find_balance
from .automation.state import SETTINGS_FIELDS, SettingsStore, TradeLogStore
from .automation.trader import AutomatedTrader
from .evaluation import (
    BacktestResult, BacktestSimulator, StatisticsReport, compute_statistics, unrealized_pnl,
)
from .strategies.base import MarketContext, buy, sell
from .trading.allocator import PortfolioAllocator
from .trading.fees import FeeModel


logger = logging.getLogger(__name__)

MISSING_CREDENTIALS_MESSAGE = "API keys not configured"


class SettingsValidationError(ValueError):
    """Raised when a settings update is rejected."""


@dataclass(frozen=True)
class StatusReport:
    """Account and bot status of one user."""
    user_id: str
    market: str
    is_active: bool
    strategy: str
    current_price: Optional[float] = None
    krw_balance: float = 0.0
    coin_balance: float = 0.0
    total_asset_value: float = 0.0
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    trade_count: int = 0
    credentials_message: str = ""


def _parse_list(value: Any) -> List[str]:
    """Accept a list or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part).strip() for part in value if str(part).strip()]


def _as_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SettingsValidationError(f"{key} must be a number, got {value!r}") from None


_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off")


def _as_bool(key: str, value: Any) -> bool:
    """Accept real booleans and the usual form strings; anything else is rejected."""
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUE_STRINGS:
        return True
    if normalized in _FALSE_STRINGS:
        return False
    raise SettingsValidationError(f"{key} must be true or false, got {value!r}")


def _as_market(value: Any) -> str:
    market = str(value).strip().upper()
    try:
        split_market(market)
    except ValueError as e:
        raise SettingsValidationError(str(e)) from None
    return market


def validate_thresholds(strategy: str, buy_threshold: float, sell_threshold: float) -> None:
    """RSI thresholds are RSI levels; all other strategies take percentages."""
    if strategy == StrategyKind.RSI.value:
        if not 0 < buy_threshold < sell_threshold < 100:
            raise SettingsValidationError(
                f"RSI thresholds must satisfy 0 < buy < sell < 100, "
                f"got buy={buy_threshold}, sell={sell_threshold}"
            )
        return
    for name, value in (("buy_threshold", buy_threshold), ("sell_threshold", sell_threshold)):
        if not 0 < value <= 50:
            raise SettingsValidationError(f"{name} must be in (0, 50] percent, got {value}")


def validate_settings_update(current: BotSettings, updates: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize a partial settings update.

    Args:
        current: Settings the update applies to
        updates: Raw field values (strings from forms are accepted)

    Returns:
        Cleaned partial update ready for the settings store

    Raises:
        SettingsValidationError: On unknown fields or out-of-range values
    """
    unknown = set(updates) - SETTINGS_FIELDS
    if unknown:
        raise SettingsValidationError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")

    cleaned: Dict[str, Any] = {}

    if "is_active" in updates:
        cleaned["is_active"] = _as_bool("is_active", updates["is_active"])

    if "strategy" in updates:
        try:
            cleaned["strategy"] = StrategyKind.parse(updates["strategy"]).value
        except ValueError as e:
            raise SettingsValidationError(str(e)) from None

    if "market" in updates:
        cleaned["market"] = _as_market(updates["market"])

    strategy = cleaned.get("strategy", current.strategy)
    strategy_changed = strategy != current.strategy
    buy_default, sell_default = STRATEGY_DEFAULT_THRESHOLDS.get(strategy, STRATEGY_DEFAULT_THRESHOLDS["percent"])

    for key, default in (("buy_threshold", buy_default), ("sell_threshold", sell_default)):
        if key in updates:
            cleaned[key] = _as_float(key, updates[key])
        elif strategy_changed:
            # Thresholds switch to the new strategy's units
            cleaned[key] = default
    validate_thresholds(
        strategy,
        cleaned.get("buy_threshold", current.buy_threshold),
        cleaned.get("sell_threshold", current.sell_threshold),
    )

    if "target_amount" in updates:
        amount = _as_float("target_amount", updates["target_amount"])
        if amount < MIN_ORDER_AMOUNT:
            raise SettingsValidationError(f"target_amount must be >= {MIN_ORDER_AMOUNT} KRW, got {amount:,.0f}")
        cleaned["target_amount"] = amount

    if "fee_rate" in updates:
        fee_rate = _as_float("fee_rate", updates["fee_rate"])
        if not 0 <= fee_rate <= 0.01:
            raise SettingsValidationError(f"fee_rate must be in [0, 0.01], got {fee_rate}")
        cleaned["fee_rate"] = fee_rate

    for key in ("stop_loss_percent", "take_profit_percent"):
        if key in updates:
            value = _as_float(key, updates[key])
            if not 0 <= value <= 100:
                raise SettingsValidationError(f"{key} must be in [0, 100], got {value}")
            cleaned[key] = value

    if "portfolio_markets" in updates:
        cleaned["portfolio_markets"] = tuple(_as_market(m) for m in _parse_list(updates["portfolio_markets"]))
    if "portfolio_allocations" in updates:
        cleaned["portfolio_allocations"] = tuple(
            _as_float("portfolio_allocations", a) for a in _parse_list(updates["portfolio_allocations"])
        )

    markets = cleaned.get("portfolio_markets", current.portfolio_markets)
    allocations = cleaned.get("portfolio_allocations", current.portfolio_allocations)
    if "portfolio_markets" in cleaned and "portfolio_allocations" not in cleaned and len(allocations) != len(markets):
        # Stored weights belonged to the previous market list
        allocations = cleaned["portfolio_allocations"] = ()
    if allocations and len(allocations) != len(markets):
        raise SettingsValidationError(
            f"portfolio_allocations has {len(allocations)} value(s) for {len(markets)} market(s)"
        )
    if any(a < 0 for a in allocations):
        raise SettingsValidationError("portfolio_allocations must not be negative")

    for key in ("access_key", "secret_key"):
        if key in updates:
            cleaned[key] = str(updates[key] or "").strip()

    return cleaned


class TradingService:
    """
    Operations on one user's bot: status, settings, manual trades, credential
    checks, backtests and statistics.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        trade_log: TradeLogStore,
        gateway: ExchangeGateway,
        allocator: Optional[PortfolioAllocator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        backtest_simulator: Optional[BacktestSimulator] = None,
    ):
        """
        Initialize trading service.

        Args:
            settings_store: Settings and per-market state store
            trade_log: Trade log store
            gateway: Exchange gateway
            allocator: Portfolio allocator (default: PortfolioAllocator())
            clock: Returns the current time (default: UTC now)
            backtest_simulator: Simulator for run_backtest (default: BacktestSimulator())
        """
        self.settings_store = settings_store
        self.trade_log = trade_log
        self.gateway = gateway
        self.allocator = allocator or PortfolioAllocator()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.backtest_simulator = backtest_simulator or BacktestSimulator()
        self._executor = AutomatedTrader(gateway, settings_store, trade_log, self.allocator)

    def get_settings(self, user_id: str) -> BotSettings:
        """Stored settings, or the defaults when the user has none yet."""
        return self.settings_store.get_state(user_id) or BotSettings(user_id=user_id)

    def update_settings(self, user_id: str, updates: Dict[str, Any]) -> BotSettings:
        """
        Validate and persist a partial settings update.

        A strategy change or an activation resets every market's reference
        price, so the next tick only re-initializes.
        """
        if not user_id:
            raise SettingsValidationError("User ID is required to update bot settings")

        current = self.get_settings(user_id)
        cleaned = validate_settings_update(current, updates)

        strategy_changed = cleaned.get("strategy", current.strategy) != current.strategy
        activated = cleaned.get("is_active") is True and not current.is_active

        updated = self.settings_store.update_state(user_id, cleaned)
        if strategy_changed or activated:
            self.settings_store.reset_market_states(user_id)

        changed = ", ".join(k for k in sorted(cleaned) if k not in ("access_key", "secret_key"))
        logger.info(f"Updated settings for {user_id}: {changed or 'credentials'}")
        return updated

    def toggle(self, user_id: str, is_active: bool) -> BotSettings:
        """Start or stop automated trading for a user."""
        return self.update_settings(user_id, {"is_active": is_active})

    def get_status(self, user_id: str) -> StatusReport:
        """
        Balances, valuation and P&L for a user.

        Without API keys only the price is fetched and the balances are zero.
        """
        settings = self.get_settings(user_id)
        market = settings.market
        entries = self.trade_log.all(user_id)
        report = dict(
            user_id=user_id,
            market=market,
            is_active=settings.is_active,
            strategy=settings.strategy,
            trade_count=len(entries),
            realized_pnl=compute_statistics(entries).total_profit,
        )

        markets = list(dict.fromkeys([market, *settings.portfolio_markets]))
        prices = {m: self.gateway.get_ticker(m) for m in markets}
        known_prices = {m: p for m, p in prices.items() if p is not None}
        report["current_price"] = prices[market]
        report["unrealized_pnl"] = unrealized_pnl(entries, known_prices)

        if not settings.has_credentials:
            return StatusReport(**report, credentials_message=MISSING_CREDENTIALS_MESSAGE)

        balances = self.gateway.get_accounts(settings.credentials)
        if balances is None:
            return StatusReport(**report, credentials_message="Failed to fetch account balances")

        quote, base = split_market(market)
        krw = find_balance(balances, quote)
        coin = find_balance(balances, base)
        total = (krw.balance + krw.locked) if krw else 0.0
        for m, price in known_prices.items():
            held = find_balance(balances, split_market(m)[1])
            if held:
                total += (held.balance + held.locked) * price

        return StatusReport(
            **report,
            krw_balance=krw.balance if krw else 0.0,
            coin_balance=coin.balance if coin else 0.0,
            total_asset_value=total,
        )

    def manual_trade(
        self,
        user_id: str,
        side: Union[OrderSide, str],
        amount: Optional[float] = None,
    ) -> OrderResult:
        """
        Place a manual market order on the user's configured market.

        Args:
            user_id: User ID
            side: "buy"/"bid" or "sell"/"ask"
            amount: KRW amount for a buy (default: target amount); a sell always
                    sells the whole holding

        Returns:
            OrderResult; rejected orders are never sent to the exchange
        """
        order_side = self._parse_side(side)
        settings = self.get_settings(user_id)
        if not settings.has_credentials:
            return OrderResult(success=False, message=MISSING_CREDENTIALS_MESSAGE)

        market = settings.market
        price = self.gateway.get_ticker(market)
        if price is None:
            return OrderResult(success=False, message=f"Price unavailable for {market}")
        balances = self.gateway.get_accounts(settings.credentials)
        if balances is None:
            return OrderResult(success=False, message="Failed to fetch account balances")

        quote, base = split_market(market)
        krw = find_balance(balances, quote)
        coin = find_balance(balances, base)
        now = self._clock()
        context = MarketContext(
            price=price,
            now=now,
            krw_balance=krw.balance if krw else 0.0,
            coin_balance=coin.balance if coin else 0.0,
            avg_buy_price=coin.avg_buy_price if coin else 0.0,
            min_order_amount=self.allocator.min_order_amount,
        )

        if order_side == OrderSide.BID:
            size = float(amount) if amount is not None else float(settings.target_amount)
            evaluation = buy(context, size, "manual_buy", reference_price=price)
        else:
            evaluation = sell(context, context.coin_balance, "manual_sell", reference_price=price)

        signal = evaluation.signal
        if not signal.is_trade:
            logger.warning(f"Manual {order_side.value} rejected for {user_id}/{market}: {signal.detail}")
            return OrderResult(success=False, message=signal.detail or signal.reason)

        return self._executor.execute_signal(
            settings, market, signal, price, evaluation.on_execute, FeeModel(settings.fee_rate), now,
        )

    @staticmethod
    def _parse_side(side: Union[OrderSide, str]) -> OrderSide:
        if isinstance(side, OrderSide):
            return side
        normalized = str(side).strip().lower()
        if normalized in ("buy", "bid"):
            return OrderSide.BID
        if normalized in ("sell", "ask"):
            return OrderSide.ASK
        raise ValueError(f"Unknown order side '{side}' (expected buy or sell)")

    def verify_credentials(self, user_id: str) -> VerifyResult:
        """Check the stored API keys against the exchange."""
        settings = self.get_settings(user_id)
        if not settings.has_credentials:
            return VerifyResult(valid=False, message=MISSING_CREDENTIALS_MESSAGE)
        result = self.gateway.verify_credentials(settings.credentials)
        logger.info(f"Credential check for {user_id}: {'valid' if result.valid else result.message}")
        return result

    def run_backtest(
        self,
        market: str,
        strategy: Union[StrategyKind, str],
        days: int,
        params: Optional[Dict[str, Any]] = None,
    ) -> BacktestResult:
        """
        Backtest a strategy on the last `days` days of hourly candles.

        Raises:
            ValueError: On an invalid market, strategy, day count or when the
                        exchange returns no candles
        """
        market = _as_market(market)
        kind = strategy if isinstance(strategy, StrategyKind) else StrategyKind.parse(strategy)
        days = int(days)
        if not 1 <= days <= BACKTEST_MAX_DAYS:
            raise ValueError(f"days must be between 1 and {BACKTEST_MAX_DAYS}, got {days}")

        candles = self.gateway.get_candles(market, BACKTEST_CANDLE_UNIT_MINUTES, days * 24)
        if not candles:
            raise ValueError(f"No candle data available for {market}")

        logger.info(f"Backtesting {kind.value} on {market}: {len(candles)} hourly candles ({days} days)")
        return self.backtest_simulator.run(candles, kind, params=params, market=market)

    def get_statistics(self, user_id: str) -> StatisticsReport:
        return compute_statistics(self.trade_log.all(user_id))

    def list_trade_logs(self, user_id: str, limit: int = TRADE_LOG_PAGE_SIZE) -> List[TradeLogEntry]:
        """Most recent trade log entries first."""
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        return self.trade_log.list(user_id, limit)
