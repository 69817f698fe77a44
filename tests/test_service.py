"""
Tests for the trading service (settings, status, manual trades, backtests).
"""
from datetime import datetime, timezone

import pytest

from engine.automation.state import JsonSettingsStore, JsonTradeLogStore
from engine.broker.gateway import Balance
from engine.service import (
    MISSING_CREDENTIALS_MESSAGE, SettingsValidationError, TradingService,
)
from engine.shared.types import OrderSide, StateDelta
from engine.trading.allocator import PortfolioAllocator


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
KEYS = {"access_key": "ak", "secret_key": "sk"}


@pytest.fixture
def settings_store(tmp_path):
    return JsonSettingsStore(tmp_path / "bot_settings.json")


@pytest.fixture
def trade_log(tmp_path):
    return JsonTradeLogStore(tmp_path / "trade_log.json")


@pytest.fixture
def service(settings_store, trade_log, fake_gateway):
    return TradingService(settings_store, trade_log, fake_gateway, clock=lambda: NOW)


class TestSettings:
    """Test settings validation and persistence."""

    def test_defaults_without_record(self, service):
        settings = service.get_settings("new-user")
        assert settings.strategy == "percent"
        assert not settings.is_active

    def test_unknown_field_rejected(self, service):
        with pytest.raises(SettingsValidationError, match="colour"):
            service.update_settings("u1", {"colour": "red"})

    def test_unknown_strategy_rejected(self, service):
        with pytest.raises(SettingsValidationError):
            service.update_settings("u1", {"strategy": "martingale"})

    def test_switch_to_rsi_uses_rsi_levels(self, service):
        settings = service.update_settings("u1", {"strategy": "RSI"})
        assert settings.strategy == "rsi"
        assert (settings.buy_threshold, settings.sell_threshold) == (30.0, 70.0)

    def test_rsi_levels_must_be_ordered(self, service):
        with pytest.raises(SettingsValidationError):
            service.update_settings("u1", {"strategy": "rsi", "buy_threshold": 80, "sell_threshold": 20})

    def test_percent_threshold_range(self, service):
        with pytest.raises(SettingsValidationError):
            service.update_settings("u1", {"buy_threshold": 0})
        with pytest.raises(SettingsValidationError):
            service.update_settings("u1", {"sell_threshold": 60})

    def test_target_amount_minimum(self, service):
        with pytest.raises(SettingsValidationError):
            service.update_settings("u1", {"target_amount": 4999})

    def test_string_values_accepted(self, service):
        settings = service.update_settings("u1", {
            "target_amount": "20000",
            "portfolio_markets": "krw-btc, KRW-ETH",
            "portfolio_allocations": "60,40",
        })
        assert settings.target_amount == 20000.0
        assert settings.portfolio_markets == ("KRW-BTC", "KRW-ETH")
        assert settings.portfolio_allocations == (60.0, 40.0)

    @pytest.mark.parametrize("value, expected", [
        ("false", False), ("0", False), ("Off", False), ("no", False),
        ("true", True), ("1", True), ("YES", True), (True, True), (False, False),
    ])
    def test_is_active_form_values(self, service, value, expected):
        assert service.update_settings("u1", {"is_active": value}).is_active is expected

    def test_is_active_false_string_keeps_reference(self, service, settings_store):
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=48_000_000.0))

        service.update_settings("u1", {"is_active": "false"})

        assert settings_store.get_market_state("u1", "KRW-BTC").reference_price == 48_000_000.0

    @pytest.mark.parametrize("value", ["maybe", "", None, 2])
    def test_is_active_rejects_other_values(self, service, value):
        with pytest.raises(SettingsValidationError, match="is_active"):
            service.update_settings("u1", {"is_active": value})

    def test_new_markets_clear_stale_allocations(self, service):
        service.update_settings("u1", {"portfolio_markets": ["KRW-BTC", "KRW-ETH"], "portfolio_allocations": [70, 30]})

        settings = service.update_settings("u1", {"portfolio_markets": ["KRW-BTC", "KRW-ETH", "KRW-XRP"]})

        assert settings.portfolio_markets == ("KRW-BTC", "KRW-ETH", "KRW-XRP")
        assert settings.portfolio_allocations == ()

    def test_same_length_markets_keep_allocations(self, service):
        service.update_settings("u1", {"portfolio_markets": ["KRW-BTC", "KRW-ETH"], "portfolio_allocations": [70, 30]})
        settings = service.update_settings("u1", {"portfolio_markets": ["KRW-BTC", "KRW-XRP"]})
        assert settings.portfolio_allocations == (70.0, 30.0)

    def test_allocation_length_mismatch(self, service):
        with pytest.raises(SettingsValidationError):
            service.update_settings("u1", {"portfolio_markets": ["KRW-BTC", "KRW-ETH"], "portfolio_allocations": [100]})

    def test_invalid_market(self, service):
        with pytest.raises(SettingsValidationError):
            service.update_settings("u1", {"market": "BTC"})

    def test_activation_resets_reference(self, service, settings_store):
        settings_store.update_state("u1", KEYS)
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=48_000_000.0))

        service.toggle("u1", True)

        assert settings_store.get_state("u1").is_active
        assert settings_store.get_market_state("u1", "KRW-BTC").reference_price is None

    def test_threshold_change_keeps_reference(self, service, settings_store):
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=48_000_000.0))

        service.update_settings("u1", {"buy_threshold": 1.0})

        assert settings_store.get_market_state("u1", "KRW-BTC").reference_price == 48_000_000.0

    def test_requires_user_id(self, service):
        with pytest.raises(SettingsValidationError):
            service.update_settings("", {"is_active": True})


class TestStatus:
    """Test account status reporting."""

    def test_without_keys(self, service):
        status = service.get_status("u1")
        assert status.current_price == 50_000_000.0
        assert status.krw_balance == 0.0
        assert status.credentials_message == MISSING_CREDENTIALS_MESSAGE

    def test_total_asset_value(self, service, settings_store, fake_gateway):
        settings_store.update_state("u1", KEYS)
        fake_gateway.balances = [
            Balance("KRW", 1_000_000.0, locked=100_000.0),
            Balance("BTC", 0.01, avg_buy_price=45_000_000.0),
        ]

        status = service.get_status("u1")

        assert status.krw_balance == 1_000_000.0
        assert status.coin_balance == 0.01
        assert status.total_asset_value == pytest.approx(1_100_000.0 + 500_000.0)
        assert status.credentials_message == ""

    def test_accounts_unavailable(self, service, settings_store, fake_gateway):
        settings_store.update_state("u1", KEYS)
        fake_gateway.balances = None
        assert service.get_status("u1").credentials_message == "Failed to fetch account balances"


class TestManualTrade:
    """Test manual orders."""

    def test_buy_target_amount(self, service, settings_store, trade_log, fake_gateway):
        settings_store.update_state("u1", KEYS)

        result = service.manual_trade("u1", "buy")

        assert result.success
        assert fake_gateway.orders == [("KRW-BTC", OrderSide.BID, "price", 10_000.0)]
        entries = trade_log.all("u1")
        assert len(entries) == 1
        assert entries[0].message.startswith("manual_buy")
        state = settings_store.get_market_state("u1", "KRW-BTC")
        assert state.reference_price == 50_000_000.0
        assert state.last_trade_time == NOW

    def test_sell_without_holdings_not_sent(self, service, settings_store, fake_gateway):
        settings_store.update_state("u1", KEYS)

        result = service.manual_trade("u1", "sell")

        assert not result.success
        assert fake_gateway.orders == []

    def test_buy_below_minimum_not_sent(self, service, settings_store, fake_gateway):
        settings_store.update_state("u1", KEYS)
        result = service.manual_trade("u1", OrderSide.BID, amount=1000)
        assert not result.success
        assert fake_gateway.orders == []

    def test_configured_minimum_applies(self, settings_store, trade_log, fake_gateway):
        service = TradingService(settings_store, trade_log, fake_gateway, allocator=PortfolioAllocator(10_000), clock=lambda: NOW)
        settings_store.update_state("u1", KEYS)

        result = service.manual_trade("u1", "buy", amount=8_000)

        assert not result.success
        assert fake_gateway.orders == []

    def test_missing_keys(self, service, fake_gateway):
        result = service.manual_trade("u1", "buy")
        assert result.message == MISSING_CREDENTIALS_MESSAGE
        assert fake_gateway.orders == []

    def test_unknown_side(self, service):
        with pytest.raises(ValueError):
            service.manual_trade("u1", "hold")


class TestVerifyCredentials:

    def test_missing_keys(self, service):
        result = service.verify_credentials("u1")
        assert not result.valid
        assert result.message == MISSING_CREDENTIALS_MESSAGE

    def test_delegates_to_gateway(self, service, settings_store):
        settings_store.update_state("u1", KEYS)
        assert service.verify_credentials("u1").valid


class TestBacktestAndStatistics:

    def test_backtest_fetches_hourly_candles(self, service, fake_gateway, make_candles):
        fake_gateway.candles["KRW-BTC"] = make_candles([100_000, 99_000, 100_000], freq="1h")

        result = service.run_backtest("krw-btc", "percent", 7)

        assert fake_gateway.candle_requests == [("KRW-BTC", 60, 168)]
        assert result.total_trades == 1

    @pytest.mark.parametrize("days", [0, 366])
    def test_backtest_day_bounds(self, service, days):
        with pytest.raises(ValueError):
            service.run_backtest("KRW-BTC", "percent", days)

    def test_backtest_without_candles(self, service):
        with pytest.raises(ValueError, match="No candle data"):
            service.run_backtest("KRW-BTC", "percent", 1)

    def test_backtest_leaves_trade_log_untouched(self, service, trade_log, fake_gateway, make_candles):
        fake_gateway.candles["KRW-BTC"] = make_candles([100_000, 99_000, 100_000], freq="1h")
        service.run_backtest("KRW-BTC", "percent", 1)
        assert trade_log.all() == []

    def test_statistics_and_log_listing(self, service, settings_store):
        settings_store.update_state("u1", KEYS)
        service.manual_trade("u1", "buy")

        assert service.get_statistics("u1").total_trades == 0
        assert len(service.list_trade_logs("u1", limit=10)) == 1
        with pytest.raises(ValueError):
            service.list_trade_logs("u1", limit=0)
