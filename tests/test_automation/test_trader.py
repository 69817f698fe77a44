"""
Tests for the automated trader (one tick over all active users).
"""
from datetime import datetime, timedelta, timezone

import pytest

from engine.automation.state import JsonSettingsStore, JsonTradeLogStore
from engine.automation.trader import AutomatedTrader
from engine.broker.gateway import Balance
from engine.shared.types import OrderSide, StateDelta
from engine.trading.allocator import PortfolioAllocator


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
KEYS = {"access_key": "ak", "secret_key": "sk"}


@pytest.fixture
def settings_store(tmp_path):
    return JsonSettingsStore(tmp_path / "bot_settings.json")


@pytest.fixture
def trade_log(tmp_path):
    return JsonTradeLogStore(tmp_path / "trade_log.json")


@pytest.fixture
def trader(fake_gateway, settings_store, trade_log):
    return AutomatedTrader(fake_gateway, settings_store, trade_log, candle_unit_minutes=1, candle_count=50)


def activate(store, user_id="u1", **fields):
    store.update_state(user_id, {"is_active": True, **KEYS, **fields})


class TestRunCycle:

    def test_first_tick_initializes_reference(self, trader, settings_store, fake_gateway):
        activate(settings_store)
        results = trader.run_cycle(T0)

        assert [(r.status, r.reason) for r in results] == [("hold", "reference_initialized")]
        assert settings_store.get_market_state("u1", "KRW-BTC").reference_price == 50_000_000.0
        assert fake_gateway.orders == []

    def test_buy_after_drop(self, trader, settings_store, trade_log, fake_gateway):
        activate(settings_store)
        trader.run_cycle(T0)

        fake_gateway.prices["KRW-BTC"] = 49_500_000.0
        now = T0 + timedelta(seconds=10)
        results = trader.run_cycle(now)

        assert [(r.status, r.reason) for r in results] == [("placed", "percent_drop")]
        assert fake_gateway.orders == [("KRW-BTC", OrderSide.BID, "price", 10_000.0)]

        entries = trade_log.all("u1")
        assert len(entries) == 1
        assert entries[0].side == "bid"
        assert entries[0].status == "success"
        assert entries[0].volume == pytest.approx(10_000 / 49_500_000)
        assert entries[0].fee_paid == pytest.approx(5.0)

        state = settings_store.get_market_state("u1", "KRW-BTC")
        assert state.reference_price == 49_500_000.0
        assert state.last_trade_time == now

    def test_sell_sends_volume(self, trader, settings_store, fake_gateway):
        activate(settings_store)
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=50_000_000.0))
        fake_gateway.prices["KRW-BTC"] = 50_500_000.0
        fake_gateway.balances = [Balance("KRW", 0.0), Balance("BTC", 0.002)]

        results = trader.run_cycle(T0)

        assert results[0].status == "placed"
        assert fake_gateway.orders == [("KRW-BTC", OrderSide.ASK, "market", 0.002)]

    def test_cooldown_between_qualifying_ticks(self, trader, settings_store, fake_gateway):
        """Two drops 10 seconds apart: only the first places an order."""
        activate(settings_store)
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=50_000_000.0))

        fake_gateway.prices["KRW-BTC"] = 49_500_000.0
        first = trader.run_cycle(T0)
        fake_gateway.prices["KRW-BTC"] = 49_000_000.0
        second = trader.run_cycle(T0 + timedelta(seconds=10))
        third = trader.run_cycle(T0 + timedelta(seconds=40))

        assert [(r.status, r.reason) for r in first] == [("placed", "percent_drop")]
        assert [(r.status, r.reason) for r in second] == [("hold", "cooldown")]
        assert [(r.status, r.reason) for r in third] == [("placed", "percent_drop")]
        assert len(fake_gateway.orders) == 2

    def test_configured_minimum_blocks_small_sell(self, fake_gateway, settings_store, trade_log):
        trader = AutomatedTrader(fake_gateway, settings_store, trade_log, allocator=PortfolioAllocator(10_000))
        activate(settings_store)
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=50_000_000.0))
        fake_gateway.prices["KRW-BTC"] = 50_500_000.0
        fake_gateway.balances = [Balance("KRW", 0.0), Balance("BTC", 0.00014)]

        results = trader.run_cycle(T0)

        assert [(r.status, r.reason) for r in results] == [("hold", "insufficient_holdings")]
        assert fake_gateway.orders == []

    def test_failed_order_logged_and_state_kept(self, trader, settings_store, trade_log, fake_gateway):
        activate(settings_store)
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=50_000_000.0))
        fake_gateway.prices["KRW-BTC"] = 49_000_000.0
        fake_gateway.order_success = False

        results = trader.run_cycle(T0)

        assert results[0].status == "failed"
        entries = trade_log.all("u1")
        assert [e.status for e in entries] == ["failed"]
        assert entries[0].fee_paid == 0.0
        assert "insufficient_funds_bid" in entries[0].message

        state = settings_store.get_market_state("u1", "KRW-BTC")
        assert state.reference_price == 50_000_000.0
        assert state.last_trade_time is None

    def test_dry_run_places_nothing(self, fake_gateway, settings_store, trade_log):
        trader = AutomatedTrader(fake_gateway, settings_store, trade_log, dry_run=True)
        activate(settings_store)
        settings_store.update_market_state("u1", "KRW-BTC", StateDelta(reference_price=50_000_000.0))
        fake_gateway.prices["KRW-BTC"] = 49_000_000.0

        results = trader.run_cycle(T0)

        assert results[0].status == "hold"
        assert results[0].reason == "dry_run:percent_drop"
        assert fake_gateway.orders == []
        assert trade_log.all() == []
        assert settings_store.get_market_state("u1", "KRW-BTC").reference_price == 50_000_000.0

    def test_inactive_users_ignored(self, trader, settings_store, fake_gateway):
        settings_store.update_state("u1", {"is_active": False, **KEYS})
        assert trader.run_cycle(T0) == []

    def test_missing_credentials_skipped(self, trader, settings_store, fake_gateway):
        settings_store.update_state("u1", {"is_active": True})
        results = trader.run_cycle(T0)

        assert [(r.status, r.reason) for r in results] == [("skipped", "missing_credentials")]
        assert fake_gateway.candle_requests == []

    def test_invalid_strategy_skipped(self, trader, settings_store):
        activate(settings_store, strategy="martingale")
        assert trader.run_cycle(T0)[0].reason == "invalid_strategy"

    def test_price_unavailable_skipped(self, trader, settings_store, fake_gateway):
        activate(settings_store, market="KRW-XRP")
        results = trader.run_cycle(T0)
        assert [(r.market, r.status, r.reason) for r in results] == [("KRW-XRP", "skipped", "price_unavailable")]

    def test_balances_unavailable_skipped(self, trader, settings_store, fake_gateway):
        activate(settings_store)
        fake_gateway.balances = None
        assert trader.run_cycle(T0)[0].reason == "balance_unavailable"

    def test_one_user_failure_does_not_stop_others(self, trader, settings_store, fake_gateway, monkeypatch):
        activate(settings_store, "u1", access_key="bad")
        activate(settings_store, "u2")
        original = fake_gateway.get_accounts

        def flaky_accounts(credentials):
            if credentials.access_key == "bad":
                raise ConnectionError("connection reset")
            return original(credentials)

        monkeypatch.setattr(fake_gateway, "get_accounts", flaky_accounts)
        results = trader.run_cycle(T0)

        assert [(r.user_id, r.status) for r in results] == [("u1", "error"), ("u2", "hold")]

    def test_portfolio_markets_have_independent_state(self, trader, settings_store, fake_gateway):
        fake_gateway.prices["KRW-ETH"] = 3_000_000.0
        activate(
            settings_store,
            target_amount=20_000,
            portfolio_markets=["KRW-BTC", "KRW-ETH"],
            portfolio_allocations=[50, 50],
        )

        results = trader.run_cycle(T0)

        assert [r.market for r in results] == ["KRW-BTC", "KRW-ETH"]
        assert settings_store.get_market_state("u1", "KRW-BTC").reference_price == 50_000_000.0
        assert settings_store.get_market_state("u1", "KRW-ETH").reference_price == 3_000_000.0

    def test_requests_configured_candles(self, trader, settings_store, fake_gateway):
        activate(settings_store)
        trader.run_cycle(T0)
        assert fake_gateway.candle_requests == [("KRW-BTC", 1, 50)]

    def test_below_minimum_plan_skipped(self, trader, settings_store, fake_gateway):
        activate(settings_store, target_amount=8_000, portfolio_markets=["KRW-BTC", "KRW-ETH"])
        assert trader.run_cycle(T0)[0].reason == "below_minimum_order"
