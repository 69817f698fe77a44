"""
Shared fixtures: candle series and an in-memory exchange gateway.
"""
from typing import Dict, List, Optional

import pandas as pd
import pytest

from engine.broker.gateway import Balance, OrderResult, VerifyResult, find_balance
from engine.shared.types import Candle


def build_candles(closes, start="2024-01-01", freq="1min", spread=0.0) -> List[Candle]:
    """Candles with the given closes; high/low are close +/- spread."""
    stamps = pd.date_range(start, periods=len(closes), freq=freq, tz="UTC")
    return [
        Candle(timestamp=ts, open=float(c), high=float(c) + spread, low=float(c) - spread, close=float(c), volume=1.0)
        for ts, c in zip(stamps, closes)
    ]


@pytest.fixture
def make_candles():
    """Factory fixture: make_candles(closes, start=..., freq=..., spread=...)."""
    return build_candles


class FakeGateway:
    """In-memory ExchangeGateway recording every order it receives."""

    def __init__(self, prices=None, balances=None, candles=None, order_success=True):
        self.prices: Dict[str, float] = dict(prices or {})
        self.balances: Optional[List[Balance]] = list(balances) if balances is not None else []
        self.candles: Dict[str, List[Candle]] = dict(candles or {})
        self.order_success = order_success
        self.orders = []
        self.candle_requests = []
        self.verify_result = VerifyResult(valid=True, message="ok")

    def get_ticker(self, market):
        return self.prices.get(market)

    def get_candles(self, market, unit_minutes, count, to=None):
        self.candle_requests.append((market, unit_minutes, count))
        return list(self.candles.get(market, []))[-count:]

    def get_accounts(self, credentials):
        return None if self.balances is None else list(self.balances)

    def get_account_balance(self, credentials, currency):
        balance = find_balance(self.balances or [], currency)
        return balance.balance if balance else 0.0

    def place_order(self, credentials, market, side, ord_type, value):
        self.orders.append((market, side, ord_type, value))
        if not self.order_success:
            return OrderResult(success=False, message="insufficient_funds_bid")
        return OrderResult(success=True, order_id=f"uuid-{len(self.orders)}")

    def verify_credentials(self, credentials):
        return self.verify_result


@pytest.fixture
def fake_gateway():
    return FakeGateway(
        prices={"KRW-BTC": 50_000_000.0},
        balances=[Balance("KRW", 1_000_000.0)],
    )
