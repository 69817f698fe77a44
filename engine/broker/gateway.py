"""
Exchange gateway contract used by the trader and the service layer.

Implementations never raise to callers: read calls return None / empty
results on failure and order or credential calls return a result object
with success=False and the exchange's message.
"""
from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..shared.types import Candle, Credentials, OrderSide


@dataclass(frozen=True)
class Balance:
    """One currency line of an exchange account."""
    currency: str
    balance: float
    locked: float = 0.0
    avg_buy_price: float = 0.0


@dataclass(frozen=True)
class OrderResult:
    """Result of placing an order."""
    success: bool
    order_id: Optional[str] = None
    message: str = ""


@dataclass(frozen=True)
class VerifyResult:
    """Result of checking an API key pair."""
    valid: bool
    message: str = ""


class ExchangeGateway(Protocol):
    """Market data, balances and order placement on the exchange."""

    def get_ticker(self, market: str) -> Optional[float]:
        ...

    def get_candles(
        self,
        market: str,
        unit_minutes: int,
        count: int,
        to: Optional[str] = None,
    ) -> List[Candle]:
        ...

    def get_accounts(self, credentials: Credentials) -> Optional[List[Balance]]:
        """None when the account could not be read (network or authentication failure)."""
        ...

    def get_account_balance(self, credentials: Credentials, currency: str) -> float:
        ...

    def place_order(
        self,
        credentials: Credentials,
        market: str,
        side: OrderSide,
        ord_type: str,
        value: float,
    ) -> OrderResult:
        ...

    def verify_credentials(self, credentials: Credentials) -> VerifyResult:
        ...


def find_balance(balances: List[Balance], currency: str) -> Optional[Balance]:
    for balance in balances:
        if balance.currency == currency:
            return balance
    return None
