"""
Exchange integration module.

Provides the gateway contract and the Upbit REST client.
"""
from .gateway import ExchangeGateway, Balance, OrderResult, VerifyResult, find_balance
from .upbit_client import UpbitClient, UpbitAPIError

__all__ = [
    "ExchangeGateway",
    "Balance",
    "OrderResult",
    "VerifyResult",
    "find_balance",
    "UpbitClient",
    "UpbitAPIError",
]
