"""
Upbit REST API client for market data, balances and order placement.

Uses requests for HTTP and PyJWT for request signing: every private call
carries a HS256 token with the access key, a nonce and, when the request has
parameters, the SHA-512 hash of the url-encoded query.
"""
import hashlib
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import jwt
import pandas as pd
import requests

from ..shared.types import Candle, Credentials, OrderSide
from ..shared.defaults import MIN_ORDER_AMOUNT
from .gateway import Balance, OrderResult, VerifyResult, find_balance


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.upbit.com/v1"
MAX_CANDLES_PER_REQUEST = 200
DAY_UNIT_MINUTES = 1440


class UpbitAPIError(Exception):
    """Error response returned by the exchange ({"error": {"name", "message"}})."""

    def __init__(self, name: str, message: str, status_code: int = 0):
        super().__init__(f"{name}: {message}" if name else message)
        self.name = name
        self.message = message
        self.status_code = status_code


def _format_number(value: float) -> str:
    """Render a number without exponent or trailing zeros ('0.00120000' -> '0.0012')."""
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


class UpbitClient:
    """
    Client for the Upbit exchange API.

    Provides methods for:
    - Public market data (ticker, minute/day candles)
    - Account balances
    - Market orders (KRW-amount buys, volume sells)
    - API key verification
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        min_order_amount: float = MIN_ORDER_AMOUNT,
    ):
        """
        Initialize Upbit client.

        Args:
            base_url: API root (default: https://api.upbit.com/v1)
            timeout: HTTP timeout in seconds per request
            session: requests session to reuse (default: a new one)
            min_order_amount: Buy orders below this KRW value are rejected locally
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.min_order_amount = min_order_amount

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _auth_headers(self, credentials: Credentials, params: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        payload: Dict[str, Any] = {
            "access_key": credentials.access_key,
            "nonce": str(uuid.uuid4()),
        }
        if params:
            query = urlencode(params).encode("utf-8")
            payload["query_hash"] = hashlib.sha512(query).hexdigest()
            payload["query_hash_alg"] = "SHA512"

        token = jwt.encode(payload, credentials.secret_key, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        credentials: Optional[Credentials] = None,
    ) -> Any:
        """Send a request and return decoded JSON; raises UpbitAPIError or requests.RequestException."""
        headers = {"Accept": "application/json"}
        if credentials is not None:
            headers.update(self._auth_headers(credentials, body if body is not None else params))

        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            params=params,
            json=body,
            headers=headers,
            timeout=self.timeout,
        )

        if response.status_code >= 400:
            name, message = "", response.text
            try:
                error = response.json().get("error", {})
                name = error.get("name", "")
                message = error.get("message", message)
            except (ValueError, AttributeError):
                pass
            raise UpbitAPIError(name, message, response.status_code)

        return response.json()

    # ------------------------------------------------------------------
    # Public market data
    # ------------------------------------------------------------------

    def get_ticker(self, market: str) -> Optional[float]:
        """
        Get the last trade price of a market.

        Returns:
            Price as float, or None if not available
        """
        try:
            data = self._request("GET", "/ticker", params={"markets": market})
            if not data:
                logger.warning(f"Empty ticker response for {market}")
                return None
            return float(data[0]["trade_price"])
        except (requests.RequestException, UpbitAPIError, KeyError, ValueError) as e:
            logger.error(f"Failed to fetch ticker for {market}: {e}")
            return None

    def get_candles(
        self,
        market: str,
        unit_minutes: int = 1,
        count: int = MAX_CANDLES_PER_REQUEST,
        to: Optional[str] = None,
    ) -> List[Candle]:
        """
        Get candles, paginating backwards in batches of 200.

        Args:
            market: Market code (e.g., KRW-BTC)
            unit_minutes: Candle size in minutes (1440 = daily)
            count: Number of candles wanted
            to: Exclusive end time (UTC, 'YYYY-MM-DDTHH:MM:SS'); default now

        Returns:
            Candles ordered oldest -> newest (empty list on failure)
        """
        path = "/candles/days" if unit_minutes == DAY_UNIT_MINUTES else f"/candles/minutes/{unit_minutes}"
        rows: List[Dict[str, Any]] = []
        remaining = count
        cursor = to

        try:
            while remaining > 0:
                batch = min(remaining, MAX_CANDLES_PER_REQUEST)
                params: Dict[str, Any] = {"market": market, "count": batch}
                if cursor:
                    params["to"] = cursor
                data = self._request("GET", path, params=params)
                if not data:
                    break
                rows.extend(data)
                remaining -= len(data)
                if len(data) < batch:
                    break
                # Responses are newest first; continue before the oldest one
                cursor = data[-1]["candle_date_time_utc"]
        except (requests.RequestException, UpbitAPIError, KeyError, ValueError) as e:
            logger.error(f"Failed to fetch candles for {market} ({unit_minutes}m x {count}): {e}")
            return []

        candles = {}
        for row in rows:
            timestamp = pd.Timestamp(row["candle_date_time_utc"], tz="UTC")
            candles[timestamp] = Candle(
                timestamp=timestamp,
                open=float(row["opening_price"]),
                high=float(row["high_price"]),
                low=float(row["low_price"]),
                close=float(row["trade_price"]),
                volume=float(row.get("candle_acc_trade_volume", 0.0)),
            )
        return [candles[t] for t in sorted(candles)]

    # ------------------------------------------------------------------
    # Private endpoints
    # ------------------------------------------------------------------

    def get_accounts(self, credentials: Credentials) -> Optional[List[Balance]]:
        """
        Get all balances of the account.

        Returns:
            List of Balance objects, or None if the account could not be read
        """
        if not credentials.is_complete:
            logger.error("Cannot read accounts: API keys not configured")
            return None

        try:
            data = self._request("GET", "/accounts", credentials=credentials)
            return [
                Balance(
                    currency=row["currency"],
                    balance=float(row.get("balance", 0) or 0),
                    locked=float(row.get("locked", 0) or 0),
                    avg_buy_price=float(row.get("avg_buy_price", 0) or 0),
                )
                for row in data
            ]
        except (requests.RequestException, UpbitAPIError, KeyError, ValueError) as e:
            logger.error(f"Failed to fetch accounts: {e}")
            return None

    def get_account_balance(self, credentials: Credentials, currency: str) -> float:
        """Available balance of one currency (0 if missing or unreadable)."""
        balances = self.get_accounts(credentials) or []
        balance = find_balance(balances, currency)
        return balance.balance if balance else 0.0

    def place_order(
        self,
        credentials: Credentials,
        market: str,
        side: OrderSide,
        ord_type: str,
        value: float,
    ) -> OrderResult:
        """
        Place a market order.

        Args:
            credentials: API key pair
            market: Market code (e.g., KRW-BTC)
            side: BID (buy) or ASK (sell)
            ord_type: "price" (buy for a KRW amount) or "market" (sell a volume)
            value: KRW amount for "price" orders, coin volume for "market" orders

        Returns:
            OrderResult with the exchange order uuid, or success=False and the reason
        """
        if not credentials.is_complete:
            return OrderResult(False, message="API keys not configured")
        if value <= 0:
            return OrderResult(False, message=f"Invalid order value {value}")
        if ord_type == "price" and value < self.min_order_amount:
            return OrderResult(
                False,
                message=f"Order amount {value:,.0f} below minimum {self.min_order_amount:,.0f}",
            )

        body: Dict[str, Any] = {"market": market, "side": side.value, "ord_type": ord_type}
        if ord_type == "price":
            body["price"] = _format_number(float(int(value)))
        elif ord_type == "market":
            body["volume"] = _format_number(value)
        else:
            return OrderResult(False, message=f"Unsupported ord_type '{ord_type}'")

        try:
            data = self._request("POST", "/orders", body=body, credentials=credentials)
            order_id = data.get("uuid")
            logger.info(f"Placed {side.value} order on {market}: {ord_type}={value} uuid={order_id}")
            return OrderResult(True, order_id=order_id, message="Order placed")
        except UpbitAPIError as e:
            logger.error(f"Exchange rejected {side.value} order on {market}: {e}")
            return OrderResult(False, message=e.message)
        except requests.RequestException as e:
            logger.error(f"Failed to place {side.value} order on {market}: {e}")
            return OrderResult(False, message=str(e))

    def verify_credentials(self, credentials: Credentials) -> VerifyResult:
        """
        Check an API key pair against the exchange.

        Returns:
            VerifyResult; on failure message carries the exchange's text verbatim
            (e.g. unknown key, IP not allow-listed)
        """
        if not credentials.is_complete:
            return VerifyResult(False, "API keys not configured")

        try:
            data = self._request("GET", "/api_keys", credentials=credentials)
            expiries = [row.get("expire_at") for row in data if isinstance(row, dict)]
            message = f"Valid (expires {expiries[0]})" if expiries and expiries[0] else "Valid"
            return VerifyResult(True, message)
        except UpbitAPIError as e:
            logger.warning(f"Credential check failed: {e}")
            return VerifyResult(False, e.message)
        except requests.RequestException as e:
            logger.error(f"Credential check failed: {e}")
            return VerifyResult(False, str(e))
