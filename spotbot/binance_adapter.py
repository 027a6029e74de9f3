import hashlib
import hmac
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .gateway import (
    DISCONNECTED,
    TIMEOUT,
    TOO_MANY_REQUESTS,
    UNKNOWN_ERROR,
    GatewayError,
    MarketGateway,
)
from .logging_setup import logger
from .models import (
    Balance,
    Candle,
    KlineInterval,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
)
from .rate_limit_policy import ORDERS, REQUEST_WEIGHT, RateLimitManager
from .secrets import BinanceCredentials

LIVE_URL = "https://api.binance.com"
TESTNET_URL = "https://testnet.binance.vision"

# Request weights of the endpoints used below
WEIGHTS = {
    "/api/v3/ping": 1,
    "/api/v3/time": 1,
    "/api/v3/ticker/price": 2,
    "/api/v3/klines": 2,
    "/api/v3/account": 20,
    "/api/v3/order": 1,
}


class _BinanceModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PriceTicker(_BinanceModel):
    symbol: str
    price: Decimal


class AccountBalance(_BinanceModel):
    asset: str
    free: Decimal
    locked: Decimal


class AccountInfo(_BinanceModel):
    balances: List[AccountBalance] = Field(default_factory=list)


class ServerTime(_BinanceModel):
    server_time: int = Field(alias="serverTime")


class OrderFill(_BinanceModel):
    price: Decimal
    qty: Decimal
    commission: Decimal = Decimal("0")
    commission_asset: str = Field(default="", alias="commissionAsset")


class OrderResponse(_BinanceModel):
    """FULL order response of POST /api/v3/order."""

    symbol: str
    order_id: int = Field(alias="orderId")
    client_order_id: str = Field(default="", alias="clientOrderId")
    price: Decimal = Decimal("0")
    executed_qty: Decimal = Field(alias="executedQty")
    cummulative_quote_qty: Decimal = Field(alias="cummulativeQuoteQty")
    status: str
    type: str
    side: str
    transact_time: Optional[int] = Field(default=None, alias="transactTime")
    fills: List[OrderFill] = Field(default_factory=list)

    def average_price(self) -> Decimal:
        total_qty = sum((f.qty for f in self.fills), Decimal("0"))
        if not self.fills:
            return self.price
        if total_qty == 0:
            return Decimal("0")
        return sum((f.qty * f.price for f in self.fills), Decimal("0")) / total_qty

    def to_order_result(self) -> OrderResult:
        commission = sum((f.commission for f in self.fills), Decimal("0"))
        commission_asset = self.fills[-1].commission_asset if self.fills else ""
        executed_at = (
            datetime.fromtimestamp(self.transact_time / 1000, tz=timezone.utc)
            if self.transact_time is not None
            else datetime.now(timezone.utc)
        )
        return OrderResult(
            order_id=str(self.order_id),
            symbol=self.symbol,
            side=OrderSide(self.side),
            type=OrderType(self.type),
            status=OrderStatus.from_exchange(self.status),
            quantity=self.executed_qty,
            price=self.average_price(),
            quote_quantity=self.cummulative_quote_qty,
            commission=commission,
            commission_asset=commission_asset,
            client_order_id=self.client_order_id,
            executed_at=executed_at,
        )


def _fmt(value: Decimal) -> str:
    """Plain decimal notation; Binance rejects exponents."""
    return format(value.normalize(), "f")


def _ms_to_dt(ms: Any) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc)


def parse_kline(row: List[Any]) -> Candle:
    """Convert one /api/v3/klines array into a Candle."""
    return Candle(
        open_time=_ms_to_dt(row[0]),
        open=Decimal(str(row[1])),
        high=Decimal(str(row[2])),
        low=Decimal(str(row[3])),
        close=Decimal(str(row[4])),
        volume=Decimal(str(row[5])),
        close_time=_ms_to_dt(row[6]),
        quote_volume=Decimal(str(row[7])),
        trade_count=int(row[8]),
    )


class BinanceAdapter(MarketGateway):
    """Binance spot REST gateway with HMAC-SHA256 signing and request-weight budgeting.

    Features:
    - Signed endpoints carry ``timestamp``/``recvWindow`` and a hex HMAC-SHA256
      ``signature`` of the query string; the key travels in ``X-MBX-APIKEY``.
    - urllib3 ``Retry`` for 5xx responses on GET only; order placement is never
      retried at the transport level.
    - Every failure surfaces as ``GatewayError``. HTTP 429/418 map to -1003,
      timeouts to -1007 and connection failures to -1001 so the engine's retry
      policy can act on them.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = LIVE_URL,
        timeout: int = 10,
        recv_window: int = 5000,
        max_retries: int = 3,
        rate_limiter: Optional[RateLimitManager] = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.recv_window = recv_window
        self.rate_limiter = rate_limiter or RateLimitManager()

        self.session = requests.Session()
        self.session.headers.update({"X-MBX-APIKEY": api_key})
        retries = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=(500, 502, 503, 504),
            allowed_methods=frozenset(["GET"]),
        )
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session.mount("http://", HTTPAdapter(max_retries=retries))

    @classmethod
    def from_credentials(cls, credentials: BinanceCredentials, testnet: bool = False, **kwargs) -> "BinanceAdapter":
        """Create a BinanceAdapter from credentials loaded via the secrets module."""
        kwargs.setdefault("base_url", TESTNET_URL if testnet else LIVE_URL)
        return cls(api_key=credentials.api_key, api_secret=credentials.api_secret, **kwargs)

    def _sign(self, params: Dict[str, Any]) -> str:
        """Return the signed query string for ``params``."""
        signed = dict(params)
        signed["timestamp"] = int(time.time() * 1000)
        signed["recvWindow"] = self.recv_window
        query = urlencode(signed)
        signature = hmac.new(
            self.api_secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256
        ).hexdigest()
        return f"{query}&signature={signature}"

    def _acquire(self, path: str, is_order: bool) -> None:
        weight = WEIGHTS.get(path, 1)
        if not self.rate_limiter.wait_if_needed(REQUEST_WEIGHT, weight):
            raise GatewayError("Request weight budget exhausted", TOO_MANY_REQUESTS, context={"path": path})
        if is_order and not self.rate_limiter.wait_if_needed(ORDERS, 1):
            raise GatewayError("Order rate budget exhausted", TOO_MANY_REQUESTS, context={"path": path})

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        signed: bool = False,
    ) -> Any:
        params = params or {}
        self._acquire(path, is_order=(method == "POST" and path == "/api/v3/order"))

        url = f"{self.base_url}{path}"
        if signed:
            url = f"{url}?{self._sign(params)}"
            params = {}

        context = {"method": method, "path": path}
        try:
            resp = self.session.request(method, url, params=params or None, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise GatewayError(f"Request timed out: {e}", TIMEOUT, context=context) from e
        except requests.exceptions.ConnectionError as e:
            raise GatewayError(f"Connection failed: {e}", DISCONNECTED, context=context) from e
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"Request failed: {e}", UNKNOWN_ERROR, context=context) from e

        if resp.status_code in (418, 429):
            retry_after = resp.headers.get("Retry-After")
            logger.warning(f"Binance rate limit hit | status={resp.status_code} retry_after={retry_after} path={path}")
            raise GatewayError(
                f"Rate limited by exchange (HTTP {resp.status_code})",
                TOO_MANY_REQUESTS,
                context={**context, "retry_after": retry_after},
            )

        if not resp.ok:
            raise self._error_from_response(resp, context)

        return resp.json() if resp.text else None

    @staticmethod
    def _error_from_response(resp: requests.Response, context: Dict[str, Any]) -> GatewayError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and "code" in body:
            code = int(body["code"])
            message = body.get("msg", resp.text)
        else:
            code = UNKNOWN_ERROR if resp.status_code >= 500 else resp.status_code
            message = resp.text or resp.reason
        return GatewayError(
            f"Binance API error: {message}", code, context={**context, "http_status": resp.status_code}
        )

    @staticmethod
    def _parse(model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise GatewayError(
                f"Unexpected {model.__name__} payload: {e}", UNKNOWN_ERROR, retryable=False
            ) from e

    # --- market data ---
    def ping(self) -> bool:
        try:
            self._request("GET", "/api/v3/ping")
            return True
        except GatewayError:
            return False

    def get_server_time(self) -> int:
        return self._parse(ServerTime, self._request("GET", "/api/v3/time")).server_time

    def get_current_price(self, symbol: str) -> Decimal:
        data = self._request("GET", "/api/v3/ticker/price", {"symbol": symbol})
        return self._parse(PriceTicker, data).price

    def get_klines(self, symbol: str, interval: KlineInterval, limit: int) -> List[Candle]:
        rows = self._request(
            "GET", "/api/v3/klines", {"symbol": symbol, "interval": interval.value, "limit": limit}
        )
        try:
            return [parse_kline(row) for row in rows or []]
        except (IndexError, TypeError, ValueError, ArithmeticError) as e:
            raise GatewayError(f"Unexpected klines payload: {e}", UNKNOWN_ERROR, retryable=False) from e

    # --- account ---
    def get_account_balances(self) -> List[Balance]:
        info = self._parse(AccountInfo, self._request("GET", "/api/v3/account", signed=True))
        return [
            Balance(asset=b.asset, free=b.free, locked=b.locked)
            for b in info.balances
            if b.free + b.locked > 0
        ]

    # --- orders ---
    def _order(self, params: Dict[str, Any]) -> OrderResult:
        params = {**params, "newOrderRespType": "FULL"}
        logger.info(
            f"Placing order | symbol={params['symbol']} side={params['side']} type={params['type']}"
        )
        data = self._request("POST", "/api/v3/order", params, signed=True)
        result = self._parse(OrderResponse, data).to_order_result()
        logger.info(
            f"Order placed | order_id={result.order_id} status={result.status.value} "
            f"qty={result.quantity} price={result.price}"
        )
        return result

    def market_buy(self, symbol: str, quote_amount: Decimal) -> OrderResult:
        return self._order(
            {"symbol": symbol, "side": "BUY", "type": "MARKET", "quoteOrderQty": _fmt(quote_amount)}
        )

    def market_sell(self, symbol: str, quantity: Decimal) -> OrderResult:
        return self._order(
            {"symbol": symbol, "side": "SELL", "type": "MARKET", "quantity": _fmt(quantity)}
        )

    def limit_buy(self, symbol: str, quantity: Decimal, price: Decimal) -> OrderResult:
        return self._order(
            {
                "symbol": symbol,
                "side": "BUY",
                "type": "LIMIT",
                "timeInForce": "GTC",
                "quantity": _fmt(quantity),
                "price": _fmt(price),
            }
        )

    def limit_sell(self, symbol: str, quantity: Decimal, price: Decimal) -> OrderResult:
        return self._order(
            {
                "symbol": symbol,
                "side": "SELL",
                "type": "LIMIT",
                "timeInForce": "GTC",
                "quantity": _fmt(quantity),
                "price": _fmt(price),
            }
        )
