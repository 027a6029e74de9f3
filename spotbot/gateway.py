"""
Market gateway boundary.

``MarketGateway`` is the abstract exchange interface consumed by the trading
engine and the report service. Every failure it raises is a ``GatewayError``
carrying a ``retryable`` flag used by the retry policy.

``InMemoryGateway`` is a deterministic implementation used by tests and
dry-run demos: prices, candles and balances are set directly and failures can
be queued per method.
"""

import itertools
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Sequence

from .models import (
    Balance,
    Candle,
    KlineInterval,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
    to_decimal,
)

# Binance error codes that signal a transient condition.
UNKNOWN_ERROR = -1000
DISCONNECTED = -1001
TOO_MANY_REQUESTS = -1003
TIMEOUT = -1007

RETRYABLE_CODES = frozenset({UNKNOWN_ERROR, DISCONNECTED, TOO_MANY_REQUESTS, TIMEOUT})


class GatewayError(Exception):
    """Exchange or transport failure.

    Attributes:
        code: Exchange error code (or HTTP status when the exchange gave none)
        retryable: Whether the call may succeed if repeated
        context: Extra details for logging
    """

    def __init__(
        self,
        message: str,
        code: int = 0,
        *,
        retryable: Optional[bool] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable
        self.context = context or {}

    def __str__(self) -> str:
        return f"{self.args[0]} (code={self.code})"


class MarketGateway(ABC):
    """Abstract exchange interface.

    All prices and quantities are Decimal.
    """

    @abstractmethod
    def get_current_price(self, symbol: str) -> Decimal:
        """Return the last traded price for ``symbol``."""

    @abstractmethod
    def get_klines(self, symbol: str, interval: KlineInterval, limit: int) -> List[Candle]:
        """Return up to ``limit`` candles, oldest first."""

    @abstractmethod
    def get_account_balances(self) -> List[Balance]:
        """Return every non-empty balance of the account."""

    def get_balance(self, asset: str) -> Optional[Balance]:
        for balance in self.get_account_balances():
            if balance.asset == asset:
                return balance
        return None

    @abstractmethod
    def market_buy(self, symbol: str, quote_amount: Decimal) -> OrderResult:
        """Buy ``symbol`` spending ``quote_amount`` of the quote asset."""

    @abstractmethod
    def market_sell(self, symbol: str, quantity: Decimal) -> OrderResult:
        """Sell ``quantity`` of the base asset at market."""

    @abstractmethod
    def limit_buy(self, symbol: str, quantity: Decimal, price: Decimal) -> OrderResult:
        pass

    @abstractmethod
    def limit_sell(self, symbol: str, quantity: Decimal, price: Decimal) -> OrderResult:
        pass


class InMemoryGateway(MarketGateway):
    """Gateway double that fills every order immediately at the set price."""

    COMMISSION_RATE = Decimal("0.001")

    def __init__(self, quote_asset: str = "USDT"):
        self.quote_asset = quote_asset
        self.prices: Dict[str, Decimal] = {}
        self.candles: Dict[str, List[Candle]] = {}
        self.balances: Dict[str, Balance] = {}
        self.orders: List[OrderResult] = []
        self.calls: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._ids = itertools.count(1)

    # --- test setup helpers ---
    def set_price(self, symbol: str, price: Any) -> None:
        self.prices[symbol] = to_decimal(price)

    def set_candles(self, symbol: str, candles: Sequence[Candle]) -> None:
        self.candles[symbol] = list(candles)

    def set_balance(self, asset: str, free: Any, locked: Any = "0") -> None:
        self.balances[asset] = Balance(asset=asset, free=to_decimal(free), locked=to_decimal(locked))

    def fail_next(self, method: str, *errors: Exception) -> None:
        """Queue exceptions raised by the next calls to ``method``, in order."""
        self._failures[method].extend(errors)

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        if self._failures[method]:
            raise self._failures[method].popleft()

    def _base_asset(self, symbol: str) -> str:
        return symbol[: -len(self.quote_asset)] if symbol.endswith(self.quote_asset) else symbol

    def _price(self, symbol: str) -> Decimal:
        if symbol not in self.prices:
            raise GatewayError(f"Price not found for symbol: {symbol}", 404, context={"symbol": symbol})
        return self.prices[symbol]

    def _adjust(self, asset: str, delta: Decimal) -> None:
        current = self.balances.get(asset, Balance(asset=asset, free=Decimal("0")))
        self.balances[asset] = Balance(asset=asset, free=current.free + delta, locked=current.locked)

    def _fill(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        qty: Decimal,
        price: Decimal,
        quote_qty: Optional[Decimal] = None,
    ) -> OrderResult:
        if quote_qty is None:
            quote_qty = qty * price
        commission = quote_qty * self.COMMISSION_RATE
        base = self._base_asset(symbol)
        if side is OrderSide.BUY:
            self._adjust(self.quote_asset, -(quote_qty + commission))
            self._adjust(base, qty)
        else:
            self._adjust(base, -qty)
            self._adjust(self.quote_asset, quote_qty - commission)
        order = OrderResult(
            order_id=str(next(self._ids)),
            symbol=symbol,
            side=side,
            type=order_type,
            status=OrderStatus.FILLED,
            quantity=qty,
            price=price,
            quote_quantity=quote_qty,
            commission=commission,
            commission_asset=self.quote_asset,
        )
        self.orders.append(order)
        return order

    # --- MarketGateway ---
    def get_current_price(self, symbol: str) -> Decimal:
        self._enter("get_current_price")
        return self._price(symbol)

    def get_klines(self, symbol: str, interval: KlineInterval, limit: int) -> List[Candle]:
        self._enter("get_klines")
        return self.candles.get(symbol, [])[-limit:]

    def get_account_balances(self) -> List[Balance]:
        self._enter("get_account_balances")
        return [b for b in self.balances.values() if not b.is_empty]

    def market_buy(self, symbol: str, quote_amount: Decimal) -> OrderResult:
        self._enter("market_buy")
        price = self._price(symbol)
        return self._fill(
            symbol, OrderSide.BUY, OrderType.MARKET, quote_amount / price, price, quote_qty=quote_amount
        )

    def market_sell(self, symbol: str, quantity: Decimal) -> OrderResult:
        self._enter("market_sell")
        return self._fill(symbol, OrderSide.SELL, OrderType.MARKET, quantity, self._price(symbol))

    def limit_buy(self, symbol: str, quantity: Decimal, price: Decimal) -> OrderResult:
        self._enter("limit_buy")
        return self._fill(symbol, OrderSide.BUY, OrderType.LIMIT, quantity, price)

    def limit_sell(self, symbol: str, quantity: Decimal, price: Decimal) -> OrderResult:
        self._enter("limit_sell")
        return self._fill(symbol, OrderSide.SELL, OrderType.LIMIT, quantity, price)
