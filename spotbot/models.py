"""
Domain types shared by the indicator, strategy, execution and P&L layers.

Records are frozen dataclasses. Deriving a record with one field changed goes
through ``dataclasses.replace`` (wrapped by small ``with_*`` helpers) so that a
value handed to a collaborator is never mutated behind its back.

All prices, quantities and indicator values are ``Decimal``.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value: Any) -> Decimal:
    """Convert str/int/float/Decimal to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class Signal(Enum):
    """Trading decision produced by a strategy."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @property
    def is_actionable(self) -> bool:
        return self is not Signal.HOLD

    def to_order_side(self) -> Optional["OrderSide"]:
        if self is Signal.BUY:
            return OrderSide.BUY
        if self is Signal.SELL:
            return OrderSide.SELL
        return None


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"

    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_LOSS = "STOP_LOSS"
    STOP_LOSS_LIMIT = "STOP_LOSS_LIMIT"
    TAKE_PROFIT = "TAKE_PROFIT"
    TAKE_PROFIT_LIMIT = "TAKE_PROFIT_LIMIT"

    @property
    def requires_price(self) -> bool:
        return self is not OrderType.MARKET


class OrderStatus(Enum):
    """Exchange order lifecycle states."""

    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    PENDING_CANCEL = "PENDING_CANCEL"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"

    @classmethod
    def from_exchange(cls, status: str) -> "OrderStatus":
        return cls(status.upper())

    @property
    def is_final(self) -> bool:
        return self in (
            OrderStatus.FILLED,
            OrderStatus.CANCELED,
            OrderStatus.REJECTED,
            OrderStatus.EXPIRED,
            OrderStatus.ERROR,
        )

    @property
    def is_executed(self) -> bool:
        return self in (OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED)

    @property
    def is_pending(self) -> bool:
        return self in (OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED, OrderStatus.PENDING_CANCEL)


class StrategyKind(Enum):
    RSI = "rsi"
    MOVING_AVERAGE = "ma"
    COMBINED = "combined"


class Trend(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"
    UNKNOWN = "unknown"


class KlineInterval(Enum):
    ONE_MINUTE = "1m"
    THREE_MINUTES = "3m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    TWO_HOURS = "2h"
    FOUR_HOURS = "4h"
    SIX_HOURS = "6h"
    EIGHT_HOURS = "8h"
    TWELVE_HOURS = "12h"
    ONE_DAY = "1d"
    THREE_DAYS = "3d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1M"

    def to_seconds(self) -> int:
        unit = self.value[-1]
        count = int(self.value[:-1])
        seconds = {"m": 60, "h": 3600, "d": 86400, "w": 604800, "M": 2592000}[unit]
        return count * seconds

    @classmethod
    def default(cls) -> "KlineInterval":
        return cls.FIVE_MINUTES


@dataclass(frozen=True)
class StrategyConfig:
    """Which strategy to run and its RSI thresholds."""

    kind: StrategyKind = StrategyKind.RSI
    oversold: Decimal = Decimal("30")
    overbought: Decimal = Decimal("70")


@dataclass(frozen=True)
class Candle:
    """A single OHLCV candle as returned by the exchange."""

    open_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    close_time: datetime
    quote_volume: Decimal = Decimal("0")
    trade_count: int = 0

    @property
    def median_price(self) -> Decimal:
        return (self.high + self.low) / 2

    @property
    def typical_price(self) -> Decimal:
        return (self.high + self.low + self.close) / 3

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    def change_percent(self) -> Decimal:
        if self.open == 0:
            return Decimal("0")
        return (self.close - self.open) / self.open * 100


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values computed from one price history.

    A value is ``None`` when the history was too short to compute it.
    """

    rsi: Optional[Decimal] = None
    short_ma: Optional[Decimal] = None
    long_ma: Optional[Decimal] = None
    current_price: Optional[Decimal] = None
    rsi_signal: Optional[str] = None
    trend: Trend = Trend.UNKNOWN
    golden_cross: bool = False
    death_cross: bool = False

    @property
    def has_moving_averages(self) -> bool:
        return self.short_ma is not None and self.long_ma is not None

    def with_current_price(self, price: Decimal) -> "IndicatorSnapshot":
        return replace(self, current_price=price)

    def to_dict(self) -> Dict[str, Any]:
        def _s(v: Optional[Decimal]) -> Optional[str]:
            return str(v) if v is not None else None

        return {
            "rsi": _s(self.rsi),
            "short_ma": _s(self.short_ma),
            "long_ma": _s(self.long_ma),
            "current_price": _s(self.current_price),
            "rsi_signal": self.rsi_signal,
            "trend": self.trend.value,
            "golden_cross": self.golden_cross,
            "death_cross": self.death_cross,
        }


@dataclass(frozen=True)
class Balance:
    asset: str
    free: Decimal
    locked: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.free + self.locked

    @property
    def is_empty(self) -> bool:
        return self.total <= 0


@dataclass(frozen=True)
class OrderResult:
    """Execution report returned by the gateway for a placed order."""

    order_id: str
    symbol: str
    side: OrderSide
    type: OrderType
    status: OrderStatus
    quantity: Decimal
    price: Decimal
    quote_quantity: Decimal
    commission: Decimal = Decimal("0")
    commission_asset: str = ""
    client_order_id: str = ""
    executed_at: datetime = field(default_factory=utcnow)

    def total_with_fees(self) -> Decimal:
        return self.quote_quantity + self.commission


@dataclass(frozen=True)
class Trade:
    """Ledger entry for an executed order.

    Created once when the order executes; the only later change is the
    backfill of ``pnl``/``pnl_percent``/``related_trade_id`` once the trade
    is matched. ``version`` increments on every stored update.
    """

    symbol: str
    side: OrderSide
    type: OrderType
    status: OrderStatus
    quantity: Decimal
    price: Decimal
    quote_quantity: Decimal
    commission: Optional[Decimal] = None
    commission_asset: Optional[str] = None
    strategy: Optional[str] = None
    order_id: Optional[str] = None
    client_order_id: Optional[str] = None
    indicators: Optional[Dict[str, Any]] = None
    related_trade_id: Optional[str] = None
    pnl: Optional[Decimal] = None
    pnl_percent: Optional[Decimal] = None
    notes: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def __post_init__(self) -> None:
        for name in ("quantity", "price", "quote_quantity", "commission"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

    @classmethod
    def from_order(
        cls,
        order: OrderResult,
        *,
        strategy: Optional[str] = None,
        indicators: Optional[Dict[str, Any]] = None,
    ) -> "Trade":
        return cls(
            symbol=order.symbol,
            side=order.side,
            type=order.type,
            status=order.status,
            quantity=order.quantity,
            price=order.price,
            quote_quantity=order.quote_quantity,
            commission=order.commission,
            commission_asset=order.commission_asset or None,
            strategy=strategy,
            order_id=order.order_id,
            client_order_id=order.client_order_id or None,
            indicators=indicators,
            created_at=order.executed_at,
            updated_at=order.executed_at,
        )

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.price

    @property
    def is_open_position(self) -> bool:
        return (
            self.side is OrderSide.BUY
            and self.status is OrderStatus.FILLED
            and self.related_trade_id is None
        )

    def with_related_trade(self, related_trade_id: str) -> "Trade":
        if self.related_trade_id is not None and self.related_trade_id != related_trade_id:
            raise ValueError(
                f"Trade {self.id} already linked to {self.related_trade_id}"
            )
        return replace(self, related_trade_id=related_trade_id)

    def with_pnl(
        self, pnl: Decimal, pnl_percent: Optional[Decimal], related_trade_id: str
    ) -> "Trade":
        linked = self.with_related_trade(related_trade_id)
        return replace(linked, pnl=pnl, pnl_percent=pnl_percent)


@dataclass(frozen=True)
class TradingResult:
    """Outcome of one strategy cycle: either a trade or a reason for none."""

    symbol: str
    strategy: StrategyConfig
    signal: Signal
    indicators: IndicatorSnapshot
    trade: Optional[Trade] = None
    reason: Optional[str] = None

    @classmethod
    def no_trade(
        cls,
        symbol: str,
        strategy: StrategyConfig,
        signal: Signal,
        indicators: IndicatorSnapshot,
        reason: str,
    ) -> "TradingResult":
        return cls(symbol, strategy, signal, indicators, trade=None, reason=reason)

    @classmethod
    def with_trade(
        cls,
        symbol: str,
        strategy: StrategyConfig,
        signal: Signal,
        indicators: IndicatorSnapshot,
        trade: Trade,
    ) -> "TradingResult":
        return cls(symbol, strategy, signal, indicators, trade=trade, reason=None)

    @property
    def executed(self) -> bool:
        return self.trade is not None
