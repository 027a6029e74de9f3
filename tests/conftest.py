from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from spotbot.gateway import InMemoryGateway
from spotbot.models import Candle, OrderSide, OrderStatus, OrderType, Trade
from spotbot.persistence_sqlite import SQLiteTradeStore

T0 = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    s = SQLiteTradeStore(tmp_path / "trades.db")
    yield s
    s.close()


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def make_candles():
    """Build 5m candles whose closes are the given prices."""

    def _make(prices, start=T0):
        candles = []
        for i, p in enumerate(prices):
            close = Decimal(str(p))
            open_time = start + timedelta(minutes=5 * i)
            candles.append(
                Candle(
                    open_time=open_time,
                    open=close,
                    high=close,
                    low=close,
                    close=close,
                    volume=Decimal("1"),
                    close_time=open_time + timedelta(minutes=5) - timedelta(milliseconds=1),
                )
            )
        return candles

    return _make


@pytest.fixture
def make_trade():
    """Build a FILLED trade; quote_quantity is qty * price."""

    def _make(side, qty, price, minutes=0, commission="0", symbol="BTCUSDT", status=OrderStatus.FILLED, pnl=None):
        qty, price = Decimal(str(qty)), Decimal(str(price))
        created = T0 + timedelta(minutes=minutes)
        return Trade(
            symbol=symbol,
            side=OrderSide(side),
            type=OrderType.MARKET,
            status=status,
            quantity=qty,
            price=price,
            quote_quantity=qty * price,
            commission=None if commission is None else Decimal(str(commission)),
            commission_asset="USDT",
            pnl=None if pnl is None else Decimal(str(pnl)),
            created_at=created,
            updated_at=created,
        )

    return _make


def combined_buy_prices():
    """250 closes: a steady climb to 339 then ten drops of 3.

    Short MA 320.1 > long MA 248.4 (bullish) with RSI(14) around 23.
    """
    return [100 + i for i in range(240)] + [339 - 3 * k for k in range(1, 11)]


def rising_prices(n=250):
    return [100 + i for i in range(n)]


def alternating_prices(n=250):
    return [100 + (i % 2) for i in range(n)]
