from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from spotbot.models import (
    KlineInterval,
    OrderSide,
    OrderStatus,
    Signal,
)


def test_signal_sides():
    assert Signal.BUY.to_order_side() is OrderSide.BUY
    assert Signal.SELL.to_order_side() is OrderSide.SELL
    assert Signal.HOLD.to_order_side() is None
    assert not Signal.HOLD.is_actionable


def test_order_status_groups():
    assert OrderStatus.from_exchange("filled") is OrderStatus.FILLED
    assert OrderStatus.PARTIALLY_FILLED.is_executed
    assert OrderStatus.PARTIALLY_FILLED.is_pending
    assert OrderStatus.CANCELED.is_final
    assert not OrderStatus.NEW.is_final


def test_kline_interval():
    assert KlineInterval.default() is KlineInterval.FIVE_MINUTES
    assert KlineInterval.FIVE_MINUTES.to_seconds() == 300
    assert KlineInterval.ONE_DAY.to_seconds() == 86400


def test_candle_helpers(make_candles):
    candle = make_candles([100])[0]
    assert candle.change_percent() == Decimal("0")
    assert candle.typical_price == Decimal("100")
    assert not candle.is_bullish


def test_trade_rejects_negative_amounts(make_trade):
    with pytest.raises(ValueError):
        make_trade("BUY", "-1", 100)


def test_trade_is_immutable(make_trade):
    trade = make_trade("BUY", 1, 100)
    with pytest.raises(FrozenInstanceError):
        trade.pnl = Decimal("1")


def test_related_trade_is_set_once(make_trade):
    sell = make_trade("SELL", 1, 120).with_pnl(Decimal("20"), Decimal("20.00"), "buy-1")
    assert sell.related_trade_id == "buy-1"
    assert sell.with_related_trade("buy-1") == sell
    with pytest.raises(ValueError):
        sell.with_related_trade("buy-2")


def test_open_position(make_trade):
    buy = make_trade("BUY", 1, 100)
    assert buy.is_open_position
    assert not buy.with_related_trade("sell-1").is_open_position
    assert not make_trade("SELL", 1, 100).is_open_position
    assert buy.notional == Decimal("100")
