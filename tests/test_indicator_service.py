from decimal import Decimal

import pytest

from spotbot.indicator_service import IndicatorService
from spotbot.models import Trend

from conftest import combined_buy_prices


def D(values):
    return [Decimal(str(v)) for v in values]


def test_short_history_leaves_fields_empty():
    svc = IndicatorService()
    snap = svc.calculate(D(range(1, 11)))
    assert snap.rsi is None
    assert snap.rsi_signal == "insufficient_data"
    assert snap.short_ma is None and snap.long_ma is None
    assert snap.trend is Trend.UNKNOWN
    assert not snap.golden_cross and not snap.death_cross


def test_rsi_available_without_moving_averages():
    svc = IndicatorService()
    snap = svc.calculate(D(range(1, 31)))
    assert snap.rsi == Decimal("100")
    assert snap.rsi_signal == "overbought"
    assert snap.short_ma is None
    assert snap.trend is Trend.UNKNOWN


def test_full_snapshot_bullish():
    svc = IndicatorService()
    snap = svc.calculate(D(combined_buy_prices()))
    assert snap.short_ma == Decimal("320.10")
    assert snap.long_ma == Decimal("248.40")
    assert snap.trend is Trend.BULLISH
    assert Decimal("20") < snap.rsi < Decimal("30")
    assert snap.rsi_signal == "oversold"
    assert not snap.golden_cross and not snap.death_cross


def test_neutral_trend_on_equal_averages():
    svc = IndicatorService(rsi_period=2, short_period=2, long_period=3)
    snap = svc.calculate(D([5, 5, 5, 5]))
    assert snap.trend is Trend.NEUTRAL


def test_custom_periods_detect_cross():
    svc = IndicatorService(rsi_period=2, short_period=2, long_period=4)
    snap = svc.calculate(D([10, 10, 10, 10, 20]))
    assert snap.golden_cross
    assert snap.trend is Trend.BULLISH


def test_empty_input_raises():
    with pytest.raises(ValueError):
        IndicatorService().calculate([])
    with pytest.raises(ValueError):
        IndicatorService().calculate_from_candles([])


def test_short_period_must_be_below_long():
    with pytest.raises(ValueError):
        IndicatorService(short_period=200, long_period=50)


def test_calculate_from_candles_uses_closes(make_candles):
    svc = IndicatorService()
    snap = svc.calculate_from_candles(make_candles(combined_buy_prices()))
    assert snap.short_ma == Decimal("320.10")
    assert svc.required_history == 201
