"""
Technical indicator functions over a closing-price series.

All functions are pure: they take the period first and a sequence of prices
(oldest first) and return a ``Decimal`` rounded to 2 places, or raise
``InsufficientDataError`` when the series is too short for the period.

Examples:
    >>> from decimal import Decimal
    >>> sma(3, [Decimal("1"), Decimal("2"), Decimal("3"), Decimal("4")])
    Decimal('3.00')
    >>> rsi(2, [Decimal("1"), Decimal("2"), Decimal("3")])
    Decimal('100')
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


class InsufficientDataError(ValueError):
    """Raised when a price series is shorter than an indicator requires."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient data: need at least {required} prices, got {available}"
        )


def _round(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _require(prices: Sequence[Decimal], required: int) -> None:
    if len(prices) < required:
        raise InsufficientDataError(required=required, available=len(prices))


def _check_ma_period(period: int) -> None:
    if period < 1:
        raise ValueError("MA period must be at least 1")


def sma(period: int, prices: Sequence[Decimal]) -> Decimal:
    """Simple moving average of the last ``period`` prices."""
    _check_ma_period(period)
    _require(prices, period)
    window = prices[-period:]
    return _round(sum(window, Decimal("0")) / period)


def ema(period: int, prices: Sequence[Decimal]) -> Decimal:
    """Exponential moving average.

    Seeded with the SMA of the first ``period`` prices, then
    ``ema = price * k + ema * (1 - k)`` with ``k = 2 / (period + 1)`` for
    every later price.
    """
    _check_ma_period(period)
    _require(prices, period)
    k = Decimal(2) / (period + 1)
    value = sum(prices[:period], Decimal("0")) / period
    for price in prices[period:]:
        value = price * k + value * (1 - k)
    return _round(value)


def rsi(period: int, prices: Sequence[Decimal]) -> Decimal:
    """Relative Strength Index with Wilder smoothing.

    The first average gain/loss is the simple mean over the first ``period``
    deltas; every later delta is folded in as
    ``avg = (avg * (period - 1) + value) / period``.

    Returns exactly ``Decimal(100)`` when the average loss is zero.

    Raises:
        ValueError: If period < 2
        InsufficientDataError: If fewer than ``period + 1`` prices are given
    """
    if period < 2:
        raise ValueError("RSI period must be at least 2")
    _require(prices, period + 1)

    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [d if d > 0 else Decimal("0") for d in deltas]
    losses = [-d if d < 0 else Decimal("0") for d in deltas]

    avg_gain = sum(gains[:period], Decimal("0")) / period
    avg_loss = sum(losses[:period], Decimal("0")) / period

    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return HUNDRED

    rs = avg_gain / avg_loss
    return _round(HUNDRED - HUNDRED / (1 + rs))


def interpret_rsi(
    value: Decimal,
    oversold: Decimal = Decimal("30"),
    overbought: Decimal = Decimal("70"),
) -> str:
    if value >= overbought:
        return "overbought"
    if value <= oversold:
        return "oversold"
    return "neutral"


def _ma_pair(prices: Sequence[Decimal], short_period: int, long_period: int):
    return sma(short_period, prices), sma(long_period, prices)


def detect_golden_cross(
    prices: Sequence[Decimal], short_period: int = 50, long_period: int = 200
) -> bool:
    """True when the short MA crossed above the long MA on the last price."""
    if len(prices) < long_period + 1:
        return False
    short_now, long_now = _ma_pair(prices, short_period, long_period)
    short_prev, long_prev = _ma_pair(prices[:-1], short_period, long_period)
    return short_prev <= long_prev and short_now > long_now


def detect_death_cross(
    prices: Sequence[Decimal], short_period: int = 50, long_period: int = 200
) -> bool:
    """True when the short MA crossed below the long MA on the last price."""
    if len(prices) < long_period + 1:
        return False
    short_now, long_now = _ma_pair(prices, short_period, long_period)
    short_prev, long_prev = _ma_pair(prices[:-1], short_period, long_period)
    return short_prev >= long_prev and short_now < long_now


def is_bullish_trend(
    prices: Sequence[Decimal], short_period: int = 50, long_period: int = 200
) -> bool:
    if len(prices) < long_period:
        return False
    short_ma, long_ma = _ma_pair(prices, short_period, long_period)
    return short_ma > long_ma


def is_bearish_trend(
    prices: Sequence[Decimal], short_period: int = 50, long_period: int = 200
) -> bool:
    if len(prices) < long_period:
        return False
    short_ma, long_ma = _ma_pair(prices, short_period, long_period)
    return short_ma < long_ma
