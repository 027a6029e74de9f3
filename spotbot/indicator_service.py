"""Build an IndicatorSnapshot from a price history."""

from decimal import Decimal
from typing import Optional, Sequence

from . import indicators
from .indicators import InsufficientDataError
from .logging_setup import logger
from .models import Candle, IndicatorSnapshot, Trend


class IndicatorService:
    """Computes RSI, short/long moving averages, trend and cross flags.

    Each indicator is computed independently; one that lacks history is left
    as ``None`` instead of failing the whole snapshot.
    """

    def __init__(self, rsi_period: int = 14, short_period: int = 50, long_period: int = 200):
        if short_period >= long_period:
            raise ValueError("short_period must be smaller than long_period")
        self.rsi_period = rsi_period
        self.short_period = short_period
        self.long_period = long_period

    @property
    def required_history(self) -> int:
        """Prices needed for every field, including cross detection."""
        return max(self.long_period + 1, self.rsi_period + 1)

    def calculate_from_candles(self, candles: Sequence[Candle]) -> IndicatorSnapshot:
        if not candles:
            raise ValueError("Candles sequence cannot be empty")
        return self.calculate([c.close for c in candles])

    def calculate(self, prices: Sequence[Decimal]) -> IndicatorSnapshot:
        if not prices:
            raise ValueError("Prices sequence cannot be empty")

        rsi_value: Optional[Decimal]
        try:
            rsi_value = indicators.rsi(self.rsi_period, prices)
            rsi_signal = indicators.interpret_rsi(rsi_value)
        except InsufficientDataError as e:
            logger.debug(f"RSI unavailable | {e}")
            rsi_value = None
            rsi_signal = "insufficient_data"

        short_ma = self._moving_average(self.short_period, prices)
        long_ma = self._moving_average(self.long_period, prices)

        trend = Trend.UNKNOWN
        golden_cross = death_cross = False
        if short_ma is not None and long_ma is not None:
            if short_ma > long_ma:
                trend = Trend.BULLISH
            elif short_ma < long_ma:
                trend = Trend.BEARISH
            else:
                trend = Trend.NEUTRAL
            golden_cross = indicators.detect_golden_cross(
                prices, self.short_period, self.long_period
            )
            death_cross = indicators.detect_death_cross(
                prices, self.short_period, self.long_period
            )

        return IndicatorSnapshot(
            rsi=rsi_value,
            short_ma=short_ma,
            long_ma=long_ma,
            rsi_signal=rsi_signal,
            trend=trend,
            golden_cross=golden_cross,
            death_cross=death_cross,
        )

    @staticmethod
    def _moving_average(period: int, prices: Sequence[Decimal]) -> Optional[Decimal]:
        try:
            return indicators.sma(period, prices)
        except InsufficientDataError as e:
            logger.debug(f"MA({period}) unavailable | {e}")
            return None
