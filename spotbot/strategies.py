"""
Strategy evaluation: map an indicator snapshot to a BUY/SELL/HOLD signal.

Strategies are plain functions registered in ``STRATEGIES`` keyed by
``StrategyKind``; ``analyze`` looks the evaluator up and calls it.

Strategies:
    rsi: BUY when RSI < oversold, SELL when RSI > overbought
    ma: BUY on golden cross, SELL on death cross
    combined: BUY when RSI < oversold and trend is bullish,
              SELL when RSI > overbought and trend is bearish
"""

from decimal import Decimal
from typing import Callable, Dict, List, Tuple

from .logging_setup import logger
from .models import IndicatorSnapshot, Signal, StrategyConfig, StrategyKind, Trend

Evaluator = Callable[[StrategyConfig, IndicatorSnapshot, Decimal], Signal]


def evaluate_rsi(
    config: StrategyConfig, snapshot: IndicatorSnapshot, current_price: Decimal
) -> Signal:
    if snapshot.rsi is None:
        logger.warning(f"RSI strategy: RSI not available | current_price={current_price}")
        return Signal.HOLD

    if snapshot.rsi < config.oversold:
        logger.info(f"RSI strategy: BUY (oversold) | rsi={snapshot.rsi} threshold={config.oversold}")
        return Signal.BUY
    if snapshot.rsi > config.overbought:
        logger.info(f"RSI strategy: SELL (overbought) | rsi={snapshot.rsi} threshold={config.overbought}")
        return Signal.SELL

    logger.debug(f"RSI strategy: HOLD (neutral) | rsi={snapshot.rsi}")
    return Signal.HOLD


def evaluate_moving_average(
    config: StrategyConfig, snapshot: IndicatorSnapshot, current_price: Decimal
) -> Signal:
    if not snapshot.has_moving_averages:
        logger.warning(
            f"MA strategy: moving averages not available | short_ma={snapshot.short_ma} "
            f"long_ma={snapshot.long_ma} current_price={current_price}"
        )
        return Signal.HOLD

    if snapshot.golden_cross:
        logger.info(f"MA strategy: BUY (golden cross) | short_ma={snapshot.short_ma} long_ma={snapshot.long_ma}")
        return Signal.BUY
    if snapshot.death_cross:
        logger.info(f"MA strategy: SELL (death cross) | short_ma={snapshot.short_ma} long_ma={snapshot.long_ma}")
        return Signal.SELL

    logger.debug(f"MA strategy: HOLD (no cross) | trend={snapshot.trend.value}")
    return Signal.HOLD


def _combined_hold_reason(config: StrategyConfig, rsi: Decimal, trend: Trend) -> str:
    if rsi < config.oversold and trend is not Trend.BULLISH:
        return f"RSI oversold but trend not bullish (trend: {trend.value})"
    if rsi > config.overbought and trend is not Trend.BEARISH:
        return f"RSI overbought but trend not bearish (trend: {trend.value})"
    return "RSI in neutral zone"


def evaluate_combined(
    config: StrategyConfig, snapshot: IndicatorSnapshot, current_price: Decimal
) -> Signal:
    if snapshot.rsi is None:
        logger.warning(f"Combined strategy: RSI not available | current_price={current_price}")
        return Signal.HOLD
    if not snapshot.has_moving_averages:
        logger.warning(
            f"Combined strategy: moving averages not available | "
            f"short_ma={snapshot.short_ma} long_ma={snapshot.long_ma}"
        )
        return Signal.HOLD

    rsi, trend = snapshot.rsi, snapshot.trend
    if rsi < config.oversold and trend is Trend.BULLISH:
        logger.info(f"Combined strategy: BUY | rsi={rsi} trend={trend.value}")
        return Signal.BUY
    if rsi > config.overbought and trend is Trend.BEARISH:
        logger.info(f"Combined strategy: SELL | rsi={rsi} trend={trend.value}")
        return Signal.SELL

    logger.debug(
        f"Combined strategy: HOLD | rsi={rsi} trend={trend.value} "
        f"reason={_combined_hold_reason(config, rsi, trend)}"
    )
    return Signal.HOLD


STRATEGIES: Dict[StrategyKind, Evaluator] = {
    StrategyKind.RSI: evaluate_rsi,
    StrategyKind.MOVING_AVERAGE: evaluate_moving_average,
    StrategyKind.COMBINED: evaluate_combined,
}

_REQUIRED: Dict[StrategyKind, List[str]] = {
    StrategyKind.RSI: ["rsi"],
    StrategyKind.MOVING_AVERAGE: ["short_ma", "long_ma"],
    StrategyKind.COMBINED: ["rsi", "short_ma", "long_ma"],
}


def analyze(
    config: StrategyConfig, snapshot: IndicatorSnapshot, current_price: Decimal
) -> Signal:
    """Evaluate ``snapshot`` with the strategy selected by ``config.kind``."""
    return STRATEGIES[config.kind](config, snapshot, current_price)


def required_indicators(kind: StrategyKind) -> List[str]:
    return list(_REQUIRED[kind])


def describe(config: StrategyConfig) -> Tuple[str, str]:
    """Return (display name, one-line description) for a strategy."""
    if config.kind is StrategyKind.RSI:
        return (
            "RSI Strategy",
            f"Buy when RSI < {config.oversold} (oversold), "
            f"sell when RSI > {config.overbought} (overbought)",
        )
    if config.kind is StrategyKind.MOVING_AVERAGE:
        return (
            "Moving Average Strategy",
            "Buy on golden cross (short MA crosses above long MA), sell on death cross",
        )
    return (
        "Combined Strategy (RSI + MA)",
        f"Buy when RSI < {config.oversold} and trend is bullish, "
        f"sell when RSI > {config.overbought} and trend is bearish",
    )
