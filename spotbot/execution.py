"""
Synchronous trade execution for spot pairs.

``TradingEngine.execute_strategy`` runs one cycle: fetch the price and recent
candles, build an indicator snapshot, evaluate the configured strategy and,
when the signal is actionable, check the balance, submit a market order and
record the resulting trade. Every gateway call goes through the retry policy.
"""

import time
from decimal import Decimal
from typing import Callable, Optional, Sequence, Tuple

from . import strategies
from .cycle_state import CycleState, CycleStateMachine
from .gateway import GatewayError, MarketGateway
from .indicator_service import IndicatorService
from .logging_setup import logger
from .models import (
    IndicatorSnapshot,
    KlineInterval,
    Signal,
    StrategyConfig,
    Trade,
    TradingResult,
    to_decimal,
)
from .persistence_sqlite import PersistenceError, TradeStore
from .retry import RetryPolicy, call_with_retry

DEFAULT_QUOTE_ASSETS: Tuple[str, ...] = ("USDT", "BUSD", "USDC")

DRY_RUN_REASON = "Dry-run mode: no real trade executed"
HOLD_REASON = "Signal HOLD: no action required"
NO_MARKET_DATA_REASON = "No market data available"


class InsufficientBalanceError(Exception):
    """Raised when the free balance cannot cover an order."""

    def __init__(self, asset: str, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient {asset} balance: required {required}, available {available}"
        )
        self.asset = asset
        self.required = required
        self.available = available


def split_symbol(symbol: str, quote_assets: Sequence[str] = DEFAULT_QUOTE_ASSETS) -> Tuple[str, Optional[str]]:
    """Split ``symbol`` into (base, quote).

    Only a trailing quote asset is stripped, so ``BUSDUSDT`` splits into
    ``("BUSD", "USDT")``. Returns ``(symbol, None)`` when no quote asset matches.
    """
    for quote in quote_assets:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)], quote
    return symbol, None


def extract_base_asset(symbol: str, quote_assets: Sequence[str] = DEFAULT_QUOTE_ASSETS) -> str:
    return split_symbol(symbol, quote_assets)[0]


class TradingEngine:
    """Runs strategy cycles against a gateway and records trades in a store.

    Args:
        gateway: Exchange access (prices, candles, balances, orders)
        store: Trade ledger; a failed write is logged, never fatal
        indicator_service: Builds the indicator snapshot from candle closes
        retry: Attempt count and base delay for every gateway call
        kline_interval: Candle interval requested from the gateway
        kline_limit: Candles fetched per cycle; must cover the long MA
        quote_assets: Quote suffixes recognised when splitting symbols
        sleep: Blocking wait used between retries
    """

    def __init__(
        self,
        gateway: MarketGateway,
        store: TradeStore,
        indicator_service: IndicatorService,
        *,
        retry: RetryPolicy = RetryPolicy(),
        kline_interval: KlineInterval = KlineInterval.default(),
        kline_limit: int = 250,
        quote_assets: Sequence[str] = DEFAULT_QUOTE_ASSETS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if kline_limit < indicator_service.required_history:
            raise ValueError(
                f"kline_limit {kline_limit} is below the {indicator_service.required_history} "
                "candles the indicators need"
            )
        self.gateway = gateway
        self.store = store
        self.indicator_service = indicator_service
        self.retry = retry
        self.kline_interval = kline_interval
        self.kline_limit = kline_limit
        self.quote_assets = tuple(quote_assets)
        self.sleep = sleep
        self.last_cycle: Optional[CycleStateMachine] = None

    def _call(self, description: str, operation: Callable):
        return call_with_retry(operation, self.retry, sleep=self.sleep, description=description)

    def execute_strategy(
        self,
        symbol: str,
        config: StrategyConfig,
        amount: Decimal,
        dry_run: bool = False,
    ) -> TradingResult:
        """Run one strategy cycle for ``symbol``.

        Args:
            symbol: Trading pair, e.g. ``BTCUSDT``
            config: Strategy selection and RSI thresholds
            amount: Quote amount spent on a BUY
            dry_run: Evaluate only, never place an order

        Returns:
            TradingResult carrying either the executed trade or the reason
            no trade was made

        Raises:
            GatewayError: A gateway call failed permanently
        """
        amount = to_decimal(amount)
        if amount < 0:
            raise ValueError("amount must be >= 0")

        sm = CycleStateMachine(symbol)
        self.last_cycle = sm
        try:
            return self._run_cycle(sm, symbol, config, amount, dry_run)
        except GatewayError as e:
            sm.fail(e)
            logger.error(
                f"Strategy execution failed | symbol={symbol} strategy={config.kind.value} "
                f"code={e.code} error={e}"
            )
            raise
        except Exception as e:
            sm.fail(e)
            raise

    def _run_cycle(
        self,
        sm: CycleStateMachine,
        symbol: str,
        config: StrategyConfig,
        amount: Decimal,
        dry_run: bool,
    ) -> TradingResult:
        price = self._call(f"get_current_price({symbol})", lambda: self.gateway.get_current_price(symbol))
        sm.advance(CycleState.PRICE_FETCHED)

        candles = self._call(
            f"get_klines({symbol})",
            lambda: self.gateway.get_klines(symbol, self.kline_interval, self.kline_limit),
        )
        if not candles:
            return self._no_market_data(sm, symbol, config, price)
        snapshot = self.indicator_service.calculate_from_candles(candles).with_current_price(price)
        sm.advance(CycleState.INDICATORS_COMPUTED)

        signal = strategies.analyze(config, snapshot, price)
        sm.advance(CycleState.SIGNAL_DETERMINED)
        logger.info(
            f"Signal determined | symbol={symbol} strategy={config.kind.value} signal={signal.value} "
            f"price={price} rsi={snapshot.rsi} trend={snapshot.trend.value}"
        )

        if dry_run:
            sm.advance(CycleState.DONE)
            return TradingResult.no_trade(symbol, config, signal, snapshot, DRY_RUN_REASON)
        if not signal.is_actionable:
            sm.advance(CycleState.DONE)
            return TradingResult.no_trade(symbol, config, signal, snapshot, HOLD_REASON)

        if signal is Signal.BUY:
            return self._buy(sm, symbol, config, snapshot, signal, amount)
        return self._sell(sm, symbol, config, snapshot, signal)

    def _no_market_data(
        self, sm: CycleStateMachine, symbol: str, config: StrategyConfig, price: Decimal
    ) -> TradingResult:
        snapshot = IndicatorSnapshot(rsi_signal="insufficient_data").with_current_price(price)
        sm.advance(CycleState.INDICATORS_COMPUTED)
        sm.advance(CycleState.SIGNAL_DETERMINED)
        sm.advance(CycleState.DONE)
        logger.warning(f"No candles returned, holding | symbol={symbol} interval={self.kline_interval.value}")
        return TradingResult.no_trade(
            symbol, config, Signal.HOLD, snapshot, f"{NO_MARKET_DATA_REASON} for {symbol}"
        )

    def _buy(
        self,
        sm: CycleStateMachine,
        symbol: str,
        config: StrategyConfig,
        snapshot: IndicatorSnapshot,
        signal: Signal,
        amount: Decimal,
    ) -> TradingResult:
        quote = split_symbol(symbol, self.quote_assets)[1] or self.quote_assets[0]
        try:
            self._check_balance(quote, amount)
        except InsufficientBalanceError as e:
            sm.advance(CycleState.BALANCE_CHECKED)
            sm.advance(CycleState.DONE)
            logger.warning(f"Trade skipped | symbol={symbol} reason={e}")
            return TradingResult.no_trade(
                symbol, config, signal, snapshot, f"Insufficient balance: {e}"
            )
        sm.advance(CycleState.BALANCE_CHECKED)

        order = self._call(f"market_buy({symbol})", lambda: self.gateway.market_buy(symbol, amount))
        return self._record(sm, order, config, snapshot, signal)

    def _sell(
        self,
        sm: CycleStateMachine,
        symbol: str,
        config: StrategyConfig,
        snapshot: IndicatorSnapshot,
        signal: Signal,
    ) -> TradingResult:
        base = extract_base_asset(symbol, self.quote_assets)
        balance = self._call(f"get_balance({base})", lambda: self.gateway.get_balance(base))
        sm.advance(CycleState.BALANCE_CHECKED)

        quantity = balance.free if balance is not None else Decimal("0")
        if quantity <= 0:
            sm.advance(CycleState.DONE)
            logger.warning(f"Trade skipped | symbol={symbol} reason=no {base} balance")
            return TradingResult.no_trade(
                symbol, config, signal, snapshot, f"No {base} available to sell"
            )

        order = self._call(f"market_sell({symbol})", lambda: self.gateway.market_sell(symbol, quantity))
        return self._record(sm, order, config, snapshot, signal)

    def _check_balance(self, asset: str, required: Decimal) -> None:
        balance = self._call(f"get_balance({asset})", lambda: self.gateway.get_balance(asset))
        available = balance.free if balance is not None else Decimal("0")
        if available < required:
            raise InsufficientBalanceError(asset, required, available)

    def _record(self, sm, order, config, snapshot, signal) -> TradingResult:
        sm.advance(CycleState.ORDER_SUBMITTED)
        trade = Trade.from_order(order, strategy=config.kind.value, indicators=snapshot.to_dict())
        logger.info(
            f"Order executed | symbol={order.symbol} side={order.side.value} order_id={order.order_id} "
            f"qty={order.quantity} price={order.price} quote_qty={order.quote_quantity}"
        )
        try:
            self.store.create(trade)
        except PersistenceError as e:
            logger.error(f"Failed to record trade | trade_id={trade.id} order_id={order.order_id} error={e}")
        sm.advance(CycleState.TRADE_RECORDED)
        sm.advance(CycleState.DONE)
        return TradingResult.with_trade(order.symbol, config, signal, snapshot, trade)

    def analyze(self, symbol: str, config: StrategyConfig) -> TradingResult:
        """Evaluate the strategy without trading."""
        return self.execute_strategy(symbol, config, Decimal("0"), dry_run=True)

    def has_open_position(self, symbol: str) -> bool:
        return bool(self.store.get_open_positions(symbol))
