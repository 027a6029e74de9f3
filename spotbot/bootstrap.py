"""Wire the configured components together for the command-line scripts."""
from typing import Optional

from .binance_adapter import LIVE_URL, TESTNET_URL, BinanceAdapter
from .config import BotConfig
from .execution import TradingEngine
from .gateway import MarketGateway
from .indicator_service import IndicatorService
from .persistence_sqlite import SQLiteTradeStore
from .rate_limit_policy import RateLimitManager
from .secrets import load_credentials


def build_gateway(config: BotConfig, credentials_path: Optional[str] = None) -> BinanceAdapter:
    exchange = config.exchange
    return BinanceAdapter.from_credentials(
        load_credentials(credentials_path),
        base_url=exchange.base_url or (TESTNET_URL if exchange.testnet else LIVE_URL),
        timeout=exchange.timeout,
        recv_window=exchange.recv_window,
        max_retries=exchange.max_retries,
        rate_limiter=RateLimitManager.from_limits(
            config.rate_limit.request_weight_per_minute,
            config.rate_limit.orders_per_10s,
        ),
    )


def build_store(config: BotConfig) -> SQLiteTradeStore:
    return SQLiteTradeStore(config.persistence.db_path)


def build_engine(config: BotConfig, gateway: MarketGateway, store: SQLiteTradeStore) -> TradingEngine:
    indicator_service = IndicatorService(
        rsi_period=config.strategy.rsi_period,
        short_period=config.strategy.ma_short,
        long_period=config.strategy.ma_long,
    )
    return TradingEngine(
        gateway,
        store,
        indicator_service,
        retry=config.retry.to_policy(),
        kline_interval=config.trading.interval,
        kline_limit=config.trading.kline_limit,
        quote_assets=config.trading.quote_assets,
    )
