"""
Binance Spot Trading Bot.

A signal-driven spot trading system featuring:
- RSI (Wilder smoothing), SMA/EMA and golden/death cross indicators
- RSI, moving-average and combined (RSI + trend) strategies
- Market order execution with bounded linear-backoff retries
- FIFO P&L matching with optimistic-concurrency backfill
- Daily reports with portfolio valuation
- SQLite ledger with versioned migrations
- Request-weight rate limiting
- Structured logging via loguru
- Configuration-driven (YAML)

Core Modules:
    indicators: Pure indicator functions
    indicator_service: Indicator snapshot aggregation
    strategies: Strategy dispatch table
    execution: Trading engine (one strategy cycle per call)
    retry: Retry policy for gateway calls
    pnl: FIFO P&L engine and trade statistics
    report: Daily report service
    persistence_sqlite: Trade store
    binance_adapter: Binance REST integration
    config: Configuration loading and validation
    secrets: Credential management

Example:
    >>> from spotbot.binance_adapter import BinanceAdapter
    >>> from spotbot.execution import TradingEngine
    >>> from spotbot.indicator_service import IndicatorService
    >>> from spotbot.persistence_sqlite import SQLiteTradeStore
    >>> from spotbot.secrets import load_credentials
    >>>
    >>> gateway = BinanceAdapter.from_credentials(load_credentials(), testnet=True)
    >>> engine = TradingEngine(gateway, SQLiteTradeStore("spotbot.db"), IndicatorService())
    >>> result = engine.execute_strategy("BTCUSDT", StrategyConfig(), Decimal("100"))
"""

__version__ = "0.1.0"
__all__ = [
    "models",
    "indicators",
    "indicator_service",
    "strategies",
    "gateway",
    "retry",
    "cycle_state",
    "execution",
    "pnl",
    "report",
    "persistence_sqlite",
    "db_migrations",
    "rate_limit_policy",
    "binance_adapter",
    "config",
    "secrets",
    "bootstrap",
]
