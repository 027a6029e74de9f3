"""Configuration loader for the trading bot.

Supports YAML format with environment variable interpolation.
"""
import os
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import yaml

from .models import KlineInterval, StrategyConfig, StrategyKind
from .retry import RetryPolicy


@dataclass
class ExchangeConfig:
    """Binance exchange settings."""
    base_url: Optional[str] = None  # None selects live or testnet from `testnet`
    testnet: bool = True
    timeout: int = 10
    recv_window: int = 5000
    max_retries: int = 3  # transport-level, GET only


@dataclass
class TradingSettings:
    """What to trade and how much."""
    enabled: bool = True
    symbol: str = "BTCUSDT"
    amount: Decimal = Decimal("100")
    kline_interval: str = "5m"
    kline_limit: int = 250
    quote_assets: List[str] = field(default_factory=lambda: ["USDT", "BUSD", "USDC"])
    max_amount_per_trade: Decimal = Decimal("1000")
    max_trades_per_day: int = 50

    @property
    def interval(self) -> KlineInterval:
        return KlineInterval(self.kline_interval)


@dataclass
class StrategySettings:
    """Strategy selection and indicator parameters."""
    active: str = "rsi"
    rsi_period: int = 14
    oversold: Decimal = Decimal("30")
    overbought: Decimal = Decimal("70")
    ma_short: int = 50
    ma_long: int = 200

    def to_strategy_config(self) -> StrategyConfig:
        return StrategyConfig(
            kind=StrategyKind(self.active),
            oversold=self.oversold,
            overbought=self.overbought,
        )


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, base_delay=self.base_delay_seconds)


@dataclass
class RateLimitConfig:
    """Binance request budgets."""
    request_weight_per_minute: int = 6000
    orders_per_10s: int = 50


@dataclass
class PersistenceConfig:
    """Database and logging settings."""
    db_path: str = "spotbot.db"
    log_file: str = "spotbot.log"
    log_level: str = "INFO"


_DECIMAL_FIELDS = {
    "trading": ("amount", "max_amount_per_trade"),
    "strategy": ("oversold", "overbought"),
}


def _section(data: dict, name: str) -> dict:
    section = dict(data.get(name) or {})
    for key in _DECIMAL_FIELDS.get(name, ()):
        if key in section:
            section[key] = Decimal(str(section[key]))
    return section


@dataclass
class BotConfig:
    """Complete bot configuration."""
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    trading: TradingSettings = field(default_factory=TradingSettings)
    strategy: StrategySettings = field(default_factory=StrategySettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)

    def __post_init__(self) -> None:
        if self.strategy.ma_short >= self.strategy.ma_long:
            raise ValueError("strategy.ma_short must be smaller than strategy.ma_long")
        if self.strategy.oversold >= self.strategy.overbought:
            raise ValueError("strategy.oversold must be below strategy.overbought")
        StrategyKind(self.strategy.active)
        KlineInterval(self.trading.kline_interval)

    def to_strategy_config(self) -> StrategyConfig:
        return self.strategy.to_strategy_config()

    @classmethod
    def from_yaml(cls, config_path: str) -> "BotConfig":
        """Load configuration from YAML file with env var interpolation.

        Example YAML:
            trading:
              symbol: ETHUSDT
              amount: 50
            strategy:
              active: combined
            persistence:
              db_path: "${STATE_DIR}/spotbot.db"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        return cls(
            exchange=ExchangeConfig(**_section(data, "exchange")),
            trading=TradingSettings(**_section(data, "trading")),
            strategy=StrategySettings(**_section(data, "strategy")),
            retry=RetrySettings(**_section(data, "retry")),
            rate_limit=RateLimitConfig(**_section(data, "rate_limit")),
            persistence=PersistenceConfig(**_section(data, "persistence")),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for name, keys in _DECIMAL_FIELDS.items():
            for key in keys:
                data[name][key] = str(data[name][key])
        return data

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
