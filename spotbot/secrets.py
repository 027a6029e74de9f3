"""Secrets management: load Binance API credentials from environment or config file.

Priority order:
1. Environment variables: BINANCE_API_KEY, BINANCE_API_SECRET
2. Config file: ~/.binance_config.json or custom path via ENV BINANCE_CONFIG_PATH
"""
import json
import os
from pathlib import Path
from typing import NamedTuple, Optional

from .logging_setup import logger


class BinanceCredentials(NamedTuple):
    api_key: str
    api_secret: str


def load_credentials(config_path: Optional[str] = None) -> BinanceCredentials:
    """Load Binance credentials from env or config file.

    Args:
        config_path: Optional override path to config file. If not provided,
                     checks BINANCE_CONFIG_PATH env var, then ~/.binance_config.json

    Returns:
        BinanceCredentials with api_key, api_secret

    Raises:
        ValueError: If credentials are not found or incomplete
    """
    api_key = os.getenv("BINANCE_API_KEY")
    api_secret = os.getenv("BINANCE_API_SECRET")

    if api_key and api_secret:
        return BinanceCredentials(api_key=api_key, api_secret=api_secret)

    if config_path is None:
        config_path = os.getenv("BINANCE_CONFIG_PATH")
    if config_path is None:
        config_path = str(Path.home() / ".binance_config.json")

    config_file = Path(config_path)
    if config_file.exists():
        try:
            with config_file.open("r") as f:
                cfg = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to load config from {config_path}: {e}") from e
        api_key = cfg.get("api_key") or api_key
        api_secret = cfg.get("api_secret") or api_secret

    if not api_key or not api_secret:
        raise ValueError(
            "Missing Binance credentials. Provide via:\n"
            "  - Environment: BINANCE_API_KEY, BINANCE_API_SECRET\n"
            f"  - Config file: {config_path}\n"
            "  - BINANCE_CONFIG_PATH env var to override config location"
        )

    return BinanceCredentials(api_key=api_key, api_secret=api_secret)


def save_config(config_path: str, api_key: str, api_secret: str) -> None:
    """Save credentials to a config file readable by the owner only.

    WARNING: Stores secrets in plaintext.
    """
    cfg_file = Path(config_path)
    cfg_file.parent.mkdir(parents=True, exist_ok=True)

    with cfg_file.open("w") as f:
        json.dump({"api_key": api_key, "api_secret": api_secret}, f, indent=2)

    try:
        cfg_file.chmod(0o600)
    except OSError as e:
        # chmod is a no-op on some filesystems (e.g. Windows)
        logger.warning(f"Could not restrict credentials file permissions | path={config_path} error={e}")
