"""
Configuration for the pump.fun curve sniper
"""

import os
import json
import logging
from typing import Dict, Any, Optional

from dotenv import load_dotenv

logger = logging.getLogger("config")

# Default configuration
DEFAULT_CONFIG = {
    "SIMULATION_MODE": True,
    "DRY_RUN": False,

    # RPC + Wallet
    "RPC_HTTP_ENDPOINT": "https://api.mainnet-beta.solana.com",
    "RPC_WEBSOCKET_ENDPOINT": "wss://api.mainnet-beta.solana.com",
    "COMMITMENT": "confirmed",
    "LOGS_COMMITMENT": "processed",
    "WALLET_PRIVATE_KEY": "",

    # Scan & Timing
    "MONITOR_INTERVAL_SECONDS": 30,
    "TRADE_INTERVAL_SECONDS": 15,
    "STATUS_REPORT_INTERVAL_SECONDS": 300,
    "FETCH_TIMEOUT_SECONDS": 10.0,
    "SHUTDOWN_TIMEOUT_SECONDS": 30.0,

    # Entry / exit rules (market caps are in SOL)
    "ENTRY_MARKET_CAP": 35.0,
    "MIN_ENTRY_HISTORY": 2,
    "MAX_ENTRY_HISTORY": 20,
    "EXIT_MARKET_CAP": 45.0,
    "MIN_RESERVE_RATIO": 0.75,
    "TOKEN_STABILITY": 0.000005,

    # Trading
    "POSITION_AMOUNT_SOL": 0.004,
    "SLIPPAGE": 0.3,
    "PRIORITY_FEE_LAMPORTS": 50000,
    "MAX_RETRIES": 5,
    "RETRY_BASE_DELAY_SECONDS": 1.0,
    "RETRY_MAX_DELAY_SECONDS": 16.0,
    "ORDER_QUEUE_SIZE": 100,
    "ORDER_WORKERS": 4,

    # Listener
    "DISCOVERY_QUEUE_SIZE": 1000,
    "DISCOVERY_OVERFLOW_POLICY": "block",
    "LISTENER_CONNECT_RETRIES": 5,
    "LISTENER_RETRY_DELAY_SECONDS": 1.0,

    # Notifier
    "ENABLE_TELEGRAM": False,
    "TELEGRAM_BOT_TOKEN": "",
    "TELEGRAM_CHAT_ID": "",

    # System
    "LOG_DIR": "trade-sessions",
    "POSITIONS_FILE": "simulated_positions.json",
}

# Short names used by the .env files
ENV_ALIASES = {
    "RPC": "RPC_HTTP_ENDPOINT",
    "WSS": "RPC_WEBSOCKET_ENDPOINT",
    "PK": "WALLET_PRIVATE_KEY",
}


def load_environment(env_file: str = ".env", dev_env_file: str = ".env.dev") -> None:
    """
    Loads .env into the process environment, then overlays .env.dev
    when DEVELOPMENT=TRUE.
    """
    if not load_dotenv(env_file):
        logger.warning(f"No environment file loaded from {env_file}")

    if os.environ.get("DEVELOPMENT", "").upper() == "TRUE":
        if not load_dotenv(dev_env_file, override=True):
            logger.warning(f"No development environment file loaded from {dev_env_file}")


def _parse_env_value(key: str, raw: str, default_value: Any) -> Any:
    try:
        if isinstance(default_value, bool):
            return raw.strip().lower() == "true"
        if isinstance(default_value, int):
            return int(raw)
        if isinstance(default_value, float):
            return float(raw)
        return raw
    except ValueError as parse_err:
        logger.warning(f"Could not parse env variable {key}: {parse_err}. Using default value.")
        return default_value


def _env_overrides() -> Dict[str, Any]:
    overrides = {}

    for alias, key in ENV_ALIASES.items():
        raw = os.environ.get(alias)
        if raw:
            overrides[key] = raw

    for key, default_value in DEFAULT_CONFIG.items():
        raw = os.environ.get(key)
        if raw is not None:
            overrides[key] = _parse_env_value(key, raw, default_value)

    return overrides


def load_config(config_file: str = "config.json") -> Dict[str, Any]:
    """
    Loads the configuration from config.json and the environment.
    If the file does not exist, it is created with the default configuration.

    Returns:
        Configuration dictionary
    """
    config = dict(DEFAULT_CONFIG)

    if os.environ.get("USE_ENV_CONFIG", "").lower() == "true":
        logger.info("Loading configuration from environment variables")
        return load_config_from_env()

    if not os.path.exists(config_file):
        save_config(config, config_file)
        logger.info(f"Configuration file created: {config_file}")
    else:
        try:
            with open(config_file, "r") as f:
                config.update(json.load(f))
            logger.info(f"Configuration loaded from: {config_file}")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load configuration: {e}")
            logger.info("Using default configuration")

    config.update(_env_overrides())
    return config


def load_config_from_env() -> Dict[str, Any]:
    """
    Builds the configuration from environment variables only

    Returns:
        Configuration dictionary
    """
    config = dict(DEFAULT_CONFIG)
    config.update(_env_overrides())
    return config


def save_config(config: Dict[str, Any], config_file: Optional[str] = None) -> bool:
    """
    Writes the configuration to config.json

    Returns:
        True if the file was written, False otherwise
    """
    config_file = config_file or "config.json"

    try:
        with open(config_file, "w") as f:
            json.dump(config, f, indent=2)
        logger.info(f"Configuration saved to: {config_file}")
        return True
    except OSError as e:
        logger.error(f"Failed to save configuration: {e}")
        return False
