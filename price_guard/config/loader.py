"""
Configuration management and loading.

Handles provider limits, portfolio keys, storage and logging settings.
"""

import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytz
import yaml

API_KEY_ENV_VAR = "ALPHA_VANTAGE_API_KEY"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class StockProviderConfig:
    """Alpha Vantage settings and free-tier limits."""
    api_key: Optional[str] = None
    base_url: str = "https://www.alphavantage.co/query"
    daily_limit: int = 500
    minute_limit: int = 5
    calls_per_quote: int = 1
    min_request_interval: float = 12.0
    batch_pause: float = 1.0
    timeout: float = 10.0

    def __post_init__(self):
        """Validate limits and intervals."""
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be > 0")
        if self.minute_limit <= 0:
            raise ValueError("minute_limit must be > 0")
        if self.calls_per_quote < 1:
            raise ValueError("calls_per_quote must be >= 1")
        if self.min_request_interval < 0:
            raise ValueError("min_request_interval must be >= 0")
        if self.batch_pause < 0:
            raise ValueError("batch_pause must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

    def resolved_api_key(self) -> Optional[str]:
        """Configured key, falling back to the environment."""
        return self.api_key or os.environ.get(API_KEY_ENV_VAR)


@dataclass(frozen=True)
class CryptoProviderConfig:
    """CoinGecko settings and free-tier limits."""
    base_url: str = "https://api.coingecko.com/api/v3"
    calls_per_quote: int = 1
    cache_minutes: float = 5.0
    batch_size: int = 100
    vs_currency: str = "usd"
    timeout: float = 10.0

    def __post_init__(self):
        """Validate limits and cache duration."""
        if self.calls_per_quote < 1:
            raise ValueError("calls_per_quote must be >= 1")
        if self.cache_minutes <= 0:
            raise ValueError("cache_minutes must be > 0")
        if not 1 <= self.batch_size <= 250:
            raise ValueError("batch_size must be between 1 and 250")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "price_guard.db"
    retention_days: int = 7

    def __post_init__(self):
        if self.retention_days < 1:
            raise ValueError("retention_days must be >= 1")


@dataclass(frozen=True)
class PortfolioConfig:
    """Instruments priced by the dashboard."""
    stocks: Tuple[str, ...] = ("SPY", "VTI")
    crypto: Tuple[str, ...] = ("bitcoin", "ethereum")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    alphavantage: StockProviderConfig = field(default_factory=StockProviderConfig)
    coingecko: CryptoProviderConfig = field(default_factory=CryptoProviderConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    portfolio: PortfolioConfig = field(default_factory=PortfolioConfig)
    timezone: Optional[str] = None
    log_level: str = "INFO"
    next_update: Optional[time] = time(9, 30)


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could
    lead to unexpected quota exhaustion.

    Args:
        path: Path to YAML configuration file; None returns the defaults

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return AppConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    _check_keys(raw_config, {'log_level', 'timezone', 'storage', 'providers', 'portfolio', 'schedule'}, "config")

    # Logging and time zone
    log_level = raw_config.get('log_level', "INFO")
    if not isinstance(log_level, str) or log_level.upper() not in VALID_LOG_LEVELS:
        raise ValueError(f"'log_level' must be one of: {list(VALID_LOG_LEVELS)}")

    timezone = raw_config.get('timezone')
    if timezone is not None:
        if not isinstance(timezone, str):
            raise ValueError("'timezone' must be a string")
        try:
            pytz.timezone(timezone)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {timezone}")

    # Storage
    storage_data = _section(raw_config, 'storage')
    _check_keys(storage_data, {'db_path', 'retention_days'}, "storage")
    storage = StorageConfig(
        db_path=str(storage_data.get('db_path', StorageConfig.db_path)),
        retention_days=_int(storage_data, 'retention_days', StorageConfig.retention_days, "storage"),
    )

    # Providers
    providers_data = _section(raw_config, 'providers')
    _check_keys(providers_data, {'alphavantage', 'coingecko'}, "providers")
    alphavantage = _parse_stock_config(_section(providers_data, 'alphavantage', "providers."))
    coingecko = _parse_crypto_config(_section(providers_data, 'coingecko', "providers."))

    # Portfolio
    portfolio_data = _section(raw_config, 'portfolio')
    _check_keys(portfolio_data, {'stocks', 'crypto'}, "portfolio")
    portfolio = PortfolioConfig(
        stocks=_key_list(portfolio_data, 'stocks', PortfolioConfig.stocks, str.upper),
        crypto=_key_list(portfolio_data, 'crypto', PortfolioConfig.crypto, str.lower),
    )

    # Schedule placeholder
    schedule_data = _section(raw_config, 'schedule')
    _check_keys(schedule_data, {'next_update'}, "schedule")
    next_update = AppConfig.next_update
    if 'next_update' in schedule_data:
        next_update = _parse_time(schedule_data['next_update'])

    return AppConfig(
        alphavantage=alphavantage,
        coingecko=coingecko,
        storage=storage,
        portfolio=portfolio,
        timezone=timezone,
        log_level=log_level.upper(),
        next_update=next_update,
    )


def _parse_stock_config(data: Dict) -> StockProviderConfig:
    """Parse and validate the Alpha Vantage section."""
    path = "providers.alphavantage"
    _check_keys(data, {
        'api_key', 'base_url', 'daily_limit', 'minute_limit', 'calls_per_quote',
        'min_request_interval', 'batch_pause', 'timeout',
    }, path)

    api_key = data.get('api_key')
    if api_key is not None and not isinstance(api_key, str):
        raise ValueError(f"'api_key' in {path} must be a string")

    defaults = StockProviderConfig()
    return StockProviderConfig(
        api_key=api_key or None,
        base_url=_str(data, 'base_url', defaults.base_url, path),
        daily_limit=_int(data, 'daily_limit', defaults.daily_limit, path),
        minute_limit=_int(data, 'minute_limit', defaults.minute_limit, path),
        calls_per_quote=_int(data, 'calls_per_quote', defaults.calls_per_quote, path),
        min_request_interval=_float(data, 'min_request_interval', defaults.min_request_interval, path),
        batch_pause=_float(data, 'batch_pause', defaults.batch_pause, path),
        timeout=_float(data, 'timeout', defaults.timeout, path),
    )


def _parse_crypto_config(data: Dict) -> CryptoProviderConfig:
    """Parse and validate the CoinGecko section."""
    path = "providers.coingecko"
    _check_keys(data, {
        'base_url', 'calls_per_quote', 'cache_minutes',
        'batch_size', 'vs_currency', 'timeout',
    }, path)

    defaults = CryptoProviderConfig()
    return CryptoProviderConfig(
        base_url=_str(data, 'base_url', defaults.base_url, path),
        calls_per_quote=_int(data, 'calls_per_quote', defaults.calls_per_quote, path),
        cache_minutes=_float(data, 'cache_minutes', defaults.cache_minutes, path),
        batch_size=_int(data, 'batch_size', defaults.batch_size, path),
        vs_currency=_str(data, 'vs_currency', defaults.vs_currency, path).lower(),
        timeout=_float(data, 'timeout', defaults.timeout, path),
    )


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _section(data: Dict, name: str, prefix: str = "") -> Dict:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{prefix}{name}' must be a dictionary")
    return value


def _int(data: Dict, name: str, default: int, path: str) -> int:
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{name}' in {path} must be an integer")
    return value


def _float(data: Dict, name: str, default: float, path: str) -> float:
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{name}' in {path} must be a number")
    return float(value)


def _str(data: Dict, name: str, default: str, path: str) -> str:
    value = data.get(name, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{name}' in {path} must be a non-empty string")
    return value


def _key_list(data: Dict, name: str, default: Tuple[str, ...], normalize) -> Tuple[str, ...]:
    if name not in data:
        return default
    values = data[name] or []
    if not isinstance(values, list):
        raise ValueError(f"'portfolio.{name}' must be a list")

    keys: List[str] = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Entries of 'portfolio.{name}' must be non-empty strings")
        keys.append(normalize(value.strip()))
    return tuple(dict.fromkeys(keys))


def _parse_time(value: Any) -> time:
    # YAML 1.1 reads unquoted 09:30 as a sexagesimal integer
    if isinstance(value, int) and not isinstance(value, bool):
        hours, minutes = divmod(value, 60)
        value = f"{hours:02d}:{minutes:02d}"
    if not isinstance(value, str):
        raise ValueError("'schedule.next_update' must be a HH:MM string")
    try:
        hours_str, minutes_str = value.split(":")
        return time(int(hours_str), int(minutes_str))
    except ValueError:
        raise ValueError(f"'schedule.next_update' must be HH:MM, got {value!r}")
