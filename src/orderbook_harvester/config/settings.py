"""Configuration settings for the order book harvester service."""

import os
import yaml
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..exceptions import ConfigurationError
from ..utils.time_utils import parse_timestamp


@dataclass
class CoinAPIConfig:
    """CoinAPI REST configuration."""
    rest_base_url: str = "https://rest.coinapi.io"
    request_timeout_seconds: float = 60.0
    probe_symbol: str = "BINANCE_SPOT_MKR_USDT"
    probe_limit: int = 100
    probe_lookback_hours: float = 24.0


@dataclass
class HarvestConfig:
    """Harvest window, pacing and credential handling."""
    symbols: List[str]
    start_time: datetime
    end_time: datetime
    page_limit: int = 100000
    request_delay_seconds: float = 5.0
    cooldown_seconds: float = 3 * 60 * 60
    step_seconds: float = 50.0
    validate_credentials: bool = True
    credentials_file: str = "apiKeys.json"
    failure_log_path: str = "api_errors.log"
    acquire_timeout_seconds: Optional[float] = None  # None waits forever


@dataclass
class StorageConfig:
    """Storage configuration."""
    type: str = "postgres"  # "postgres" or "local"
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "orderbooks"
    table: str = "orderbook_snapshots"
    pool_min_size: int = 1
    pool_max_size: int = 10
    local_directory: str = "data/orderbooks"


@dataclass
class RetryConfig:
    """Retry configuration for transient network errors."""
    max_attempts: int = 3
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"
    output: str = "stdout"


@dataclass
class HarvesterConfig:
    """Main configuration for the harvester service."""
    harvest: HarvestConfig
    coinapi: CoinAPIConfig = field(default_factory=CoinAPIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


STORAGE_TYPES = ("postgres", "local")


def load_config(config_file: str) -> HarvesterConfig:
    """Load configuration from YAML file."""

    try:
        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_file}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed config file {config_file}: {e}") from e

    # Environment variable substitution
    config_data = _substitute_env_vars(config_data)

    return build_config(config_data)


def build_config(config_data: dict) -> HarvesterConfig:
    """Create and validate configuration objects from a plain dictionary."""

    if 'harvest' not in config_data:
        raise ConfigurationError("Missing 'harvest' section")

    try:
        coinapi_config = CoinAPIConfig(**_coerce(CoinAPIConfig, config_data.get('coinapi')))
        harvest_config = _build_harvest_config(config_data['harvest'] or {})
        storage_config = StorageConfig(**_coerce(StorageConfig, config_data.get('storage')))
        retry_config = RetryConfig(**_coerce(RetryConfig, config_data.get('retry')))
        logging_config = LoggingConfig(**_coerce(LoggingConfig, config_data.get('logging')))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    config = HarvesterConfig(
        harvest=harvest_config,
        coinapi=coinapi_config,
        storage=storage_config,
        retry=retry_config,
        logging=logging_config
    )
    validate_config(config)
    return config


def validate_config(config: HarvesterConfig) -> None:
    """Reject configurations the harvest cannot run with."""
    harvest = config.harvest

    if not harvest.symbols:
        raise ConfigurationError("No symbols configured")
    if harvest.start_time >= harvest.end_time:
        raise ConfigurationError(
            f"start_time {harvest.start_time.isoformat()} must be before "
            f"end_time {harvest.end_time.isoformat()}"
        )
    if harvest.page_limit <= 0:
        raise ConfigurationError("page_limit must be positive")
    if harvest.step_seconds <= 0:
        raise ConfigurationError("step_seconds must be positive")
    if harvest.request_delay_seconds < 0 or harvest.cooldown_seconds < 0:
        raise ConfigurationError("Delays must not be negative")
    if harvest.acquire_timeout_seconds is not None and harvest.acquire_timeout_seconds <= 0:
        raise ConfigurationError("acquire_timeout_seconds must be positive when set")
    if config.storage.type not in STORAGE_TYPES:
        raise ConfigurationError(
            f"Unknown storage type {config.storage.type!r}, expected one of {STORAGE_TYPES}"
        )


def _build_harvest_config(data: dict) -> HarvestConfig:
    data = _coerce(HarvestConfig, data)

    for key in ('symbols', 'start_time', 'end_time'):
        if data.get(key) in (None, ''):
            raise ConfigurationError(f"Missing harvest.{key}")

    symbols = data['symbols']
    if isinstance(symbols, str):
        symbols = symbols.split(',')
    # One worker per symbol, so repeated entries collapse
    data['symbols'] = list(dict.fromkeys(s.strip() for s in symbols if s and s.strip()))

    try:
        data['start_time'] = parse_timestamp(data['start_time'])
        data['end_time'] = parse_timestamp(data['end_time'])
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    return HarvestConfig(**data)


_BOOL_STRINGS = {
    'true': True, 'yes': True, '1': True, 'on': True,
    'false': False, 'no': False, '0': False, 'off': False,
}


def _coerce(config_cls, data: Optional[dict]) -> dict:
    """Convert substituted string values to the field types of a config class."""
    if not data:
        return {}

    known = config_cls.__dataclass_fields__
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigurationError(
            f"Unknown {config_cls.__name__} keys: {', '.join(sorted(unknown))}"
        )

    result = {}
    for key, value in data.items():
        field_type = known[key].type
        if isinstance(value, str):
            if value == '' and 'Optional' in str(field_type):
                value = None
            elif field_type in (int, 'int'):
                value = int(value)
            elif field_type in (float, 'float') or 'Optional[float]' in str(field_type):
                value = float(value)
            elif field_type in (bool, 'bool'):
                lowered = value.strip().lower()
                if lowered not in _BOOL_STRINGS:
                    raise ValueError(f"{key} must be a boolean, got {value!r}")
                value = _BOOL_STRINGS[lowered]
        result[key] = value
    return result


def _substitute_env_vars(data):
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        # Extract environment variable name and default value
        env_spec = data[2:-1]  # Remove ${ and }

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
