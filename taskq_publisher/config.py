"""
Configuration management for taskq-publisher.
Loads and validates configuration from YAML files using Pydantic, with
environment variable and command-line overrides.
"""

import os
import logging
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NamedTuple, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, ConfigDict

from .domain.ports import ConfigurationError


logger = logging.getLogger(__name__)


class TCPAddress(NamedTuple):
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def split_address(value: str) -> TCPAddress:
    """
    Split a ``host:port`` string.

    An empty host means all interfaces (``0.0.0.0``).

    Raises:
        ValueError: If the string is not a valid host:port pair
    """
    host, sep, port = value.strip().rpartition(":")
    if not sep:
        raise ValueError(f"Missing port in address {value!r}")
    if not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ValueError(f"Invalid port in address {value!r}")
    if host.startswith("[") or ":" in host:
        raise ValueError(f"IPv6 addresses are not supported: {value!r}")
    return TCPAddress(host or "0.0.0.0", int(port))


def resolve_address(value: str) -> TCPAddress:
    """
    Resolve a ``host:port`` string to an IPv4 TCP address.

    Args:
        value: Address such as ``127.0.0.1:8080`` or ``redis:6379``

    Returns:
        Resolved address with a numeric IPv4 host

    Raises:
        ConfigurationError: If the address is malformed or cannot be resolved
    """
    try:
        address = split_address(value)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    try:
        infos = socket.getaddrinfo(
            address.host, address.port,
            family=socket.AF_INET, type=socket.SOCK_STREAM
        )
    except (socket.gaierror, UnicodeError) as e:
        raise ConfigurationError(f"Cannot resolve address {value!r}: {e}") from e

    ip, port = infos[0][4][:2]
    return TCPAddress(ip, port)


def _validate_address(value: str) -> str:
    split_address(value)
    return value.strip()


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    model_config = ConfigDict(extra='forbid')

    bind: str = Field(
        default="127.0.0.1:8080",
        description="Address and port to listen on"
    )
    keep_alive_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Idle keep-alive connection timeout in seconds"
    )
    grace_period: Optional[float] = Field(
        default=None,
        gt=0,
        description="Max seconds to wait for in-flight requests on shutdown, unlimited if unset"
    )
    log_level: str = Field(
        default="info",
        description="Uvicorn log level"
    )

    @field_validator('bind')
    @classmethod
    def validate_bind(cls, v):
        return _validate_address(v)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['critical', 'error', 'warning', 'info', 'debug', 'trace']
        if v.lower() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.lower()


class RedisConfig(BaseModel):
    """Redis connection configuration."""
    model_config = ConfigDict(extra='forbid')

    address: str = Field(
        default="127.0.0.1:6379",
        description="Address and port of the Redis server"
    )
    db: int = Field(
        default=0,
        ge=0,
        description="Redis database number"
    )
    password: Optional[str] = Field(
        default=None,
        description="Redis password"
    )
    max_connections: int = Field(
        default=2000,
        ge=1,
        description="Maximum connections in Redis pool"
    )
    socket_timeout: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Socket timeout in seconds"
    )
    socket_connect_timeout: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Connection timeout in seconds"
    )
    health_check_interval: int = Field(
        default=30,
        ge=0,
        le=300,
        description="Health check interval in seconds"
    )

    @field_validator('address')
    @classmethod
    def validate_address(cls, v):
        return _validate_address(v)


class FlakeConfig(BaseModel):
    """Unique id generator configuration."""
    model_config = ConfigDict(extra='forbid')

    machine_id: Optional[int] = Field(
        default=None,
        ge=0,
        le=65535,
        description="16-bit machine id, derived from the private IPv4 address if unset"
    )
    start_time: datetime = Field(
        default=datetime(2014, 9, 1, tzinfo=timezone.utc),
        description="Epoch of the id time component"
    )
    clock_backward_tolerance_ms: int = Field(
        default=1000,
        ge=0,
        description="How far the clock may step back before id generation fails"
    )


class WatcherConfig(BaseModel):
    """Queue-depth watcher configuration."""
    model_config = ConfigDict(extra='forbid')

    enabled: bool = Field(
        default=False,
        description="Record published-to channels and poll their length"
    )
    poll_interval: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between two polls"
    )


class MetricsConfig(BaseModel):
    """Periodic metrics logger configuration."""
    model_config = ConfigDict(extra='forbid')

    notifier_enabled: bool = Field(
        default=False,
        description="Log a metrics snapshot periodically (enabled by --verbose)"
    )
    notifier_period: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between two metrics log lines"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(extra='forbid')

    level: str = Field(
        default="INFO",
        description="Logging level"
    )
    json_format: bool = Field(
        default=True,
        description="Enable JSON log formatting"
    )
    enable_correlation: bool = Field(
        default=True,
        description="Stamp log records with the request unique id"
    )

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


class AppConfig(BaseModel):
    """Main application configuration."""
    model_config = ConfigDict(extra='forbid')

    server: ServerConfig = Field(default_factory=ServerConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    flake: FlakeConfig = Field(default_factory=FlakeConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[dict[str, Any]] = None
) -> AppConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Precedence (lowest first): defaults, YAML file, environment, ``overrides``.

    Args:
        config_path: Path to config file, defaults to CONFIG_PATH env var or ./config.yml
        overrides: Dot-notation overrides, e.g. {"redis.address": "10.0.0.5:6379"}

    Returns:
        Loaded and validated configuration

    Raises:
        ConfigurationError: If the YAML cannot be parsed or validation fails
    """
    if config_path is None:
        config_path = os.getenv('CONFIG_PATH', './config.yml')

    config_file = Path(config_path)
    config_data: dict = {}

    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML config: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a mapping")
        logger.info(f"Loaded config from: {config_file}")
    else:
        logger.debug(f"Config file not found: {config_file}, using defaults")

    config_data = _apply_env_overrides(config_data)

    for path, value in (overrides or {}).items():
        if value is not None:
            _set_nested_value(config_data, path, value)

    try:
        config = AppConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Configuration loaded successfully",
        extra={
            "component": "config",
            "config_file": str(config_file),
            "redis_address": config.redis.address,
            "bind": config.server.bind
        }
    )

    return config


def _apply_env_overrides(config_data: dict) -> dict:
    """
    Apply environment variable overrides to config data.

    Supports dot notation for nested keys:
    - REDIS_ADDRESS -> redis.address
    - BIND_ADDRESS -> server.bind
    - LOG_LEVEL -> logging.level
    """
    env_mappings = {
        'BIND_ADDRESS': 'server.bind',
        'SERVER_GRACE_PERIOD': 'server.grace_period',
        'REDIS_ADDRESS': 'redis.address',
        'REDIS_DB': 'redis.db',
        'REDIS_PASSWORD': 'redis.password',
        'REDIS_MAX_CONNECTIONS': 'redis.max_connections',
        'FLAKE_MACHINE_ID': 'flake.machine_id',
        'WATCHER_ENABLED': 'watcher.enabled',
        'WATCHER_POLL_INTERVAL': 'watcher.poll_interval',
        'METRICS_NOTIFIER_PERIOD': 'metrics.notifier_period',
        'LOG_LEVEL': 'logging.level',
        'LOG_JSON': 'logging.json_format'
    }

    for env_var, config_path in env_mappings.items():
        env_value = os.getenv(env_var)
        if env_value is not None:
            # Passwords are never type-converted
            value = env_value if env_var == 'REDIS_PASSWORD' else _convert_env_value(env_value)
            _set_nested_value(config_data, config_path, value)
            logger.debug(f"Applied env override: {env_var} -> {config_path}")

    return config_data


def _set_nested_value(data: dict, path: str, value: Any) -> None:
    """
    Set a nested dictionary value using dot notation.

    Args:
        data: Dictionary to modify
        path: Dot-separated path (e.g., 'redis.address')
        value: Value to set
    """
    keys = path.split('.')
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def _convert_env_value(value: str):
    """
    Convert environment variable string to appropriate Python type.

    Returns:
        Converted value (bool, int, float, or str)
    """
    if value.lower() in ('true', 'yes', 'on'):
        return True
    elif value.lower() in ('false', 'no', 'off'):
        return False

    try:
        if '.' in value:
            return float(value)
        else:
            return int(value)
    except ValueError:
        pass

    return value
