from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

from dmproto.constants import (
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HEARTBEAT_TIMEOUT,
    DEFAULT_ROOM_ID,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_SESSION_LIFETIME,
    MAX_FRAME_SIZE,
)

DEFAULT_CONFIG: Dict[str, Any] = {
    "room_id": DEFAULT_ROOM_ID,
    "keep_alive": True,
    "server_host": DEFAULT_SERVER_HOST,
    "server_port": DEFAULT_SERVER_PORT,
    "heartbeat_interval": float(DEFAULT_HEARTBEAT_INTERVAL),
    "heartbeat_timeout": float(DEFAULT_HEARTBEAT_TIMEOUT),
    "session_lifetime": float(DEFAULT_SESSION_LIFETIME),
    "reconnect_delay": 0.0,
    "reconnect_backoff": 1.0,
    "max_reconnect_backoff": 30.0,
    "max_reconnect_retries": 0,
    "connect_timeout": 10.0,
    "read_size": 65536,
    "max_frame_size": MAX_FRAME_SIZE,
    "log_level": "INFO",
}

CLIENT_CONFIG: Dict[str, Any] = DEFAULT_CONFIG.copy()

ENV_PREFIX = "DMFEED_"


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


def load_config(env_path: str = ".env") -> Dict[str, Any]:
    """Load client configuration from env file/environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_CONFIG.items():
        env_key = f"{ENV_PREFIX}{key.upper()}"
        value = os.getenv(env_key, default_value)
        CLIENT_CONFIG[key] = _coerce_type(value, type(default_value))

    validate_config(CLIENT_CONFIG)
    logging.getLogger().setLevel(CLIENT_CONFIG["log_level"])
    return CLIENT_CONFIG


def merge_config(overrides: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Current client config with per-client overrides applied and validated."""
    config = {**CLIENT_CONFIG, **(overrides or {})}
    validate_config(config)
    return config


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type):
        return value
    try:
        if target_type is bool:
            return str(value).lower() in ("1", "true", "yes", "on")
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value} to {target_type}") from exc


def validate_config(config: Dict[str, Any]) -> None:
    if not (1 <= int(config["server_port"]) <= 65535):
        raise ConfigError("server_port must be between 1 and 65535")
    if int(config["room_id"]) <= 0:
        raise ConfigError("room_id must be positive")
    for key in ("heartbeat_interval", "heartbeat_timeout", "session_lifetime", "connect_timeout", "reconnect_backoff"):
        if config[key] <= 0:
            raise ConfigError(f"{key} must be positive")
    for key in ("reconnect_delay", "max_reconnect_backoff", "max_reconnect_retries"):
        if config[key] < 0:
            raise ConfigError(f"{key} must not be negative")
    if config["read_size"] <= 0 or config["max_frame_size"] <= 0:
        raise ConfigError("read_size and max_frame_size must be positive")


def get(key: str, default: Any = None) -> Any:
    return CLIENT_CONFIG.get(key, default)


__all__ = ["CLIENT_CONFIG", "DEFAULT_CONFIG", "ConfigError", "get", "load_config", "merge_config", "validate_config"]
