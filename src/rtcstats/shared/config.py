# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Configuration management for the rtcstats server.

Settings are read from ``<config_dir>/config.yaml`` and layered over the
built-in defaults below. A handful of environment variables override the
file for container deployments.
"""

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
        "max_message_size": 4 * 1024 * 1024,
        "metrics_port": None,  # None = /metrics on the main port
        "ssl": {
            "certificate": None,
            "key": None,
        },
    },
    "paths": {
        "work_dir": "temp",
        "store_dir": "~/.rtcstats/store",
        "database": {
            "metadata_db": "~/.rtcstats/metadata.db",
        },
    },
    "extraction": {
        "capacity": None,  # None = os.cpu_count()
        "queue_warning_depth": 10,
        "worker_command": None,  # None = python -m rtcstats.worker.extract
    },
    "metrics": {
        "enabled": False,
    },
    "redis": {
        "host": "localhost",
        "port": 6379,
        "db": 0,
        "socket_timeout": 1.0,
        "socket_connect_timeout": 1.0,
    },
    "geolocation": {
        "networks": {},
    },
    "logging": {
        "level": "INFO",
    },
}

# env var -> (dotted key, converter)
ENV_OVERRIDES = {
    "RTCSTATS_PORT": ("server.port", int),
    "RTCSTATS_WORK_DIR": ("paths.work_dir", str),
    "RTCSTATS_LOG_LEVEL": ("logging.level", str),
    "RTCSTATS_REDIS_HOST": ("redis.host", str),
}


@dataclass
class RedisConfig:
    """Redis connection settings."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    socket_timeout: float = 1.0
    socket_connect_timeout: float = 1.0


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into ``base``.

    A section that is a mapping in the defaults but something else in the
    file is ignored so that a typo cannot wipe out a whole section.
    """
    for key, value in override.items():
        if isinstance(base.get(key), dict):
            if isinstance(value, dict):
                _merge(base[key], value)
            else:
                logger.warning(f"Ignoring invalid config section '{key}' (expected a mapping)")
        else:
            base[key] = value
    return base


class Config:
    """
    Layered configuration: defaults, then config.yaml, then environment.

    Example:
        config = Config()
        port = config.get("server.port", 3000)
        work_dir = config.get_path("paths.work_dir")
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Load configuration.

        Args:
            config_dir: Directory holding config.yaml
                        (defaults to $RTCSTATS_CONFIG_DIR or ~/.rtcstats)
        """
        if config_dir is None:
            config_dir = os.environ.get("RTCSTATS_CONFIG_DIR", str(Path.home() / ".rtcstats"))
        self.config_dir = Path(config_dir).expanduser()
        self.config_path = self.config_dir / "config.yaml"

        self._data = copy.deepcopy(DEFAULT_CONFIG)
        self._load_file()
        self._load_env()

    def _load_file(self) -> None:
        """Merge config.yaml over the defaults, if it exists."""
        if not self.config_path.exists():
            logger.debug(f"No config file at {self.config_path}, using defaults")
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load config file {self.config_path}: {e}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Config file {self.config_path} is not a mapping, ignoring")
            return

        _merge(self._data, data)

    def _load_env(self) -> None:
        """Apply environment variable overrides."""
        for env_name, (key, convert) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                self.set(key, convert(raw))
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a value by dotted key.

        Args:
            key: Dotted key, e.g. "server.port"
            default: Value returned when any segment is missing

        Returns:
            The configured value or ``default``
        """
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a value by dotted key, creating intermediate sections."""
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value

    def get_path(self, key: str, default: Optional[str] = None) -> Optional[Path]:
        """Look up a filesystem path by dotted key, expanding ``~``."""
        value = self.get(key, default)
        if value is None:
            return None
        return Path(str(value)).expanduser()

    @property
    def redis(self) -> RedisConfig:
        """Redis connection settings."""
        section = self.get("redis", {})
        return RedisConfig(
            host=section.get("host", "localhost"),
            port=int(section.get("port", 6379)),
            db=int(section.get("db", 0)),
            socket_timeout=float(section.get("socket_timeout", 1.0)),
            socket_connect_timeout=float(section.get("socket_connect_timeout", 1.0)),
        )
