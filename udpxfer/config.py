"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Optional

from dotenv import load_dotenv

from .transfer.protocol import (
    BASE_TIMEOUT, BLOCK_SIZE, MAX_RETRIES, PORT_PROBE_ATTEMPTS, PORT_RANGE,
)

ENV_PREFIX = 'UDPXFER_'


def _optional_int(value) -> Optional[int]:
    if value in (None, '', 0, '0'):
        return None
    return int(value)


def _optional_float(value) -> Optional[float]:
    if value in (None, '', 0, '0'):
        return None
    return float(value)


def _bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Config:
    """
    Transfer configuration, shared by server and client.

    Configuration priority (highest to lowest):
    1. Environment variables (UDPXFER_*)
    2. Config file (JSON)
    3. Default values

    The protocol constants (port range, retries, timeout, block size) must
    match across every server and client in a deployment.
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 9000

    # Storage
    root_dir: Path = field(default_factory=lambda: Path('.'))
    output_dir: Path = field(default_factory=lambda: Path('.'))

    # Protocol
    port_range_start: int = PORT_RANGE[0]
    port_range_end: int = PORT_RANGE[1]
    port_probe_attempts: int = PORT_PROBE_ATTEMPTS
    max_retries: int = MAX_RETRIES
    base_timeout: float = BASE_TIMEOUT  # seconds
    block_size: int = BLOCK_SIZE

    # Hardening (off by default)
    max_sessions: Optional[int] = None
    session_idle_timeout: Optional[float] = None  # seconds
    pin_peer: bool = False

    # Client
    atomic_downloads: bool = False

    # Logging
    log_level: str = 'INFO'

    # How each field is read from a string or JSON value
    _CONVERTERS = {
        'host': str,
        'port': int,
        'root_dir': Path,
        'output_dir': Path,
        'port_range_start': int,
        'port_range_end': int,
        'port_probe_attempts': int,
        'max_retries': int,
        'base_timeout': float,
        'block_size': int,
        'max_sessions': _optional_int,
        'session_idle_timeout': _optional_float,
        'pin_peer': _bool,
        'atomic_downloads': _bool,
        'log_level': str,
    }

    # Settings where null means "off"
    _NULLABLE = ('max_sessions', 'session_idle_timeout')

    @property
    def port_range(self) -> tuple:
        return (self.port_range_start, self.port_range_end)

    def validate(self):
        """Raise ValueError for settings the protocol can't work with."""
        for name in self._CONVERTERS:
            if getattr(self, name) is None and name not in self._NULLABLE:
                raise ValueError(f"{name} can't be null")
        if not 0 < self.port_range_start < self.port_range_end <= 65536:
            raise ValueError(f"Invalid port range {self.port_range}")
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port {self.port}")
        if self.block_size <= 0:
            raise ValueError("block_size must be positive")
        if self.base_timeout <= 0:
            raise ValueError("base_timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries can't be negative")
        if self.port_probe_attempts <= 0:
            raise ValueError("port_probe_attempts must be positive")

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()
        for name, convert in cls._CONVERTERS.items():
            value = os.getenv(ENV_PREFIX + name.upper())
            if value is not None:
                setattr(config, name, convert(value))

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()
        for name, convert in cls._CONVERTERS.items():
            if name in data:
                value = data[name]
                setattr(config, name, None if value is None else convert(value))

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = str(value) if isinstance(value, Path) else value
        return data

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables that are actually set
    load_dotenv()
    env_config = Config.from_env()
    for name in Config._CONVERTERS:
        if os.getenv(ENV_PREFIX + name.upper()) is not None:
            setattr(config, name, getattr(env_config, name))

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 9000,
  "root_dir": "./shared",
  "output_dir": "./downloads",
  "port_range_start": 50000,
  "port_range_end": 51000,
  "max_retries": 5,
  "base_timeout": 0.5,
  "block_size": 1000,
  "max_sessions": 100,
  "session_idle_timeout": 300,
  "pin_peer": false,
  "atomic_downloads": true,
  "log_level": "INFO"
}
"""
