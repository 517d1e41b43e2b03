"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional
import json

from dotenv import load_dotenv

ENV_PREFIX = 'STREAMDROP_'


@dataclass
class Config:
    """
    Transfer configuration.

    Configuration priority (highest to lowest):
    1. Command-line options
    2. Environment variables (STREAMDROP_*, also read from .env)
    3. Config file (JSON)
    4. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 8080

    # Receiving
    output_dir: Optional[Path] = None  # None: current directory
    max_incoming: Optional[int] = None  # None: no cap

    # Sending
    max_parallel_transfers: int = 5
    header_gap: float = 0.05  # seconds between name and size writes

    # Streaming
    chunk_size: int = 1024 * 1024  # 1 MiB

    # Logging
    log_level: str = 'INFO'

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def validate(self) -> 'Config':
        """Raise ValueError on settings the transfer layer cannot use."""
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive: {self.chunk_size}")
        if self.max_parallel_transfers < 1:
            raise ValueError(
                f"max_parallel_transfers must be at least 1: {self.max_parallel_transfers}"
            )
        if self.max_incoming is not None and self.max_incoming < 1:
            raise ValueError(f"max_incoming must be at least 1: {self.max_incoming}")
        if self.header_gap < 0:
            raise ValueError(f"header_gap cannot be negative: {self.header_gap}")
        return self

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        config = cls()
        config.apply(env_overrides())
        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.host = data.get('host', config.host)
        config.port = int(data.get('port', config.port))

        # Receiving
        if data.get('output_dir'):
            config.output_dir = Path(data['output_dir'])
        if data.get('max_incoming') is not None:
            config.max_incoming = int(data['max_incoming'])

        # Sending
        config.max_parallel_transfers = int(
            data.get('max_parallel_transfers', config.max_parallel_transfers)
        )
        config.header_gap = float(data.get('header_gap', config.header_gap))

        # Streaming
        config.chunk_size = int(data.get('chunk_size', config.chunk_size))

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def apply(self, overrides: dict) -> 'Config':
        """Set every non-None value in ``overrides``."""
        for key, value in overrides.items():
            if value is not None:
                setattr(self, key, value)
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'output_dir': str(self.output_dir) if self.output_dir else None,
            'max_incoming': self.max_incoming,
            'max_parallel_transfers': self.max_parallel_transfers,
            'header_gap': self.header_gap,
            'chunk_size': self.chunk_size,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# field -> (environment suffix, converter)
_ENV_FIELDS = {
    'host': ('HOST', str),
    'port': ('PORT', int),
    'output_dir': ('OUTPUT_DIR', Path),
    'max_incoming': ('MAX_INCOMING', int),
    'max_parallel_transfers': ('MAX_PARALLEL', int),
    'header_gap': ('HEADER_GAP', float),
    'chunk_size': ('CHUNK_SIZE', int),
    'log_level': ('LOG_LEVEL', str),
}


def env_overrides() -> dict:
    """
    Read the STREAMDROP_* variables that are actually set.

    Loads a .env file first; variables already in the environment win.
    """
    load_dotenv()

    overrides = {}
    for key, (suffix, convert) in _ENV_FIELDS.items():
        raw = os.getenv(ENV_PREFIX + suffix)
        if not raw:
            continue
        try:
            overrides[key] = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid {ENV_PREFIX}{suffix}={raw!r}: {e}") from e
    return overrides


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Load from file if provided, environment variables on top
    if config_path and config_path.exists():
        config = Config.from_file(config_path)
        config.apply(env_overrides())
    else:
        config = Config.from_env()

    return config.validate()


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 8080,
  "output_dir": "./received",
  "max_incoming": null,
  "max_parallel_transfers": 5,
  "header_gap": 0.05,
  "chunk_size": 1048576,
  "log_level": "INFO"
}
"""
