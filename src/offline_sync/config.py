"""
Sync Configuration

Policy constants for the offline sync engine, loadable from environment
variables or a YAML file.

Environment variables:
- OFFLINE_SYNC_BASE_URL
- OFFLINE_SYNC_API_KEY
- OFFLINE_SYNC_TIMEOUT
- OFFLINE_SYNC_MAX_RETRIES
- OFFLINE_SYNC_INTERVAL
- OFFLINE_SYNC_CACHE_TTL
- OFFLINE_SYNC_FAIL_FAST
- OFFLINE_SYNC_STORE_PATH
"""

import os
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError


DEFAULT_BASE_URL = "http://localhost:5000"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class SyncConfig:
    """Configuration for the sync engine."""

    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    timeout_seconds: float = 10.0
    max_retries: int = 5
    sync_interval_seconds: int = 30 * 60
    cache_ttl_seconds: int = 30 * 60
    dead_letter_limit: int = 1000
    fail_fast_on_client_error: bool = False
    store_path: Optional[str] = None
    user_agent: str = "offline-sync/0.3"

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load configuration from environment variables."""
        env = os.environ
        try:
            config = cls(
                base_url=env.get("OFFLINE_SYNC_BASE_URL", DEFAULT_BASE_URL),
                api_key=env.get("OFFLINE_SYNC_API_KEY"),
                timeout_seconds=float(env.get("OFFLINE_SYNC_TIMEOUT", "10")),
                max_retries=int(env.get("OFFLINE_SYNC_MAX_RETRIES", "5")),
                sync_interval_seconds=int(env.get("OFFLINE_SYNC_INTERVAL", "1800")),
                cache_ttl_seconds=int(env.get("OFFLINE_SYNC_CACHE_TTL", "1800")),
                fail_fast_on_client_error=env.get("OFFLINE_SYNC_FAIL_FAST", "").lower() in _TRUE_VALUES,
                store_path=env.get("OFFLINE_SYNC_STORE_PATH"),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid sync environment setting: {e}") from e
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "SyncConfig":
        """
        Load configuration from a YAML mapping.

        Args:
            path: Path to the YAML file

        Returns:
            Validated SyncConfig

        Raises:
            ConfigError: if the file is unreadable, not a mapping, or has unknown keys
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot load sync config from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Sync config in {path} must be a mapping")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown sync config keys: {', '.join(unknown)}")

        config = cls(**data)
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        """Reject settings the engine cannot operate with."""
        if not self.base_url:
            raise ConfigError("base_url must not be empty")
        if self.timeout_seconds <= 0:
            raise ConfigError("timeout_seconds must be positive")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        if self.sync_interval_seconds <= 0:
            raise ConfigError("sync_interval_seconds must be positive")
        if self.dead_letter_limit < 1:
            raise ConfigError("dead_letter_limit must be at least 1")
